from fastapi import APIRouter, Depends, HTTPException, Request

from ..schemas import (FaceSampleRequest, FaceVerificationOut, IntegrityReportOut,
                       OtpRequestOut, OtpVerifyRequest, SelectCandidateRequest,
                       SelectElectionRequest, VoteCheckOut)
from ..security import get_current_voter
from ..workflow import VotingWorkflow

vote_router = APIRouter(prefix="/vote", tags=["Vote"])


def get_workflow(request: Request, voter_id: str = Depends(get_current_voter)) -> VotingWorkflow:
    return request.app.state.workflows.get(voter_id)


# ------------------------------
# Session
# ------------------------------
@vote_router.get("/session")
def get_session(workflow: VotingWorkflow = Depends(get_workflow)):
    return workflow.snapshot()


@vote_router.post("/session")
def restart_session(request: Request, voter_id: str = Depends(get_current_voter)):
    """Discards the voter's current workflow and starts a fresh one."""
    return request.app.state.workflows.restart(voter_id).snapshot()


# ------------------------------
# Verification factors
# ------------------------------
@vote_router.post("/verify-face", response_model=FaceVerificationOut)
def verify_face(body: FaceSampleRequest, workflow: VotingWorkflow = Depends(get_workflow)):
    try:
        result = workflow.verify_face(body.embedding)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "status": "ok",
        "match_score": result.confidence,
        "session": workflow.snapshot(),
    }


@vote_router.post("/otp/request", response_model=OtpRequestOut)
def request_otp(workflow: VotingWorkflow = Depends(get_workflow)):
    ticket = workflow.request_otp()
    return {"status": "sent", "expires_at": ticket.expires_at,
            "resend_available_at": ticket.resend_available_at}


@vote_router.post("/otp/verify")
def verify_otp(body: OtpVerifyRequest, workflow: VotingWorkflow = Depends(get_workflow)):
    workflow.verify_otp(body.code)
    return workflow.snapshot()


# ------------------------------
# Selection and casting
# ------------------------------
@vote_router.post("/select-election")
def select_election(body: SelectElectionRequest, workflow: VotingWorkflow = Depends(get_workflow)):
    workflow.select_election(body.election_id)
    return workflow.snapshot()


@vote_router.post("/select-candidate")
def select_candidate(body: SelectCandidateRequest, workflow: VotingWorkflow = Depends(get_workflow)):
    workflow.select_candidate(body.candidate_id)
    return workflow.snapshot()


@vote_router.post("/cast")
def cast_vote(workflow: VotingWorkflow = Depends(get_workflow)):
    """
    Casts the selected vote. The ledger decides; a duplicate ends the
    workflow in the rejected state.
    """
    tx = workflow.cast_vote()
    return {
        "message": "Vote cast successfully!",
        "transaction": tx.model_dump(mode="json"),
        "session": workflow.snapshot(),
    }


# ------------------------------
# Lookups
# ------------------------------
@vote_router.get("/check/{election_id}", response_model=VoteCheckOut)
def check_vote(election_id: int, request: Request, voter_id: str = Depends(get_current_voter)):
    request.app.state.catalog.get_election(election_id)
    if request.app.state.ledger.has_voted(voter_id, election_id):
        return {"status": "already_voted", "election_id": election_id,
                "message": "You have already cast your vote in this election."}
    return {"status": "not_voted", "election_id": election_id,
            "message": "Voter can proceed to vote."}


@vote_router.get("/transactions")
def list_transactions(request: Request):
    txs = request.app.state.ledger.list_transactions()
    return {"transactions": [tx.model_dump(mode="json") for tx in txs]}


@vote_router.get("/verify-integrity", response_model=IntegrityReportOut)
def verify_integrity(request: Request):
    return request.app.state.ledger.verify_integrity()
