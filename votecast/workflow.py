# votecast/workflow.py
"""
Vote-casting workflow.

AWAITING_VERIFICATION -> AWAITING_ELECTION_CHOICE -> AWAITING_CANDIDATE_CHOICE
-> CASTING -> CONFIRMED, with a terminal REJECTED when the ledger reports the
voter has already voted. The verification sub-machine lives in
`verification.py`; the ledger is the only authority on double voting.
"""
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from . import config
from .errors import (AlreadyVoted, AttemptsExhausted, ElectionNotActive, InvalidCandidate,
                     InvalidWorkflowState, NotFound, SessionExpired,
                     UnknownElection)
from .face_utils import FaceMatchResult, FaceOutcome
from .models.election_model import Election, utcnow
from .models.session_model import SessionStep, VerificationSession
from .models.vote_model import VoteTransaction
from .otp import OtpOutcome, OtpTicket
from .verification import VerificationGate

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    AWAITING_VERIFICATION = "awaiting_verification"
    AWAITING_ELECTION_CHOICE = "awaiting_election_choice"
    AWAITING_CANDIDATE_CHOICE = "awaiting_candidate_choice"
    CASTING = "casting"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


TERMINAL_STATES = (WorkflowState.CONFIRMED, WorkflowState.REJECTED)


class VotingWorkflow:
    """
    One voter's pass through verification, election and candidate choice,
    and a single cast. Collaborators are injected; the workflow keeps no
    process-wide state.
    """

    def __init__(self, voter_id: str, catalog, ledger, face_matcher, otp_channel,
                 max_face_attempts: int = config.MAX_FACE_ATTEMPTS,
                 max_otp_attempts: int = config.MAX_OTP_ATTEMPTS,
                 session_ttl_seconds: int = config.SESSION_TTL_SECONDS,
                 clock=utcnow):
        self.voter_id = voter_id
        self.catalog = catalog
        self.ledger = ledger
        self.face_matcher = face_matcher
        self.otp_channel = otp_channel
        self.max_face_attempts = max_face_attempts
        self.max_otp_attempts = max_otp_attempts
        self.session_ttl_seconds = session_ttl_seconds
        self.clock = clock

        self.state = WorkflowState.AWAITING_VERIFICATION
        self.session: Optional[VerificationSession] = None
        self._gate: Optional[VerificationGate] = None
        self.election: Optional[Election] = None
        self.candidate_id: Optional[int] = None
        self.transaction: Optional[VoteTransaction] = None
        self.rejection_reason: Optional[str] = None
        self.updated_at = clock()

    # --- helpers ---

    def _require(self, operation: str, *states: WorkflowState) -> None:
        if self.state not in states:
            raise InvalidWorkflowState(
                f"'{operation}' is not allowed while the workflow is {self.state.value}."
            )

    def _touch(self) -> None:
        self.updated_at = self.clock()
        if self.session is not None:
            self.session.last_update = self.updated_at

    def _new_session(self) -> VerificationGate:
        self.session = VerificationSession(voter_id=self.voter_id, created_at=self.clock(),
                                           last_update=self.clock())
        self._gate = VerificationGate(self.session, self.max_face_attempts,
                                      self.max_otp_attempts, clock=self.clock)
        return self._gate

    def _discard_session(self) -> None:
        if self.session is not None:
            self.otp_channel.discard(self.session.key)
        self.session = None
        self._gate = None

    def _session_expired(self) -> bool:
        return self._gate is not None and self._gate.is_expired(self.clock(), self.session_ttl_seconds)

    def _verification_gate(self) -> VerificationGate:
        # created lazily; a stale unverified session restarts at START
        if self._gate is None:
            return self._new_session()
        if self._session_expired():
            logger.info(f"Verification session for {self.voter_id} expired, restarting")
            self._discard_session()
            return self._new_session()
        return self._gate

    def _require_verified(self) -> None:
        if self.session is None or not self.session.is_verified:
            raise InvalidWorkflowState("Identity verification has not been completed.")
        if self._session_expired():
            logger.info(f"Verified session for {self.voter_id} expired before casting")
            self._discard_session()
            self.state = WorkflowState.AWAITING_VERIFICATION
            self.election = None
            self.candidate_id = None
            raise SessionExpired("Your verification session expired. Please verify again.")

    # --- verification ---

    def verify_face(self, sample: Sequence[float]) -> FaceMatchResult:
        self._require("verify_face", WorkflowState.AWAITING_VERIFICATION)
        gate = self._verification_gate()
        gate.begin_face()
        try:
            result = self.face_matcher.evaluate(self.voter_id, sample)
        except Exception:
            gate.abort_face()
            raise
        self._touch()
        if result.outcome == FaceOutcome.MATCHED:
            gate.face_matched()
        else:
            gate.face_mismatched()
        return result

    def request_otp(self) -> OtpTicket:
        self._require("request_otp", WorkflowState.AWAITING_VERIFICATION)
        gate = self._verification_gate()
        if self.session.step != SessionStep.FACE_PASSED:
            raise InvalidWorkflowState("Face verification must pass before a code is sent.")
        if gate.otp_locked:
            raise AttemptsExhausted("One-time code attempts exhausted.",
                                    factor="otp", attempts_remaining=0)
        ticket = self.otp_channel.issue(self.session.key, recipient=self.voter_id)
        self._touch()
        return ticket

    def verify_otp(self, code: str) -> None:
        self._require("verify_otp", WorkflowState.AWAITING_VERIFICATION)
        gate = self._verification_gate()
        if (self.session.step == SessionStep.FACE_PASSED and not gate.otp_locked
                and not self.otp_channel.has_pending(self.session.key)):
            raise InvalidWorkflowState("Request a one-time code first.")
        gate.begin_otp()
        try:
            outcome = self.otp_channel.check(self.session.key, code)
        except Exception:
            gate.abort_otp()
            raise
        self._touch()
        if outcome == OtpOutcome.CORRECT:
            gate.otp_correct()
            self.state = WorkflowState.AWAITING_ELECTION_CHOICE
        else:
            gate.otp_incorrect()

    # --- selection ---

    def select_election(self, election_id: int) -> Election:
        self._require("select_election", WorkflowState.AWAITING_ELECTION_CHOICE,
                      WorkflowState.AWAITING_CANDIDATE_CHOICE)
        self._require_verified()
        try:
            election = self.catalog.get_election(election_id)
        except NotFound:
            raise UnknownElection(f"Election {election_id} not found.") from None
        if not election.is_active(self.clock()):
            raise ElectionNotActive(f"Election {election_id} is not open for voting.")

        self.election = election
        self.candidate_id = None
        self.session.election_id = election.id
        self.state = WorkflowState.AWAITING_CANDIDATE_CHOICE
        self._touch()
        return election

    def select_candidate(self, candidate_id: int) -> None:
        self._require("select_candidate", WorkflowState.AWAITING_CANDIDATE_CHOICE)
        self._require_verified()
        if not self.election.has_candidate(candidate_id):
            raise InvalidCandidate(
                f"Candidate {candidate_id} is not running in election {self.election.id}."
            )
        self.candidate_id = candidate_id
        self._touch()

    # --- casting ---

    def cast_vote(self) -> VoteTransaction:
        self._require("cast_vote", WorkflowState.AWAITING_CANDIDATE_CHOICE)
        if self.candidate_id is None:
            raise InvalidWorkflowState("Select a candidate before casting a vote.")
        self._require_verified()

        election_id = self.election.id
        self.state = WorkflowState.CASTING
        try:
            if self.ledger.has_voted(self.voter_id, election_id):
                raise AlreadyVoted("You have already cast your vote in this election.")
            tx = self.ledger.record_vote(self.voter_id, election_id, self.candidate_id)
        except AlreadyVoted as e:
            self.state = WorkflowState.REJECTED
            self.rejection_reason = e.code
            self._discard_session()
            logger.warning(f"Vote by {self.voter_id} in election {election_id} rejected: already voted")
            raise
        except (ElectionNotActive, InvalidCandidate, NotFound):
            self.state = WorkflowState.AWAITING_ELECTION_CHOICE
            self.election = None
            self.candidate_id = None
            self.session.election_id = None
            raise
        except Exception:
            # transient failure; record_vote is safe to call again
            self.state = WorkflowState.AWAITING_CANDIDATE_CHOICE
            raise
        finally:
            self.updated_at = self.clock()

        self.transaction = tx
        self.state = WorkflowState.CONFIRMED
        self._discard_session()
        logger.info(f"Vote by {self.voter_id} confirmed in election {election_id} (block {tx.block_number})")
        return tx

    # --- presentation ---

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def snapshot(self) -> Dict[str, Any]:
        session = self.session
        return {
            "voter_id": self.voter_id,
            "state": self.state.value,
            "verification": None if session is None else {
                "step": session.step.value,
                "face_status": session.face_status.value,
                "otp_status": session.otp_status.value,
                "face_attempts": session.face_attempts,
                "otp_attempts": session.otp_attempts,
            },
            "election_id": self.election.id if self.election else None,
            "candidate_id": self.candidate_id,
            "transaction": self.transaction.model_dump(mode="json") if self.transaction else None,
            "rejection_reason": self.rejection_reason,
        }


class WorkflowRegistry:
    """
    Keeps one workflow per voter between requests. Workflows idle past the
    session TTL are evicted on the next lookup, whichever voter it is for.
    """

    def __init__(self, factory: Callable[[str], VotingWorkflow],
                 ttl_seconds: int = config.SESSION_TTL_SECONDS, clock=utcnow):
        self._factory = factory
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._workflows: Dict[str, VotingWorkflow] = {}

    def get(self, voter_id: str) -> VotingWorkflow:
        with self._lock:
            self._evict_stale()
            workflow = self._workflows.get(voter_id)
            if workflow is None:
                workflow = self._factory(voter_id)
                self._workflows[voter_id] = workflow
            return workflow

    def restart(self, voter_id: str) -> VotingWorkflow:
        with self._lock:
            workflow = self._factory(voter_id)
            self._workflows[voter_id] = workflow
            return workflow

    def __len__(self) -> int:
        return len(self._workflows)

    def _is_stale(self, workflow: VotingWorkflow) -> bool:
        return (self.clock() - workflow.updated_at).total_seconds() > self.ttl_seconds

    def _evict_stale(self) -> None:
        stale = [vid for vid, wf in self._workflows.items() if self._is_stale(wf)]
        for voter_id in stale:
            del self._workflows[voter_id]
        if stale:
            logger.info(f"Evicted {len(stale)} idle voting workflow(s)")
