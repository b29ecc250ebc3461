# main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import config
from .catalog import MongoElectionCatalog, load_elections_file
from .errors import VotingError
from .face_utils import (EmbeddingFaceMatcher, InMemoryReferenceStore,
                         MongoReferenceStore, load_fernet)
from .ledger import InMemoryVoteLedger, MongoVoteLedger
from .models.election_model import utcnow
from .otp import HashedOtpChannel
from .routes.election_routes import router as election_router
from .routes.vote_routes import vote_router
from .workflow import VotingWorkflow, WorkflowRegistry

logger = logging.getLogger(__name__)

# error code -> HTTP status
STATUS_BY_CODE = {
    "not_found": 404,
    "unknown_election": 404,
    "invalid_candidate": 422,
    "election_not_active": 409,
    "invalid_workflow_state": 409,
    "session_expired": 409,
    "already_voted": 409,
    "verification_failed": 422,
    "attempts_exhausted": 423,
    "no_reference_enrolled": 412,
    "resend_cooldown": 429,
    "authentication_failed": 401,
    "catalog_unavailable": 503,
    "ledger_unavailable": 503,
    "biometric_store_unavailable": 503,
}


def build_services():
    """Build catalog, ledger, face matcher and code channel from config."""
    fernet = load_fernet()
    if config.STORAGE_BACKEND == "mongo":
        from .database.connection import MongoConnector

        mongo = MongoConnector()
        catalog = MongoElectionCatalog(mongo.elections)
        ledger = MongoVoteLedger(mongo.elections, mongo.counters, catalog)
        references = MongoReferenceStore(mongo.voters, fernet)
    elif config.STORAGE_BACKEND == "memory":
        catalog = load_elections_file(config.ELECTIONS_FILE)
        ledger = InMemoryVoteLedger(catalog)
        references = InMemoryReferenceStore(fernet)
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND '{config.STORAGE_BACKEND}'")
    return catalog, ledger, EmbeddingFaceMatcher(references), HashedOtpChannel()


def create_app(catalog=None, ledger=None, face_matcher=None, otp_channel=None,
               clock=None) -> FastAPI:
    if catalog is None:
        catalog, ledger, face_matcher, otp_channel = build_services()

    app = FastAPI(title="VOTECAST - Verified Vote Casting API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    extra = {"clock": clock} if clock is not None else {}

    def new_workflow(voter_id: str) -> VotingWorkflow:
        return VotingWorkflow(voter_id, catalog, ledger, face_matcher, otp_channel, **extra)

    app.state.clock = clock or utcnow
    app.state.catalog = catalog
    app.state.ledger = ledger
    app.state.face_matcher = face_matcher
    app.state.otp_channel = otp_channel
    app.state.workflows = WorkflowRegistry(new_workflow, **extra)

    @app.exception_handler(VotingError)
    async def voting_error_handler(request: Request, exc: VotingError):
        status_code = STATUS_BY_CODE.get(exc.code, 400)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.include_router(election_router)
    app.include_router(vote_router)

    @app.get("/health", tags=["Root"])
    def health_check():
        return {"status": "healthy", "storage": config.STORAGE_BACKEND}

    @app.get("/", tags=["Root"])
    def read_root():
        return {"message": "Welcome to the VOTECAST API"}

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    return app


def run():
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
