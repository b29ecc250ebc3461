"""Error kinds surfaced by the voting workflow.

Every error carries a stable ``code`` tag so the presentation layer can
render feedback without parsing messages.
"""
from typing import Any, Dict, Optional


class VotingError(Exception):
    """Base exception for all voting errors."""

    code = "voting_error"

    def __init__(self, message: str = "", **extra: Any):
        super().__init__(message)
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": str(self), **self.extra}


class NotFound(VotingError):
    code = "not_found"


class UnknownElection(NotFound):
    code = "unknown_election"


class InvalidCandidate(VotingError):
    code = "invalid_candidate"


class ElectionNotActive(VotingError):
    code = "election_not_active"


class InvalidWorkflowState(VotingError):
    code = "invalid_workflow_state"


class SessionExpired(InvalidWorkflowState):
    code = "session_expired"


class AlreadyVoted(VotingError):
    code = "already_voted"


class VerificationFailed(VotingError):
    code = "verification_failed"

    def __init__(self, message: str = "", factor: Optional[str] = None,
                 attempts_remaining: Optional[int] = None, **extra: Any):
        super().__init__(message, factor=factor, attempts_remaining=attempts_remaining, **extra)
        self.factor = factor
        self.attempts_remaining = attempts_remaining


class AttemptsExhausted(VerificationFailed):
    code = "attempts_exhausted"


class NoReferenceEnrolled(VotingError):
    code = "no_reference_enrolled"


class ResendCooldown(VotingError):
    code = "resend_cooldown"

    def __init__(self, message: str = "", retry_after: float = 0.0):
        super().__init__(message, retry_after=round(retry_after, 1))
        self.retry_after = retry_after


class AuthenticationError(VotingError):
    code = "authentication_failed"


# Transient infrastructure failures; safe to retry.
class CatalogUnavailable(VotingError):
    code = "catalog_unavailable"


class LedgerUnavailable(VotingError):
    code = "ledger_unavailable"
