# votecast/verification.py
"""
Two-factor verification gate.

A session moves START -> FACE_VERIFYING -> FACE_PASSED -> OTP_VERIFYING ->
VERIFIED. Each verifying step has a failure edge back to its own entry step.
The state only changes through `next_step`, a pure function over a fixed
transition table.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from . import config
from .errors import AttemptsExhausted, InvalidWorkflowState, VerificationFailed
from .models.election_model import utcnow
from .models.session_model import FactorStatus, SessionStep, VerificationSession

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    FACE_CHECK_STARTED = "face_check_started"
    FACE_MATCHED = "face_matched"
    FACE_MISMATCHED = "face_mismatched"
    FACE_CHECK_ABORTED = "face_check_aborted"
    OTP_CHECK_STARTED = "otp_check_started"
    OTP_CORRECT = "otp_correct"
    OTP_INCORRECT = "otp_incorrect"
    OTP_CHECK_ABORTED = "otp_check_aborted"


TRANSITIONS: Dict[Tuple[SessionStep, SessionEvent], SessionStep] = {
    (SessionStep.START, SessionEvent.FACE_CHECK_STARTED): SessionStep.FACE_VERIFYING,
    (SessionStep.FACE_VERIFYING, SessionEvent.FACE_MATCHED): SessionStep.FACE_PASSED,
    (SessionStep.FACE_VERIFYING, SessionEvent.FACE_MISMATCHED): SessionStep.START,
    (SessionStep.FACE_VERIFYING, SessionEvent.FACE_CHECK_ABORTED): SessionStep.START,
    (SessionStep.FACE_PASSED, SessionEvent.OTP_CHECK_STARTED): SessionStep.OTP_VERIFYING,
    (SessionStep.OTP_VERIFYING, SessionEvent.OTP_CORRECT): SessionStep.VERIFIED,
    (SessionStep.OTP_VERIFYING, SessionEvent.OTP_INCORRECT): SessionStep.FACE_PASSED,
    (SessionStep.OTP_VERIFYING, SessionEvent.OTP_CHECK_ABORTED): SessionStep.FACE_PASSED,
}


def next_step(step: SessionStep, event: SessionEvent) -> SessionStep:
    try:
        return TRANSITIONS[(step, event)]
    except KeyError:
        raise InvalidWorkflowState(
            f"Event '{event.value}' is not allowed in verification step '{step.value}'."
        ) from None


class VerificationGate:
    """
    Applies factor outcomes to a VerificationSession and enforces the
    per-factor attempt limits.
    """

    def __init__(self, session: VerificationSession,
                 max_face_attempts: int = config.MAX_FACE_ATTEMPTS,
                 max_otp_attempts: int = config.MAX_OTP_ATTEMPTS,
                 clock=utcnow):
        self.session = session
        self.max_face_attempts = max_face_attempts
        self.max_otp_attempts = max_otp_attempts
        self.clock = clock

    def _apply(self, event: SessionEvent) -> SessionStep:
        old = self.session.step
        self.session.step = next_step(old, event)
        self.session.last_update = self.clock()
        logger.debug(f"Session {self.session.key}: {old.value} -> {self.session.step.value} ({event.value})")
        return self.session.step

    # --- face factor ---

    @property
    def face_locked(self) -> bool:
        return (self.session.face_status == FactorStatus.FAILED
                and self.session.face_attempts >= self.max_face_attempts)

    def begin_face(self) -> None:
        if self.face_locked:
            raise AttemptsExhausted("Face verification attempts exhausted.",
                                    factor="face", attempts_remaining=0)
        self._apply(SessionEvent.FACE_CHECK_STARTED)

    def abort_face(self) -> None:
        self._apply(SessionEvent.FACE_CHECK_ABORTED)

    def face_matched(self) -> None:
        self._apply(SessionEvent.FACE_MATCHED)
        self.session.face_attempts += 1
        self.session.face_status = FactorStatus.VERIFIED
        logger.info(f"Face factor verified for {self.session.key}")

    def face_mismatched(self) -> None:
        self._apply(SessionEvent.FACE_MISMATCHED)
        self.session.face_attempts += 1
        self.session.face_status = FactorStatus.FAILED
        remaining = max(self.max_face_attempts - self.session.face_attempts, 0)
        logger.warning(f"Face mismatch for {self.session.key} ({remaining} attempts left)")
        if remaining == 0:
            raise AttemptsExhausted("Face doesn't match our records. No attempts left.",
                                    factor="face", attempts_remaining=0)
        raise VerificationFailed("Face doesn't match our records.",
                                 factor="face", attempts_remaining=remaining)

    # --- one-time code factor ---

    @property
    def otp_locked(self) -> bool:
        return (self.session.otp_status == FactorStatus.FAILED
                and self.session.otp_attempts >= self.max_otp_attempts)

    def begin_otp(self) -> None:
        if self.otp_locked:
            raise AttemptsExhausted("One-time code attempts exhausted.",
                                    factor="otp", attempts_remaining=0)
        self._apply(SessionEvent.OTP_CHECK_STARTED)

    def abort_otp(self) -> None:
        self._apply(SessionEvent.OTP_CHECK_ABORTED)

    def otp_correct(self) -> None:
        self._apply(SessionEvent.OTP_CORRECT)
        self.session.otp_attempts += 1
        self.session.face_status = FactorStatus.VERIFIED
        self.session.otp_status = FactorStatus.VERIFIED
        logger.info(f"Session {self.session.key} verified")

    def otp_incorrect(self) -> None:
        self._apply(SessionEvent.OTP_INCORRECT)
        self.session.otp_attempts += 1
        self.session.otp_status = FactorStatus.FAILED
        remaining = max(self.max_otp_attempts - self.session.otp_attempts, 0)
        logger.warning(f"Incorrect one-time code for {self.session.key} ({remaining} attempts left)")
        if remaining == 0:
            raise AttemptsExhausted("The code you entered doesn't match. No attempts left.",
                                    factor="otp", attempts_remaining=0)
        raise VerificationFailed("The code you entered doesn't match.",
                                 factor="otp", attempts_remaining=remaining)

    def is_expired(self, now: Optional[datetime] = None,
                   ttl_seconds: int = config.SESSION_TTL_SECONDS) -> bool:
        return self.session.is_expired(now or self.clock(), ttl_seconds)
