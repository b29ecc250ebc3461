from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .election_model import utcnow


class SessionStep(str, Enum):
    START = "start"
    FACE_VERIFYING = "face_verifying"
    FACE_PASSED = "face_passed"
    OTP_VERIFYING = "otp_verifying"
    VERIFIED = "verified"


class FactorStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class VerificationSession(BaseModel):
    """Per-voter progress through the face and one-time-code factors."""

    voter_id: str
    # bound when the voter selects an election
    election_id: Optional[int] = None
    step: SessionStep = SessionStep.START
    face_status: FactorStatus = FactorStatus.PENDING
    otp_status: FactorStatus = FactorStatus.PENDING
    face_attempts: int = 0
    otp_attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> str:
        if self.election_id is None:
            return self.voter_id
        return f"{self.voter_id}:{self.election_id}"

    @property
    def is_verified(self) -> bool:
        return self.step == SessionStep.VERIFIED

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return (now - self.last_update).total_seconds() > ttl_seconds
