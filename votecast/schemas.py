from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FaceSampleRequest(BaseModel):
    # embedding extracted from the captured frame
    embedding: List[float] = Field(..., min_length=1)


class FaceVerificationOut(BaseModel):
    status: str
    match_score: Optional[float] = None
    session: Dict[str, Any]


class OtpRequestOut(BaseModel):
    status: str
    expires_at: datetime
    resend_available_at: datetime


class OtpVerifyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=12)


class SelectElectionRequest(BaseModel):
    election_id: int


class SelectCandidateRequest(BaseModel):
    candidate_id: int


class VoteCheckOut(BaseModel):
    status: str
    election_id: int
    message: str


class IntegrityReportOut(BaseModel):
    valid: bool
    checked: int
    violations: List[Dict[str, Any]]
