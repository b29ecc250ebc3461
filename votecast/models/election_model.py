from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Candidate(BaseModel):
    id: int
    name: str
    party: str
    vote_count: int = Field(default=0, ge=0)


class Election(BaseModel):
    id: int
    title: str = Field(..., examples=["State Assembly"])
    description: str = ""
    start_date: datetime
    end_date: datetime
    candidates: List[Candidate]

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # naive timestamps from seed files are treated as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.start_date <= now <= self.end_date

    def candidate(self, candidate_id: int) -> Optional[Candidate]:
        for cand in self.candidates:
            if cand.id == candidate_id:
                return cand
        return None

    def has_candidate(self, candidate_id: int) -> bool:
        return self.candidate(candidate_id) is not None
