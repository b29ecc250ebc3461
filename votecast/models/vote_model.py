import hashlib
import json
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_validator


def compute_transaction_hash(voter_id: str, election_id: int, candidate_id: int,
                             block_number: int, timestamp: datetime) -> str:
    """
    SHA-256 over the canonical JSON of a vote's content fields.
    This is a local integrity token, not a consensus artifact.
    """
    payload = {
        "block_number": block_number,
        "candidate_id": candidate_id,
        "election_id": election_id,
        "timestamp": timestamp.isoformat(),
        "voter_id": voter_id,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class VoteTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_hash: str
    block_number: int
    timestamp: datetime
    voter_id: str
    election_id: int
    candidate_id: int

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # pymongo hands back naive datetimes unless the client is tz_aware
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def create(cls, voter_id: str, election_id: int, candidate_id: int,
               block_number: int, timestamp: datetime) -> "VoteTransaction":
        return cls(
            transaction_hash=compute_transaction_hash(
                voter_id, election_id, candidate_id, block_number, timestamp
            ),
            block_number=block_number,
            timestamp=timestamp,
            voter_id=voter_id,
            election_id=election_id,
            candidate_id=candidate_id,
        )

    def verify(self) -> bool:
        return self.transaction_hash == compute_transaction_hash(
            self.voter_id, self.election_id, self.candidate_id,
            self.block_number, self.timestamp,
        )
