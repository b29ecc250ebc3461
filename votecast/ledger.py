# votecast/ledger.py
"""
Authoritative store of cast votes.

`record_vote` is the only place a vote is created. The duplicate check, the
transaction insert and the candidate count increment happen as one atomic
unit, so two racing requests for the same (voter, election) yield exactly one
transaction and one AlreadyVoted.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .catalog import ElectionCatalog, MongoElectionCatalog
from .errors import (AlreadyVoted, CatalogUnavailable, ElectionNotActive,
                     InvalidCandidate, LedgerUnavailable)
from .models.election_model import Election, utcnow
from .models.vote_model import VoteTransaction

logger = logging.getLogger(__name__)


class VoteLedger(ABC):
    """Contract shared by every ledger backend."""

    catalog: ElectionCatalog

    def __init__(self, catalog: ElectionCatalog, clock=utcnow):
        self.catalog = catalog
        self.clock = clock

    @abstractmethod
    def has_voted(self, voter_id: str, election_id: int) -> bool:
        """Non-authoritative lookup, for failing fast before record_vote."""

    @abstractmethod
    def record_vote(self, voter_id: str, election_id: int, candidate_id: int) -> VoteTransaction:
        ...

    @abstractmethod
    def list_transactions(self) -> List[VoteTransaction]:
        ...

    def _now(self) -> datetime:
        # BSON dates keep milliseconds only; hashes must survive a round-trip
        now = self.clock().astimezone(timezone.utc)
        return now.replace(microsecond=(now.microsecond // 1000) * 1000)

    @staticmethod
    def _validate(election: Election, candidate_id: int, now: datetime) -> None:
        if not election.has_candidate(candidate_id):
            raise InvalidCandidate(
                f"Candidate {candidate_id} is not running in election {election.id}."
            )
        if not election.is_active(now):
            raise ElectionNotActive(f"Election {election.id} is not open for voting.")

    def vote_counts(self, election_id: int) -> Dict[int, int]:
        election = self.catalog.get_election(election_id)
        return {c.id: c.vote_count for c in election.candidates}

    def verify_integrity(self) -> dict:
        """
        Recompute every transaction hash and check the log against itself and
        against the candidate counts.
        """
        violations = []
        seen = set()
        tallies: Counter = Counter()
        last_block = 0

        transactions = self.list_transactions()
        for tx in transactions:
            if not tx.verify():
                violations.append({"block_number": tx.block_number, "type": "hash_mismatch",
                                   "stored": tx.transaction_hash})
            if tx.block_number <= last_block:
                violations.append({"block_number": tx.block_number, "type": "sequence_break",
                                   "previous": last_block})
            key = (tx.voter_id, tx.election_id)
            if key in seen:
                violations.append({"block_number": tx.block_number, "type": "duplicate_vote",
                                   "voter_id": tx.voter_id, "election_id": tx.election_id})
            seen.add(key)
            tallies[(tx.election_id, tx.candidate_id)] += 1
            last_block = tx.block_number

        for election in self.catalog.list_elections():
            for cand in election.candidates:
                expected = tallies[(election.id, cand.id)]
                if cand.vote_count != expected:
                    violations.append({"election_id": election.id, "candidate_id": cand.id,
                                       "type": "count_mismatch", "expected": expected,
                                       "actual": cand.vote_count})

        if violations:
            logger.error(f"Ledger integrity check found {len(violations)} violations")
        return {"valid": not violations, "checked": len(transactions), "violations": violations}


class InMemoryVoteLedger(VoteLedger):
    """
    Process-local ledger. A single lock covers the duplicate check, sequence
    allocation, log append and count increment.
    """

    def __init__(self, catalog: ElectionCatalog, clock=utcnow):
        super().__init__(catalog, clock)
        self._lock = threading.Lock()
        self._transactions: List[VoteTransaction] = []
        self._by_key: Dict[Tuple[str, int], VoteTransaction] = {}
        self._sequence = 0

    def has_voted(self, voter_id: str, election_id: int) -> bool:
        return (voter_id, election_id) in self._by_key

    def record_vote(self, voter_id: str, election_id: int, candidate_id: int) -> VoteTransaction:
        election = self.catalog.get_election(election_id)
        key = (voter_id, election_id)
        with self._lock:
            if key in self._by_key:
                logger.warning(f"Voter {voter_id} has already voted in election {election_id}.")
                raise AlreadyVoted("Voter has already voted in this election.")
            now = self._now()
            self._validate(election, candidate_id, now)

            self._sequence += 1
            tx = VoteTransaction.create(voter_id, election_id, candidate_id, self._sequence, now)
            self._transactions.append(tx)
            self._by_key[key] = tx
            election.candidate(candidate_id).vote_count += 1

        logger.info(f"Recorded vote #{tx.block_number} for election {election_id} ({tx.transaction_hash[:12]})")
        return tx

    def list_transactions(self) -> List[VoteTransaction]:
        with self._lock:
            return list(self._transactions)


class MongoVoteLedger(VoteLedger):
    """
    Votes are embedded in their election document, so one `update_one` with a
    `$ne` guard on `votes.voter_id` inserts the transaction and bumps the
    candidate's count atomically. Block numbers come from a counters document.
    """

    SEQUENCE_ID = "vote_sequence"

    def __init__(self, elections, counters, catalog: ElectionCatalog = None, clock=utcnow):
        super().__init__(catalog or MongoElectionCatalog(elections), clock)
        self.elections = elections
        self.counters = counters

    def has_voted(self, voter_id: str, election_id: int) -> bool:
        try:
            doc = self.elections.find_one(
                {"_id": election_id, "votes.voter_id": voter_id}, {"_id": 1}
            )
        except PyMongoError as e:
            logger.error(f"Vote lookup failed for election {election_id}: {e}")
            raise LedgerUnavailable("Vote ledger is unavailable.") from e
        return doc is not None

    def _next_block_number(self) -> int:
        doc = self.counters.find_one_and_update(
            {"_id": self.SEQUENCE_ID},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["value"])

    def record_vote(self, voter_id: str, election_id: int, candidate_id: int) -> VoteTransaction:
        try:
            election = self.catalog.get_election(election_id)
        except CatalogUnavailable as e:
            raise LedgerUnavailable("Vote ledger is unavailable.") from e

        # cheap pre-check so rejected duplicates don't consume block numbers
        if self.has_voted(voter_id, election_id):
            logger.warning(f"Voter {voter_id} has already voted in election {election_id}.")
            raise AlreadyVoted("Voter has already voted in this election.")
        now = self._now()
        self._validate(election, candidate_id, now)

        try:
            block_number = self._next_block_number()
            tx = VoteTransaction.create(voter_id, election_id, candidate_id, block_number, now)
            result = self.elections.update_one(
                {"_id": election_id, "votes.voter_id": {"$ne": voter_id}},
                {
                    "$push": {"votes": tx.model_dump()},
                    "$inc": {"candidates.$[c].vote_count": 1},
                },
                array_filters=[{"c.id": candidate_id}],
            )
        except PyMongoError as e:
            logger.error(f"Failed to record vote for election {election_id}: {e}")
            raise LedgerUnavailable("Vote ledger is unavailable.") from e

        if result.modified_count == 0:
            # lost the race: another request for this voter got there first
            logger.warning(f"Voter {voter_id} has already voted in election {election_id}.")
            raise AlreadyVoted("Voter has already voted in this election.")

        logger.info(f"Recorded vote #{tx.block_number} for election {election_id} ({tx.transaction_hash[:12]})")
        return tx

    def list_transactions(self) -> List[VoteTransaction]:
        pipeline = [
            {"$unwind": "$votes"},
            {"$replaceRoot": {"newRoot": "$votes"}},
            {"$sort": {"block_number": 1}},
        ]
        try:
            docs = list(self.elections.aggregate(pipeline))
        except PyMongoError as e:
            logger.error(f"Failed to read the transaction log: {e}")
            raise LedgerUnavailable("Vote ledger is unavailable.") from e
        return [VoteTransaction.model_validate(d) for d in docs]
