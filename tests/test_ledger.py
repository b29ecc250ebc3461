"""Tests for the in-memory vote ledger."""

import threading

import pytest

from votecast.catalog import ElectionCatalog
from votecast.errors import AlreadyVoted, ElectionNotActive, InvalidCandidate, NotFound
from votecast.ledger import VoteLedger
from votecast.models.vote_model import VoteTransaction, compute_transaction_hash


class TestRecordVote:
    def test_records_transaction(self, ledger, catalog):
        tx = ledger.record_vote("v1", 42, 101)
        assert tx.voter_id == "v1"
        assert tx.election_id == 42
        assert tx.candidate_id == 101
        assert tx.block_number == 1
        assert len(tx.transaction_hash) == 64
        assert catalog.get_election(42).candidate(101).vote_count == 1
        assert ledger.has_voted("v1", 42)
        assert not ledger.has_voted("v1", 7)

    def test_repeat_is_rejected_every_time(self, ledger, catalog):
        ledger.record_vote("v1", 42, 101)
        for _ in range(2):
            with pytest.raises(AlreadyVoted):
                ledger.record_vote("v1", 42, 101)
        assert len(ledger.list_transactions()) == 1
        assert catalog.get_election(42).candidate(101).vote_count == 1

    def test_changing_candidate_does_not_help(self, ledger):
        ledger.record_vote("v1", 42, 101)
        with pytest.raises(AlreadyVoted):
            ledger.record_vote("v1", 42, 102)
        assert ledger.vote_counts(42) == {101: 1, 102: 0}

    def test_invalid_candidate(self, ledger):
        with pytest.raises(InvalidCandidate):
            ledger.record_vote("v1", 42, 701)
        assert ledger.list_transactions() == []

    def test_inactive_election(self, ledger):
        with pytest.raises(ElectionNotActive):
            ledger.record_vote("v1", 7, 701)
        assert not ledger.has_voted("v1", 7)

    def test_unknown_election(self, ledger):
        with pytest.raises(NotFound):
            ledger.record_vote("v1", 999, 101)

    def test_election_closes(self, ledger, clock):
        clock.advance(2 * 24 * 3600)
        with pytest.raises(ElectionNotActive):
            ledger.record_vote("v1", 42, 101)


class TestTransactionLog:
    def test_ordered_by_block_number(self, ledger):
        for i in range(5):
            ledger.record_vote(f"voter-{i}", 42, 101 if i % 2 else 102)
        blocks = [tx.block_number for tx in ledger.list_transactions()]
        assert blocks == [1, 2, 3, 4, 5]

    def test_hash_is_content_derived(self, ledger):
        tx = ledger.record_vote("v1", 42, 101)
        assert tx.verify()
        assert tx.transaction_hash == compute_transaction_hash(
            "v1", 42, 101, tx.block_number, tx.timestamp
        )
        other = compute_transaction_hash("v1", 42, 102, tx.block_number, tx.timestamp)
        assert other != tx.transaction_hash

    def test_transactions_are_immutable(self, ledger):
        tx = ledger.record_vote("v1", 42, 101)
        with pytest.raises(Exception):
            tx.candidate_id = 102

    def test_counts_match_log(self, ledger):
        votes = [("a", 101), ("b", 102), ("c", 101), ("d", 101)]
        for voter, cand in votes:
            ledger.record_vote(voter, 42, cand)
        counts = ledger.vote_counts(42)
        for cand, count in counts.items():
            assert count == sum(1 for tx in ledger.list_transactions() if tx.candidate_id == cand)
        assert counts == {101: 3, 102: 1}


class TestIntegrity:
    def test_clean_log_is_valid(self, ledger):
        ledger.record_vote("v1", 42, 101)
        ledger.record_vote("v2", 42, 102)
        report = ledger.verify_integrity()
        assert report == {"valid": True, "checked": 2, "violations": []}

    def test_detects_tampered_transaction(self, ledger):
        ledger.record_vote("v1", 42, 101)
        tampered = ledger._transactions[0].model_copy(update={"candidate_id": 102})
        ledger._transactions[0] = tampered
        report = ledger.verify_integrity()
        assert not report["valid"]
        types = {v["type"] for v in report["violations"]}
        assert "hash_mismatch" in types
        assert "count_mismatch" in types


class TestConcurrency:
    def test_racing_votes_for_one_voter(self, ledger):
        results = []
        barrier = threading.Barrier(8)

        def cast(candidate_id):
            barrier.wait()
            try:
                results.append(ledger.record_vote("v2", 42, candidate_id))
            except AlreadyVoted as e:
                results.append(e)

        threads = [threading.Thread(target=cast, args=(101 if i % 2 else 102,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        successes = [r for r in results if isinstance(r, VoteTransaction)]
        assert len(successes) == 1
        assert sum(isinstance(r, AlreadyVoted) for r in results) == 7
        assert sum(ledger.vote_counts(42).values()) == 1

    def test_many_voters_in_parallel(self, ledger):
        def cast(i):
            ledger.record_vote(f"voter-{i}", 42, 101 if i % 3 else 102)

        threads = [threading.Thread(target=cast, args=(i,)) for i in range(30)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        txs = ledger.list_transactions()
        assert len(txs) == 30
        assert [tx.block_number for tx in txs] == list(range(1, 31))
        assert sum(ledger.vote_counts(42).values()) == 30
        assert ledger.verify_integrity()["valid"]


class TestContracts:
    def test_ledger_backend_must_implement_has_voted(self, catalog):
        class PartialLedger(VoteLedger):
            def record_vote(self, voter_id, election_id, candidate_id):
                pass

            def list_transactions(self):
                return []

        with pytest.raises(TypeError):
            PartialLedger(catalog)

    def test_catalog_backend_must_implement_get_election(self):
        class PartialCatalog(ElectionCatalog):
            def list_elections(self):
                return []

        with pytest.raises(TypeError):
            PartialCatalog()
