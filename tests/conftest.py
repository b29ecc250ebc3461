from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet

from votecast.catalog import InMemoryElectionCatalog
from votecast.face_utils import EmbeddingFaceMatcher, InMemoryReferenceStore
from votecast.ledger import InMemoryVoteLedger
from votecast.models.election_model import Candidate, Election
from votecast.otp import HashedOtpChannel
from votecast.workflow import VotingWorkflow

EMBED_DIM = 4
MATCHING_SAMPLE = [0.9, 0.1, 0.0, 0.0]
FOREIGN_SAMPLE = [0.0, 0.0, 1.0, 0.0]
REFERENCE = [1.0, 0.0, 0.0, 0.0]


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingSender:
    """Captures delivered one-time codes instead of sending them."""

    def __init__(self):
        self.sent = []

    def send(self, recipient, code):
        self.sent.append((recipient, code))

    def last_code(self, recipient):
        for r, code in reversed(self.sent):
            if r == recipient:
                return code
        return None


@pytest.fixture
def clock():
    return FakeClock()


def make_elections(clock):
    now = clock()
    return [
        Election(
            id=42, title="Student Council", description="Annual council vote",
            start_date=now - timedelta(days=1), end_date=now + timedelta(days=1),
            candidates=[Candidate(id=101, name="Asha", party="Progressive Front"),
                        Candidate(id=102, name="Vikram", party="Unity Alliance")],
        ),
        Election(
            id=7, title="Ward 7 By-election",
            start_date=now - timedelta(days=10), end_date=now - timedelta(days=9),
            candidates=[Candidate(id=701, name="Meera", party="Independent")],
        ),
    ]


@pytest.fixture
def catalog(clock):
    return InMemoryElectionCatalog(make_elections(clock))


@pytest.fixture
def ledger(catalog, clock):
    return InMemoryVoteLedger(catalog, clock=clock)


@pytest.fixture
def references():
    store = InMemoryReferenceStore(Fernet(Fernet.generate_key()), dim=EMBED_DIM)
    for voter_id in ("v1", "v2", "v3"):
        store.enroll(voter_id, REFERENCE)
    return store


@pytest.fixture
def face_matcher(references):
    return EmbeddingFaceMatcher(references, threshold=0.8, dim=EMBED_DIM)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def otp_channel(sender, clock):
    return HashedOtpChannel(sender, length=4, ttl_seconds=300, cooldown_seconds=30, clock=clock)


@pytest.fixture
def make_workflow(catalog, ledger, face_matcher, otp_channel, clock):
    def _make(voter_id="v1", **kwargs):
        return VotingWorkflow(voter_id, catalog, ledger, face_matcher, otp_channel,
                              clock=clock, **kwargs)
    return _make


def verify_identity(workflow, sender):
    """Drive a workflow through both factors."""
    workflow.verify_face(MATCHING_SAMPLE)
    workflow.request_otp()
    workflow.verify_otp(sender.last_code(workflow.voter_id))
