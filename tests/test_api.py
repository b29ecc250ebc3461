"""HTTP surface over the voting workflow."""

import pytest
from fastapi.testclient import TestClient

from votecast.main import create_app
from votecast.security import create_access_token

from .conftest import FOREIGN_SAMPLE, MATCHING_SAMPLE


@pytest.fixture
def client(catalog, ledger, face_matcher, otp_channel, clock):
    app = create_app(catalog=catalog, ledger=ledger, face_matcher=face_matcher,
                     otp_channel=otp_channel, clock=clock)
    return TestClient(app)


def auth(voter_id):
    return {"Authorization": f"Bearer {create_access_token(voter_id)}"}


def verify(client, sender, voter_id):
    headers = auth(voter_id)
    resp = client.post("/vote/verify-face", json={"embedding": MATCHING_SAMPLE}, headers=headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["session"]["verification"]["face_status"] == "verified"
    resp = client.post("/vote/otp/request", headers=headers)
    assert resp.status_code == 200, resp.text
    resp = client.post("/vote/otp/verify", json={"code": sender.last_code(voter_id)}, headers=headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["state"] == "awaiting_election_choice"


def cast(client, voter_id, election_id=42, candidate_id=101):
    headers = auth(voter_id)
    assert client.post("/vote/select-election", json={"election_id": election_id},
                       headers=headers).status_code == 200
    assert client.post("/vote/select-candidate", json={"candidate_id": candidate_id},
                       headers=headers).status_code == 200
    return client.post("/vote/cast", headers=headers)


class TestElections:
    def test_list(self, client):
        resp = client.get("/election/all")
        assert resp.status_code == 200
        elections = {e["id"]: e for e in resp.json()["elections"]}
        assert elections[42]["is_active"] is True
        assert elections[7]["is_active"] is False

    def test_activity_follows_app_clock(self, client, clock):
        assert client.get("/election/42").json()["is_active"] is True
        clock.advance(2 * 24 * 3600)
        assert client.get("/election/42").json()["is_active"] is False

    def test_unknown(self, client):
        resp = client.get("/election/999")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


class TestVoteFlow:
    def test_requires_token(self, client):
        resp = client.get("/vote/session")
        assert resp.status_code == 401
        assert resp.json()["error"] == "authentication_failed"

    def test_rejects_bad_token(self, client):
        resp = client.get("/vote/session", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_full_flow(self, client, sender):
        verify(client, sender, "v1")
        resp = cast(client, "v1")
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["transaction"]["candidate_id"] == 101
        assert body["session"]["state"] == "confirmed"

        results = client.get("/election/42/results").json()
        assert results["total"] == 1
        assert results["results"][0] == {"candidate_id": 101, "name": "Asha",
                                         "party": "Progressive Front", "count": 1}

        check = client.get("/vote/check/42", headers=auth("v1")).json()
        assert check["status"] == "already_voted"
        assert client.get("/vote/verify-integrity").json()["valid"] is True
        assert len(client.get("/vote/transactions").json()["transactions"]) == 1

    def test_second_vote_rejected(self, client, sender):
        verify(client, sender, "v1")
        assert cast(client, "v1").status_code == 200

        resp = client.post("/vote/cast", headers=auth("v1"))
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_workflow_state"

        client.post("/vote/session", headers=auth("v1"))
        verify(client, sender, "v1")
        resp = cast(client, "v1", candidate_id=102)
        assert resp.status_code == 409
        assert resp.json()["error"] == "already_voted"
        assert client.get("/vote/session", headers=auth("v1")).json()["state"] == "rejected"

    def test_out_of_order(self, client):
        resp = client.post("/vote/select-candidate", json={"candidate_id": 101}, headers=auth("v1"))
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_workflow_state"

    def test_face_mismatch(self, client):
        resp = client.post("/vote/verify-face", json={"embedding": FOREIGN_SAMPLE}, headers=auth("v1"))
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "verification_failed"
        assert body["factor"] == "face"
        assert body["attempts_remaining"] == 2

    def test_face_match_response(self, client):
        resp = client.post("/vote/verify-face", json={"embedding": MATCHING_SAMPLE}, headers=auth("v1"))
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {"status", "match_score", "session"}
        assert body["match_score"] > 0.9
        assert body["session"]["verification"]["step"] == "face_passed"

    def test_bad_embedding(self, client):
        resp = client.post("/vote/verify-face", json={"embedding": [1.0]}, headers=auth("v1"))
        assert resp.status_code == 400
        session = client.get("/vote/session", headers=auth("v1")).json()
        assert session["verification"]["step"] == "start"

    def test_no_reference(self, client):
        resp = client.post("/vote/verify-face", json={"embedding": MATCHING_SAMPLE}, headers=auth("nobody"))
        assert resp.status_code == 412
        assert resp.json()["error"] == "no_reference_enrolled"

    def test_resend_cooldown(self, client):
        headers = auth("v1")
        client.post("/vote/verify-face", json={"embedding": MATCHING_SAMPLE}, headers=headers)
        assert client.post("/vote/otp/request", headers=headers).status_code == 200
        resp = client.post("/vote/otp/request", headers=headers)
        assert resp.status_code == 429
        assert resp.json()["retry_after"] == 30

    def test_inactive_election(self, client, sender):
        verify(client, sender, "v1")
        resp = client.post("/vote/select-election", json={"election_id": 7}, headers=auth("v1"))
        assert resp.status_code == 409
        assert resp.json()["error"] == "election_not_active"
