"""
Integration Tests: API Endpoints
--------------------------------
Validates full behavior of API routes using TestClient.

Includes:
- Intake (/api/v1/claims) with Idempotency-Key replay / conflict
- Assessment callback, draft, decision, fraud flag, release and payout
- Error envelope {"error": {kind, code, message, details}} and status codes
- Health and root endpoints, request logging
"""

from unittest.mock import patch
import pytest

from cropclaim.utils.security import create_jwt_token

API = "/api/v1"

PAYLOAD = {
    "policy_id": "POL-2024-0001",
    "farmer_id": "FRM-001",
    "incident": {
        "date_of_incident": "2024-07-15",
        "location_of_incident": "Nashik, Maharashtra",
        "description": "Hailstorm flattened the standing wheat crop",
        "amount_claimed": 50000.0,
    },
    "evidence_refs": ["s3://evidence/FRM-001/field-1.jpg"],
}


def _submit(client, as_actor, key="k1", payload=None):
    return client.post(f"{API}/claims", json=payload or PAYLOAD,
                       headers=as_actor("FRM-001", **{"Idempotency-Key": key}))


def _assess(client, claim_id):
    return client.post(f"{API}/claims/{claim_id}/assessment/result",
                       json={"ai_damage_percent": 62.0, "confidence_score": 0.81,
                             "validation_flags": {"weatherMismatch": False, "cloudCover": "high"}})


# ---------------------------------------------------------------------
# /api/v1/claims
# ---------------------------------------------------------------------
class TestIntakeEndpoint:
    def test_create_then_replay(self, client, as_actor, assessment_client):
        """201 on create, 200 with the same claim on replay; assessment dispatched once."""
        first = _submit(client, as_actor)
        assert first.status_code == 201
        body = first.json()
        assert body["created"] is True
        assert body["claim"]["status"] == "SUBMITTED"
        assert first.headers["ETag"] == '"1"'
        assert "X-Trace-Id" in first.headers

        again = _submit(client, as_actor)
        assert again.status_code == 200
        assert again.json()["created"] is False
        assert again.json()["claim"]["claim_id"] == body["claim"]["claim_id"]

        assert len(assessment_client.dispatched) == 1
        assert assessment_client.dispatched[0]["claim_id"] == body["claim"]["claim_id"]

    def test_key_reuse_with_other_payload_is_409(self, client, as_actor):
        _submit(client, as_actor)
        changed = {**PAYLOAD, "incident": {**PAYLOAD["incident"], "amount_claimed": 1.0}}
        resp = _submit(client, as_actor, payload=changed)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "IDEMPOTENCY_KEY_REUSED"
        assert resp.json()["error"]["kind"] == "conflict"

    def test_missing_idempotency_key_is_422(self, client, as_actor):
        resp = client.post(f"{API}/claims", json=PAYLOAD, headers=as_actor("FRM-001"))
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "idempotency_key"

    def test_incident_outside_window_is_422(self, client, as_actor):
        bad = {**PAYLOAD, "incident": {**PAYLOAD["incident"], "date_of_incident": "2024-11-02"}}
        resp = _submit(client, as_actor, payload=bad)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "INCIDENT_OUTSIDE_POLICY_WINDOW"
        assert error["details"]["field"] == "date_of_incident"

    def test_malformed_payload_uses_error_envelope(self, client, as_actor):
        resp = _submit(client, as_actor, payload={"policy_id": "POL-2024-0001"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_PAYLOAD"

    def test_get_list_and_audit(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]

        got = client.get(f"{API}/claims/{claim_id}")
        assert got.status_code == 200
        assert got.json()["claim_id"] == claim_id

        listed = client.get(f"{API}/claims", params={"farmer_id": "FRM-001", "status": "SUBMITTED"})
        assert listed.json()["total"] == 1

        audit = client.get(f"{API}/claims/{claim_id}/audit").json()
        assert audit[0]["action"] == "claim_submitted"

    def test_unknown_claim_is_404(self, client):
        resp = client.get(f"{API}/claims/CLM-2024-000000-000")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "CLAIM_NOT_FOUND"


# ---------------------------------------------------------------------
# Routing & review
# ---------------------------------------------------------------------
class TestReviewEndpoints:
    def test_assign_with_if_match(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        version = client.get(f"{API}/claims/{claim_id}").json()["version"]

        stale = client.post(f"{API}/claims/{claim_id}/assign", json={"reviewer_id": "REV-001"},
                            headers=as_actor("ops-1", **{"If-Match": f'"{version + 5}"'}))
        assert stale.status_code == 409
        assert stale.json()["error"]["kind"] == "concurrent_modification"

        ok = client.post(f"{API}/claims/{claim_id}/assign", json={"reviewer_id": "REV-001"},
                         headers=as_actor("ops-1", **{"If-Match": f'W/"{version}"'}))
        assert ok.status_code == 200
        assert ok.json()["status"] == "ASSIGNED"

    def test_bad_if_match_is_422(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        resp = client.post(f"{API}/claims/{claim_id}/assign", json={"reviewer_id": "REV-001"},
                           headers=as_actor("ops-1", **{"If-Match": "abc"}))
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "If-Match"

    def test_draft_decision_and_reads(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        report = _assess(client, claim_id)
        assert report.status_code == 200
        assert report.json()["validation_flags"] == ["cloud_cover:high"]
        assert client.get(f"{API}/claims/{claim_id}/assessment").json()["ai_damage_percent"] == 62.0

        assert client.get(f"{API}/claims/{claim_id}/draft").status_code == 404
        draft = client.put(f"{API}/claims/{claim_id}/draft", json={"damage_confirmation": "pending"},
                           headers=as_actor("REV-001"))
        assert draft.status_code == 200
        assert client.get(f"{API}/claims/{claim_id}").json()["status"] == "UNDER_REVIEW"

        pending = client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "pending"},
                              headers=as_actor("REV-001"))
        assert pending.status_code == 422
        assert pending.json()["error"]["details"]["field"] == "outcome"

        decided = client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "approve"},
                              headers=as_actor("REV-001"))
        assert decided.status_code == 200
        assert client.get(f"{API}/claims/{claim_id}/decision").json()["outcome"] == "approve"
        # auto-release
        assert client.get(f"{API}/claims/{claim_id}").json()["status"] == "PAYOUT_PENDING"

    def test_reviewer_of_other_insurer_is_403(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        _assess(client, claim_id)
        resp = client.put(f"{API}/claims/{claim_id}/draft", json={}, headers=as_actor("REV-002"))
        assert resp.status_code == 403
        assert resp.json()["error"]["kind"] == "not_authorized"

    def test_draft_before_assessment_is_409(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        resp = client.put(f"{API}/claims/{claim_id}/draft", json={}, headers=as_actor("REV-001"))
        assert resp.status_code == 409
        assert resp.json()["error"]["details"]["current_state"] == "SUBMITTED"

    def test_fraud_flag_holds_settlement(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        _assess(client, claim_id)
        flagged = client.post(f"{API}/claims/{claim_id}/fraud-suspect", headers=as_actor("REV-001"))
        assert flagged.json()["fraud_suspect"] is True

        client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "approve"}, headers=as_actor("REV-001"))
        assert client.get(f"{API}/claims/{claim_id}").json()["status"] == "DECIDED"

        held = client.post(f"{API}/claims/{claim_id}/settlement/release", json={}, headers=as_actor("ops-1"))
        assert held.json()["released"] is False

        released = client.post(f"{API}/claims/{claim_id}/settlement/release", json={"override": True},
                               headers=as_actor("ops-1"))
        assert released.json()["status"] == "PAYOUT_PENDING"

    def test_unflag_resumes(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        _assess(client, claim_id)
        client.post(f"{API}/claims/{claim_id}/fraud-suspect", headers=as_actor("REV-001"))
        client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "approve"}, headers=as_actor("REV-001"))

        cleared = client.delete(f"{API}/claims/{claim_id}/fraud-suspect", headers=as_actor("REV-001"))
        assert cleared.status_code == 200
        assert cleared.json()["status"] == "PAYOUT_PENDING"


# ---------------------------------------------------------------------
# Assessment operations
# ---------------------------------------------------------------------
class TestAssessmentEndpoints:
    def test_retry_inside_window_is_409(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        resp = client.post(f"{API}/claims/{claim_id}/assessment/request", json={"retry": True},
                           headers=as_actor("ops-1"))
        assert resp.status_code == 409
        assert client.get(f"{API}/assessments/stale").json() == []

    def test_out_of_range_result_is_422(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        resp = client.post(f"{API}/claims/{claim_id}/assessment/result", json={"ai_damage_percent": 140})
        assert resp.status_code == 422
        assert resp.json()["error"]["details"]["field"] == "ai_damage_percent"

    def test_result_callback_requires_credentials(self, client, as_actor, mock_test_config, monkeypatch):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        monkeypatch.setattr(mock_test_config, "ENV", "prod")
        monkeypatch.setattr(mock_test_config, "DEBUG", False)

        anonymous = client.post(f"{API}/claims/{claim_id}/assessment/result",
                                json={"ai_damage_percent": 62.0, "confidence_score": 0.81})
        assert anonymous.status_code == 401

        token = create_jwt_token({"sub": "assessment-service", "role": "collaborator"})
        signed = client.post(f"{API}/claims/{claim_id}/assessment/result",
                             json={"ai_damage_percent": 62.0, "confidence_score": 0.81},
                             headers={"Authorization": f"Bearer {token}"})
        assert signed.status_code == 200

        audit = client.get(f"{API}/claims/{claim_id}/audit").json()
        assert [e["action"] for e in audit] == ["claim_submitted", "assessment_received"]
        assert audit[-1]["actor"] == "assessment-service"

    def test_no_report_yet_is_404(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        assert client.get(f"{API}/claims/{claim_id}/assessment").status_code == 404


# ---------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------
class TestPayoutEndpoints:
    def test_payout_then_repeat(self, client, as_actor, payment_client):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        _assess(client, claim_id)
        client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "approve"}, headers=as_actor("REV-001"))

        paid = client.post(f"{API}/claims/{claim_id}/payout", json={"amount": 45000, "transaction_id": "TXN1"},
                           headers=as_actor("ops-1"))
        assert paid.status_code == 200
        assert paid.json()["amount"] == 45000
        assert client.get(f"{API}/claims/{claim_id}/payout").json()["transaction_id"] == "TXN1"

        again = client.post(f"{API}/claims/{claim_id}/payout", json={"amount": 45000, "transaction_id": "TXN2"},
                            headers=as_actor("ops-1"))
        assert again.status_code == 409
        assert again.json()["error"]["details"]["current_state"] == "PAID"
        assert len(payment_client.calls) == 1

    def test_gateway_failure_is_502(self, client, as_actor, payment_client):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        _assess(client, claim_id)
        client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "approve"}, headers=as_actor("REV-001"))
        payment_client.fail_next = True

        resp = client.post(f"{API}/claims/{claim_id}/payout", json={"amount": 45000, "transaction_id": "TXN1"},
                           headers=as_actor("ops-1"))
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "PAYOUT_FAILED"
        assert client.get(f"{API}/claims/{claim_id}").json()["status"] == "PAYOUT_PENDING"


# ---------------------------------------------------------------------
# Identity, utility endpoints, logging
# ---------------------------------------------------------------------
class TestPlatform:
    def test_bearer_token_identifies_actor(self, client, as_actor):
        claim_id = _submit(client, as_actor).json()["claim"]["claim_id"]
        _assess(client, claim_id)
        token = create_jwt_token({"sub": "REV-001", "role": "reviewer"})
        resp = client.put(f"{API}/claims/{claim_id}/draft", json={"comments": "seen"},
                          headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["reviewer_id"] == "REV-001"

    def test_invalid_token_is_401(self, client):
        resp = client.post(f"{API}/claims", json=PAYLOAD,
                           headers={"Authorization": "Bearer junk", "Idempotency-Key": "k1"})
        assert resp.status_code == 401

    def test_token_required_outside_local(self, client, mock_test_config, monkeypatch):
        monkeypatch.setattr(mock_test_config, "ENV", "prod")
        monkeypatch.setattr(mock_test_config, "DEBUG", False)
        resp = client.post(f"{API}/claims", json=PAYLOAD, headers={"Idempotency-Key": "k1"})
        assert resp.status_code == 401

    def test_health_and_root(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
        root = client.get("/").json()
        assert root["status"] == "running"
        assert root["collaborators"] == "simulated"

    @patch("cropclaim.utils.logger.logger.info")
    def test_request_logging(self, mock_info, client):
        client.get(f"{API}/claims")
        messages = [c[0][0] for c in mock_info.call_args_list]
        assert any('"event": "request_start"' in m for m in messages)
        assert any('"event": "request_end"' in m for m in messages)
