"""
End-to-End Test: Claim Lifecycle
--------------------------------
Drives one hailstorm claim from intake to payout, first through the engine
services and then through the HTTP API, and checks the audit trail the
lifecycle leaves behind.

Flow:
    submit → (replay) → assessment → draft → decision → release → payout → (repeat payout)
"""

from datetime import date
import pytest

from cropclaim.exceptions import InvalidStateError
from cropclaim.models.claim import ClaimStatus

API = "/api/v1"


class TestLifecycleThroughEngine:
    """Policy POL-2024-0001 is active 2024-06-01..2024-10-31; incident on 2024-07-15."""

    def test_full_lifecycle(self, engine_factory, submit):
        engine = engine_factory(auto_release=False)

        # 1️⃣ Intake
        claim, created = submit(key="k1", day=date(2024, 7, 15), target=engine)
        assert created is True
        assert claim.status == ClaimStatus.SUBMITTED

        replay, created = submit(key="k1", day=date(2024, 7, 15), target=engine)
        assert created is False
        assert replay.claim_id == claim.claim_id

        # 2️⃣ Assessment
        request = engine.assessment.request_assessment(claim.claim_id)
        engine.assessment.receive_assessment_result(
            claim.claim_id,
            {"request_id": request.id, "ai_damage_percent": 62.0, "confidence_score": 0.81},
        )
        assert engine.store.get_claim(claim.claim_id).status == ClaimStatus.AI_PROCESSED

        # 3️⃣ Review
        engine.review.save_draft(claim.claim_id, "REV-001", {"damage_confirmation": "pending"})
        assert engine.store.get_claim(claim.claim_id).status == ClaimStatus.UNDER_REVIEW

        decision = engine.review.submit_decision(claim.claim_id, "REV-001", "approve")
        assert decision.outcome == "approve"
        decided = engine.store.get_claim(claim.claim_id)
        assert decided.status == ClaimStatus.DECIDED
        assert decided.decision_outcome == "approve"

        # 4️⃣ Settlement
        released = engine.settlement.release_for_settlement(claim.claim_id, "ops-1")
        assert released.released is True
        assert engine.store.get_claim(claim.claim_id).status == ClaimStatus.PAYOUT_PENDING

        record = engine.settlement.process_payout(claim.claim_id, 45000.0, "TXN1", actor="ops-1")
        assert record.amount == 45000.0
        assert engine.store.get_claim(claim.claim_id).status == ClaimStatus.PAID
        assert len(engine.store.get_payouts(claim.claim_id)) == 1

        with pytest.raises(InvalidStateError):
            engine.settlement.process_payout(claim.claim_id, 45000.0, "TXN1", actor="ops-1")
        assert len(engine.store.get_payouts(claim.claim_id)) == 1

        # 5️⃣ Audit trail: one entry per transition, in order
        trail = engine.store.get_audit_trail(claim.claim_id)
        assert [e.action for e in trail] == [
            "claim_submitted",
            "assessment_received",
            "draft_saved",
            "decision_submitted",
            "released_for_payout",
            "payout_completed",
        ]
        assert [e.after_state for e in trail] == [
            "SUBMITTED", "AI_PROCESSED", "UNDER_REVIEW", "DECIDED", "PAYOUT_PENDING", "PAID",
        ]

    def test_rejected_claim_closes_without_payout(self, engine_factory, assessed_claim, payment_client):
        engine = engine_factory(auto_release=False)
        claim = assessed_claim(target=engine)

        engine.review.submit_decision(claim.claim_id, "REV-001", "reject", final_comments="No crop loss found")
        result = engine.settlement.release_for_settlement(claim.claim_id, "ops-1")

        assert result.status == ClaimStatus.CLOSED.value
        with pytest.raises(InvalidStateError):
            engine.settlement.process_payout(claim.claim_id, 100.0, "TXN9", actor="ops-1")
        assert payment_client.calls == []


class TestLifecycleThroughApi:
    def test_full_lifecycle(self, client, as_actor, assessment_client):
        payload = {
            "policy_id": "POL-2024-0001",
            "farmer_id": "FRM-001",
            "incident": {
                "date_of_incident": "2024-07-15",
                "location_of_incident": "Nashik, Maharashtra",
                "description": "Hailstorm flattened the standing wheat crop",
                "amount_claimed": 50000.0,
            },
        }
        headers = as_actor("FRM-001", **{"Idempotency-Key": "k1"})

        created = client.post(f"{API}/claims", json=payload, headers=headers)
        assert created.status_code == 201
        claim_id = created.json()["claim"]["claim_id"]
        assert client.post(f"{API}/claims", json=payload, headers=headers).json()["created"] is False

        # collaborator answers the request dispatched after intake
        request_id = assessment_client.dispatched[0]["request_id"]
        client.post(f"{API}/claims/{claim_id}/assessment/result",
                    json={"request_id": request_id, "ai_damage_percent": 62.0, "confidence_score": 0.81})

        client.put(f"{API}/claims/{claim_id}/draft", json={"damage_confirmation": "pending"},
                   headers=as_actor("REV-001"))
        client.post(f"{API}/claims/{claim_id}/decision", json={"outcome": "approve"}, headers=as_actor("REV-001"))
        assert client.get(f"{API}/claims/{claim_id}").json()["status"] == "PAYOUT_PENDING"

        paid = client.post(f"{API}/claims/{claim_id}/payout", json={"amount": 45000, "transaction_id": "TXN1"},
                           headers=as_actor("ops-1"))
        assert paid.status_code == 200
        claim = client.get(f"{API}/claims/{claim_id}").json()
        assert claim["status"] == "PAID"

        again = client.post(f"{API}/claims/{claim_id}/payout", json={"amount": 45000, "transaction_id": "TXN1"},
                            headers=as_actor("ops-1"))
        assert again.status_code == 409
        assert again.json()["error"]["kind"] == "invalid_state"

        actions = [e["action"] for e in client.get(f"{API}/claims/{claim_id}/audit").json()]
        assert actions[0] == "claim_submitted"
        assert actions[-1] == "payout_completed"
