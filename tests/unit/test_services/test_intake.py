"""
Unit Tests: Idempotent Intake
-----------------------------
Covers cropclaim/services/intake.py.
Validates:
- Create / replay / conflicting replay per (farmer, idempotency key)
- Policy, window, evidence and amount validation
- Overlapping-incident rejection on the same policy
- Concurrent duplicate submissions create exactly one claim
- Reviewer routing (SUBMITTED → ASSIGNED)
"""

import re
import threading
from datetime import date, datetime
import pytest

from cropclaim.exceptions import (
    ConcurrentModificationError, ConflictError, DuplicateIncidentError, InvalidStateError,
    NotAuthorizedError, ValidationError,
)
from cropclaim.models.claim import ClaimStatus
from cropclaim.services.intake import generate_claim_number, request_fingerprint
from cropclaim.models.claim import IncidentDetails


class TestSubmitClaim:
    """submit_claim: create, replay, conflict."""

    def test_creates_submitted_claim(self, engine, submit):
        """New key → claim in SUBMITTED with one audit entry."""
        claim, created = submit(key="k1")
        assert created is True
        assert claim.status == ClaimStatus.SUBMITTED
        assert claim.version == 1
        assert re.fullmatch(r"CLM-\d{4}-\d{6}-\d{3}", claim.claim_id)

        trail = engine.store.get_audit_trail(claim.claim_id)
        assert [e.action for e in trail] == ["claim_submitted"]
        assert trail[0].before_state is None
        assert trail[0].after_state == "SUBMITTED"

    def test_replay_returns_same_claim(self, engine, submit):
        """Same key + same payload → same claim, created=False, no second row."""
        first, _ = submit(key="k1")
        again, created = submit(key="k1")
        assert created is False
        assert again.claim_id == first.claim_id
        assert engine.store.count_claims() == 1

    def test_replay_with_different_payload_conflicts(self, submit):
        submit(key="k1", amount=50000.0)
        with pytest.raises(ConflictError) as exc:
            submit(key="k1", amount=51000.0)
        assert exc.value.error_code == "IDEMPOTENCY_KEY_REUSED"
        assert exc.value.details["field"] == "idempotency_key"

    def test_same_key_different_farmers_are_independent(self, engine, submit):
        a, created_a = submit(key="shared")
        b, created_b = submit(key="shared", policy_id="POL-2024-0002", farmer_id="FRM-002",
                              day=date(2024, 8, 1), amount=20000.0)
        assert created_a and created_b
        assert a.claim_id != b.claim_id

    def test_replay_still_works_after_policy_check_would_fail(self, engine, submit, session_factory):
        """Idempotency is resolved before validation."""
        from cropclaim.store.tables import PolicyRow

        first, _ = submit(key="k1")
        with session_factory() as session:
            session.get(PolicyRow, "POL-2024-0001").status = "Expired"
            session.commit()

        again, created = submit(key="k1")
        assert created is False
        assert again.claim_id == first.claim_id

    def test_concurrent_duplicates_create_one_claim(self, engine, submit):
        """Two racing submissions with the same key resolve to one claim."""
        barrier = threading.Barrier(2)
        results, errors = [], []

        def worker():
            barrier.wait()
            try:
                results.append(submit(key="race-key"))
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len({claim.claim_id for claim, _ in results}) == 1
        assert sorted(created for _, created in results) == [False, True]
        assert engine.store.count_claims() == 1


class TestIntakeValidation:
    """Validation errors carry the offending field."""

    @pytest.mark.parametrize("kwargs,field,code", [
        ({"policy_id": "POL-0000"}, "policy_id", "POLICY_NOT_FOUND"),
        ({"farmer_id": "FRM-002"}, "farmer_id", "POLICY_FARMER_MISMATCH"),
        ({"policy_id": "POL-2023-0007", "day": date(2023, 7, 1)}, "policy_id", "POLICY_INACTIVE"),
        ({"day": date(2024, 5, 31)}, "date_of_incident", "INCIDENT_OUTSIDE_POLICY_WINDOW"),
        ({"day": date(2024, 11, 1)}, "date_of_incident", "INCIDENT_OUTSIDE_POLICY_WINDOW"),
        ({"evidence_refs": []}, "evidence_refs", "MISSING_EVIDENCE"),
        ({"evidence_refs": ["  "]}, "evidence_refs", "MISSING_EVIDENCE"),
        ({"amount": 0}, "amount_claimed", "INVALID_AMOUNT"),
        ({"amount": -10.0}, "amount_claimed", "INVALID_AMOUNT"),
    ])
    def test_invalid_submissions(self, engine, submit, kwargs, field, code):
        with pytest.raises(ValidationError) as exc:
            submit(**kwargs)
        assert exc.value.error_code == code
        assert exc.value.details["field"] == field
        assert engine.store.count_claims() == 0

    @pytest.mark.parametrize("day", [date(2024, 6, 1), date(2024, 10, 31)])
    def test_policy_window_is_inclusive(self, submit, day):
        claim, created = submit(day=day)
        assert created
        assert claim.date_of_incident == day

    def test_empty_idempotency_key(self, submit):
        with pytest.raises(ValidationError) as exc:
            submit(key="  ")
        assert exc.value.details["field"] == "idempotency_key"

    def test_malformed_incident(self, engine):
        with pytest.raises(ValidationError) as exc:
            engine.intake.submit_claim("k9", "POL-2024-0001", "FRM-001", {"amount_claimed": 100.0}, ["ref"])
        assert exc.value.details["field"] == "date_of_incident"


class TestOverlappingIncidents:
    def test_open_claim_within_window_is_rejected(self, submit):
        first, _ = submit(key="k1", day=date(2024, 7, 15))
        with pytest.raises(DuplicateIncidentError) as exc:
            submit(key="k2", day=date(2024, 7, 20))
        assert exc.value.error_code == "DUPLICATE_INCIDENT"
        assert exc.value.details["existing_claim_id"] == first.claim_id

    def test_outside_window_is_accepted(self, submit):
        submit(key="k1", day=date(2024, 7, 1))
        _, created = submit(key="k2", day=date(2024, 7, 15))
        assert created

    def test_window_zero_disables_check(self, engine_factory, submit):
        relaxed = engine_factory(duplicate_window_days=0)
        submit(key="k1", target=relaxed)
        _, created = submit(key="k2", target=relaxed)
        assert created


class TestAssignReviewer:
    def test_assigns_reviewer_of_policy_insurer(self, engine, submit):
        claim, _ = submit()
        assigned = engine.intake.assign_reviewer(claim.claim_id, "REV-001", actor="ops-1")
        assert assigned.status == ClaimStatus.ASSIGNED
        assert assigned.assigned_reviewer_id == "REV-001"
        assert assigned.version == claim.version + 1
        assert engine.store.get_audit_trail(claim.claim_id)[-1].action == "reviewer_assigned"

    def test_reviewer_from_other_insurer_refused(self, engine, submit):
        claim, _ = submit()
        with pytest.raises(NotAuthorizedError):
            engine.intake.assign_reviewer(claim.claim_id, "REV-002", actor="ops-1")
        assert engine.store.get_claim(claim.claim_id).status == ClaimStatus.SUBMITTED

    def test_assign_twice_is_invalid_state(self, engine, submit):
        claim, _ = submit()
        engine.intake.assign_reviewer(claim.claim_id, "REV-001", actor="ops-1")
        with pytest.raises(InvalidStateError) as exc:
            engine.intake.assign_reviewer(claim.claim_id, "REV-001", actor="ops-1")
        assert exc.value.details["current_state"] == "ASSIGNED"

    def test_stale_expected_version(self, engine, submit):
        claim, _ = submit()
        with pytest.raises(ConcurrentModificationError) as exc:
            engine.intake.assign_reviewer(claim.claim_id, "REV-001", actor="ops-1", expected_version=7)
        assert exc.value.details["current_version"] == 1


class TestHelpers:
    def test_claim_number_format(self):
        number = generate_claim_number(datetime(2024, 7, 15, 10, 30))
        assert number.startswith("CLM-2024-")
        assert re.fullmatch(r"CLM-2024-\d{6}-\d{3}", number)

    def test_fingerprint_is_stable(self):
        incident = IncidentDetails(date_of_incident=date(2024, 7, 15), amount_claimed=100.0)
        a = request_fingerprint("POL-1", "FRM-1", incident, ["a", "b"])
        b = request_fingerprint("POL-1", "FRM-1", incident, ["a", "b"])
        c = request_fingerprint("POL-1", "FRM-1", incident, ["b", "a"])
        assert a == b
        assert a != c
