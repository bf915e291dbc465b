"""
Idempotent Intake
-----------------
Accepts a farmer's claim exactly once per (farmer, idempotency key).

Order of checks:
1. Idempotency replay (same key + same payload fingerprint → existing claim)
2. Policy / window / evidence / amount validation
3. Overlapping-incident check against open claims on the same policy
4. Insert guarded by the (farmer_id, idempotency_key) unique constraint;
   a concurrent duplicate that wins the insert race is re-resolved.
"""

import hashlib
import json
import secrets
import uuid
from datetime import datetime
from typing import List, Optional, Tuple, Union
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from cropclaim.config import config
from cropclaim.exceptions import ConflictError, DuplicateIncidentError, ValidationError
from cropclaim.models.claim import Claim, ClaimStatus, IncidentDetails
from cropclaim.models.policy import PolicyStatus
from cropclaim.services.state_machine import Operation, next_state
from cropclaim.store.claim_store import ClaimStore
from cropclaim.store.tables import ClaimRow
from cropclaim.utils.logger import log_event, log_with_context
from cropclaim.utils.security import mask_idempotency_key


def generate_claim_number(now: Optional[datetime] = None) -> str:
    """CLM-<year>-<last 6 digits of epoch millis>-<3 random digits>."""
    now = now or datetime.utcnow()
    millis = str(int(now.timestamp() * 1000))
    return f"CLM-{now.year}-{millis[-6:]}-{secrets.randbelow(1000):03d}"


def request_fingerprint(policy_id: str, farmer_id: str, incident: IncidentDetails, evidence_refs: List[str]) -> str:
    """sha256 over the canonical JSON form of the submission payload."""
    canonical = {
        "policy_id": policy_id,
        "farmer_id": farmer_id,
        "incident": {
            "date_of_incident": incident.date_of_incident.isoformat(),
            "location_of_incident": incident.location_of_incident,
            "description": incident.description,
            "amount_claimed": float(incident.amount_claimed),
        },
        "evidence_refs": list(evidence_refs or []),
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class IntakeService:
    def __init__(self, store: ClaimStore, duplicate_window_days: Optional[int] = None):
        self.store = store
        self.duplicate_window_days = (
            config.DUPLICATE_INCIDENT_WINDOW_DAYS if duplicate_window_days is None else duplicate_window_days
        )

    # =========================================================
    # 📥 Submit
    # =========================================================
    def submit_claim(
        self,
        idempotency_key: str,
        policy_id: str,
        farmer_id: str,
        incident: Union[IncidentDetails, dict],
        evidence_refs: List[str],
        actor: Optional[str] = None,
    ) -> Tuple[Claim, bool]:
        """Create the claim in SUBMITTED, or replay the one this key already created."""
        if not idempotency_key or not idempotency_key.strip():
            raise ValidationError("Idempotency key is required", field="idempotency_key")
        incident = self._coerce_incident(incident)
        evidence_refs = list(evidence_refs or [])
        fingerprint = request_fingerprint(policy_id, farmer_id, incident, evidence_refs)
        actor = actor or farmer_id

        try:
            with self.store.transaction() as session:
                existing = self.store.find_by_idempotency_key(session, farmer_id, idempotency_key)
                if existing is not None:
                    return self._replay(existing, fingerprint, idempotency_key)

                self._validate(session, policy_id, farmer_id, incident, evidence_refs)
                self._reject_overlapping(session, policy_id, incident)

                now = datetime.utcnow()
                row = ClaimRow(
                    id=uuid.uuid4().hex,
                    claim_id=generate_claim_number(now),
                    policy_id=policy_id,
                    farmer_id=farmer_id,
                    date_of_incident=incident.date_of_incident,
                    location_of_incident=incident.location_of_incident,
                    description=incident.description,
                    amount_claimed=float(incident.amount_claimed),
                    evidence_refs=evidence_refs,
                    status=ClaimStatus.SUBMITTED.value,
                    fraud_suspect=False,
                    idempotency_key=idempotency_key,
                    request_fingerprint=fingerprint,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                self.store.append_audit(
                    session, row.claim_id, actor, "claim_submitted", None, ClaimStatus.SUBMITTED.value,
                    details={"policy_id": policy_id, "amount_claimed": row.amount_claimed},
                )
                session.flush()
                claim = Claim.model_validate(row)
        except IntegrityError:
            # Lost the insert race to an identical retry; resolve to the winner
            log_event("idempotency_race", level="warning", farmer_id=farmer_id,
                      idempotency_key=mask_idempotency_key(idempotency_key))
            with self.store.reader() as session:
                existing = self.store.find_by_idempotency_key(session, farmer_id, idempotency_key)
                if existing is None:
                    raise
                return self._replay(existing, fingerprint, idempotency_key)

        log_event("claim_submitted", claim_id=claim.claim_id, farmer_id=farmer_id, policy_id=policy_id,
                  idempotency_key=mask_idempotency_key(idempotency_key), after=ClaimStatus.SUBMITTED.value)
        return claim, True

    @staticmethod
    def _coerce_incident(incident: Union[IncidentDetails, dict]) -> IncidentDetails:
        if isinstance(incident, IncidentDetails):
            return incident
        try:
            return IncidentDetails.model_validate(incident or {})
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or "incident"
            raise ValidationError(f"Invalid incident details: {first.get('msg')}", field=field) from None

    @staticmethod
    def _replay(existing: ClaimRow, fingerprint: str, idempotency_key: str) -> Tuple[Claim, bool]:
        if existing.request_fingerprint != fingerprint:
            log_event("idempotency_conflict", level="warning", claim_id=existing.claim_id,
                      idempotency_key=mask_idempotency_key(idempotency_key))
            raise ConflictError(
                "Idempotency key was already used for a different claim payload",
                claim_id=existing.claim_id,
            )
        log_event("claim_replayed", claim_id=existing.claim_id,
                  idempotency_key=mask_idempotency_key(idempotency_key))
        return Claim.model_validate(existing), False

    def _validate(self, session, policy_id: str, farmer_id: str, incident: IncidentDetails,
                  evidence_refs: List[str]) -> None:
        if not policy_id:
            raise ValidationError("Policy is required", field="policy_id")
        policy = self.store.load_policy(session, policy_id)
        if policy is None:
            raise ValidationError(f"Policy {policy_id} does not exist", field="policy_id",
                                  error_code="POLICY_NOT_FOUND")
        if policy.farmer_id != farmer_id:
            raise ValidationError(f"Policy {policy_id} does not belong to farmer {farmer_id}", field="farmer_id",
                                  error_code="POLICY_FARMER_MISMATCH")
        if policy.status != PolicyStatus.ACTIVE.value:
            raise ValidationError(f"Policy {policy_id} is {policy.status}, not Active", field="policy_id",
                                  error_code="POLICY_INACTIVE", policy_status=policy.status)
        if not (policy.start_date <= incident.date_of_incident <= policy.end_date):
            raise ValidationError(
                f"Incident date {incident.date_of_incident} is outside the policy window "
                f"{policy.start_date}..{policy.end_date}",
                field="date_of_incident",
                error_code="INCIDENT_OUTSIDE_POLICY_WINDOW",
            )
        if not any(ref and str(ref).strip() for ref in evidence_refs):
            raise ValidationError("At least one evidence reference is required", field="evidence_refs",
                                  error_code="MISSING_EVIDENCE")
        if incident.amount_claimed is None or incident.amount_claimed <= 0:
            raise ValidationError("Amount claimed must be greater than zero", field="amount_claimed",
                                  error_code="INVALID_AMOUNT")

    def _reject_overlapping(self, session, policy_id: str, incident: IncidentDetails) -> None:
        if self.duplicate_window_days <= 0:
            return
        open_claims = self.store.find_open_claims_near(
            session, policy_id, incident.date_of_incident, self.duplicate_window_days
        )
        if open_claims:
            raise DuplicateIncidentError(policy_id, open_claims[0].claim_id, self.duplicate_window_days)

    # =========================================================
    # 👤 Routing
    # =========================================================
    @log_with_context("info")
    def assign_reviewer(self, claim_id: str, reviewer_id: str, actor: str,
                        expected_version: Optional[int] = None) -> Claim:
        """SUBMITTED → ASSIGNED; the reviewer must act for the policy's insurer."""
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id, expected_version)
            target = next_state(row.status, Operation.ASSIGN_REVIEWER, claim_id=claim_id)
            self.store.authorized_reviewer(session, reviewer_id, row)
            row.assigned_reviewer_id = reviewer_id
            self.store.transition(session, row, target, actor, "reviewer_assigned",
                                  details={"reviewer_id": reviewer_id})
        return Claim.model_validate(row)
