"""
Assessment Coordinator
----------------------
Bridges claims and the external AI/satellite assessment collaborator.

- request_assessment: fire-and-forget dispatch, at most one outstanding
  request per claim; operator retry only after ASSESSMENT_TIMEOUT_HOURS.
- receive_assessment_result: collaborator callback. Normalizes validation
  flags, replaces the stored report and moves SUBMITTED/ASSIGNED claims to
  AI_PROCESSED unless the claim is fraud-flagged or already past that point.
- A hard failure (explicit failure signal or failed dispatch) still moves the
  claim on, with `assessment_unavailable` and no damage estimate, so human
  review is never blocked by the collaborator.
"""

import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from cropclaim.config import config
from cropclaim.exceptions import CollaboratorUnavailableError, ConcurrentModificationError, InvalidStateError, ValidationError
from cropclaim.models.assessment import (
    ASSESSMENT_UNAVAILABLE_FLAG, AssessmentReport, AssessmentRequest, AssessmentRequestStatus, AssessmentResult,
)
from cropclaim.models.policy import Policy
from cropclaim.services.state_machine import (
    ASSESSMENT_DISPATCH_STATES, Operation, can_apply, ensure_in, next_state,
)
from cropclaim.store.claim_store import ClaimStore
from cropclaim.store.tables import AssessmentReportRow, AssessmentRequestRow, ClaimRow
from cropclaim.utils.external_apis import AssessmentClient
from cropclaim.utils.logger import log_event, logger

ASSESSMENT_ACTOR = "assessment-service"
RECORD_ATTEMPTS = 3

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD = re.compile(r"[^a-z0-9]+")


# =========================================================
# 🏷️ Flag normalization
# =========================================================
def to_snake_case(name: str) -> str:
    """`weatherMismatch` / `Weather Mismatch` / `weather-mismatch` → `weather_mismatch`."""
    spaced = _CAMEL_BOUNDARY.sub("_", str(name).strip())
    return _NON_WORD.sub("_", spaced.lower()).strip("_")


def normalize_validation_flags(raw: Union[List[Any], Dict[str, Any], None]) -> List[str]:
    """
    Collapse the collaborator's flag payload into a sorted set of names.

    - list of names → snake_case names
    - map: True → name, non-empty string → `name:value`, False/None → dropped
    """
    flags = set()
    if raw is None:
        return []
    if isinstance(raw, dict):
        for key, value in raw.items():
            name = to_snake_case(key)
            if not name:
                continue
            if value is True:
                flags.add(name)
            elif isinstance(value, str) and value.strip():
                flags.add(f"{name}:{to_snake_case(value)}")
    else:
        for item in raw:
            if isinstance(item, str) and to_snake_case(item):
                flags.add(to_snake_case(item))
    return sorted(flags)


def _check_ranges(result: AssessmentResult) -> None:
    if result.ai_damage_percent is not None and not 0 <= result.ai_damage_percent <= 100:
        raise ValidationError("Damage percent must be within 0–100", field="ai_damage_percent")
    if result.confidence_score is not None and not 0 <= result.confidence_score <= 1:
        raise ValidationError("Confidence score must be within 0–1", field="confidence_score")
    if result.ai_recommended_amount is not None and result.ai_recommended_amount < 0:
        raise ValidationError("Recommended amount cannot be negative", field="ai_recommended_amount")


class AssessmentCoordinator:
    def __init__(self, store: ClaimStore, client: AssessmentClient, timeout_hours: Optional[float] = None):
        self.store = store
        self.client = client
        self.timeout = timedelta(hours=config.ASSESSMENT_TIMEOUT_HOURS if timeout_hours is None else timeout_hours)

    # =========================================================
    # 🛰️ Dispatch
    # =========================================================
    def request_assessment(self, claim_id: str, actor: str = "system", retry: bool = False,
                           now: Optional[datetime] = None) -> Optional[AssessmentRequest]:
        """Dispatch (or, without `retry`, return the existing) assessment request."""
        now = now or datetime.utcnow()
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id)
            ensure_in(row.status, ASSESSMENT_DISPATCH_STATES, "request assessment for", claim_id=claim_id)
            latest = self.store.latest_request(session, claim_id)

            if not retry and latest is not None:
                logger.debug(f"Assessment already requested for {claim_id} ({latest.status}); no-op")
                return AssessmentRequest.model_validate(latest)

            if retry and latest is not None and latest.status == AssessmentRequestStatus.COMPLETED.value:
                raise InvalidStateError(
                    "retry assessment for",
                    row.status,
                    claim_id=claim_id,
                    message=f"Assessment request {latest.id} for {claim_id} already completed; nothing to retry",
                )
            if retry:
                # failed/superseded requests retry freely; pending ones only after the timeout
                self._supersede_stale(session, row, now)

            request_row = AssessmentRequestRow(
                id=uuid.uuid4().hex,
                claim_id=claim_id,
                status=AssessmentRequestStatus.PENDING.value,
                attempt=(latest.attempt + 1) if latest else 1,
                requested_by=actor,
                requested_at=now,
            )
            session.add(request_row)
            # serializes concurrent dispatches through the claim version
            row.touch()
            evidence_refs = list(row.evidence_refs or [])
            policy_snapshot = Policy.model_validate(self.store.load_policy(session, row.policy_id)).snapshot()

        request = AssessmentRequest.model_validate(request_row)
        try:
            self.client.dispatch(request.id, claim_id, evidence_refs, policy_snapshot)
        except CollaboratorUnavailableError as e:
            log_event("assessment_dispatch_failed", level="warning", claim_id=claim_id,
                      request_id=request.id, error=e.message)
            self.receive_assessment_result(claim_id, AssessmentResult.failure(e.message, request_id=request.id))
            return self._reload_request(request.id)

        log_event("assessment_dispatched", claim_id=claim_id, request_id=request.id,
                  attempt=request.attempt, actor=actor)
        return request

    def _supersede_stale(self, session, row: ClaimRow, now: datetime) -> None:
        for pending in self.store.pending_requests(session, row.claim_id):
            if now - pending.requested_at < self.timeout:
                raise InvalidStateError(
                    "retry assessment for",
                    row.status,
                    claim_id=row.claim_id,
                    message=(
                        f"Assessment request {pending.id} for {row.claim_id} is still within the "
                        f"{self.timeout.total_seconds() / 3600:g}h response window"
                    ),
                )
            pending.status = AssessmentRequestStatus.SUPERSEDED.value
            pending.completed_at = now
            pending.error_message = "superseded by operator retry after timeout"
            log_event("assessment_superseded", level="warning", claim_id=row.claim_id, request_id=pending.id)

    def _reload_request(self, request_id: str) -> Optional[AssessmentRequest]:
        with self.store.reader() as session:
            row = session.get(AssessmentRequestRow, request_id)
            return AssessmentRequest.model_validate(row) if row else None

    def find_stale_requests(self, now: Optional[datetime] = None) -> List[AssessmentRequest]:
        """Pending requests with no result inside the timeout window."""
        now = now or datetime.utcnow()
        return self.store.get_stale_requests(now - self.timeout)

    # =========================================================
    # 📬 Callback
    # =========================================================
    def receive_assessment_result(self, claim_id: str, result: Union[AssessmentResult, dict],
                                  actor: str = ASSESSMENT_ACTOR) -> AssessmentReport:
        """Store the report; transition only when the claim is still waiting for it."""
        if not isinstance(result, AssessmentResult):
            result = AssessmentResult.model_validate(result)
        if not result.failed:
            _check_ranges(result)
        flags = [ASSESSMENT_UNAVAILABLE_FLAG] if result.failed else normalize_validation_flags(result.validation_flags)

        for attempt in range(1, RECORD_ATTEMPTS + 1):
            try:
                return self._record(claim_id, result, flags, actor)
            except ConcurrentModificationError:
                if attempt == RECORD_ATTEMPTS:
                    raise
                logger.info(f"🔁 Claim {claim_id} changed while recording assessment; retrying ({attempt})")

    def _record(self, claim_id: str, result: AssessmentResult, flags: List[str], actor: str) -> AssessmentReport:
        now = datetime.utcnow()
        with self.store.transaction() as session:
            row = self.store.load_claim(session, claim_id)
            report_row = session.get(AssessmentReportRow, claim_id)
            if report_row is None:
                report_row = AssessmentReportRow(claim_id=claim_id)
                session.add(report_row)

            # replaced whole, never merged
            report_row.request_id = result.request_id
            report_row.ai_damage_percent = None if result.failed else result.ai_damage_percent
            report_row.ai_recommended_amount = None if result.failed else result.ai_recommended_amount
            report_row.confidence_score = None if result.failed else result.confidence_score
            report_row.validation_flags = flags
            report_row.weather_summary = None if result.failed else result.weather_summary
            report_row.crop_health_summary = None if result.failed else result.crop_health_summary
            report_row.geospatial_summary = None if result.failed else result.geospatial_summary
            report_row.received_at = now

            self._close_requests(session, claim_id, result, now)

            details = {
                "request_id": result.request_id,
                "ai_damage_percent": report_row.ai_damage_percent,
                "confidence_score": report_row.confidence_score,
                "validation_flags": flags,
            }
            if can_apply(row.status, Operation.RECORD_ASSESSMENT) and not row.fraud_suspect:
                target = next_state(row.status, Operation.RECORD_ASSESSMENT, claim_id=claim_id)
                self.store.transition(session, row, target, actor, "assessment_received", details=details)
            else:
                details["skipped_transition"] = "fraud_suspect" if row.fraud_suspect else f"state {row.status}"
                self.store.append_audit(session, claim_id, actor, "assessment_recorded",
                                        row.status, row.status, details=details)
                log_event("assessment_recorded_without_transition", claim_id=claim_id,
                          state=row.status, fraud_suspect=row.fraud_suspect)

        return AssessmentReport.model_validate(report_row)

    def _close_requests(self, session, claim_id: str, result: AssessmentResult, now: datetime) -> None:
        if result.request_id:
            targets = [session.get(AssessmentRequestRow, result.request_id)]
        else:
            targets = self.store.pending_requests(session, claim_id)
        for request_row in targets:
            if request_row is None or request_row.claim_id != claim_id:
                continue
            if request_row.status not in (AssessmentRequestStatus.PENDING.value, AssessmentRequestStatus.FAILED.value):
                continue
            request_row.status = (
                AssessmentRequestStatus.FAILED.value if result.failed else AssessmentRequestStatus.COMPLETED.value
            )
            request_row.completed_at = now
            request_row.error_message = result.error_message if result.failed else None

    # =========================================================
    # ▶️ Resume after a fraud flag is cleared
    # =========================================================
    def advance_if_assessed(self, session, row: ClaimRow, actor: str) -> bool:
        """Apply a stored report's deferred transition inside the caller's transaction."""
        if row.fraud_suspect or not can_apply(row.status, Operation.RECORD_ASSESSMENT):
            return False
        report_row = session.get(AssessmentReportRow, row.claim_id)
        if report_row is None:
            return False
        target = next_state(row.status, Operation.RECORD_ASSESSMENT, claim_id=row.claim_id)
        self.store.transition(session, row, target, actor, "assessment_received",
                              details={"request_id": report_row.request_id, "deferred": True})
        return True
