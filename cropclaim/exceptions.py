"""Error taxonomy for the claim lifecycle engine.

Every error carries a machine-readable ``error_code``, a ``kind`` the HTTP
layer maps to a status code, and ``details`` (current state, offending field)
so callers can explain the failure without seeing engine internals.
"""

from typing import Optional, Dict, Any


class ClaimEngineError(Exception):
    """Base exception for all engine errors."""

    kind = "engine_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


def _details(current_state: Optional[str] = None, field: Optional[str] = None, **extra) -> Dict[str, Any]:
    details = {k: v for k, v in extra.items() if v is not None}
    if current_state is not None:
        details["current_state"] = current_state
    if field is not None:
        details["field"] = field
    return details


# ===================
# Caller errors
# ===================

class ValidationError(ClaimEngineError):
    """Malformed or out-of-range input. Fix the input; never retried automatically."""

    kind = "validation_error"
    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, error_code: str = "VALIDATION_ERROR",
                 current_state: Optional[str] = None, **extra):
        super().__init__(
            message=message,
            error_code=error_code,
            details=_details(current_state=current_state, field=field, **extra),
        )


class InvalidStateError(ClaimEngineError):
    """Operation not permitted in the claim's current state."""

    kind = "invalid_state"
    status_code = 409

    def __init__(self, operation: str, current_state: str, claim_id: Optional[str] = None,
                 message: Optional[str] = None):
        super().__init__(
            message=message or f"Cannot {operation} while claim is {current_state}",
            error_code="INVALID_STATE",
            details=_details(current_state=current_state, operation=operation, claim_id=claim_id),
        )


class ConflictError(ClaimEngineError):
    """Idempotency key reused with a different payload (client bug)."""

    kind = "conflict"
    status_code = 409

    def __init__(self, message: str, error_code: str = "IDEMPOTENCY_KEY_REUSED",
                 field: Optional[str] = "idempotency_key", **extra):
        super().__init__(message=message, error_code=error_code, details=_details(field=field, **extra))


class DuplicateIncidentError(ConflictError):
    """Another in-flight claim already covers this policy and incident window."""

    def __init__(self, policy_id: str, existing_claim_id: str, window_days: int):
        super().__init__(
            message=(
                f"Claim {existing_claim_id} for policy {policy_id} is already open "
                f"within {window_days} days of this incident date"
            ),
            error_code="DUPLICATE_INCIDENT",
            field="date_of_incident",
            policy_id=policy_id,
            existing_claim_id=existing_claim_id,
        )


class ConcurrentModificationError(ClaimEngineError):
    """Lost an optimistic-concurrency race. Re-fetch the claim and retry once."""

    kind = "concurrent_modification"
    status_code = 409

    def __init__(self, claim_id: str, expected_version: Optional[int] = None,
                 current_version: Optional[int] = None, current_state: Optional[str] = None):
        super().__init__(
            message=f"Claim {claim_id} was modified concurrently; re-fetch and retry",
            error_code="CONCURRENT_MODIFICATION",
            details=_details(
                current_state=current_state,
                claim_id=claim_id,
                expected_version=expected_version,
                current_version=current_version,
            ),
        )


class NotFoundError(ClaimEngineError):
    kind = "not_found"
    status_code = 404


class ClaimNotFoundError(NotFoundError):
    def __init__(self, claim_id: str):
        super().__init__(
            message=f"Claim not found: {claim_id}",
            error_code="CLAIM_NOT_FOUND",
            details={"claim_id": claim_id},
        )


class NotAuthorizedError(ClaimEngineError):
    """Reviewer does not act for the insurer that issued the claim's policy."""

    kind = "not_authorized"
    status_code = 403

    def __init__(self, actor_id: str, claim_id: str, reason: str):
        super().__init__(
            message=f"{actor_id} is not authorized on claim {claim_id}: {reason}",
            error_code="NOT_AUTHORIZED",
            details={"actor_id": actor_id, "claim_id": claim_id},
        )


# ===================
# Collaborator errors
# ===================

class CollaboratorUnavailableError(ClaimEngineError):
    """AI/payment collaborator failed or timed out."""

    kind = "collaborator_unavailable"
    status_code = 503

    def __init__(self, collaborator: str, message: str, error_code: str = "COLLABORATOR_UNAVAILABLE", **extra):
        super().__init__(
            message=f"{collaborator} collaborator failed: {message}",
            error_code=error_code,
            details=_details(collaborator=collaborator, **extra),
        )


class PayoutFailedError(CollaboratorUnavailableError):
    """Payment collaborator rejected or could not complete the payout; claim stays PAYOUT_PENDING."""

    status_code = 502

    def __init__(self, claim_id: str, message: str, current_state: str = "PAYOUT_PENDING"):
        super().__init__(
            collaborator="payment",
            message=message,
            error_code="PAYOUT_FAILED",
            claim_id=claim_id,
            current_state=current_state,
        )


# ===================
# Deployment errors
# ===================

class ConfigurationError(ClaimEngineError):
    """Required setting missing for the selected collaborator mode."""

    kind = "configuration_error"
    status_code = 500

    def __init__(self, setting: str, message: str):
        super().__init__(message=message, error_code="MISCONFIGURED", details={"setting": setting})
