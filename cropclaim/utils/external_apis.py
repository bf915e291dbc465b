"""
External APIs Utility
---------------------
Clients for the two collaborators the claim engine talks to:
🛰️ Assessment service (AI / satellite damage estimation, async callback)
💸 Payment gateway (synchronous disbursement)

COLLABORATOR_MODE=http talks to the real services with `requests`;
COLLABORATOR_MODE=simulated (local/test default) uses deterministic
in-process simulators that record every call.
"""

import threading
import requests
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from cropclaim.config import config
from cropclaim.exceptions import CollaboratorUnavailableError, ConfigurationError
from cropclaim.utils.logger import logger
from cropclaim.utils.security import mask_bank_details


class PaymentResult(BaseModel):
    """What the payment gateway reports back for a disbursement."""
    transaction_id: str = Field(..., description="Gateway-side transaction id")
    settled_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(extra="ignore")


# =========================================================
# 🛰️ ASSESSMENT COLLABORATOR
# =========================================================
class AssessmentClient:
    """Fire-and-forget dispatch; results arrive on the callback endpoint."""

    def dispatch(self, request_id: str, claim_id: str, evidence_refs: List[str],
                 policy_snapshot: Dict[str, Any]) -> None:
        raise NotImplementedError


class HttpAssessmentClient(AssessmentClient):
    def __init__(self, base_url: str, api_key: Optional[str] = None, callback_url: Optional[str] = None,
                 timeout: float = config.ASSESSMENT_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.callback_url = callback_url
        self.timeout = timeout

    def dispatch(self, request_id, claim_id, evidence_refs, policy_snapshot):
        payload = {
            "request_id": request_id,
            "claim_id": claim_id,
            "evidence_refs": list(evidence_refs),
            "policy_snapshot": policy_snapshot,
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url.format(claim_id=claim_id)

        try:
            resp = requests.post(
                f"{self.base_url}/assessments",
                json=payload,
                headers=_headers(self.api_key),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"⚠️ Assessment dispatch failed for {claim_id}: {e}")
            raise CollaboratorUnavailableError("assessment", str(e), claim_id=claim_id) from e

        if resp.status_code >= 300:
            logger.warning(f"Assessment API returned {resp.status_code} for {claim_id}")
            raise CollaboratorUnavailableError(
                "assessment", f"HTTP {resp.status_code}", claim_id=claim_id, status_code=resp.status_code
            )
        logger.info(f"🛰️ Assessment requested for {claim_id} (request {request_id})")


class SimulatedAssessmentClient(AssessmentClient):
    """Records dispatches in memory; set `fail_next` to simulate an outage."""

    def __init__(self):
        self.dispatched: List[Dict[str, Any]] = []
        self.fail_next = False
        self._lock = threading.Lock()

    def dispatch(self, request_id, claim_id, evidence_refs, policy_snapshot):
        with self._lock:
            if self.fail_next:
                self.fail_next = False
                raise CollaboratorUnavailableError("assessment", "simulated outage", claim_id=claim_id)
            self.dispatched.append({
                "request_id": request_id,
                "claim_id": claim_id,
                "evidence_refs": list(evidence_refs),
                "policy_snapshot": policy_snapshot,
            })
        logger.debug(f"🧪 Simulated assessment dispatch for {claim_id}")


# =========================================================
# 💸 PAYMENT COLLABORATOR
# =========================================================
class PaymentClient:
    def pay(self, claim_id: str, amount: float, beneficiary_bank_details: Dict[str, Any],
            transaction_id: str) -> PaymentResult:
        raise NotImplementedError


class HttpPaymentClient(PaymentClient):
    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 timeout: float = config.PAYMENT_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def pay(self, claim_id, amount, beneficiary_bank_details, transaction_id):
        logger.info(
            f"💸 Payout {transaction_id} for {claim_id}: ₹{amount:.2f} "
            f"to {mask_bank_details(beneficiary_bank_details)}"
        )
        try:
            resp = requests.post(
                f"{self.base_url}/payouts",
                json={
                    "claim_id": claim_id,
                    "amount": amount,
                    "beneficiary_bank_details": beneficiary_bank_details,
                    "transaction_id": transaction_id,
                },
                headers=_headers(self.api_key, idempotency_key=transaction_id),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CollaboratorUnavailableError("payment", str(e), claim_id=claim_id) from e

        if resp.status_code >= 300:
            raise CollaboratorUnavailableError(
                "payment", f"HTTP {resp.status_code}", claim_id=claim_id, status_code=resp.status_code
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise CollaboratorUnavailableError("payment", "unreadable gateway response", claim_id=claim_id) from e

        try:
            status = str(data.get("status") or "success").lower()
            reason = data.get("reason", "payout declined")
            gateway_txn = data.get("transaction_id")
        except AttributeError as e:
            raise CollaboratorUnavailableError("payment", "malformed gateway response", claim_id=claim_id) from e

        if status not in ("success", "settled"):
            raise CollaboratorUnavailableError("payment", reason, claim_id=claim_id)
        if not gateway_txn:
            raise CollaboratorUnavailableError("payment", "gateway returned no transaction id", claim_id=claim_id)
        try:
            return PaymentResult(**data)
        except (TypeError, PydanticValidationError) as e:
            raise CollaboratorUnavailableError("payment", "malformed gateway response", claim_id=claim_id) from e


class SimulatedPaymentClient(PaymentClient):
    """Echoes the caller's transaction id; set `fail_next` to simulate a decline."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.fail_next = False
        self._lock = threading.Lock()

    def pay(self, claim_id, amount, beneficiary_bank_details, transaction_id):
        with self._lock:
            if self.fail_next:
                self.fail_next = False
                raise CollaboratorUnavailableError("payment", "simulated gateway decline", claim_id=claim_id)
            self.calls.append({
                "claim_id": claim_id,
                "amount": amount,
                "beneficiary_bank_details": beneficiary_bank_details,
                "transaction_id": transaction_id,
            })
        logger.debug(f"🧪 Simulated payout {transaction_id} for {claim_id}")
        return PaymentResult(transaction_id=transaction_id, settled_at=datetime.utcnow())


# =========================================================
# 🏭 FACTORIES
# =========================================================
def _headers(api_key: Optional[str], idempotency_key: Optional[str] = None) -> Dict[str, str]:
    headers = {"User-Agent": "CropClaimEngine/0.1", "Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key
    return headers


def build_assessment_client() -> AssessmentClient:
    if not config.use_http_collaborators:
        return SimulatedAssessmentClient()
    if not config.ASSESSMENT_API_URL:
        logger.error("❌ COLLABORATOR_MODE=http but ASSESSMENT_API_URL is not set")
        raise ConfigurationError("ASSESSMENT_API_URL", "ASSESSMENT_API_URL is required when COLLABORATOR_MODE=http")
    return HttpAssessmentClient(config.ASSESSMENT_API_URL, config.ASSESSMENT_API_KEY,
                                config.ASSESSMENT_CALLBACK_URL)


def build_payment_client() -> PaymentClient:
    if not config.use_http_collaborators:
        return SimulatedPaymentClient()
    if not config.PAYMENT_API_URL:
        logger.error("❌ COLLABORATOR_MODE=http but PAYMENT_API_URL is not set")
        raise ConfigurationError("PAYMENT_API_URL", "PAYMENT_API_URL is required when COLLABORATOR_MODE=http")
    return HttpPaymentClient(config.PAYMENT_API_URL, config.PAYMENT_API_KEY)
