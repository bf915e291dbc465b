"""
Wires the store, collaborator clients and the four engine components
into one object the API layer (and tests) can hold.
"""

from typing import Optional

from cropclaim.services.assessment import AssessmentCoordinator
from cropclaim.services.intake import IntakeService
from cropclaim.services.review import ReviewService
from cropclaim.services.scrutiny_policy import ScrutinyPolicy
from cropclaim.services.settlement import SettlementCoordinator
from cropclaim.store.claim_store import ClaimStore
from cropclaim.utils.external_apis import (
    AssessmentClient, PaymentClient, build_assessment_client, build_payment_client,
)


class ClaimEngine:
    def __init__(
        self,
        store: Optional[ClaimStore] = None,
        assessment_client: Optional[AssessmentClient] = None,
        payment_client: Optional[PaymentClient] = None,
        scrutiny_policy: Optional[ScrutinyPolicy] = None,
        auto_release: Optional[bool] = None,
        duplicate_window_days: Optional[int] = None,
    ):
        self.store = store or ClaimStore()
        self.assessment_client = assessment_client or build_assessment_client()
        self.payment_client = payment_client or build_payment_client()

        self.intake = IntakeService(self.store, duplicate_window_days=duplicate_window_days)
        self.assessment = AssessmentCoordinator(self.store, self.assessment_client)
        self.settlement = SettlementCoordinator(self.store, self.payment_client, scrutiny_policy)
        self.review = ReviewService(
            self.store,
            assessment=self.assessment,
            settlement=self.settlement,
            auto_release=auto_release,
        )


_engine: Optional[ClaimEngine] = None


def get_engine() -> ClaimEngine:
    """Process-wide engine bound to the configured database and collaborators."""
    global _engine
    if _engine is None:
        _engine = ClaimEngine()
    return _engine
