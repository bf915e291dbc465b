"""
Settlement Scrutiny Policy
--------------------------
Decides whether a decided claim may be released for settlement
automatically or must be held for an operator.

Verdicts:
- RELEASE: no hold reason (rejections are always released straight to CLOSED)
- HOLD: the claim is currently flagged as a fraud suspect and the policy
  holds suspect payouts (HOLD_FRAUD_SUSPECT_PAYOUTS)

Secondary risk signals (low AI confidence, unavailable assessment, approved
amount well above the AI recommendation) never hold a claim on their own;
they are scored and logged so settlement operators can see them.
"""

from typing import List, Optional
from pydantic import BaseModel, Field
from cropclaim.config import config
from cropclaim.models.assessment import AssessmentReport
from cropclaim.models.claim import Claim, DecisionOutcome
from cropclaim.models.review import DecisionRecord
from cropclaim.utils.logger import logger

# Tunable weights (can be moved into config)
LOW_CONFIDENCE_WEIGHT = 0.20
UNAVAILABLE_WEIGHT = 0.25
CLEARED_FLAG_WEIGHT = 0.40         # flagged when decided, cleared since
OVER_RECOMMENDATION_WEIGHT = 0.30
OVER_RECOMMENDATION_RATIO = 1.5     # approved > 150% of AI recommendation
FRAUD_FLAG_WEIGHT = 1.0


class ScrutinyVerdict(BaseModel):
    hold: bool
    reason: str
    risk_score: float = 0.0
    signals: List[str] = Field(default_factory=list)


class ScrutinyPolicy:
    """Pluggable hook; subclass and override `evaluate` for other business rules."""

    def __init__(self, hold_fraud_suspect: bool = None, low_confidence_threshold: float = None):
        self.hold_fraud_suspect = (
            config.HOLD_FRAUD_SUSPECT_PAYOUTS if hold_fraud_suspect is None else hold_fraud_suspect
        )
        self.low_confidence_threshold = (
            config.LOW_CONFIDENCE_THRESHOLD if low_confidence_threshold is None else low_confidence_threshold
        )

    def _signals(self, claim: Claim, decision: DecisionRecord, report: Optional[AssessmentReport]) -> List[str]:
        signals = []
        if claim.fraud_suspect:
            signals.append("fraud_suspect")
        elif decision.fraud_suspect_at_decision:
            signals.append("fraud_suspect_at_decision")
        if report is None or report.unavailable:
            signals.append("assessment_unavailable")
        else:
            if report.confidence_score is not None and report.confidence_score < self.low_confidence_threshold:
                signals.append("low_confidence")
            approved = decision.approved_amount or claim.amount_claimed
            if report.ai_recommended_amount and approved > report.ai_recommended_amount * OVER_RECOMMENDATION_RATIO:
                signals.append("above_ai_recommendation")
        return signals

    @staticmethod
    def _risk_score(signals: List[str]) -> float:
        weights = {
            "fraud_suspect": FRAUD_FLAG_WEIGHT,
            "fraud_suspect_at_decision": CLEARED_FLAG_WEIGHT,
            "assessment_unavailable": UNAVAILABLE_WEIGHT,
            "low_confidence": LOW_CONFIDENCE_WEIGHT,
            "above_ai_recommendation": OVER_RECOMMENDATION_WEIGHT,
        }
        return round(sum(weights.get(s, 0.0) for s in signals), 2)

    def evaluate(
        self,
        claim: Claim,
        decision: DecisionRecord,
        report: Optional[AssessmentReport] = None,
    ) -> ScrutinyVerdict:
        """Return HOLD or RELEASE for a DECIDED claim."""
        signals = self._signals(claim, decision, report)
        risk = self._risk_score(signals)

        if DecisionOutcome(decision.outcome) == DecisionOutcome.REJECT:
            verdict = ScrutinyVerdict(hold=False, reason="Rejected claims close without settlement.",
                                      risk_score=risk, signals=signals)
        elif claim.fraud_suspect and self.hold_fraud_suspect:
            verdict = ScrutinyVerdict(hold=True, reason="Fraud suspect flag set: payout held for operator review.",
                                      risk_score=risk, signals=signals)
        else:
            verdict = ScrutinyVerdict(hold=False, reason="No hold conditions.", risk_score=risk, signals=signals)

        # Structured log for traceability
        log_data = {
            "claim_id": claim.claim_id,
            "outcome": decision.outcome,
            "hold": verdict.hold,
            "risk_score": risk,
            "signals": signals,
            "reason": verdict.reason,
        }
        logger.info(f"[SCRUTINY] {log_data}")
        return verdict
