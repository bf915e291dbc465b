"""
Review Endpoints
----------------
Reviewer drafts, final decisions and the fraud-suspect flag.
The acting reviewer is the authenticated actor.
"""

from typing import Optional
from fastapi import APIRouter, Body, Depends

from cropclaim.api.dependencies import current_actor, expected_version, get_claim_engine
from cropclaim.exceptions import NotFoundError
from cropclaim.models.claim import Claim
from cropclaim.models.review import DecisionInput, DecisionRecord, DraftInput, ReviewDraft
from cropclaim.services.claim_engine import ClaimEngine

router = APIRouter(tags=["Review"])


# =========================================================
# 📝 Draft
# =========================================================
@router.get("/claims/{claim_id}/draft", response_model=ReviewDraft, summary="Get the reviewer draft")
def get_draft(claim_id: str, engine: ClaimEngine = Depends(get_claim_engine)):
    engine.store.get_claim(claim_id)
    draft = engine.store.get_draft(claim_id)
    if draft is None:
        raise NotFoundError(f"No draft saved for {claim_id}", error_code="DRAFT_NOT_FOUND",
                            details={"claim_id": claim_id})
    return draft


@router.put("/claims/{claim_id}/draft", response_model=ReviewDraft, summary="Save the reviewer draft")
def save_draft(
    claim_id: str,
    draft: DraftInput = Body(...),
    version: Optional[int] = Depends(expected_version),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.review.save_draft(claim_id, actor["actor_id"], draft, expected_version=version)


# =========================================================
# ⚖️ Decision
# =========================================================
@router.post("/claims/{claim_id}/decision", response_model=DecisionRecord, summary="Submit the final decision")
def submit_decision(
    claim_id: str,
    decision: DecisionInput = Body(...),
    version: Optional[int] = Depends(expected_version),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.review.submit_decision(
        claim_id,
        actor["actor_id"],
        decision.outcome,
        final_comments=decision.final_comments,
        approved_amount=decision.approved_amount,
        expected_version=version,
    )


@router.get("/claims/{claim_id}/decision", response_model=DecisionRecord, summary="Get the decision record")
def get_decision(claim_id: str, engine: ClaimEngine = Depends(get_claim_engine)):
    engine.store.get_claim(claim_id)
    record = engine.store.get_decision(claim_id)
    if record is None:
        raise NotFoundError(f"No decision recorded for {claim_id}", error_code="DECISION_NOT_FOUND",
                            details={"claim_id": claim_id})
    return record


# =========================================================
# 🚩 Fraud suspect flag
# =========================================================
@router.post("/claims/{claim_id}/fraud-suspect", response_model=Claim, summary="Flag claim as fraud suspect")
def mark_fraud_suspect(
    claim_id: str,
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.review.mark_fraud_suspect(claim_id, actor["actor_id"])


@router.delete("/claims/{claim_id}/fraud-suspect", response_model=Claim, summary="Clear the fraud suspect flag")
def clear_fraud_suspect(
    claim_id: str,
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.review.clear_fraud_suspect(claim_id, actor["actor_id"])
