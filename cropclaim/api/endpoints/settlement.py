"""
Settlement Endpoints
--------------------
Release of decided claims and payout processing.
"""

from typing import Optional
from fastapi import APIRouter, Body, Depends

from cropclaim.api.dependencies import current_actor, expected_version, get_claim_engine
from cropclaim.exceptions import NotFoundError
from cropclaim.models.payout import PayoutRecord, PayoutRequest, ReleaseRequest, ReleaseResult
from cropclaim.services.claim_engine import ClaimEngine

router = APIRouter(tags=["Settlement"])


@router.post(
    "/claims/{claim_id}/settlement/release",
    response_model=ReleaseResult,
    summary="Release a decided claim for settlement",
    description="Moves DECIDED claims to PAYOUT_PENDING (approve/partial) or CLOSED (reject). "
                "Claims held by the scrutiny policy need `override: true`.",
)
def release_for_settlement(
    claim_id: str,
    body: ReleaseRequest = Body(default_factory=ReleaseRequest),
    version: Optional[int] = Depends(expected_version),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.settlement.release_for_settlement(
        claim_id, actor["actor_id"], override=body.override, expected_version=version
    )


@router.post("/claims/{claim_id}/payout", response_model=PayoutRecord, summary="Disburse the payout")
def process_payout(
    claim_id: str,
    payout: PayoutRequest = Body(...),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.settlement.process_payout(
        claim_id,
        amount=payout.amount,
        transaction_id=payout.transaction_id,
        notes=payout.notes,
        actor=actor["actor_id"],
    )


@router.get("/claims/{claim_id}/payout", response_model=PayoutRecord, summary="Get the payout record")
def get_payout(claim_id: str, engine: ClaimEngine = Depends(get_claim_engine)):
    engine.store.get_claim(claim_id)
    active = [p for p in engine.store.get_payouts(claim_id) if not p.voided]
    if not active:
        raise NotFoundError(f"No payout recorded for {claim_id}", error_code="PAYOUT_NOT_FOUND",
                            details={"claim_id": claim_id})
    return active[0]
