"""
/claims Endpoints
-----------------
Claim intake, routing and read access (claim + audit trail).
Routers are defined WITHOUT prefix; main.py mounts them under /api/v1.
"""

from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, Query, Response, status
from pydantic import BaseModel

from cropclaim.api.dependencies import current_actor, expected_version, get_claim_engine
from cropclaim.exceptions import ClaimEngineError
from cropclaim.models.audit import AuditEntry
from cropclaim.models.claim import (
    AssignReviewerRequest, Claim, ClaimStatus, ClaimSubmission, ClaimSubmissionResponse,
)
from cropclaim.services.claim_engine import ClaimEngine
from cropclaim.utils.logger import logger

router = APIRouter(tags=["Claims"])


class ClaimListResponse(BaseModel):
    items: List[Claim]
    total: int
    skip: int
    limit: int


def dispatch_assessment(engine: ClaimEngine, claim_id: str) -> None:
    """Background task: intake never waits on the assessment collaborator."""
    try:
        engine.assessment.request_assessment(claim_id)
    except ClaimEngineError as e:
        logger.warning(f"⚠️ Background assessment dispatch for {claim_id} failed: {e.error_code} {e.message}")


# =========================================================
# 📥 Intake
# =========================================================
@router.post(
    "/claims",
    response_model=ClaimSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a claim (idempotent)",
    description="Creates a claim in SUBMITTED. Replaying the same Idempotency-Key and payload returns the "
                "original claim with 200 instead of creating a duplicate.",
)
def submit_claim(
    response: Response,
    background_tasks: BackgroundTasks,
    submission: ClaimSubmission = Body(...),
    idempotency_key: Optional[str] = Header(default=None),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    claim, created = engine.intake.submit_claim(
        idempotency_key=idempotency_key or "",
        policy_id=submission.policy_id,
        farmer_id=submission.farmer_id,
        incident=submission.incident,
        evidence_refs=submission.evidence_refs,
        actor=actor["actor_id"],
    )
    if created:
        background_tasks.add_task(dispatch_assessment, engine, claim.claim_id)
    else:
        response.status_code = status.HTTP_200_OK
    response.headers["ETag"] = f'"{claim.version}"'
    return ClaimSubmissionResponse(claim=claim, created=created)


# =========================================================
# 📖 Reads
# =========================================================
@router.get("/claims", response_model=ClaimListResponse, summary="List claims")
def list_claims(
    farmer_id: Optional[str] = Query(default=None),
    reviewer_id: Optional[str] = Query(default=None),
    status_filter: Optional[ClaimStatus] = Query(default=None, alias="status"),
    fraud_suspect: Optional[bool] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    items, total = engine.store.list_claims(
        farmer_id=farmer_id,
        reviewer_id=reviewer_id,
        status=status_filter,
        fraud_suspect=fraud_suspect,
        skip=skip,
        limit=limit,
    )
    return ClaimListResponse(items=items, total=total, skip=skip, limit=limit)


@router.get("/claims/{claim_id}", response_model=Claim, summary="Get a claim")
def get_claim(claim_id: str, response: Response, engine: ClaimEngine = Depends(get_claim_engine)):
    claim = engine.store.get_claim(claim_id)
    response.headers["ETag"] = f'"{claim.version}"'
    return claim


@router.get("/claims/{claim_id}/audit", response_model=List[AuditEntry], summary="Claim audit trail")
def get_audit_trail(claim_id: str, engine: ClaimEngine = Depends(get_claim_engine)):
    engine.store.get_claim(claim_id)
    return engine.store.get_audit_trail(claim_id)


# =========================================================
# 👤 Routing
# =========================================================
@router.post("/claims/{claim_id}/assign", response_model=Claim, summary="Assign a reviewer")
def assign_reviewer(
    claim_id: str,
    body: AssignReviewerRequest,
    version: Optional[int] = Depends(expected_version),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.intake.assign_reviewer(claim_id, body.reviewer_id, actor["actor_id"], expected_version=version)
