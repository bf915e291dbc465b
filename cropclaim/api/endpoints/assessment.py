"""
Assessment Endpoints
--------------------
- GET  /claims/{claim_id}/assessment          stored report
- POST /claims/{claim_id}/assessment/request  operator (re)dispatch
- POST /claims/{claim_id}/assessment/result   collaborator callback
- GET  /assessments/stale                     requests past the timeout
"""

from typing import List
from fastapi import APIRouter, Body, Depends

from cropclaim.api.dependencies import current_actor, get_claim_engine
from cropclaim.exceptions import NotFoundError
from cropclaim.models.assessment import (
    AssessmentReport, AssessmentRequest, AssessmentResult, AssessmentRetryRequest,
)
from cropclaim.services.claim_engine import ClaimEngine

router = APIRouter(tags=["Assessment"])


@router.get("/claims/{claim_id}/assessment", response_model=AssessmentReport, summary="Get the assessment report")
def get_assessment(claim_id: str, engine: ClaimEngine = Depends(get_claim_engine)):
    engine.store.get_claim(claim_id)
    report = engine.store.get_assessment_report(claim_id)
    if report is None:
        raise NotFoundError(f"No assessment report yet for {claim_id}", error_code="ASSESSMENT_NOT_FOUND",
                            details={"claim_id": claim_id})
    return report


@router.post(
    "/claims/{claim_id}/assessment/request",
    response_model=AssessmentRequest,
    summary="Request (or retry) an assessment",
    description="Retry re-dispatches a failed request at once and a pending one only after the response "
                "window; a completed assessment is never re-requested.",
)
def request_assessment(
    claim_id: str,
    body: AssessmentRetryRequest = Body(default_factory=AssessmentRetryRequest),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.assessment.request_assessment(claim_id, actor=actor["actor_id"], retry=body.retry)


@router.post(
    "/claims/{claim_id}/assessment/result",
    response_model=AssessmentReport,
    summary="Assessment collaborator callback",
)
def receive_assessment_result(
    claim_id: str,
    result: AssessmentResult = Body(...),
    actor: dict = Depends(current_actor),
    engine: ClaimEngine = Depends(get_claim_engine),
):
    return engine.assessment.receive_assessment_result(claim_id, result, actor=actor["actor_id"])


@router.get("/assessments/stale", response_model=List[AssessmentRequest], summary="Timed-out assessment requests")
def stale_assessments(engine: ClaimEngine = Depends(get_claim_engine)):
    return engine.assessment.find_stale_requests()
