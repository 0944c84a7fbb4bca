# API Endpoints for AI credit scoring & fraud checks
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from credit_manager.access_control.dependencies import get_current_actor, get_optional_actor, get_request_context
from credit_manager.access_control.models import User
from credit_manager.access_control.permissions import has_permission
from credit_manager.access_control.schemas import RequestContext
from credit_manager.api_errors import to_http_exception
from credit_manager.credit_applications import services as application_services
from credit_manager.database import get_db
from credit_manager.exceptions import CreditManagerException

from . import schemas
from .fraud import evaluate_fraud
from .services import risk_assessment_service

router = APIRouter(tags=["AI Credit Scoring"])


@router.get("/status", response_model=schemas.EngineStatus)
async def scoring_status(actor: Optional[User] = Depends(get_optional_actor)):
    engine_status = risk_assessment_service.status()
    if actor is None:
        # Anonymous callers only learn whether the engine is up
        engine_status = schemas.EngineStatus(model_loaded=engine_status.model_loaded, health=engine_status.health)
    return engine_status


@router.post("/analyze", response_model=schemas.AnalysisResponse)
def analyze(
    request: schemas.AnalysisRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    """
    Score a stored application (and record the assessment on it) or score raw applicant data.
    """
    if not request.application_id and request.applicant_data is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Either application_id or applicant_data is required")
    try:
        if request.application_id:
            application, assessment = application_services.analyze_application(
                db, request.application_id, actor, context)
            application_id = application.application_id
        else:
            assessment = application_services.analyze_raw(actor, request.applicant_data)
            application_id = None
    except CreditManagerException as e:
        raise to_http_exception(e)

    return schemas.AnalysisResponse(
        application_id=application_id,
        assessment=assessment,
        next_steps=risk_assessment_service.next_steps(assessment),
    )


@router.post("/batch-analyze", response_model=schemas.BatchAnalysisResponse)
def batch_analyze(
    request: schemas.BatchAnalysisRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    try:
        return application_services.batch_analyze(db, actor, request, context)
    except CreditManagerException as e:
        raise to_http_exception(e)


@router.post("/fraud-check", response_model=schemas.FraudAssessment)
def fraud_check(applicant_data: schemas.ApplicantData, actor: User = Depends(get_current_actor)):
    if not has_permission(actor, "applications", "read"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied: read on applications")
    return evaluate_fraud(applicant_data)
