import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from credit_manager.access_control.models import User
from credit_manager.access_control.permissions import has_permission, has_role
from credit_manager.access_control.schemas import RequestContext
from credit_manager.config import Config
from credit_manager.exceptions import (
    AuthorizationError, CreditManagerException, NotFoundError, ScoringUnavailableError, ValidationError,
)
from credit_manager.risk_assessment import schemas as risk_schemas
from credit_manager.risk_assessment.schemas import ApplicantData, ApplicationAssessment
from credit_manager.risk_assessment.services import risk_assessment_service
from credit_manager.utils import generate_reference, utcnow

from . import models, schemas
from .audit import append_audit
from .models import ApplicationStatusEnum
from .state_machine import ApplicationAction, REVIEWER_ROLES, attempt_transition

logger = logging.getLogger("credit_manager.credit")
ai_logger = logging.getLogger("credit_manager.ai")

DEFAULT_BATCH_STATUSES = (ApplicationStatusEnum.SUBMITTED, ApplicationStatusEnum.UNDER_REVIEW)


def _require_permission(actor: Optional[User], action: str):
    if not has_permission(actor, "applications", action):
        raise AuthorizationError(f"Permission denied: {action} on applications")


def _new_application_id(db: Session) -> str:
    while True:
        candidate = generate_reference("CA")
        if not db.query(models.CreditApplication.id).filter(
                models.CreditApplication.application_id == candidate).first():
            return candidate


# --- Create / read ---
def create_application(
    db: Session,
    application_in: schemas.ApplicationCreate,
    actor: User,
    request_context: Optional[RequestContext] = None,
) -> models.CreditApplication:
    _require_permission(actor, "create")

    payload = application_in.model_dump(mode="json", exclude_none=True)
    missing = schemas.missing_required_fields(payload)
    if missing:
        raise ValidationError("Missing required fields", missing_fields=missing)

    now = utcnow()
    application = models.CreditApplication(
        application_id=_new_application_id(db),
        status=ApplicationStatusEnum.DRAFT,
        applicant_json=json.dumps(payload.get("applicant", {})),
        loan_json=json.dumps(payload.get("loan", {})),
        financial_json=json.dumps(payload.get("financial", {})),
        created_by_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    application.sync_search_fields()
    db.add(application)
    append_audit(
        db, application, "application_created", actor,
        {"loan_amount": payload["loan"]["amount"], "loan_purpose": payload["loan"]["purpose"]},
        request_context, timestamp=now,
    )
    db.commit()
    db.refresh(application)
    logger.info(f"Credit application created: {application.application_id} by {actor.username}")
    return application


def load_application(db: Session, reference) -> models.CreditApplication:
    """Looks up by internal id (int / numeric string) or by application id."""
    query = db.query(models.CreditApplication)
    if isinstance(reference, int) or str(reference).isdigit():
        application = query.filter(models.CreditApplication.id == int(reference)).first()
    else:
        application = query.filter(models.CreditApplication.application_id == str(reference)).first()
    if not application:
        raise NotFoundError(f"Application {reference} not found")
    return application


def get_application(db: Session, reference, actor: User) -> models.CreditApplication:
    _require_permission(actor, "read")
    application = load_application(db, reference)
    logger.debug(f"Application viewed: {application.application_id} by {actor.username}")
    return application


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_applications(
    db: Session,
    actor: User,
    status: Optional[ApplicationStatusEnum] = None,
    risk_level: Optional[str] = None,
    assigned_to_id: Optional[int] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[models.CreditApplication], int]:
    _require_permission(actor, "read")
    query = db.query(models.CreditApplication)
    if status:
        query = query.filter(models.CreditApplication.status == status)
    if risk_level:
        query = query.filter(models.CreditApplication.risk_level == risk_level)
    if assigned_to_id is not None:
        query = query.filter(models.CreditApplication.assigned_to_id == assigned_to_id)
    if created_from:
        query = query.filter(models.CreditApplication.created_at >= created_from)
    if created_to:
        query = query.filter(models.CreditApplication.created_at <= created_to)
    if search:
        pattern = f"%{_escape_like(search.strip())}%"
        query = query.filter(or_(
            models.CreditApplication.application_id.ilike(pattern, escape="\\"),
            models.CreditApplication.applicant_first_name.ilike(pattern, escape="\\"),
            models.CreditApplication.applicant_last_name.ilike(pattern, escape="\\"),
            models.CreditApplication.applicant_email.ilike(pattern, escape="\\"),
        ))

    total = query.count()
    items = query.order_by(models.CreditApplication.created_at.desc(), models.CreditApplication.id.desc()) \
        .offset(skip).limit(limit).all()
    return items, total


def get_audit_trail(db: Session, reference, actor: User) -> List[models.ApplicationAuditEntry]:
    application = get_application(db, reference, actor)
    return list(application.audit_trail)


# --- Lifecycle actions ---
def perform_action(
    db: Session,
    reference,
    action: ApplicationAction,
    actor: User,
    payload=None,
    request_context: Optional[RequestContext] = None,
) -> models.CreditApplication:
    application = load_application(db, reference)
    return attempt_transition(db, application, action, actor, payload, request_context)


# --- Risk assessment ---
def analyze_raw(actor: User, applicant_data: ApplicantData) -> ApplicationAssessment:
    _require_permission(actor, "read")
    return risk_assessment_service.compute_assessment(applicant_data)


def analyze_application(
    db: Session,
    reference,
    actor: User,
    request_context: Optional[RequestContext] = None,
) -> Tuple[models.CreditApplication, ApplicationAssessment]:
    _require_permission(actor, "read")
    application = load_application(db, reference)

    assessment = risk_assessment_service.compute_assessment(application)
    application = attempt_transition(
        db, application, ApplicationAction.RECORD_ASSESSMENT, actor,
        schemas.RecordAssessmentPayload(assessment=assessment), request_context,
    )
    ai_logger.info(
        f"AI analysis completed for {application.application_id}: "
        f"score={assessment.credit.credit_score} risk={assessment.credit.risk_level.value} "
        f"fraud={assessment.fraud.risk_level.value}"
    )
    return application, assessment


def _select_batch(db: Session, request: risk_schemas.BatchAnalysisRequest):
    """Returns (applications, errors for ids that could not be loaded)."""
    errors = []
    if request.application_ids:
        applications = []
        for reference in request.application_ids[:Config.BATCH_ANALYSIS_LIMIT]:
            try:
                applications.append(load_application(db, reference))
            except NotFoundError as e:
                errors.append(risk_schemas.BatchItemError(application_id=str(reference), error=e.message))
        return applications, errors

    filters = request.filters or risk_schemas.BatchAnalysisFilters()
    query = db.query(models.CreditApplication)
    if filters.statuses:
        try:
            statuses = [ApplicationStatusEnum(s) for s in filters.statuses]
        except ValueError as e:
            raise ValidationError(f"Unknown status filter: {e}") from e
    else:
        statuses = list(DEFAULT_BATCH_STATUSES)
    query = query.filter(models.CreditApplication.status.in_(statuses))
    if filters.risk_level:
        query = query.filter(models.CreditApplication.risk_level == filters.risk_level.value)
    if filters.assigned_to_id is not None:
        query = query.filter(models.CreditApplication.assigned_to_id == filters.assigned_to_id)
    applications = query.order_by(models.CreditApplication.id).limit(Config.BATCH_ANALYSIS_LIMIT).all()
    return applications, errors


def _score_isolated(data: ApplicantData):
    try:
        return risk_assessment_service.compute_assessment(data), None
    except CreditManagerException as e:
        return None, e.message


def batch_analyze(
    db: Session,
    actor: User,
    request: risk_schemas.BatchAnalysisRequest,
    request_context: Optional[RequestContext] = None,
    max_workers: int = Config.BATCH_ANALYSIS_WORKERS,
) -> risk_schemas.BatchAnalysisResponse:
    if not has_role(actor, *REVIEWER_ROLES):
        raise AuthorizationError("Batch analysis requires the admin or underwriter role")
    if not risk_assessment_service.is_ready:
        raise ScoringUnavailableError("AI credit scoring model not initialized")

    applications, errors = _select_batch(db, request)

    # ORM objects stay on this thread; workers only see plain applicant data
    inputs = [
        (app.application_id, ApplicantData.from_application_payloads(app.applicant, app.loan, app.financial))
        for app in applications
    ]
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        scored = list(executor.map(lambda item: _score_isolated(item[1]), inputs))

    results = []
    by_id = {app.application_id: app for app in applications}
    for (application_id, _), (assessment, error) in zip(inputs, scored):
        if error is not None:
            errors.append(risk_schemas.BatchItemError(application_id=application_id, error=error))
            continue
        try:
            attempt_transition(
                db, by_id[application_id], ApplicationAction.RECORD_ASSESSMENT, actor,
                schemas.RecordAssessmentPayload(assessment=assessment, batch=True), request_context,
            )
        except CreditManagerException as e:
            errors.append(risk_schemas.BatchItemError(application_id=application_id, error=e.message))
            continue
        results.append(risk_schemas.BatchItemResult(
            application_id=application_id,
            credit_score=assessment.credit.credit_score,
            risk_level=assessment.credit.risk_level,
            fraud_risk=assessment.fraud.risk_level,
        ))

    distribution = {level.value: 0 for level in risk_schemas.RiskLevel}
    for result in results:
        distribution[result.risk_level.value] += 1
    summary = risk_schemas.BatchSummary(
        total_processed=len(results) + len(errors),
        successful=len(results),
        failed=len(errors),
        average_credit_score=(round(sum(r.credit_score for r in results) / len(results), 1) if results else None),
        risk_distribution=distribution,
    )
    ai_logger.info(
        f"Batch analysis by {actor.username}: {summary.successful} ok, {summary.failed} failed"
    )
    return risk_schemas.BatchAnalysisResponse(results=results, errors=errors, summary=summary)
