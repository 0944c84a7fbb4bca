# API Endpoints for Credit Applications using FastAPI
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from credit_manager.access_control.dependencies import get_current_actor, get_request_context
from credit_manager.access_control.models import User
from credit_manager.access_control.schemas import RequestContext
from credit_manager.api_errors import to_http_exception
from credit_manager.database import get_db
from credit_manager.exceptions import CreditManagerException

from . import schemas, services
from .models import ApplicationStatusEnum
from .state_machine import ApplicationAction

router = APIRouter(
    prefix="/applications",
    tags=["Credit Applications"],
    responses={404: {"description": "Not found"}},
)


def _act(db, reference, action, actor, payload, context):
    try:
        return services.perform_action(db, reference, action, actor, payload, context)
    except CreditManagerException as e:
        raise to_http_exception(e)


@router.post("/", response_model=schemas.ApplicationResponse, status_code=status.HTTP_201_CREATED)
def create_application(
    application_in: schemas.ApplicationCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    """
    Create a new credit application in draft status.
    Required: applicant name, date of birth, SSN, email, annual income,
    and loan amount, purpose and term.
    """
    try:
        return services.create_application(db, application_in, actor, context)
    except CreditManagerException as e:
        raise to_http_exception(e)


@router.get("/", response_model=schemas.PaginatedApplicationResponse)
def list_applications(
    status_filter: Optional[ApplicationStatusEnum] = Query(None, alias="status"),
    risk_level: Optional[str] = Query(None),
    assigned_to: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    try:
        items, total = services.list_applications(
            db, actor, status=status_filter, risk_level=risk_level, assigned_to_id=assigned_to,
            created_from=date_from, created_to=date_to, search=search,
            skip=(page - 1) * limit, limit=limit,
        )
    except CreditManagerException as e:
        raise to_http_exception(e)
    return schemas.PaginatedApplicationResponse(
        items=[schemas.ApplicationResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        size=len(items),
    )


@router.get("/{reference}", response_model=schemas.ApplicationResponse)
def read_application(reference: str, db: Session = Depends(get_db), actor: User = Depends(get_current_actor)):
    try:
        return services.get_application(db, reference, actor)
    except CreditManagerException as e:
        raise to_http_exception(e)


@router.get("/{reference}/audit-trail", response_model=List[schemas.AuditEntryResponse])
def read_audit_trail(reference: str, db: Session = Depends(get_db), actor: User = Depends(get_current_actor)):
    try:
        return services.get_audit_trail(db, reference, actor)
    except CreditManagerException as e:
        raise to_http_exception(e)


@router.put("/{reference}", response_model=schemas.ApplicationResponse)
def update_application(
    reference: str,
    update_in: schemas.ApplicationUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    """
    Update applicant, loan or financial details. Finalized applications are read-only.
    """
    return _act(db, reference, ApplicationAction.UPDATE, actor, update_in, context)


@router.post("/{reference}/submit", response_model=schemas.ApplicationResponse)
def submit_application(
    reference: str,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    return _act(db, reference, ApplicationAction.SUBMIT, actor, None, context)


@router.post("/{reference}/assign", response_model=schemas.ApplicationResponse)
def assign_application(
    reference: str,
    assign_in: schemas.AssignRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    """
    Assign to an underwriter; moves the application to under_review (admin/underwriter only).
    """
    return _act(db, reference, ApplicationAction.ASSIGN, actor, assign_in, context)


@router.post("/{reference}/request-documents", response_model=schemas.ApplicationResponse)
def request_documents(
    reference: str,
    request_in: schemas.DocumentsRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    return _act(db, reference, ApplicationAction.REQUEST_DOCUMENTS, actor, request_in, context)


@router.post("/{reference}/approve", response_model=schemas.ApplicationResponse)
def approve_application(
    reference: str,
    decision_in: schemas.DecisionRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    return _act(db, reference, ApplicationAction.APPROVE, actor, decision_in, context)


@router.post("/{reference}/deny", response_model=schemas.ApplicationResponse)
def deny_application(
    reference: str,
    decision_in: schemas.DecisionRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    return _act(db, reference, ApplicationAction.DENY, actor, decision_in, context)


@router.post("/{reference}/withdraw", response_model=schemas.ApplicationResponse)
def withdraw_application(
    reference: str,
    withdraw_in: schemas.WithdrawRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    return _act(db, reference, ApplicationAction.WITHDRAW, actor, withdraw_in, context)


@router.post("/{reference}/notes", response_model=schemas.ApplicationResponse, status_code=status.HTTP_201_CREATED)
def add_review_note(
    reference: str,
    note_in: schemas.NoteCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    return _act(db, reference, ApplicationAction.ADD_NOTE, actor, note_in, context)


@router.post("/{reference}/documents", response_model=schemas.ApplicationResponse, status_code=status.HTTP_201_CREATED)
def upload_documents(
    reference: str,
    upload_in: schemas.DocumentUpload,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    """
    Attach document metadata. File storage itself is handled outside this service.
    """
    return _act(db, reference, ApplicationAction.UPLOAD_DOCUMENTS, actor, upload_in, context)
