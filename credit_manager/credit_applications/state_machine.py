"""Credit application lifecycle.

Every action an actor can take on an application goes through
`attempt_transition`, which checks in a fixed order:

1. authorization (role gate and/or permission grant),
2. legality of the action from the current status,
3. payload validation,

and only then applies the mutation and appends exactly one audit entry,
committing both together. A rejected attempt changes nothing.
"""
import copy
import enum
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from credit_manager.access_control.models import RoleEnum, User
from credit_manager.access_control.permissions import has_permission, has_role
from credit_manager.access_control.schemas import RequestContext
from credit_manager.concurrency import application_locks
from credit_manager.config import Config
from credit_manager.exceptions import (
    AuthorizationError, ConcurrentUpdateError, IllegalTransitionError, NotFoundError, ValidationError,
)
from credit_manager.utils import utcnow

from . import models, schemas
from .audit import append_audit
from .models import ApplicationStatusEnum as Status, TERMINAL_STATUSES

logger = logging.getLogger("credit_manager.credit")
security_logger = logging.getLogger("credit_manager.security")


class ApplicationAction(str, enum.Enum):
    SUBMIT = "submit"
    ASSIGN = "assign"
    REQUEST_DOCUMENTS = "request_documents"
    UPDATE = "update"
    APPROVE = "approve"
    DENY = "deny"
    WITHDRAW = "withdraw"
    ADD_NOTE = "add_note"
    UPLOAD_DOCUMENTS = "upload_documents"
    RECORD_ASSESSMENT = "record_assessment"


ALL_STATUSES = frozenset(Status)
NON_TERMINAL = ALL_STATUSES - TERMINAL_STATUSES
REVIEWER_ROLES = frozenset({RoleEnum.ADMIN, RoleEnum.UNDERWRITER})


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[Status]
    target: Optional[Status] # None: status unchanged
    payload_schema: Type[BaseModel]
    audit_action: Union[str, Callable[[BaseModel], str]]
    permission: Optional[Tuple[str, str]] = None # (resource, action)
    roles: FrozenSet[RoleEnum] = frozenset()


TRANSITIONS: Dict[ApplicationAction, TransitionRule] = {
    ApplicationAction.SUBMIT: TransitionRule(
        sources=frozenset({Status.DRAFT}), target=Status.SUBMITTED,
        payload_schema=schemas.EmptyPayload, audit_action="application_submitted",
        permission=("applications", "update"),
    ),
    ApplicationAction.ASSIGN: TransitionRule(
        sources=frozenset({Status.SUBMITTED, Status.UNDER_REVIEW, Status.PENDING_DOCUMENTS}),
        target=Status.UNDER_REVIEW,
        payload_schema=schemas.AssignRequest, audit_action="application_assigned",
        roles=REVIEWER_ROLES,
    ),
    ApplicationAction.REQUEST_DOCUMENTS: TransitionRule(
        sources=frozenset({Status.SUBMITTED, Status.UNDER_REVIEW}), target=Status.PENDING_DOCUMENTS,
        payload_schema=schemas.DocumentsRequest, audit_action="documents_requested",
        roles=REVIEWER_ROLES,
    ),
    ApplicationAction.UPDATE: TransitionRule(
        sources=NON_TERMINAL, target=None,
        payload_schema=schemas.ApplicationUpdate, audit_action="application_updated",
        permission=("applications", "update"),
    ),
    ApplicationAction.APPROVE: TransitionRule(
        sources=NON_TERMINAL, target=Status.APPROVED,
        payload_schema=schemas.DecisionRequest, audit_action="application_approved",
        permission=("applications", "approve"),
    ),
    ApplicationAction.DENY: TransitionRule(
        sources=NON_TERMINAL, target=Status.DENIED,
        payload_schema=schemas.DecisionRequest, audit_action="application_denied",
        permission=("applications", "approve"),
    ),
    ApplicationAction.WITHDRAW: TransitionRule(
        sources=NON_TERMINAL, target=Status.WITHDRAWN,
        payload_schema=schemas.WithdrawRequest, audit_action="application_withdrawn",
        permission=("applications", "update"),
    ),
    ApplicationAction.ADD_NOTE: TransitionRule(
        sources=ALL_STATUSES, target=None,
        payload_schema=schemas.NoteCreate, audit_action="review_note_added",
        permission=("applications", "update"),
    ),
    ApplicationAction.UPLOAD_DOCUMENTS: TransitionRule(
        sources=NON_TERMINAL, target=None,
        payload_schema=schemas.DocumentUpload, audit_action="documents_uploaded",
        permission=("applications", "update"),
    ),
    ApplicationAction.RECORD_ASSESSMENT: TransitionRule(
        sources=NON_TERMINAL, target=None,
        payload_schema=schemas.RecordAssessmentPayload,
        audit_action=lambda p: "ai_batch_analysis" if p.batch else "ai_analysis_completed",
        permission=("applications", "read"),
    ),
}


def allowed_actions(status: Status):
    return [action for action, rule in TRANSITIONS.items() if status in rule.sources]


# --- Checks ---
def _authorize(rule: TransitionRule, action: ApplicationAction, actor: Optional[User]):
    if actor is None:
        raise AuthorizationError("Authentication required")
    if rule.roles and not has_role(actor, *rule.roles):
        security_logger.warning(f"Role check failed: {actor.username} ({actor.role.value}) attempted {action.value}")
        raise AuthorizationError(f"Role '{actor.role.value}' is not authorized to {action.value} applications")
    if rule.permission and not has_permission(actor, *rule.permission):
        resource, perm = rule.permission
        security_logger.warning(f"Permission check failed: {actor.username} lacks {resource}:{perm} for {action.value}")
        raise AuthorizationError(f"Permission denied: {perm} on {resource}")


def _check_legal(rule: TransitionRule, action: ApplicationAction, application: models.CreditApplication):
    if application.status not in rule.sources:
        if application.status in (Status.APPROVED, Status.DENIED) and action == ApplicationAction.UPDATE:
            raise IllegalTransitionError("Cannot update finalized applications")
        raise IllegalTransitionError(
            f"Cannot {action.value} an application in status '{application.status.value}'"
        )


def _parse_payload(rule: TransitionRule, payload) -> BaseModel:
    if isinstance(payload, rule.payload_schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return rule.payload_schema.model_validate(payload or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid payload: {e.errors()[0].get('msg', 'validation error')}") from e


# --- Mutation handlers: validate first, then mutate; return audit details ---
def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _handle_submit(db, application, command, actor, now):
    missing = schemas.missing_required_fields({"applicant": application.applicant, "loan": application.loan})
    if missing:
        raise ValidationError("Application is missing required fields", missing_fields=missing)
    application.submitted_at = now
    return {"previous_status": application.status.value}


def _handle_assign(db, application, command: schemas.AssignRequest, actor, now):
    assignee = db.query(User).filter(User.id == command.assignee_id).first()
    if not assignee:
        raise NotFoundError(f"Assignee {command.assignee_id} not found")
    if not assignee.is_active or not has_role(assignee, *REVIEWER_ROLES):
        raise ValidationError("Assignee must be an active admin or underwriter")
    previous = application.assigned_to_id
    application.assigned_to_id = assignee.id
    application.assigned_at = now
    return {"assigned_to": assignee.id, "assigned_to_username": assignee.username, "previous_assignee": previous}


def _handle_request_documents(db, application, command: schemas.DocumentsRequest, actor, now):
    application.required_documents_json = json.dumps(command.required_documents)
    return {"required_documents": command.required_documents, "message": command.message}


def _handle_update(db, application, command: schemas.ApplicationUpdate, actor, now):
    update_data = command.model_dump(mode="json", exclude_unset=True)
    update_data = {k: v for k, v in update_data.items() if v is not None}
    if not update_data:
        raise ValidationError("No valid fields provided for update")
    merged = {
        section: _deep_merge(getattr(application, section), patch)
        for section, patch in update_data.items()
    }
    if application.status != Status.DRAFT:
        # Fields that submit guaranteed must survive later edits
        sections = {"applicant": application.applicant, "loan": application.loan, **merged}
        missing = schemas.missing_required_fields(sections)
        if missing:
            raise ValidationError("Update would remove required fields", missing_fields=missing)
    for section, value in merged.items():
        setattr(application, f"{section}_json", json.dumps(value))
    application.sync_search_fields()
    return {"updated_fields": sorted(update_data), "new_status": application.status.value}


def _handle_decision(db, application, command: schemas.DecisionRequest, actor, now, outcome: Status):
    application.decision_outcome = outcome.value
    application.decision_reason = command.reason
    application.decision_conditions_json = json.dumps(command.conditions)
    application.decided_by_id = actor.id
    application.decided_at = now
    return {"decision": outcome.value, "reason": command.reason, "conditions": command.conditions}


def _handle_approve(db, application, command, actor, now):
    return _handle_decision(db, application, command, actor, now, Status.APPROVED)


def _handle_deny(db, application, command, actor, now):
    return _handle_decision(db, application, command, actor, now, Status.DENIED)


def _handle_withdraw(db, application, command: schemas.WithdrawRequest, actor, now):
    return {"reason": command.reason, "previous_status": application.status.value}


def _handle_add_note(db, application, command: schemas.NoteCreate, actor, now):
    note = models.ReviewNote(note=command.note, category=command.category, author_id=actor.id, created_at=now)
    application.notes.append(note)
    return {"note_category": command.category.value, "note_length": len(command.note)}


def _handle_upload_documents(db, application, command: schemas.DocumentUpload, actor, now):
    if len(command.documents) > Config.MAX_DOCUMENTS_PER_UPLOAD:
        raise ValidationError(f"At most {Config.MAX_DOCUMENTS_PER_UPLOAD} documents per upload")
    for doc in command.documents:
        if doc.mime_type not in Config.ALLOWED_DOCUMENT_MIME_TYPES:
            raise ValidationError(f"Document type '{doc.mime_type}' is not allowed")
        if doc.size > Config.MAX_DOCUMENT_SIZE_BYTES:
            raise ValidationError(f"Document '{doc.filename}' exceeds the maximum size")

    for doc in command.documents:
        application.documents.append(models.ApplicationDocument(
            document_type=doc.document_type,
            filename=doc.filename,
            original_name=doc.original_name,
            mime_type=doc.mime_type,
            size=doc.size,
            uploaded_by_id=actor.id,
            uploaded_at=now,
        ))
    return {
        "document_count": len(command.documents),
        "document_types": [d.document_type for d in command.documents],
    }


def _handle_record_assessment(db, application, command: schemas.RecordAssessmentPayload, actor, now):
    assessment = command.assessment
    application.assessment_json = assessment.model_dump_json()
    application.assessment_version = (application.assessment_version or 0) + 1
    application.assessed_at = assessment.assessed_at
    application.risk_level = assessment.credit.risk_level.value
    return {
        "credit_score": assessment.credit.credit_score,
        "risk_level": assessment.credit.risk_level.value,
        "fraud_risk": assessment.fraud.risk_level.value,
        "model_version": assessment.model_version,
        "assessment_version": application.assessment_version,
    }


HANDLERS = {
    ApplicationAction.SUBMIT: _handle_submit,
    ApplicationAction.ASSIGN: _handle_assign,
    ApplicationAction.REQUEST_DOCUMENTS: _handle_request_documents,
    ApplicationAction.UPDATE: _handle_update,
    ApplicationAction.APPROVE: _handle_approve,
    ApplicationAction.DENY: _handle_deny,
    ApplicationAction.WITHDRAW: _handle_withdraw,
    ApplicationAction.ADD_NOTE: _handle_add_note,
    ApplicationAction.UPLOAD_DOCUMENTS: _handle_upload_documents,
    ApplicationAction.RECORD_ASSESSMENT: _handle_record_assessment,
}


def attempt_transition(
    db: Session,
    application: models.CreditApplication,
    action: Union[ApplicationAction, str],
    actor: Optional[User],
    payload: Any = None,
    request_context: Optional[RequestContext] = None,
    now: Optional[datetime] = None,
) -> models.CreditApplication:
    try:
        action = ApplicationAction(action)
    except ValueError:
        raise IllegalTransitionError(f"Unknown action '{action}'")
    rule = TRANSITIONS[action]

    with application_locks.hold(application.application_id):
        db.refresh(application) # status may have moved while waiting for the lock

        _authorize(rule, action, actor)
        _check_legal(rule, action, application)
        command = _parse_payload(rule, payload)

        now = now or utcnow()
        previous_status = application.status
        try:
            details = HANDLERS[action](db, application, command, actor, now)

            if rule.target is not None:
                application.status = rule.target
                if rule.target in TERMINAL_STATUSES and application.completed_at is None:
                    application.completed_at = now
            application.updated_at = now

            audit_action = rule.audit_action(command) if callable(rule.audit_action) else rule.audit_action
            append_audit(db, application, audit_action, actor, details, request_context, timestamp=now)
            db.commit()
        except StaleDataError as e:
            db.rollback()
            logger.warning(f"Concurrent update on {application.application_id} during {action.value}")
            raise ConcurrentUpdateError() from e
        except Exception:
            db.rollback()
            raise

    db.refresh(application)
    logger.info(
        f"Application {application.application_id}: {action.value} by {actor.username} "
        f"({previous_status.value} -> {application.status.value})"
    )
    return application
