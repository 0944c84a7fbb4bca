"""Append-only audit trail for credit applications.

`append_audit` stages one entry in the caller's session; the caller commits
it together with the mutation it describes.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from credit_manager.access_control.schemas import RequestContext
from credit_manager.utils import utcnow

from . import models

logger = logging.getLogger("credit_manager.credit")


def _next_sequence(db: Session, application: models.CreditApplication) -> int:
    # Entries staged in this session but not yet flushed count too
    staged = [e for e in application.audit_trail if e.id is None]
    if application.id is None:
        return len(staged) + 1
    persisted = db.query(func.max(models.ApplicationAuditEntry.sequence)).filter(
        models.ApplicationAuditEntry.application_id == application.id
    ).scalar() or 0
    return persisted + len(staged) + 1


def append_audit(
    db: Session,
    application: models.CreditApplication,
    action: str,
    actor=None,
    details: Optional[Dict[str, Any]] = None,
    request_context: Optional[RequestContext] = None,
    timestamp: Optional[datetime] = None,
) -> models.ApplicationAuditEntry:
    entry = models.ApplicationAuditEntry(
        sequence=_next_sequence(db, application),
        action=action,
        performed_by_id=actor.id if actor is not None else None,
        performed_by_username=actor.username if actor is not None else "SYSTEM",
        timestamp=timestamp or utcnow(),
        details_json=json.dumps(details or {}, default=str),
        request_context_json=request_context.model_dump_json() if request_context else None,
    )
    application.audit_trail.append(entry)
    db.add(entry)
    logger.info(
        f"Audit: {action} on {application.application_id} by "
        f"{entry.performed_by_username} (seq {entry.sequence})"
    )
    return entry


def get_audit_trail(db: Session, application: models.CreditApplication):
    return db.query(models.ApplicationAuditEntry).filter(
        models.ApplicationAuditEntry.application_id == application.id
    ).order_by(models.ApplicationAuditEntry.sequence).all()
