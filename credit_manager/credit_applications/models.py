# Database models for credit applications, their documents, review notes and audit trail
import json

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLAlchemyEnum, Text, event
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from credit_manager.database import Base
from credit_manager.exceptions import AuditTrailImmutableError
from credit_manager.access_control import models as access_models # noqa: F401 (registers User for relationships)

import enum


class ApplicationStatusEnum(enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    PENDING_DOCUMENTS = "pending_documents"
    APPROVED = "approved"
    DENIED = "denied"
    WITHDRAWN = "withdrawn"


TERMINAL_STATUSES = frozenset({
    ApplicationStatusEnum.APPROVED,
    ApplicationStatusEnum.DENIED,
    ApplicationStatusEnum.WITHDRAWN,
})


class NoteCategoryEnum(enum.Enum):
    GENERAL = "general"
    CREDIT = "credit"
    INCOME = "income"
    DOCUMENTATION = "documentation"
    FRAUD = "fraud"
    DECISION = "decision"


class CreditApplication(Base):
    __tablename__ = "credit_applications"

    id = Column(Integer, primary_key=True, index=True) # Internal DB ID
    application_id = Column(String(20), unique=True, nullable=False, index=True) # Business key, e.g. "CA-7Q2K9XWD"
    status = Column(SQLAlchemyEnum(ApplicationStatusEnum), nullable=False, default=ApplicationStatusEnum.DRAFT, index=True)

    applicant_json = Column(Text, nullable=False, default="{}") # name, dob, ssn, email, employment, address
    loan_json = Column(Text, nullable=False, default="{}") # amount, purpose, term, collateral
    financial_json = Column(Text, nullable=False, default="{}") # credit score, dti, utilization...

    # Copied out of applicant_json for free-text search; kept in step by sync_search_fields()
    applicant_first_name = Column(String(100), nullable=True, index=True)
    applicant_last_name = Column(String(100), nullable=True, index=True)
    applicant_email = Column(String(255), nullable=True, index=True)

    # Latest assessment; older ones survive in the audit trail
    assessment_json = Column(Text, nullable=True)
    assessment_version = Column(Integer, nullable=False, default=0)
    assessed_at = Column(DateTime(timezone=True), nullable=True)
    risk_level = Column(String(20), nullable=True, index=True) # denormalized for filtering

    # Review
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    decision_outcome = Column(String(20), nullable=True) # approved, denied
    decision_reason = Column(Text, nullable=True)
    decision_conditions_json = Column(Text, nullable=True) # JSON list of strings
    decided_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    required_documents_json = Column(Text, nullable=True) # set by request_documents

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False) # optimistic concurrency counter

    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    decided_by = relationship("User", foreign_keys=[decided_by_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    documents = relationship("ApplicationDocument", back_populates="application",
                             order_by="ApplicationDocument.id")
    notes = relationship("ReviewNote", back_populates="application", order_by="ReviewNote.id")
    audit_trail = relationship("ApplicationAuditEntry", back_populates="application",
                               order_by="ApplicationAuditEntry.sequence")

    __mapper_args__ = {"version_id_col": version}

    @property
    def applicant(self) -> dict:
        return json.loads(self.applicant_json or "{}")

    def sync_search_fields(self):
        applicant = self.applicant
        self.applicant_first_name = applicant.get("first_name")
        self.applicant_last_name = applicant.get("last_name")
        self.applicant_email = applicant.get("email")

    @property
    def loan(self) -> dict:
        return json.loads(self.loan_json or "{}")

    @property
    def financial(self) -> dict:
        return json.loads(self.financial_json or "{}")

    @property
    def assessment(self):
        return json.loads(self.assessment_json) if self.assessment_json else None

    @property
    def decision_conditions(self) -> list:
        return json.loads(self.decision_conditions_json) if self.decision_conditions_json else []

    @property
    def required_documents(self) -> list:
        return json.loads(self.required_documents_json) if self.required_documents_json else []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ApplicationDocument(Base):
    __tablename__ = "application_documents"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("credit_applications.id"), nullable=False, index=True)
    document_type = Column(String(50), nullable=False) # e.g. pay_stub, bank_statement, id_document
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=True)
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False) # bytes
    uploaded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    application = relationship("CreditApplication", back_populates="documents")


class ReviewNote(Base):
    __tablename__ = "review_notes"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("credit_applications.id"), nullable=False, index=True)
    note = Column(Text, nullable=False)
    category = Column(SQLAlchemyEnum(NoteCategoryEnum), nullable=False, default=NoteCategoryEnum.GENERAL)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    application = relationship("CreditApplication", back_populates="notes")
    author = relationship("User")


class ApplicationAuditEntry(Base):
    __tablename__ = "application_audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("credit_applications.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False) # 1-based position within the application's trail
    action = Column(String(50), nullable=False, index=True) # e.g. application_submitted
    performed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    performed_by_username = Column(String(50), nullable=True) # denormalized, survives user changes
    timestamp = Column(DateTime(timezone=True), nullable=False)
    details_json = Column(Text, nullable=True)
    request_context_json = Column(Text, nullable=True) # {"ip_address", "user_agent", "path"}

    application = relationship("CreditApplication", back_populates="audit_trail")

    @property
    def details(self) -> dict:
        return json.loads(self.details_json) if self.details_json else {}

    @property
    def request_context(self) -> dict:
        return json.loads(self.request_context_json) if self.request_context_json else {}


@event.listens_for(ApplicationAuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditTrailImmutableError(f"Audit entry {target.id} is immutable")


@event.listens_for(ApplicationAuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditTrailImmutableError(f"Audit entry {target.id} cannot be deleted")
