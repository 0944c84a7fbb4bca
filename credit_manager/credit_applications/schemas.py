# Pydantic schemas for Credit Applications
from datetime import date, datetime
from typing import Any, Dict, List, Optional
import enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from credit_manager.risk_assessment.schemas import ApplicationAssessment
from .models import ApplicationStatusEnum, NoteCategoryEnum


class LoanPurposeSchema(str, enum.Enum):
    HOME_PURCHASE = "home_purchase"
    HOME_IMPROVEMENT = "home_improvement"
    EDUCATION = "education"
    AUTO_LOAN = "auto_loan"
    MEDICAL = "medical"
    DEBT_CONSOLIDATION = "debt_consolidation"
    BUSINESS = "business"
    VACATION = "vacation"
    OTHER = "other"


# --- Payload sections ---
# Fields are optional at the schema level; required ones are checked by the
# service so a missing field is reported alongside every other missing field.
class EmploymentInfo(BaseModel):
    employer: Optional[str] = None
    position: Optional[str] = None
    employment_type: Optional[str] = None # full_time, part_time, self_employed...
    employment_length: Optional[float] = Field(None, ge=0) # years
    annual_income: Optional[float] = Field(None, ge=0)


class AddressInfo(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    time_at_address: Optional[float] = Field(None, ge=0) # months


class ApplicantInfo(BaseModel):
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    date_of_birth: Optional[date] = None
    ssn: Optional[str] = Field(None, pattern=r"^\d{3}-?\d{2}-?\d{4}$")
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    employment: Optional[EmploymentInfo] = None
    address: Optional[AddressInfo] = None


class CollateralInfo(BaseModel):
    type: Optional[str] = None
    value: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None


class LoanDetails(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    purpose: Optional[LoanPurposeSchema] = None
    term: Optional[float] = Field(None, gt=0, le=40) # years
    collateral: Optional[CollateralInfo] = None


class FinancialProfile(BaseModel):
    credit_score: Optional[int] = Field(None, ge=300, le=850)
    debt_to_income_ratio: Optional[float] = Field(None, ge=0)
    payment_history_score: Optional[float] = Field(None, ge=0, le=100)
    credit_utilization: Optional[float] = Field(None, ge=0)
    number_of_accounts: Optional[int] = Field(None, ge=0)
    recent_inquiries: Optional[int] = Field(None, ge=0)


class ApplicationCreate(BaseModel):
    applicant: ApplicantInfo = Field(default_factory=ApplicantInfo)
    loan: LoanDetails = Field(default_factory=LoanDetails)
    financial: FinancialProfile = Field(default_factory=FinancialProfile)


class ApplicationUpdate(BaseModel):
    """Allow-listed sections an update may touch. Anything else is rejected."""
    model_config = ConfigDict(extra="forbid")

    applicant: Optional[ApplicantInfo] = None
    loan: Optional[LoanDetails] = None
    financial: Optional[FinancialProfile] = None


# --- Transition payloads ---
class EmptyPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AssignRequest(BaseModel):
    assignee_id: int


class DocumentsRequest(BaseModel):
    required_documents: List[str] = Field(..., min_length=1)
    message: Optional[str] = None


class DecisionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
    conditions: List[str] = []


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class NoteCreate(BaseModel):
    note: str = Field(..., min_length=1, max_length=5000)
    category: NoteCategoryEnum = NoteCategoryEnum.GENERAL

    @field_validator("note")
    @classmethod
    def note_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Note must not be blank")
        return v.strip()


class DocumentMetadata(BaseModel):
    document_type: str = Field(..., min_length=1, max_length=50)
    filename: str = Field(..., min_length=1, max_length=255)
    original_name: Optional[str] = Field(None, max_length=255)
    mime_type: str
    size: int = Field(..., gt=0) # bytes


class DocumentUpload(BaseModel):
    documents: List[DocumentMetadata] = Field(..., min_length=1)


class RecordAssessmentPayload(BaseModel):
    assessment: ApplicationAssessment
    batch: bool = False


# --- Responses ---
class AuditEntryResponse(BaseModel):
    sequence: int
    action: str
    performed_by_id: Optional[int] = None
    performed_by_username: Optional[str] = None
    timestamp: datetime
    details: Dict[str, Any] = {}
    request_context: Dict[str, Any] = {}

    model_config = ConfigDict(from_attributes=True)


class DocumentResponse(DocumentMetadata):
    id: int
    uploaded_by_id: Optional[int] = None
    uploaded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewNoteResponse(BaseModel):
    id: int
    note: str
    category: NoteCategoryEnum
    author_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ApplicationResponse(BaseModel):
    id: int
    application_id: str
    status: ApplicationStatusEnum
    applicant: Dict[str, Any]
    loan: Dict[str, Any]
    financial: Dict[str, Any]

    assessment: Optional[Dict[str, Any]] = None
    assessment_version: int = 0
    assessed_at: Optional[datetime] = None
    risk_level: Optional[str] = None

    assigned_to_id: Optional[int] = None
    assigned_at: Optional[datetime] = None
    decision_outcome: Optional[str] = None
    decision_reason: Optional[str] = None
    decision_conditions: List[str] = []
    decided_by_id: Optional[int] = None
    decided_at: Optional[datetime] = None
    required_documents: List[str] = []

    documents: List[DocumentResponse] = []
    notes: List[ReviewNoteResponse] = []

    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("applicant")
    @classmethod
    def mask_ssn(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        ssn = v.get("ssn")
        if ssn:
            v = dict(v)
            v["ssn"] = f"***-**-{str(ssn)[-4:]}"
        return v


class PaginatedApplicationResponse(BaseModel):
    items: List[ApplicationResponse]
    total: int
    page: int
    size: int


REQUIRED_FIELDS = (
    ("applicant", "first_name"),
    ("applicant", "last_name"),
    ("applicant", "date_of_birth"),
    ("applicant", "ssn"),
    ("applicant", "email"),
    ("applicant", "employment", "annual_income"),
    ("loan", "amount"),
    ("loan", "purpose"),
    ("loan", "term"),
)


def missing_required_fields(sections: Dict[str, Any]) -> List[str]:
    """Dotted paths of required fields that are absent or empty in `sections`."""
    missing = []
    for path in REQUIRED_FIELDS:
        value: Any = sections
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        if value is None or value == "":
            missing.append(".".join(path))
    return missing
