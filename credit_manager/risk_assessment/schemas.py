# Pydantic schemas for feature extraction, scoring and fraud evaluation
from datetime import date, datetime
from typing import Any, Dict, List, Optional
import enum

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TIME_AT_ADDRESS_MONTHS = 12
DEFAULT_AGE_YEARS = 35


class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class FraudRiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FraudRecommendation(str, enum.Enum):
    MANUAL_REVIEW = "MANUAL_REVIEW"
    AUTOMATED_PROCESSING = "AUTOMATED_PROCESSING"


class FactorImpact(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class ApplicantData(BaseModel):
    """Flat applicant/loan data read by the extractor and fraud rules.

    Every field is optional; absent values fall back to extractor defaults.
    """
    model_config = ConfigDict(extra="ignore")

    credit_score: Optional[float] = None
    annual_income: Optional[float] = None
    debt_to_income_ratio: Optional[float] = None
    employment_length: Optional[float] = None # years
    loan_amount: Optional[float] = None
    loan_term: Optional[float] = None # years
    payment_history_score: Optional[float] = None
    credit_utilization: Optional[float] = None
    number_of_accounts: Optional[int] = None
    recent_inquiries: Optional[int] = None
    collateral_value: Optional[float] = None
    loan_purpose: Optional[str] = None
    time_at_address: Optional[float] = None # months
    age: Optional[int] = None

    @classmethod
    def from_application_payloads(
        cls,
        applicant: Optional[Dict[str, Any]],
        loan: Optional[Dict[str, Any]],
        financial: Optional[Dict[str, Any]],
        today: Optional[date] = None,
    ) -> "ApplicantData":
        applicant = applicant or {}
        loan = loan or {}
        financial = financial or {}
        employment = applicant.get("employment") or {}
        address = applicant.get("address") or {}
        collateral = loan.get("collateral") or {}

        time_at_address = address.get("time_at_address")
        return cls(
            credit_score=financial.get("credit_score"),
            annual_income=employment.get("annual_income"),
            debt_to_income_ratio=financial.get("debt_to_income_ratio"),
            employment_length=employment.get("employment_length"),
            loan_amount=loan.get("amount"),
            loan_term=loan.get("term"),
            payment_history_score=financial.get("payment_history_score"),
            credit_utilization=financial.get("credit_utilization"),
            number_of_accounts=financial.get("number_of_accounts"),
            recent_inquiries=financial.get("recent_inquiries"),
            collateral_value=collateral.get("value"),
            loan_purpose=loan.get("purpose"),
            time_at_address=DEFAULT_TIME_AT_ADDRESS_MONTHS if time_at_address is None else time_at_address,
            age=age_from_date_of_birth(applicant.get("date_of_birth"), today),
        )


def age_from_date_of_birth(value, today: Optional[date] = None) -> int:
    if not value:
        return DEFAULT_AGE_YEARS
    if isinstance(value, datetime):
        dob = value.date()
    elif isinstance(value, date):
        dob = value
    else:
        try:
            dob = date_parser.isoparse(str(value)).date()
        except ValueError:
            return DEFAULT_AGE_YEARS
    today = today or date.today()
    if dob > today:
        # A birth date in the future is bad data, not a minor
        return DEFAULT_AGE_YEARS
    return relativedelta(today, dob).years


class RiskFactor(BaseModel):
    factor: str
    impact: FactorImpact
    value: float
    description: str


class Recommendation(BaseModel):
    type: str # IMPROVEMENT, RISK_MITIGATION, APPROVAL
    priority: str # HIGH, MEDIUM, LOW
    description: str
    action: str


class CreditScoreResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    credit_score: int = Field(..., ge=300, le=850)
    risk_level: RiskLevel
    probability: float = Field(..., ge=0, le=1)
    factors: List[RiskFactor] = []
    recommendations: List[Recommendation] = []
    model_version: str
    timestamp: datetime


class FraudAssessment(BaseModel):
    fraud_score: int
    risk_level: FraudRiskLevel
    risk_factors: List[str] = []
    recommendation: FraudRecommendation


class ApplicationAssessment(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    credit: CreditScoreResult
    fraud: FraudAssessment
    features: List[float]
    model_version: str
    assessed_at: datetime


class NextStep(BaseModel):
    action: str
    priority: str
    description: str


# --- Request / response schemas for the AI endpoints ---
class AnalysisRequest(BaseModel):
    application_id: Optional[str] = None
    applicant_data: Optional[ApplicantData] = None


class AnalysisResponse(BaseModel):
    application_id: Optional[str] = None
    assessment: ApplicationAssessment
    next_steps: List[NextStep] = []


class BatchAnalysisFilters(BaseModel):
    statuses: Optional[List[str]] = None
    risk_level: Optional[RiskLevel] = None
    assigned_to_id: Optional[int] = None


class BatchAnalysisRequest(BaseModel):
    application_ids: Optional[List[str]] = None
    filters: Optional[BatchAnalysisFilters] = None


class BatchItemResult(BaseModel):
    application_id: str
    credit_score: int
    risk_level: RiskLevel
    fraud_risk: FraudRiskLevel


class BatchItemError(BaseModel):
    application_id: str
    error: str


class BatchSummary(BaseModel):
    total_processed: int
    successful: int
    failed: int
    average_credit_score: Optional[float] = None
    risk_distribution: Dict[str, int] = {}


class BatchAnalysisResponse(BaseModel):
    results: List[BatchItemResult] = []
    errors: List[BatchItemError] = []
    summary: BatchSummary


class EngineStatus(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_loaded: bool
    model_version: Optional[str] = None
    strategy: Optional[str] = None
    features: List[str] = []
    health: str
