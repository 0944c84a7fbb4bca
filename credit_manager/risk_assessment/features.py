"""Feature extraction: applicant data -> 12 normalized scalars.

Order matters; the scoring weights are aligned with FEATURE_NAMES.
"""
from typing import List, Union

from .schemas import ApplicantData

FEATURE_NAMES = [
    "credit_score",
    "annual_income",
    "debt_to_income_ratio",
    "employment_length",
    "loan_amount",
    "loan_term",
    "payment_history_score",
    "credit_utilization",
    "number_of_accounts",
    "recent_inquiries",
    "collateral_value",
    "loan_purpose",
]

# (field, default raw value, divisor). Ratios are already fractional.
FEATURE_SPECS = [
    ("credit_score", 600, 800),
    ("annual_income", 50_000, 200_000),
    ("debt_to_income_ratio", 0.3, 1),
    ("employment_length", 2, 20),
    ("loan_amount", 50_000, 500_000),
    ("loan_term", 15, 30),
    ("payment_history_score", 80, 100),
    ("credit_utilization", 0.3, 1),
    ("number_of_accounts", 5, 20),
    ("recent_inquiries", 2, 10),
    ("collateral_value", 0, 1_000_000),
]

LOAN_PURPOSE_SCORES = {
    "home_purchase": 9,
    "home_improvement": 8,
    "education": 8,
    "auto_loan": 7,
    "medical": 7,
    "debt_consolidation": 6,
    "business": 5,
    "other": 5,
    "vacation": 3,
}
DEFAULT_PURPOSE_SCORE = 5


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def purpose_score(purpose) -> int:
    if not purpose:
        return DEFAULT_PURPOSE_SCORE
    return LOAN_PURPOSE_SCORES.get(str(purpose).strip().lower(), DEFAULT_PURPOSE_SCORE)


def extract_features(data: Union[ApplicantData, dict, None]) -> List[float]:
    if data is None:
        data = ApplicantData()
    elif isinstance(data, dict):
        data = ApplicantData.model_validate(data)

    features = []
    for field, default, divisor in FEATURE_SPECS:
        raw = getattr(data, field)
        if raw is None: # 0 is a real value, only None means "not provided"
            raw = default
        features.append(_clamp(float(raw) / divisor))

    features.append(_clamp(purpose_score(data.loan_purpose) / 10))
    return features
