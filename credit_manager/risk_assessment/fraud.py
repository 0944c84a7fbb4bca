"""Rule-based fraud heuristics over raw applicant data.

Rules are additive and independent: every rule whose condition holds adds
its points, regardless of which other rules fired.
"""
import logging
from typing import Union

from .schemas import ApplicantData, FraudAssessment, FraudRecommendation, FraudRiskLevel

logger = logging.getLogger("credit_manager.ai")

HIGH_FRAUD_THRESHOLD = 50
MEDIUM_FRAUD_THRESHOLD = 25


def _gt(value, threshold) -> bool:
    return value is not None and value > threshold


def _lt(value, threshold) -> bool:
    return value is not None and value < threshold


FRAUD_RULES = [
    {
        "rule_id": "FR001",
        "name": "High income with short employment history",
        "score_impact": 30,
        "condition": lambda d: _gt(d.annual_income, 200_000) and _lt(d.employment_length, 1),
    },
    {
        "rule_id": "FR002",
        "name": "Recently moved to current address",
        "score_impact": 10,
        "condition": lambda d: _lt(d.time_at_address, 6),
    },
    {
        "rule_id": "FR003",
        "name": "High credit score at young age",
        "score_impact": 20,
        "condition": lambda d: _lt(d.age, 21) and _gt(d.credit_score, 750),
    },
    {
        "rule_id": "FR004",
        "name": "Multiple recent credit inquiries",
        "score_impact": 15,
        "condition": lambda d: _gt(d.recent_inquiries, 5),
    },
]


def fraud_risk_level_for(fraud_score: int) -> FraudRiskLevel:
    if fraud_score > HIGH_FRAUD_THRESHOLD:
        return FraudRiskLevel.HIGH
    if fraud_score > MEDIUM_FRAUD_THRESHOLD:
        return FraudRiskLevel.MEDIUM
    return FraudRiskLevel.LOW


def evaluate_fraud(data: Union[ApplicantData, dict, None]) -> FraudAssessment:
    if data is None:
        data = ApplicantData()
    elif isinstance(data, dict):
        data = ApplicantData.model_validate(data)

    fraud_score = 0
    risk_factors = []
    for rule in FRAUD_RULES:
        if rule["condition"](data):
            fraud_score += rule["score_impact"]
            risk_factors.append(rule["name"])

    if risk_factors:
        logger.debug(f"Fraud rules fired: {risk_factors} (score {fraud_score})")

    return FraudAssessment(
        fraud_score=fraud_score,
        risk_level=fraud_risk_level_for(fraud_score),
        risk_factors=risk_factors,
        recommendation=(FraudRecommendation.MANUAL_REVIEW if fraud_score > HIGH_FRAUD_THRESHOLD
                        else FraudRecommendation.AUTOMATED_PROCESSING),
    )
