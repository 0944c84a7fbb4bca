import logging
import threading
from typing import List, Optional

from credit_manager.exceptions import ScoringError, ScoringUnavailableError
from credit_manager.utils import utcnow

from .features import FEATURE_NAMES, extract_features
from .fraud import evaluate_fraud
from .schemas import (
    ApplicantData, ApplicationAssessment, EngineStatus, FraudRiskLevel, NextStep, RiskLevel,
)
from .scoring import ScoringStrategy, build_default_engine

logger = logging.getLogger("credit_manager.ai")

NEXT_STEPS_BY_RISK = {
    RiskLevel.LOW: NextStep(action="auto_approve", priority="high",
                            description="Application meets criteria for automatic approval"),
    RiskLevel.MEDIUM: NextStep(action="manual_review", priority="medium",
                               description="Assign to underwriter for manual review"),
    RiskLevel.HIGH: NextStep(action="enhanced_review", priority="high",
                             description="Requires enhanced due diligence and senior underwriter approval"),
    RiskLevel.VERY_HIGH: NextStep(action="decline", priority="high",
                                  description="Application does not meet minimum credit requirements"),
}
FRAUD_INVESTIGATION_STEP = NextStep(action="fraud_investigation", priority="urgent",
                                    description="Refer to fraud investigation team before any decision")


def to_applicant_data(source) -> ApplicantData:
    """Accepts ApplicantData, a plain dict, or a stored application."""
    if isinstance(source, ApplicantData):
        return source
    if isinstance(source, dict):
        return ApplicantData.model_validate(source)
    if all(hasattr(source, attr) for attr in ("applicant", "loan", "financial")):
        return ApplicantData.from_application_payloads(source.applicant, source.loan, source.financial)
    raise ScoringError(f"Cannot derive applicant data from {type(source).__name__}")


class RiskAssessmentService:
    def __init__(self):
        self._engine: Optional[ScoringStrategy] = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> ScoringStrategy:
        engine = self._engine
        if engine is None:
            raise ScoringUnavailableError("AI credit scoring model not initialized")
        return engine

    def initialize(self, engine: Optional[ScoringStrategy] = None) -> ScoringStrategy:
        with self._lock:
            self._engine = engine or build_default_engine()
        logger.info(f"Scoring engine initialized: {self._engine.name} v{self._engine.model_version}")
        return self._engine

    def dispose(self):
        with self._lock:
            self._engine = None
        logger.info("Scoring engine disposed")

    def compute_assessment(self, source) -> ApplicationAssessment:
        engine = self.engine # raises ScoringUnavailableError before any work
        data = to_applicant_data(source)
        try:
            features = extract_features(data)
            credit = engine.score(features)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.error(f"Credit scoring failed: {e}")
            raise ScoringError(f"Credit scoring failed: {e}") from e

        fraud = evaluate_fraud(data)
        return ApplicationAssessment(
            credit=credit,
            fraud=fraud,
            features=features,
            model_version=credit.model_version,
            assessed_at=utcnow(),
        )

    @staticmethod
    def next_steps(assessment: ApplicationAssessment) -> List[NextStep]:
        steps = [NEXT_STEPS_BY_RISK[assessment.credit.risk_level]]
        if assessment.fraud.risk_level == FraudRiskLevel.HIGH:
            steps.append(FRAUD_INVESTIGATION_STEP)
        return steps

    def status(self) -> EngineStatus:
        engine = self._engine
        return EngineStatus(
            model_loaded=engine is not None,
            model_version=engine.model_version if engine else None,
            strategy=engine.name if engine else None,
            features=list(FEATURE_NAMES),
            health="healthy" if engine is not None else "degraded",
        )


risk_assessment_service = RiskAssessmentService()


def compute_assessment(source) -> ApplicationAssessment:
    return risk_assessment_service.compute_assessment(source)
