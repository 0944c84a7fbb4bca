"""Risk scoring strategies.

A strategy turns a feature vector into a probability in [0, 1]; the
shared `score` method turns that probability into the credit score, risk
band, factors and recommendations. The randomized engine wraps any other
strategy so tests can run against the deterministic one.
"""
import abc
import math
import random
import threading
from typing import List, Optional, Sequence

from credit_manager.config import Config
from credit_manager.utils import utcnow

from .schemas import CreditScoreResult, FactorImpact, Recommendation, RiskFactor, RiskLevel

MIN_CREDIT_SCORE = 300
MAX_CREDIT_SCORE = 850

# Aligned with features.FEATURE_NAMES
DEFAULT_WEIGHTS = (3.0, 2.0, -2.5, 0.5, -0.5, -0.3, 1.5, -1.5, 0.2, -0.8, 0.6, 0.4)
DEFAULT_BIAS = -2.99

# Lower bound of each band, checked top-down
RISK_BANDS = (
    (750, RiskLevel.LOW),
    (650, RiskLevel.MEDIUM),
    (550, RiskLevel.HIGH),
)

# (feature index, comparison, threshold, factor name, impact, description)
FACTOR_RULES = (
    (0, "lt", 0.6, "Credit Score", FactorImpact.NEGATIVE, "Credit score below optimal range"),
    (1, "gt", 0.8, "Income", FactorImpact.POSITIVE, "High annual income"),
    (2, "gt", 0.4, "Debt-to-Income", FactorImpact.NEGATIVE, "High debt-to-income ratio"),
    (6, "gt", 0.9, "Payment History", FactorImpact.POSITIVE, "Excellent payment history"),
    (7, "gt", 0.7, "Credit Utilization", FactorImpact.NEGATIVE, "High credit utilization"),
)


def risk_level_for(credit_score: int) -> RiskLevel:
    for lower_bound, level in RISK_BANDS:
        if credit_score >= lower_bound:
            return level
    return RiskLevel.VERY_HIGH


def probability_to_credit_score(probability: float) -> int:
    score = round(MIN_CREDIT_SCORE + probability * (MAX_CREDIT_SCORE - MIN_CREDIT_SCORE))
    return int(min(MAX_CREDIT_SCORE, max(MIN_CREDIT_SCORE, score)))


def analyze_factors(features: Sequence[float]) -> List[RiskFactor]:
    factors = []
    for index, comparison, threshold, name, impact, description in FACTOR_RULES:
        value = features[index]
        crossed = value < threshold if comparison == "lt" else value > threshold
        if crossed:
            factors.append(RiskFactor(factor=name, impact=impact, value=value, description=description))
    return factors


def generate_recommendations(credit_score: int, features: Sequence[float]) -> List[Recommendation]:
    recommendations = []
    if credit_score < 650:
        recommendations.append(Recommendation(
            type="IMPROVEMENT", priority="HIGH",
            description="Consider requiring a co-signer or additional collateral",
            action="REQUEST_COSIGNER",
        ))
    if features[2] > 0.4:
        recommendations.append(Recommendation(
            type="RISK_MITIGATION", priority="MEDIUM",
            description="High debt-to-income ratio - consider smaller loan amount",
            action="REDUCE_LOAN_AMOUNT",
        ))
    if credit_score >= 750:
        recommendations.append(Recommendation(
            type="APPROVAL", priority="LOW",
            description="Excellent credit profile - approve with standard terms",
            action="APPROVE_STANDARD",
        ))
    return recommendations


class ScoringStrategy(abc.ABC):
    name = "base"

    def __init__(self, model_version: str = Config.SCORING_MODEL_VERSION):
        self.model_version = model_version

    @abc.abstractmethod
    def probability(self, features: Sequence[float]) -> float:
        """Probability in [0, 1] that the applicant is creditworthy."""

    def score(self, features: Sequence[float]) -> CreditScoreResult:
        features = list(features)
        if len(features) != len(DEFAULT_WEIGHTS):
            raise ValueError(f"Expected {len(DEFAULT_WEIGHTS)} features, got {len(features)}")

        probability = min(1.0, max(0.0, self.probability(features)))
        credit_score = probability_to_credit_score(probability)
        return CreditScoreResult(
            credit_score=credit_score,
            risk_level=risk_level_for(credit_score),
            probability=probability,
            factors=analyze_factors(features),
            recommendations=generate_recommendations(credit_score, features),
            model_version=self.model_version,
            timestamp=utcnow(),
        )


class DeterministicScoringEngine(ScoringStrategy):
    name = "deterministic"

    def __init__(self, weights: Sequence[float] = DEFAULT_WEIGHTS, bias: float = DEFAULT_BIAS,
                 model_version: str = Config.SCORING_MODEL_VERSION):
        super().__init__(model_version)
        if len(weights) != len(DEFAULT_WEIGHTS):
            raise ValueError("Weight vector must have one weight per feature")
        self.weights = tuple(weights)
        self.bias = bias

    def probability(self, features: Sequence[float]) -> float:
        z = self.bias + sum(w * f for w, f in zip(self.weights, features))
        return 1.0 / (1.0 + math.exp(-z))


class RandomizedScoringEngine(ScoringStrategy):
    """Adds bounded symmetric noise to another strategy's probability."""
    name = "randomized"

    def __init__(self, base: ScoringStrategy, spread: float = Config.SCORING_PERTURBATION,
                 rng: Optional[random.Random] = None):
        super().__init__(base.model_version)
        self.base = base
        self.spread = spread
        self.rng = rng or random.Random()
        self._rng_lock = threading.Lock() # shared by batch worker threads

    def probability(self, features: Sequence[float]) -> float:
        with self._rng_lock:
            noise = self.rng.uniform(-self.spread, self.spread)
        return min(1.0, max(0.0, self.base.probability(features) + noise))


def build_default_engine(randomized: bool = Config.SCORING_RANDOMIZED) -> ScoringStrategy:
    engine = DeterministicScoringEngine()
    if randomized:
        return RandomizedScoringEngine(engine)
    return engine
