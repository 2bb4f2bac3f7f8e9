"""Kinney & Wiruth risk scoring.

Risk score = Effect x Exposure x Probability, each factor drawn from a
fixed discrete scale. Scores map to an ordered risk band through the
configured RiskBands. Everything here is pure and safe to call from any
number of concurrent callers.

Provides:
- compute_risk_score: Score from three factors (InvalidScoreValue otherwise)
- risk_level_for_score: Band for a score (monotonic non-decreasing)
- get_risk_description: Human-readable description of a risk level
- RiskScoreCalculator: Policy-bound calculator that also scores hazards
"""

from safework.core.config import RiskBands
from safework.core.domain.enums import RiskLevel
from safework.core.domain.scales import (
    EFFECT_VALUES,
    EXPOSURE_VALUES,
    PROBABILITY_VALUES,
    is_scale_value,
)
from safework.core.domain.tra import Hazard, TaskStep
from safework.core.errors import FieldError, InvalidScoreValue

DEFAULT_BANDS = RiskBands()

RISK_LEVEL_ORDER: list[RiskLevel] = list(RiskLevel)


def compute_risk_score(effect: float, exposure: float, probability: float) -> float:
    """Compute the Kinney & Wiruth risk score.

    Args:
        effect: Effect factor, one of {1, 3, 7, 15, 40, 100}
        exposure: Exposure factor, one of {0.5, 1, 2, 3, 6, 10}
        probability: Probability factor, one of {0.1, 0.2, 0.5, 1, 3, 6, 10}

    Returns:
        effect x exposure x probability

    Raises:
        InvalidScoreValue: Listing every factor outside its scale

    Example:
        >>> compute_risk_score(15, 3, 1)
        45
    """
    errors = []
    if not is_scale_value(effect, EFFECT_VALUES):
        errors.append(FieldError("effect", f"{effect!r} is not one of {sorted(EFFECT_VALUES)}"))
    if not is_scale_value(exposure, EXPOSURE_VALUES):
        errors.append(FieldError("exposure", f"{exposure!r} is not one of {sorted(EXPOSURE_VALUES)}"))
    if not is_scale_value(probability, PROBABILITY_VALUES):
        errors.append(
            FieldError("probability", f"{probability!r} is not one of {sorted(PROBABILITY_VALUES)}")
        )
    if errors:
        raise InvalidScoreValue(errors)

    return effect * exposure * probability


def risk_level_for_score(score: float, bands: RiskBands = DEFAULT_BANDS) -> RiskLevel:
    """Map a score to its risk band.

    Bands are inclusive upper bounds: <=20 trivial, <=70 acceptable,
    <=200 possible, <=400 substantial, <=1000 high, else very_high
    (defaults).
    """
    for level, upper in bands.ordered():
        if score <= upper:
            return level
    return RiskLevel.VERY_HIGH


def get_risk_description(level: RiskLevel) -> str:
    """Get human-readable description of a risk level.

    Args:
        level: The risk level to describe

    Returns:
        Human-readable description string
    """
    descriptions = {
        RiskLevel.TRIVIAL: "Trivial risk - no action required",
        RiskLevel.ACCEPTABLE: "Acceptable risk - attention advised",
        RiskLevel.POSSIBLE: "Possible risk - measures required",
        RiskLevel.SUBSTANTIAL: "Substantial risk - correct as soon as possible",
        RiskLevel.HIGH: "High risk - immediate correction required",
        RiskLevel.VERY_HIGH: "Very high risk - consider stopping the work",
    }
    return descriptions.get(level, "Unknown risk level")


class RiskScoreCalculator:
    """Risk calculator bound to a banding policy."""

    def __init__(self, bands: RiskBands | None = None):
        self.bands = bands or DEFAULT_BANDS

    def compute_risk_score(self, effect: float, exposure: float, probability: float) -> float:
        return compute_risk_score(effect, exposure, probability)

    def risk_level_for_score(self, score: float) -> RiskLevel:
        return risk_level_for_score(score, self.bands)

    def score_hazard(self, hazard: Hazard) -> Hazard:
        """Return a copy of the hazard with derived scores filled in.

        Residual score and level are derived only when all three residual
        factors are present; otherwise they are cleared.

        Raises:
            InvalidScoreValue: If any present factor is outside its scale
        """
        score = self.compute_risk_score(
            hazard.effect_score, hazard.exposure_score, hazard.probability_score
        )
        update = {
            "risk_score": score,
            "risk_level": self.risk_level_for_score(score),
            "residual_risk_score": None,
            "residual_risk_level": None,
        }
        if hazard.has_residual_factors:
            residual = self.compute_risk_score(
                hazard.residual_effect_score,
                hazard.residual_exposure_score,
                hazard.residual_probability_score,
            )
            update["residual_risk_score"] = residual
            update["residual_risk_level"] = self.risk_level_for_score(residual)
        return hazard.model_copy(update=update)

    def score_task_steps(self, steps: list[TaskStep]) -> list[TaskStep]:
        return [
            step.model_copy(update={"hazards": [self.score_hazard(h) for h in step.hazards]})
            for step in steps
        ]

    def overall_risk(self, steps: list[TaskStep]) -> tuple[float, RiskLevel]:
        """Highest hazard score across all steps and its level."""
        scores = [h.risk_score for step in steps for h in step.hazards if h.risk_score is not None]
        highest = max(scores, default=0.0)
        return highest, self.risk_level_for_score(highest)
