"""Configuration management for the safety workflow engine.

Loads configuration from environment variables using Pydantic models.
Compliance policy values (risk bands, location accuracy tolerance,
validity windows) live here so they can be tuned per deployment instead
of being hard-coded in the engine.

Provides:
- RiskBands: Ordered upper bounds mapping a Kinney score to a RiskLevel
- WeatherLimits: Site weather thresholds for LMRA environment warnings
- Config: Pydantic model with all engine settings
- load_config: Factory function to create Config instance
"""

import os

from pydantic import BaseModel, Field, field_validator, model_validator

from safework.core.domain.enums import ComplianceFramework, RiskLevel

# VCA and ISO45001 both cap a TRA validity window at 12 months
MAX_VALIDITY_MONTHS = 12


class RiskBands(BaseModel):
    """Upper bounds (inclusive) of each risk band.

    Scores above `high` map to VERY_HIGH. Bounds must be strictly
    increasing, which keeps the score -> level mapping monotonic.
    """

    trivial: float = 20
    acceptable: float = 70
    possible: float = 200
    substantial: float = 400
    high: float = 1000

    @model_validator(mode="after")
    def _check_increasing(self) -> "RiskBands":
        bounds = [b for _, b in self.ordered()]
        if any(lower >= upper for lower, upper in zip(bounds, bounds[1:])):
            raise ValueError("risk band bounds must be strictly increasing")
        return self

    def ordered(self) -> list[tuple[RiskLevel, float]]:
        return [
            (RiskLevel.TRIVIAL, self.trivial),
            (RiskLevel.ACCEPTABLE, self.acceptable),
            (RiskLevel.POSSIBLE, self.possible),
            (RiskLevel.SUBSTANTIAL, self.substantial),
            (RiskLevel.HIGH, self.high),
        ]


class WeatherLimits(BaseModel):
    """Site weather limits; conditions outside them are reported as warnings."""

    max_wind_speed_kmh: float = 40
    min_visibility_km: float = 1
    max_temperature_c: float = 40
    min_temperature_c: float = -10
    severe_conditions: list[str] = Field(default_factory=lambda: ["Thunderstorm", "Snow", "Extreme"])


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class Config(BaseModel):
    """Engine configuration loaded from environment.

    Attributes:
        database_url: SQLAlchemy async database URL
        risk_bands: Score thresholds for risk levels
        location_accuracy_threshold_m: GPS accuracy above which location is approximate
        stop_work_reason_min_length: Minimum characters for a stop-work reason
        weather_limits: Wind, visibility and temperature limits for site work
        hazard_description_min_length: Minimum characters for a hazard description
        validity_months: TRA validity window per compliance framework (<= 12)
        expiring_soon_days: Window used by TRA expiring-soon checks
        require_photo_documentation: Whether non-stop-work sessions need >= 1 photo
        audit_max_retries: Attempts for each audit log write
        audit_backoff_seconds: Base delay for exponential backoff between attempts
        telegram_bot_token: Bot token for stop-work notifications (optional)
        stop_work_chat_id: Chat receiving stop-work notifications (optional)
    """

    # Database
    database_url: str = Field(
        default_factory=lambda: os.getenv("SAFEWORK_DATABASE_URL", "sqlite+aiosqlite:///safework.db")
    )

    # Risk policy
    risk_bands: RiskBands = Field(default_factory=RiskBands)
    hazard_description_min_length: int = Field(default=10)

    # LMRA policy
    location_accuracy_threshold_m: float = Field(
        default_factory=lambda: _env_float("SAFEWORK_LOCATION_ACCURACY_M", 20.0)
    )
    stop_work_reason_min_length: int = Field(default=10)
    require_photo_documentation: bool = Field(default=False)
    weather_limits: WeatherLimits = Field(default_factory=WeatherLimits)

    # Compliance policy
    validity_months: dict[ComplianceFramework, int] = Field(
        default_factory=lambda: {framework: MAX_VALIDITY_MONTHS for framework in ComplianceFramework}
    )
    expiring_soon_days: int = Field(default=30)

    # Side effects
    audit_max_retries: int = Field(default=3)
    audit_backoff_seconds: float = Field(default=1.0)

    # Notifications
    telegram_bot_token: str = Field(
        default_factory=lambda: os.getenv("TELEGRAM_BOT_TOKEN", "")
    )
    stop_work_chat_id: str = Field(
        default_factory=lambda: os.getenv("SAFEWORK_STOP_WORK_CHAT_ID", "")
    )

    @field_validator("validity_months")
    @classmethod
    def _cap_validity(cls, value: dict[ComplianceFramework, int]) -> dict[ComplianceFramework, int]:
        for framework, months in value.items():
            if months < 1 or months > MAX_VALIDITY_MONTHS:
                raise ValueError(
                    f"validity window for {framework.value} must be 1-{MAX_VALIDITY_MONTHS} months"
                )
        return value

    def validity_window_months(self, framework: ComplianceFramework) -> int:
        """Validity window for a framework, never above the 12-month ceiling."""
        return min(self.validity_months.get(framework, MAX_VALIDITY_MONTHS), MAX_VALIDITY_MONTHS)


def load_config() -> Config:
    """Load configuration from environment.

    Returns:
        Populated Config instance
    """
    return Config()
