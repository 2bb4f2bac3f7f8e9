"""Core risk assessment and safety workflow engine.

Provides:
- Engine configuration loaded from the environment
- Error taxonomy shared by every component
"""

from .config import Config, RiskBands, load_config
from .errors import (
    AlreadyDecided,
    Conflict,
    FieldError,
    InvalidScoreValue,
    MutationRejected,
    NotFoundError,
    SafeWorkError,
    StateTransitionError,
    Unauthorized,
    ValidationError,
)

__all__ = [
    "Config",
    "RiskBands",
    "load_config",
    "AlreadyDecided",
    "Conflict",
    "FieldError",
    "InvalidScoreValue",
    "MutationRejected",
    "NotFoundError",
    "SafeWorkError",
    "StateTransitionError",
    "Unauthorized",
    "ValidationError",
]
