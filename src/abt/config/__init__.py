from __future__ import annotations

from abt.config.models import HttpMethod, ParsedConfig, ServiceSettings, TrialConfig
from abt.config.validation import ValidationResult, validate, validate_mapping

__all__ = [
    "HttpMethod",
    "ParsedConfig",
    "ServiceSettings",
    "TrialConfig",
    "ValidationResult",
    "validate",
    "validate_mapping",
]
