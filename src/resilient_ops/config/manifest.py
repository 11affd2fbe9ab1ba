"""
Policy manifest models.

Validates resilience policy documents (YAML, JSON or plain dicts) before they
are turned into runtime configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from resilient_ops.errors import ErrorCategory


class BreakerSettings(BaseModel):
    """Circuit breaker settings shared by every key."""

    model_config = ConfigDict(extra="forbid")

    failure_threshold: int = Field(default=5, ge=1, description="Failures that open a circuit")
    cooldown_seconds: float = Field(default=30.0, gt=0, description="Open-state duration")
    quiet_period_seconds: float = Field(
        default=300.0, gt=0, description="Idle time before a closed entry is dropped"
    )


class RetrySettings(BaseModel):
    """Retry overrides for one error category.

    Unset fields keep the category default.
    """

    model_config = ConfigDict(extra="forbid")

    max_retries: int | None = Field(default=None, ge=0)
    base_delay_ms: float | None = Field(default=None, ge=0)
    max_delay_ms: float | None = Field(default=None, ge=0)
    backoff_multiplier: float | None = Field(default=None, ge=1)
    jitter: bool | None = None

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> RetrySettings:
        if (
            self.base_delay_ms is not None
            and self.max_delay_ms is not None
            and self.max_delay_ms < self.base_delay_ms
        ):
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self

    def overrides(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)


class PolicyManifest(BaseModel):
    """Top-level resilience policy document.

    Example:
        >>> manifest = PolicyManifest.model_validate(yaml.safe_load('''
        ... breaker:
        ...   failure_threshold: 3
        ...   cooldown_seconds: 60
        ... retry:
        ...   network:
        ...     max_retries: 5
        ... '''))
    """

    model_config = ConfigDict(extra="forbid")

    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    retry: dict[ErrorCategory, RetrySettings] = Field(default_factory=dict)

    @field_validator("retry", mode="before")
    @classmethod
    def _normalize_categories(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        return {_parse_category(key): settings for key, settings in value.items()}


def _parse_category(key: object) -> ErrorCategory:
    """Accept 'NETWORK_ERROR', 'network' or 'NETWORK' for a category."""
    if isinstance(key, ErrorCategory):
        return key
    text = str(key).strip()
    try:
        return ErrorCategory(text.upper())
    except ValueError:
        pass
    try:
        return ErrorCategory[text.upper()]
    except KeyError:
        raise ValueError(f"Unknown error category: {key!r}") from None
