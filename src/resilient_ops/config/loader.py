"""
Policy loader.

Builds a ResiliencePolicy from:
- Plain dicts
- YAML or JSON policy files
- Environment variable overrides for the breaker
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from resilient_ops.config.manifest import PolicyManifest
from resilient_ops.errors import ConfigError
from resilient_ops.resilience.backoff import default_retry_config
from resilient_ops.resilience.circuit_breaker import CircuitBreakerConfig
from resilient_ops.resilience.policy import ResiliencePolicy

ENV_PREFIX = "RESILIENT_OPS_"

_ENV_BREAKER_FIELDS: dict[str, str] = {
    "BREAKER_FAILURE_THRESHOLD": "failure_threshold",
    "BREAKER_COOLDOWN_SECS": "cooldown_seconds",
    "BREAKER_QUIET_SECS": "quiet_period_seconds",
}


def policy_from_manifest(manifest: PolicyManifest) -> ResiliencePolicy:
    """Create a policy from a validated manifest."""
    breaker = CircuitBreakerConfig(
        failure_threshold=manifest.breaker.failure_threshold,
        cooldown_seconds=manifest.breaker.cooldown_seconds,
        quiet_period_seconds=manifest.breaker.quiet_period_seconds,
    )
    overrides = {
        category: default_retry_config(category).with_overrides(**settings.overrides())
        for category, settings in manifest.retry.items()
    }
    return ResiliencePolicy(breaker=breaker, retry_overrides=overrides)


def policy_from_dict(
    data: dict[str, Any] | None,
    *,
    source: str | None = None,
) -> ResiliencePolicy:
    """Create a policy from a plain mapping.

    Args:
        data: Policy document
        source: Where the document came from, for error messages

    Raises:
        ConfigError: If the document is invalid
    """
    try:
        manifest = PolicyManifest.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid resilience policy: {e}", path=source).with_hint(
            "Check the breaker and retry sections against the policy schema"
        ) from e
    return policy_from_manifest(manifest)


def load_policy_file(path: str | Path) -> ResiliencePolicy:
    """Load a policy from a YAML or JSON file.

    Raises:
        ConfigError: If the file cannot be read, parsed or validated
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read policy file: {e}", path=str(path)).with_hint(
            "Check that the policy file exists and is readable"
        ) from e

    try:
        data = json.loads(content) if path.suffix == ".json" else yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse policy file: {e}", path=str(path)).with_hint(
            "Files ending in .json are parsed as JSON, anything else as YAML"
        ) from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError("Policy file must contain a mapping", path=str(path))

    return policy_from_dict(data, source=str(path))


def apply_env_overrides(base: ResiliencePolicy | None = None) -> ResiliencePolicy:
    """Apply ``RESILIENT_OPS_BREAKER_*`` environment overrides.

    Args:
        base: Policy to override (defaults to the built-in policy)

    Raises:
        ConfigError: If a variable is set but not a valid number
    """
    base = base or ResiliencePolicy.default()
    breaker: dict[str, Any] = {
        "failure_threshold": base.breaker.failure_threshold,
        "cooldown_seconds": base.breaker.cooldown_seconds,
        "quiet_period_seconds": base.breaker.quiet_period_seconds,
    }
    for suffix, field_name in _ENV_BREAKER_FIELDS.items():
        raw = os.getenv(ENV_PREFIX + suffix)
        if raw is not None and raw.strip():
            breaker[field_name] = raw.strip()

    try:
        manifest = PolicyManifest.model_validate({"breaker": breaker})
    except ValidationError as e:
        raise ConfigError(
            f"Invalid resilience policy environment: {e}",
            path="environment",
        ).with_hint(
            "RESILIENT_OPS_BREAKER_* variables must be positive numbers"
        ) from e

    return ResiliencePolicy(
        breaker=CircuitBreakerConfig(
            failure_threshold=manifest.breaker.failure_threshold,
            cooldown_seconds=manifest.breaker.cooldown_seconds,
            quiet_period_seconds=manifest.breaker.quiet_period_seconds,
        ),
        retry_overrides=dict(base.retry_overrides),
    )


def load_policy(path: str | Path | None = None) -> ResiliencePolicy:
    """Load the effective policy.

    Resolution order: explicit ``path``, then ``RESILIENT_OPS_POLICY_FILE``,
    then built-in defaults; breaker environment overrides apply last.
    """
    path = path or os.getenv(ENV_PREFIX + "POLICY_FILE")
    base = load_policy_file(path) if path else ResiliencePolicy.default()
    return apply_env_overrides(base)
