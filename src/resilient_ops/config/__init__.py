"""
Policy configuration for resilient-ops.
"""

from resilient_ops.config.loader import (
    apply_env_overrides,
    load_policy,
    load_policy_file,
    policy_from_dict,
    policy_from_manifest,
)
from resilient_ops.config.manifest import BreakerSettings, PolicyManifest, RetrySettings

__all__ = [
    "BreakerSettings",
    "PolicyManifest",
    "RetrySettings",
    "apply_env_overrides",
    "load_policy",
    "load_policy_file",
    "policy_from_dict",
    "policy_from_manifest",
]
