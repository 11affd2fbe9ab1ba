"""
Operation context threaded through a protected call.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class OperationContext:
    """Caller-supplied metadata for one protected operation.

    Attributes:
        operation: Logical operation name (e.g., 'load_more')
        entity_id: Identifier of the entity the operation acts on
        namespace: Feature namespace (e.g., 'friends_list', 'notifications')
        key: Explicit breaker key; overrides the derived one
        timestamp: Wall-clock creation time
        metadata: Additional caller fields for logging
    """

    operation: str
    entity_id: str | None = None
    namespace: str | None = None
    key: str | None = None
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def breaker_key(self) -> str:
        """Key identifying the breaker state this operation shares."""
        if self.key:
            return self.key
        if self.namespace:
            return f"{self.namespace}_{self.operation}"
        return self.operation

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {"operation": self.operation}
        if self.entity_id:
            result["entity_id"] = self.entity_id
        if self.namespace:
            result["namespace"] = self.namespace
        result["breaker_key"] = self.breaker_key
        result["timestamp"] = self.timestamp
        result.update(self.metadata)
        return result
