# =============================================================================
# fin_core/data_layer/types.py
# Shared data structures for the data layer
# =============================================================================
"""
Data structures shared by the API client, cache, sync manager and facade.

Resources themselves are plain ``dict`` payloads with ``id``, ``createdAt``
and ``updatedAt``; the data layer never inspects anything but ``id``.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


Resource = Dict[str, Any]


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Missing values sort before everything else; naive values are taken as UTC.
    """
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CRUDOperation(str, Enum):
    """Mutations that can be queued for replay."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class APIResponse:
    """Envelope returned by every APIClient call."""
    data: Any = None
    success: bool = True
    message: Optional[str] = None
    errors: Optional[Dict[str, str]] = None
    timestamp: str = field(default_factory=utc_now_iso)
    raw: Any = None  # Undecoded body, for servers that don't use the envelope

    @classmethod
    def from_body(cls, body: Any) -> APIResponse:
        """
        Build a response from a decoded JSON body.

        Bodies carrying a ``success`` flag are treated as the standard
        ``{data, success, message?, errors?, timestamp}`` envelope; anything
        else is passed through as ``data``.
        """
        if isinstance(body, dict) and "success" in body:
            return cls(
                data=body.get("data"),
                success=bool(body.get("success")),
                message=body.get("message"),
                errors=body.get("errors"),
                timestamp=body.get("timestamp") or utc_now_iso(),
                raw=body,
            )
        return cls(data=body, success=True, raw=body)


@dataclass
class CacheEntry:
    """A cached value with its write time and lifetime (seconds)."""
    key: str
    data: Any
    timestamp: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


@dataclass
class CacheStats:
    """Cache statistics."""
    total_entries: int = 0
    memory_usage: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    total_hits: int = 0
    total_misses: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingOperation:
    """A mutation waiting to be confirmed by the primary backend."""
    id: str
    resource: str
    operation: str
    data: Any
    timestamp: str = field(default_factory=utc_now_iso)
    retry_count: int = 0
    max_retries: int = 3

    @property
    def exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def to_dict(self) -> Dict[str, Any]:
        """Durable JSON form (camelCase, matching the web client's queue)."""
        return {
            "id": self.id,
            "resource": self.resource,
            "operation": self.operation,
            "data": self.data,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> PendingOperation:
        return cls(
            id=str(raw["id"]),
            resource=raw["resource"],
            operation=raw["operation"],
            data=raw.get("data"),
            timestamp=raw.get("timestamp") or utc_now_iso(),
            retry_count=int(raw.get("retryCount", 0)),
            max_retries=int(raw.get("maxRetries", 3)),
        )


@dataclass
class SyncStatus:
    """Process-wide synchronization state."""
    is_online: bool = False
    last_sync: Optional[str] = None
    pending_operations: int = 0
    sync_in_progress: bool = False
    errors: List[str] = field(default_factory=list)

    def copy(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.is_online,
            last_sync=self.last_sync,
            pending_operations=self.pending_operations,
            sync_in_progress=self.sync_in_progress,
            errors=list(self.errors),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
