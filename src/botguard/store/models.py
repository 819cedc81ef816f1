"""Records kept by the request log and the known-actor table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ProxyType(str, Enum):
    DATACENTER = "datacenter"
    VPN = "vpn"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


@dataclass
class TrackedRequest:
    ip_address: str
    timestamp: datetime
    user_agent: str | None = None
    endpoint: str = "/"
    method: str = "GET"
    referer: str | None = None
    user_id: str | None = None
    fingerprint_hash: str | None = None
    suspicious_score: int = 0
    blocked: bool = False
    blocked_at: datetime | None = None
    id: int | None = None


# Fields an update() patch may touch; everything else is write-once.
MUTABLE_REQUEST_FIELDS = frozenset({"blocked", "blocked_at"})


@dataclass
class KnownActor:
    ip_address: str
    proxy_type: ProxyType
    confidence_score: int
    detected_at: datetime
    is_blocked: bool = False
    reason: str | None = None
    auto_blocked: bool = False


@dataclass
class RequestFilter:
    """Conjunction of conditions over :class:`TrackedRequest` rows.

    ``None`` means "do not filter on this field".
    """

    ip_address: str | None = None
    user_id: str | None = None
    endpoint: str | None = None
    since: datetime | None = None
    before: datetime | None = None
    min_score: int | None = None
    blocked: bool | None = None
    has_fingerprint: bool | None = None

    def matches(self, record: TrackedRequest) -> bool:
        if self.ip_address is not None and record.ip_address != self.ip_address:
            return False
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.endpoint is not None and record.endpoint != self.endpoint:
            return False
        if self.since is not None and record.timestamp < self.since:
            return False
        if self.before is not None and record.timestamp >= self.before:
            return False
        if self.min_score is not None and record.suspicious_score < self.min_score:
            return False
        if self.blocked is not None and record.blocked != self.blocked:
            return False
        if self.has_fingerprint is not None and (record.fingerprint_hash is not None) != self.has_fingerprint:
            return False
        return True


ORDERABLE_FIELDS = ("timestamp", "suspicious_score", "id")


def parse_order(order_by: str | None) -> tuple[str, bool] | None:
    """Split ``"-timestamp"`` into ``("timestamp", True)``."""
    if not order_by:
        return None
    descending = order_by.startswith("-")
    name = order_by.lstrip("-")
    if name not in ORDERABLE_FIELDS:
        raise ValueError(f"cannot order requests by {name!r}")
    return name, descending


def validate_patch(patch: dict[str, Any]) -> None:
    illegal = set(patch) - MUTABLE_REQUEST_FIELDS
    if illegal:
        raise ValueError(f"tracked request fields are immutable: {sorted(illegal)}")

