"""Storage contract consumed by the scorers and the rate limiter.

Implementations raise :class:`~botguard.errors.StoreUnavailable` on transient
I/O failure; callers decide whether that fails open.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from botguard.store.models import KnownActor, RequestFilter, TrackedRequest


class RequestStore(Protocol):
    def insert(self, record: TrackedRequest) -> int: ...

    def query(
        self,
        filters: RequestFilter,
        order_by: str | None = "timestamp",
        limit: int | None = None,
    ) -> list[TrackedRequest]: ...

    def count(self, filters: RequestFilter) -> int: ...

    def update(self, request_id: int, patch: dict[str, Any]) -> None: ...

    def update_where(self, filters: RequestFilter, patch: dict[str, Any]) -> int: ...

    def delete_before(self, cutoff: datetime) -> int: ...


class KnownActorStore(Protocol):
    def get(self, ip_address: str) -> KnownActor | None: ...

    def upsert(self, record: KnownActor) -> None: ...

    def set_blocked(self, ip_address: str, blocked: bool) -> bool: ...

    def all(self) -> list[KnownActor]: ...
