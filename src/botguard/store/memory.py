"""Process-local stores backed by lists and dicts."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any

from botguard.store.models import (
    KnownActor,
    RequestFilter,
    TrackedRequest,
    parse_order,
    validate_patch,
)


class InMemoryRequestStore:
    """Append-only request log guarded by a single lock."""

    def __init__(self) -> None:
        self._rows: dict[int, TrackedRequest] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def insert(self, record: TrackedRequest) -> int:
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            self._rows[request_id] = replace(record, id=request_id)
            return request_id

    def get(self, request_id: int) -> TrackedRequest | None:
        with self._lock:
            row = self._rows.get(request_id)
            return replace(row) if row else None

    def query(
        self,
        filters: RequestFilter,
        order_by: str | None = "timestamp",
        limit: int | None = None,
    ) -> list[TrackedRequest]:
        order = parse_order(order_by)
        with self._lock:
            rows = [replace(r) for r in self._rows.values() if filters.matches(r)]
        if order:
            name, descending = order
            rows.sort(key=lambda r: getattr(r, name), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def count(self, filters: RequestFilter) -> int:
        with self._lock:
            return sum(1 for r in self._rows.values() if filters.matches(r))

    def update(self, request_id: int, patch: dict[str, Any]) -> None:
        validate_patch(patch)
        with self._lock:
            row = self._rows.get(request_id)
            if row is None:
                raise KeyError(request_id)
            self._rows[request_id] = replace(row, **patch)

    def update_where(self, filters: RequestFilter, patch: dict[str, Any]) -> int:
        validate_patch(patch)
        with self._lock:
            matched = [rid for rid, r in self._rows.items() if filters.matches(r)]
            for rid in matched:
                self._rows[rid] = replace(self._rows[rid], **patch)
            return len(matched)

    def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [rid for rid, r in self._rows.items() if r.timestamp < cutoff]
            for rid in stale:
                del self._rows[rid]
            return len(stale)

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryKnownActorStore:
    """Known-actor table keyed by IP address."""

    def __init__(self) -> None:
        self._actors: dict[str, KnownActor] = {}
        self._lock = threading.Lock()

    def get(self, ip_address: str) -> KnownActor | None:
        with self._lock:
            actor = self._actors.get(ip_address)
            return replace(actor) if actor else None

    def upsert(self, record: KnownActor) -> None:
        with self._lock:
            self._actors[record.ip_address] = replace(record)

    def set_blocked(self, ip_address: str, blocked: bool) -> bool:
        with self._lock:
            actor = self._actors.get(ip_address)
            if actor is None:
                return False
            self._actors[ip_address] = replace(actor, is_blocked=blocked)
            return True

    def all(self) -> list[KnownActor]:
        with self._lock:
            return [replace(a) for a in self._actors.values()]

    def __len__(self) -> int:
        return len(self._actors)
