"""SQLAlchemy-backed request log and known-actor table."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from botguard.errors import StoreUnavailable
from botguard.store.models import (
    KnownActor,
    ProxyType,
    RequestFilter,
    TrackedRequest,
    parse_order,
    validate_patch,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class RequestRow(Base):
    __tablename__ = "request_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ip_address: Mapped[str] = mapped_column(String(64), index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    endpoint: Mapped[str] = mapped_column(String(512), index=True)
    method: Mapped[str] = mapped_column(String(16))
    referer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    fingerprint_hash: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    suspicious_score: Mapped[int] = mapped_column(Integer, default=0)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    blocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class KnownActorRow(Base):
    __tablename__ = "known_actors"

    ip_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    proxy_type: Mapped[str] = mapped_column(String(16))
    confidence_score: Mapped[int] = mapped_column(Integer)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auto_blocked: Mapped[bool] = mapped_column(Boolean, default=False)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_request(row: RequestRow) -> TrackedRequest:
    return TrackedRequest(
        id=row.id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        endpoint=row.endpoint,
        method=row.method,
        referer=row.referer,
        user_id=row.user_id,
        timestamp=_as_utc(row.timestamp),
        fingerprint_hash=row.fingerprint_hash,
        suspicious_score=row.suspicious_score,
        blocked=row.blocked,
        blocked_at=_as_utc(row.blocked_at),
    )


def _to_actor(row: KnownActorRow) -> KnownActor:
    return KnownActor(
        ip_address=row.ip_address,
        proxy_type=ProxyType(row.proxy_type),
        confidence_score=row.confidence_score,
        is_blocked=row.is_blocked,
        detected_at=_as_utc(row.detected_at),
        reason=row.reason,
        auto_blocked=row.auto_blocked,
    )


def _where(filters: RequestFilter) -> list:
    clauses = []
    if filters.ip_address is not None:
        clauses.append(RequestRow.ip_address == filters.ip_address)
    if filters.user_id is not None:
        clauses.append(RequestRow.user_id == filters.user_id)
    if filters.endpoint is not None:
        clauses.append(RequestRow.endpoint == filters.endpoint)
    if filters.since is not None:
        clauses.append(RequestRow.timestamp >= filters.since)
    if filters.before is not None:
        clauses.append(RequestRow.timestamp < filters.before)
    if filters.min_score is not None:
        clauses.append(RequestRow.suspicious_score >= filters.min_score)
    if filters.blocked is not None:
        clauses.append(RequestRow.blocked == filters.blocked)
    if filters.has_fingerprint is True:
        clauses.append(RequestRow.fingerprint_hash.is_not(None))
    elif filters.has_fingerprint is False:
        clauses.append(RequestRow.fingerprint_hash.is_(None))
    return clauses


class _SqlStore:
    def __init__(self, engine: Engine):
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    def _session(self) -> Session:
        return self._sessions()


class SqlRequestStore(_SqlStore):
    """Request log stored in the ``request_tracking`` table."""

    def insert(self, record: TrackedRequest) -> int:
        row = RequestRow(
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            endpoint=record.endpoint,
            method=record.method,
            referer=record.referer,
            user_id=record.user_id,
            timestamp=record.timestamp,
            fingerprint_hash=record.fingerprint_hash,
            suspicious_score=record.suspicious_score,
            blocked=record.blocked,
            blocked_at=record.blocked_at,
        )
        try:
            with self._session() as session, session.begin():
                session.add(row)
                session.flush()
                return row.id
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"insert failed: {exc}") from exc

    def query(
        self,
        filters: RequestFilter,
        order_by: str | None = "timestamp",
        limit: int | None = None,
    ) -> list[TrackedRequest]:
        stmt = select(RequestRow).where(*_where(filters))
        order = parse_order(order_by)
        if order:
            name, descending = order
            column = getattr(RequestRow, name)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self._session() as session:
                return [_to_request(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"query failed: {exc}") from exc

    def count(self, filters: RequestFilter) -> int:
        stmt = select(func.count()).select_from(RequestRow).where(*_where(filters))
        try:
            with self._session() as session:
                return session.scalar(stmt) or 0
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"count failed: {exc}") from exc

    def update(self, request_id: int, patch: dict[str, Any]) -> None:
        validate_patch(patch)
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    update(RequestRow).where(RequestRow.id == request_id).values(**patch)
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"update failed: {exc}") from exc
        if result.rowcount == 0:
            raise KeyError(request_id)

    def update_where(self, filters: RequestFilter, patch: dict[str, Any]) -> int:
        validate_patch(patch)
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    update(RequestRow).where(*_where(filters)).values(**patch)
                )
                return result.rowcount
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"update failed: {exc}") from exc

    def delete_before(self, cutoff: datetime) -> int:
        try:
            with self._session() as session, session.begin():
                result = session.execute(delete(RequestRow).where(RequestRow.timestamp < cutoff))
                return result.rowcount
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"cleanup failed: {exc}") from exc


class SqlKnownActorStore(_SqlStore):
    """Known-actor verdicts stored in the ``known_actors`` table."""

    def get(self, ip_address: str) -> KnownActor | None:
        try:
            with self._session() as session:
                row = session.get(KnownActorRow, ip_address)
                return _to_actor(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"lookup failed: {exc}") from exc

    def upsert(self, record: KnownActor) -> None:
        values = dict(
            ip_address=record.ip_address,
            proxy_type=record.proxy_type.value,
            confidence_score=record.confidence_score,
            is_blocked=record.is_blocked,
            detected_at=record.detected_at,
            reason=record.reason,
            auto_blocked=record.auto_blocked,
        )
        try:
            with self._session() as session, session.begin():
                session.merge(KnownActorRow(**values))
        except IntegrityError:
            # Lost an insert race for the same IP; the row exists now
            logger.debug("known actor %s inserted concurrently, updating", record.ip_address)
            self._update_actor(values)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"upsert failed: {exc}") from exc

    def _update_actor(self, values: dict[str, Any]) -> None:
        try:
            with self._session() as session, session.begin():
                session.execute(
                    update(KnownActorRow)
                    .where(KnownActorRow.ip_address == values["ip_address"])
                    .values(**values)
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"upsert failed: {exc}") from exc

    def set_blocked(self, ip_address: str, blocked: bool) -> bool:
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    update(KnownActorRow)
                    .where(KnownActorRow.ip_address == ip_address)
                    .values(is_blocked=blocked)
                )
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"update failed: {exc}") from exc

    def all(self) -> list[KnownActor]:
        try:
            with self._session() as session:
                return [_to_actor(row) for row in session.scalars(select(KnownActorRow))]
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"listing failed: {exc}") from exc
