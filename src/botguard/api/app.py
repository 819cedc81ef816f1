"""FastAPI application for the botguard detection service.

Build it with :func:`create_app`; there is no module-level instance. Run with
``uvicorn --factory botguard.api.app:create_app``.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from botguard.admin import AdminService, RequestView
from botguard.clock import Clock, utc_now
from botguard.config import DetectionConfig
from botguard.errors import StoreUnavailable
from botguard.log_config import setup_logging
from botguard.orchestrator import DetectionOrchestrator
from botguard.rate_limiter import RateLimiter, RateLimitResult, rate_limit_headers
from botguard.request import RequestMeta
from botguard.store import (
    InMemoryKnownActorStore,
    InMemoryRequestStore,
    KnownActor,
    KnownActorStore,
    RequestStore,
)

logger = logging.getLogger(__name__)


def build_stores(database_url: str | None = None) -> tuple[RequestStore, KnownActorStore]:
    """SQL stores when a database URL is configured, in-memory ones otherwise."""
    database_url = database_url or os.environ.get("BOTGUARD_DATABASE_URL")
    if not database_url:
        logger.warning("BOTGUARD_DATABASE_URL not set, request history is kept in memory")
        return InMemoryRequestStore(), InMemoryKnownActorStore()

    from sqlalchemy import create_engine

    from botguard.store.sql import SqlKnownActorStore, SqlRequestStore, init_schema

    engine = create_engine(database_url, pool_pre_ping=True)
    init_schema(engine)
    return SqlRequestStore(engine), SqlKnownActorStore(engine)


# ---------- Models ----------


class DetectRequest(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None
    endpoint: str = "/"
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    referer: str | None = None
    user_id: str | None = None
    form_data: dict[str, Any] | None = None
    timestamp: str | int | float | None = None


class RateLimitResponse(BaseModel):
    allowed: bool
    reason: str
    request_count: int
    limit: int | None
    remaining: int | None
    window_seconds: int | None
    reset_time: datetime | None


class DetectResponse(BaseModel):
    allowed: bool
    needs_challenge: bool
    score: int
    recommendation: str
    request_id: int | None
    fingerprint: str | None
    reasons: list[str]
    rate_limit: RateLimitResponse | None = None


class RateLimitCheckInput(BaseModel):
    identifier: str
    limit_type: str = "per_ip"


class BurstCheckInput(BaseModel):
    identifier: str
    endpoint: str


class TempBlockResponse(BaseModel):
    blocked: bool
    reason: str | None
    block_until: datetime | None
    violation_count: int


class RateLimitStatsResponse(BaseModel):
    time_range: str
    total_requests: int
    unique_ips: int
    avg_requests_per_ip: float
    top_ips: list[tuple[str, int]]
    violating_ips: list[tuple[str, int]]


class BlockInput(BaseModel):
    ip_address: str
    reason: str = "Manually blocked"


class UnblockInput(BaseModel):
    ip_address: str


class ActorResponse(BaseModel):
    ip_address: str
    proxy_type: str
    confidence_score: int
    is_blocked: bool
    detected_at: datetime
    reason: str | None
    auto_blocked: bool


class DetectionStatsResponse(BaseModel):
    time_range: str
    total_requests: int
    suspicious_requests: int
    blocked_requests: int
    proxy_detections: int


class TrackedRequestResponse(BaseModel):
    id: int | None
    ip_address: str
    timestamp: datetime
    user_agent: str | None
    endpoint: str
    method: str
    user_id: str | None
    fingerprint_hash: str | None
    suspicious_score: int
    blocked: bool
    blocked_at: datetime | None


class InspectionResponse(BaseModel):
    ip_address: str
    known_actor: ActorResponse | None
    is_proxy: bool
    proxy_type: str | None
    proxy_confidence: int
    behavior_score: float
    behavior_patterns: list[str]
    risk_level: str
    recommendations: list[str]
    fingerprint_consistent: bool
    fingerprint_score: int
    recent_requests: int


def _rate_limit_response(result: RateLimitResult) -> RateLimitResponse:
    return RateLimitResponse(
        allowed=result.allowed,
        reason=result.reason,
        request_count=result.request_count,
        limit=result.limit,
        remaining=result.remaining,
        window_seconds=int(result.window.total_seconds()) if result.window else None,
        reset_time=result.reset_time,
    )


def _actor_response(actor: KnownActor) -> ActorResponse:
    return ActorResponse(
        ip_address=actor.ip_address,
        proxy_type=actor.proxy_type.value,
        confidence_score=actor.confidence_score,
        is_blocked=actor.is_blocked,
        detected_at=actor.detected_at,
        reason=actor.reason,
        auto_blocked=actor.auto_blocked,
    )


def create_app(
    requests: RequestStore | None = None,
    actors: KnownActorStore | None = None,
    config: DetectionConfig | None = None,
    clock: Clock = utc_now,
    configure_logging: bool = True,
) -> FastAPI:
    if configure_logging:
        setup_logging(os.environ.get("BOTGUARD_LOG_LEVEL", "INFO"))
    if requests is None or actors is None:
        requests, actors = build_stores()
    config = config or DetectionConfig.from_env()

    rate_limiter = RateLimiter(requests, config, clock=clock)
    detector = DetectionOrchestrator(requests, actors, config, rate_limiter=rate_limiter, clock=clock)
    admin = AdminService(requests, actors, config, clock=clock)

    app = FastAPI(title="botguard", version="0.1.0")
    app.state.detector = detector
    app.state.admin = admin

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": "botguard"}

    # ---------- Detection ----------

    @app.post("/api/v1/detect", response_model=DetectResponse)
    def detect(req: DetectRequest, response: Response) -> DetectResponse:
        decision = detector.detect(RequestMeta.from_mapping(req.model_dump()))
        rate = None
        if decision.rate_limit is not None:
            response.headers.update(rate_limit_headers(decision.rate_limit))
            rate = _rate_limit_response(decision.rate_limit)
        return DetectResponse(
            allowed=decision.allowed,
            needs_challenge=decision.needs_challenge,
            score=decision.score,
            recommendation=decision.recommendation.value,
            request_id=decision.request_id,
            fingerprint=decision.fingerprint,
            reasons=decision.reasons,
            rate_limit=rate,
        )

    # ---------- Rate limiting ----------

    @app.post("/api/v1/rate-limit/check", response_model=RateLimitResponse)
    def check_rate_limit(req: RateLimitCheckInput, response: Response) -> RateLimitResponse:
        try:
            result = rate_limiter.check_rate_limit(req.identifier, req.limit_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        response.headers.update(rate_limit_headers(result))
        return _rate_limit_response(result)

    @app.post("/api/v1/rate-limit/burst", response_model=RateLimitResponse)
    def check_burst(req: BurstCheckInput, response: Response) -> RateLimitResponse:
        result = rate_limiter.check_burst_rate_limit(req.identifier, req.endpoint)
        response.headers.update(rate_limit_headers(result))
        return _rate_limit_response(result)

    @app.get("/api/v1/rate-limit/stats", response_model=RateLimitStatsResponse)
    def rate_limit_stats(time_range: str = "24h") -> RateLimitStatsResponse:
        try:
            stats = rate_limiter.stats(time_range)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return RateLimitStatsResponse(**vars(stats))

    @app.get("/api/v1/temp-block/{identifier}", response_model=TempBlockResponse)
    def temp_block(identifier: str) -> TempBlockResponse:
        result = rate_limiter.check_temp_block(identifier)
        return TempBlockResponse(
            blocked=result.blocked,
            reason=result.reason,
            block_until=result.block_until,
            violation_count=result.violation_count,
        )

    # ---------- Admin ----------

    @app.post("/api/v1/admin/block")
    def block(req: BlockInput) -> dict[str, Any]:
        try:
            stamped = admin.block_ip(req.ip_address, req.reason)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"ip_address": req.ip_address, "blocked": True, "requests_marked": stamped}

    @app.post("/api/v1/admin/unblock")
    def unblock(req: UnblockInput) -> dict[str, Any]:
        try:
            found = admin.unblock_ip(req.ip_address)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        if not found:
            raise HTTPException(status_code=404, detail=f"{req.ip_address} is not a known actor")
        return {"ip_address": req.ip_address, "blocked": False}

    @app.get("/api/v1/admin/blocked", response_model=list[ActorResponse])
    def blocked() -> list[ActorResponse]:
        try:
            actors = admin.blocked_actors()
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return [_actor_response(a) for a in actors]

    @app.get("/api/v1/admin/stats", response_model=DetectionStatsResponse)
    def stats(time_range: str = "24h") -> DetectionStatsResponse:
        try:
            result = admin.detection_stats(time_range)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return DetectionStatsResponse(**vars(result))

    @app.get("/api/v1/admin/requests", response_model=list[TrackedRequestResponse])
    def recent(view: RequestView = RequestView.ALL, time_range: str = "24h", limit: int = 100):
        try:
            rows = admin.recent_requests(view, time_range, limit)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return [
            TrackedRequestResponse(
                id=r.id,
                ip_address=r.ip_address,
                timestamp=r.timestamp,
                user_agent=r.user_agent,
                endpoint=r.endpoint,
                method=r.method,
                user_id=r.user_id,
                fingerprint_hash=r.fingerprint_hash,
                suspicious_score=r.suspicious_score,
                blocked=r.blocked,
                blocked_at=r.blocked_at,
            )
            for r in rows
        ]

    @app.post("/api/v1/admin/cleanup")
    def cleanup() -> dict[str, int]:
        try:
            return {"deleted": admin.cleanup()}
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @app.get("/api/v1/admin/inspect/{ip_address}", response_model=InspectionResponse)
    def inspect(ip_address: str) -> InspectionResponse:
        try:
            report = admin.inspect_ip(ip_address)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return InspectionResponse(
            ip_address=ip_address,
            known_actor=_actor_response(report.actor) if report.actor else None,
            is_proxy=report.proxy.is_proxy,
            proxy_type=report.proxy.proxy_type.value if report.proxy.proxy_type else None,
            proxy_confidence=report.proxy.confidence,
            behavior_score=report.behavior.total_score,
            behavior_patterns=[p.type for p in report.behavior.patterns],
            risk_level=report.behavior.risk_level,
            recommendations=report.behavior.recommendations,
            fingerprint_consistent=report.fingerprint.consistent,
            fingerprint_score=report.fingerprint.score,
            recent_requests=report.recent_requests,
        )

    return app
