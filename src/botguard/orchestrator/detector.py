"""Per-request detection entry point.

``DetectionOrchestrator.detect`` fingerprints the request, scores it,
consults the rate limiter, persists the tracked request and applies any
block. It always returns a decision: when the pipeline itself breaks the
request is allowed with a score of 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from botguard.clock import Clock, utc_now
from botguard.config import DetectionConfig
from botguard.errors import StoreUnavailable
from botguard.fingerprint import FingerprintTracker, generate_fingerprint
from botguard.fingerprint.tracker import DriftResult
from botguard.rate_limiter import RateLimiter, RateLimitResult, TempBlockResult
from botguard.request import RequestMeta
from botguard.scoring import CompositeScoringEngine, Recommendation, ScoreDecision
from botguard.store.base import KnownActorStore, RequestStore
from botguard.store.models import TrackedRequest

logger = logging.getLogger(__name__)


@dataclass
class DetectionDecision:
    allowed: bool
    needs_challenge: bool
    score: int
    recommendation: Recommendation
    request_id: int | None = None
    fingerprint: str | None = None
    reasons: list[str] = field(default_factory=list)
    rate_limit: RateLimitResult | None = None
    temp_block: TempBlockResult | None = None
    drift: DriftResult | None = None
    scoring: ScoreDecision | None = None


def fail_open_decision(reason: str = "detection_error") -> DetectionDecision:
    return DetectionDecision(
        allowed=True,
        needs_challenge=False,
        score=0,
        recommendation=Recommendation.ALLOW_NORMAL,
        reasons=[reason],
    )


class DetectionOrchestrator:
    """Sequences fingerprinting, scoring, rate limiting, persistence and blocking."""

    def __init__(
        self,
        requests: RequestStore,
        actors: KnownActorStore,
        config: DetectionConfig | None = None,
        engine: CompositeScoringEngine | None = None,
        fingerprints: FingerprintTracker | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Clock = utc_now,
    ):
        self.config = config or DetectionConfig()
        self.requests = requests
        self.actors = actors
        self.clock = clock
        self.engine = engine or CompositeScoringEngine(requests, actors, self.config, clock=clock)
        self.fingerprints = fingerprints or FingerprintTracker(requests)
        self.rate_limiter = rate_limiter or RateLimiter(requests, self.config, clock=clock)

    def detect(self, request: RequestMeta | Mapping[str, Any]) -> DetectionDecision:
        try:
            meta = request if isinstance(request, RequestMeta) else RequestMeta.from_mapping(request)
            return self._detect(meta)
        except Exception:
            logger.exception("bot detection pipeline failed, allowing request")
            return fail_open_decision()

    def _detect(self, meta: RequestMeta) -> DetectionDecision:
        now = self.clock()
        fingerprint = generate_fingerprint(meta)
        drift = self._track_drift(meta.ip_address, fingerprint)

        scoring = self.engine.score(meta, now)
        score = scoring.suspicious_score
        reasons = list(scoring.breakdown.patterns)

        # Consulted before the row is written so `count < limit` admits exactly `limit`
        rate = self.rate_limiter.check_adaptive_rate_limit(meta.ip_address, score)
        temp_block = self.rate_limiter.check_temp_block(meta.ip_address)
        known_blocked = self._is_known_blocked(meta.ip_address)

        request_id = self._persist(meta, fingerprint, score, now)

        blocked = scoring.should_block or known_blocked
        if scoring.should_block:
            self._auto_block(meta.ip_address, score, now)
            reasons.append("auto_blocked")
        if known_blocked:
            reasons.append("known_blocked_actor")
        if blocked and request_id is not None:
            self._stamp_blocked(request_id, now)
        if not rate.allowed:
            reasons.append(rate.reason)
        if temp_block.blocked:
            reasons.append(temp_block.reason or "temporarily_blocked")

        allowed = not blocked and rate.allowed and not temp_block.blocked
        decision = DetectionDecision(
            allowed=allowed,
            needs_challenge=scoring.should_challenge and allowed,
            score=score,
            recommendation=scoring.recommendation,
            request_id=request_id,
            fingerprint=fingerprint,
            reasons=reasons,
            rate_limit=rate,
            temp_block=temp_block,
            drift=drift,
            scoring=scoring,
        )
        logger.debug(
            "detect %s %s -> score=%d allowed=%s reasons=%s",
            meta.ip_address, meta.endpoint, score, allowed, reasons,
        )
        return decision

    def _track_drift(self, ip_address: str, fingerprint: str) -> DriftResult | None:
        try:
            return self.fingerprints.track_changes(ip_address, fingerprint)
        except StoreUnavailable as exc:
            logger.warning("fingerprint history unavailable for %s: %s", ip_address, exc)
            return None

    def _is_known_blocked(self, ip_address: str) -> bool:
        try:
            actor = self.actors.get(ip_address)
        except StoreUnavailable as exc:
            logger.warning("block check for %s failed open: %s", ip_address, exc)
            return False
        return actor is not None and actor.is_blocked

    def _persist(self, meta: RequestMeta, fingerprint: str, score: int, now: datetime) -> int | None:
        record = TrackedRequest(
            ip_address=meta.ip_address,
            timestamp=now,
            user_agent=meta.user_agent,
            endpoint=meta.endpoint,
            method=meta.method,
            referer=meta.referer,
            user_id=meta.user_id,
            fingerprint_hash=fingerprint,
            suspicious_score=score,
        )
        try:
            return self.requests.insert(record)
        except StoreUnavailable as exc:
            logger.warning("could not record request from %s: %s", meta.ip_address, exc)
            return None

    def _auto_block(self, ip_address: str, score: int, now: datetime) -> None:
        try:
            self.engine.auto_block(ip_address, score, now)
        except StoreUnavailable as exc:
            logger.warning("could not record block verdict for %s: %s", ip_address, exc)

    def _stamp_blocked(self, request_id: int, now: datetime) -> None:
        try:
            self.requests.update(request_id, {"blocked": True, "blocked_at": now})
        except StoreUnavailable as exc:
            logger.warning("could not mark request %d blocked: %s", request_id, exc)
