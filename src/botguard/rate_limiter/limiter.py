"""Window counters over the request log.

Counts are derived from the request log on every check instead of being
kept as separate mutable counters. Store failures fail open.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from botguard.clock import Clock, utc_now
from botguard.config import DetectionConfig, LimitScope, RateLimitRule
from botguard.errors import StoreUnavailable
from botguard.store.base import RequestStore
from botguard.store.models import RequestFilter

logger = logging.getLogger(__name__)

# (window length, share of the rule's request budget)
BURST_WINDOWS = (
    (timedelta(minutes=1), 0.1),
    (timedelta(minutes=5), 0.3),
)

ADAPTIVE_BANDS = ((80, 0.1), (60, 0.3), (40, 0.5), (20, 0.7))

STATS_RANGES = {"1h": 1, "6h": 6, "24h": 24, "7d": 24 * 7}


@dataclass
class RateLimitResult:
    allowed: bool
    reason: str = "within_limits"
    request_count: int = 0
    limit: int | None = None
    remaining: int | None = None
    window: timedelta | None = None
    reset_time: datetime | None = None
    error: str | None = None


@dataclass
class TempBlockResult:
    blocked: bool
    reason: str | None = None
    block_until: datetime | None = None
    violation_count: int = 0
    error: str | None = None


@dataclass
class RateLimitStats:
    time_range: str
    total_requests: int
    unique_ips: int
    avg_requests_per_ip: float
    top_ips: list[tuple[str, int]] = field(default_factory=list)
    violating_ips: list[tuple[str, int]] = field(default_factory=list)


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit or 0),
        "X-RateLimit-Remaining": str(result.remaining or 0),
        "X-RateLimit-Reset": str(math.ceil(result.reset_time.timestamp())) if result.reset_time else "0",
        "X-RateLimit-Window": str(int(result.window.total_seconds())) if result.window else "0",
    }


def adaptive_factor(suspicious_score: int) -> float:
    for floor, factor in ADAPTIVE_BANDS:
        if suspicious_score >= floor:
            return factor
    return 1.0


class RateLimiter:
    def __init__(self, store: RequestStore, config: DetectionConfig | None = None, clock: Clock = utc_now):
        self.store = store
        self.config = config or DetectionConfig()
        self.clock = clock

    def check_rate_limit(
        self,
        identifier: str,
        limit_type: str = "per_ip",
        custom_limit: RateLimitRule | None = None,
    ) -> RateLimitResult:
        limit = custom_limit or self.config.rate_limits.get(limit_type)
        if limit is None:
            raise ValueError(f"unknown rate limit type: {limit_type}")

        now = self.clock()
        try:
            count = self.store.count(self._scoped_filter(identifier, limit.scope, now - limit.window))
        except StoreUnavailable as exc:
            logger.warning("rate limit check for %s failed open: %s", identifier, exc)
            return RateLimitResult(
                allowed=True,
                reason="error",
                limit=limit.requests,
                remaining=limit.requests,
                window=limit.window,
                reset_time=now + limit.window,
                error=str(exc),
            )

        allowed = count < limit.requests
        return RateLimitResult(
            allowed=allowed,
            reason="within_limits" if allowed else "rate_limit_exceeded",
            request_count=count,
            limit=limit.requests,
            remaining=max(0, limit.requests - count),
            window=limit.window,
            reset_time=now + limit.window,
        )

    def endpoint_rule(self, endpoint: str) -> RateLimitRule:
        for entry in self.config.ordered_endpoint_limits():
            if entry.matches(endpoint):
                return entry.limit
        return self.config.rate_limits["per_ip"]

    def check_burst_rate_limit(self, identifier: str, endpoint: str) -> RateLimitResult:
        limit = self.endpoint_rule(endpoint)
        windows = [(duration, math.ceil(limit.requests * share)) for duration, share in BURST_WINDOWS]
        windows.append((limit.window, limit.requests))

        now = self.clock()
        try:
            for duration, threshold in windows:
                count = self.store.count(
                    RequestFilter(ip_address=identifier, endpoint=endpoint, since=now - duration)
                )
                if count >= threshold:
                    logger.debug("burst limit hit for %s on %s: %d/%d", identifier, endpoint, count, threshold)
                    return RateLimitResult(
                        allowed=False,
                        reason="burst_limit_exceeded",
                        request_count=count,
                        limit=threshold,
                        remaining=0,
                        window=duration,
                        reset_time=now + duration,
                    )
        except StoreUnavailable as exc:
            logger.warning("burst check for %s failed open: %s", identifier, exc)
            return RateLimitResult(allowed=True, reason="error", error=str(exc))

        return RateLimitResult(allowed=True, limit=limit.requests, window=limit.window)

    def check_adaptive_rate_limit(self, identifier: str, suspicious_score: int = 0) -> RateLimitResult:
        base = self.config.rate_limits["per_ip"]
        adjusted = RateLimitRule(
            requests=math.ceil(base.requests * adaptive_factor(suspicious_score)),
            window=base.window,
            scope=base.scope,
        )
        return self.check_rate_limit(identifier, "per_ip", adjusted)

    def check_temp_block(self, identifier: str) -> TempBlockResult:
        now = self.clock()
        try:
            violations = self.store.count(
                RequestFilter(ip_address=identifier, min_score=80, since=now - timedelta(hours=1))
            )
        except StoreUnavailable as exc:
            logger.warning("temp block check for %s failed open: %s", identifier, exc)
            return TempBlockResult(blocked=False, error=str(exc))

        if violations >= 5:
            return TempBlockResult(
                blocked=True,
                reason="multiple_high_severity_violations",
                block_until=now + timedelta(hours=24),
                violation_count=violations,
            )
        if violations >= 3:
            return TempBlockResult(
                blocked=True,
                reason="repeated_high_severity_violations",
                block_until=now + timedelta(hours=1),
                violation_count=violations,
            )
        return TempBlockResult(blocked=False, violation_count=violations)

    def stats(self, time_range: str = "24h") -> RateLimitStats:
        if time_range not in STATS_RANGES:
            raise ValueError(f"unknown time range: {time_range}")
        hours = STATS_RANGES[time_range]
        rows = self.store.query(RequestFilter(since=self.clock() - timedelta(hours=hours)), order_by=None)

        per_ip: dict[str, int] = {}
        for row in rows:
            per_ip[row.ip_address] = per_ip.get(row.ip_address, 0) + 1

        top = sorted(per_ip.items(), key=lambda item: item[1], reverse=True)[:10]
        per_ip_rule = self.config.rate_limits["per_ip"]
        allowance = per_ip_rule.requests * (timedelta(hours=hours) / per_ip_rule.window)

        return RateLimitStats(
            time_range=time_range,
            total_requests=len(rows),
            unique_ips=len(per_ip),
            avg_requests_per_ip=round(len(rows) / max(len(per_ip), 1), 2),
            top_ips=top,
            violating_ips=[(ip, count) for ip, count in top if count > allowance],
        )

    def _scoped_filter(self, identifier: str, scope: LimitScope, since: datetime) -> RequestFilter:
        if scope is LimitScope.GLOBAL:
            return RequestFilter(since=since)
        if scope is LimitScope.USER:
            return RequestFilter(user_id=identifier, since=since)
        return RequestFilter(ip_address=identifier, since=since)
