"""Behavioural analysis over an IP's recent request history.

Six independent analyses each return an :class:`AnalysisResult`; the
:class:`BehaviorScorer` sums them (capped at 100) and records a labelled
pattern for every analysis that fired. Analyses share a small interface so a
real geolocation check can replace :class:`NullGeoAnalysis` without touching
the aggregator. An analysis that raises is logged and counts as zero; only a
store outage aborts the aggregate.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from statistics import mean, pvariance

from botguard.config import WindowThreshold
from botguard.errors import StoreUnavailable
from botguard.store.base import RequestStore
from botguard.store.models import RequestFilter

BOT_UA_MARKERS = ("bot", "crawler", "spider")

SENSITIVE_PATHS = (
    "/admin", "/api/admin", "/dashboard", "/config",
    "/users", "/auth", "/login", "/password",
)

ERROR_HUNTING_MARKERS = ("404", "error", "notfound", "missing")

RECOMMENDATIONS = {
    "high_frequency": "Implement rate limiting",
    "user_agent_inconsistency": "Add user agent validation",
    "sequential_patterns": "Monitor for systematic scanning",
    "endpoint_targeting": "Enhance endpoint security",
}
DEFAULT_RECOMMENDATION = "Monitor this IP closely"

_NUMBER = re.compile(r"\d+")

logger = logging.getLogger(__name__)


@dataclass
class BehaviorContext:
    ip_address: str
    user_agent: str | None
    endpoint: str
    now: datetime


@dataclass
class AnalysisResult:
    suspicious: bool = False
    score: float = 0
    details: dict | None = None


@dataclass
class BehaviorPattern:
    type: str
    score: float
    details: dict | None = None


@dataclass
class BehaviorResult:
    total_score: float
    patterns: list[BehaviorPattern] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    risk_level: str = "minimal"
    failed: list[str] = field(default_factory=list)

    @property
    def suspicious(self) -> bool:
        return self.total_score > 0


class BehaviorAnalysis:
    """One behavioural sub-check; ``pattern_type`` labels it in the aggregate."""

    pattern_type = "behavior"

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        raise NotImplementedError


class FrequencyAnalysis(BehaviorAnalysis):
    pattern_type = "high_frequency"

    def __init__(self, windows: list[WindowThreshold]):
        self.windows = windows

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        max_score = 0.0
        worst = None
        for window in self.windows:
            since = ctx.now - timedelta(minutes=window.minutes)
            count = store.count(RequestFilter(ip_address=ctx.ip_address, since=since))
            if count <= window.threshold:
                continue
            ratio = count / window.threshold
            score = min((ratio - 1) * 50, 80)
            if score > max_score:
                max_score = score
                worst = {
                    "minutes": window.minutes,
                    "requests": count,
                    "threshold": window.threshold,
                    "ratio": ratio,
                }
        return AnalysisResult(suspicious=max_score > 0, score=max_score, details=worst)


def is_generic_user_agent(ua: str) -> bool:
    return len(ua) < 20 or ua == "Mozilla/5.0" or "/" not in ua


class UserAgentConsistencyAnalysis(BehaviorAnalysis):
    pattern_type = "user_agent_inconsistency"

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        recent = store.query(
            RequestFilter(ip_address=ctx.ip_address, since=ctx.now - timedelta(hours=24)),
            order_by="-timestamp",
            limit=50,
        )
        if len(recent) < 2:
            return AnalysisResult()

        unique = list(dict.fromkeys(r.user_agent or "" for r in recent))
        rotation_rate = len(unique) / len(recent)
        score = 0
        issues = []

        if len(unique) > 10 and rotation_rate > 0.3:
            score += 60
            issues.append("high_user_agent_rotation")

        if sum(1 for ua in unique if is_generic_user_agent(ua)) > 2:
            score += 30
            issues.append("generic_user_agents")

        if any(marker in ua.lower() for ua in unique for marker in BOT_UA_MARKERS):
            score += 40
            issues.append("bot_user_agents")

        return AnalysisResult(
            suspicious=score > 0,
            score=min(score, 100),
            details={
                "unique_user_agents": len(unique),
                "total_requests": len(recent),
                "rotation_rate": rotation_rate,
                "issues": issues,
            },
        )


def is_alphabetical_sequence(endpoints: list[str]) -> bool:
    sample = endpoints[:10]
    if len(sample) < 3:
        return False
    return all(a < b for a, b in zip(sample, sample[1:]))


def is_numeric_sequence(endpoints: list[str]) -> bool:
    numbers = [int(m.group()) for m in map(_NUMBER.search, endpoints) if m]
    sample = numbers[:10]
    if len(sample) < 3:
        return False
    step = sample[1] - sample[0]
    if step == 0:
        return False
    return all(b - a == step for a, b in zip(sample, sample[1:]))


class SequentialPatternAnalysis(BehaviorAnalysis):
    pattern_type = "sequential_patterns"

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        recent = store.query(
            RequestFilter(ip_address=ctx.ip_address, since=ctx.now - timedelta(hours=1)),
            order_by="timestamp",
            limit=100,
        )
        if len(recent) < 5:
            return AnalysisResult()

        score = 0
        patterns = []

        endpoint_counts: dict[str, int] = {}
        for r in recent:
            endpoint_counts[r.endpoint] = endpoint_counts.get(r.endpoint, 0) + 1
        unique_endpoints = len(endpoint_counts)
        avg_per_endpoint = len(recent) / unique_endpoints

        if unique_endpoints > 20 and avg_per_endpoint < 3:
            score += 70
            patterns.append("endpoint_scanning")

        deltas = [
            (b.timestamp - a.timestamp).total_seconds() * 1000
            for a, b in zip(recent, recent[1:])
        ]
        avg_delta = mean(deltas)
        if pvariance(deltas) < 1000 and avg_delta < 5000:
            score += 50
            patterns.append("consistent_timing")

        ordered = [r.endpoint for r in recent[:20]]
        if is_alphabetical_sequence(ordered) or is_numeric_sequence(ordered):
            score += 60
            patterns.append("systematic_ordering")

        return AnalysisResult(
            suspicious=score > 0,
            score=min(score, 100),
            details={
                "unique_endpoints": unique_endpoints,
                "avg_requests_per_endpoint": avg_per_endpoint,
                "avg_time_diff_ms": avg_delta,
                "patterns": patterns,
            },
        )


class TimeOfDayAnalysis(BehaviorAnalysis):
    pattern_type = "time_patterns"

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        recent = store.query(
            RequestFilter(ip_address=ctx.ip_address, since=ctx.now - timedelta(days=7)),
            order_by="timestamp",
        )
        if len(recent) < 10:
            return AnalysisResult()

        hours = [r.timestamp.hour for r in recent]
        hour_counts: dict[int, int] = {}
        for hour in hours:
            hour_counts[hour] = hour_counts.get(hour, 0) + 1

        score = 0
        patterns = []

        active_hours = len(hour_counts)
        if active_hours > 20:
            score += 40
            patterns.append("247_activity")

        off_hours_ratio = sum(1 for h in hours if 0 <= h <= 6) / len(hours)
        if off_hours_ratio > 0.3:
            score += 30
            patterns.append("off_hours_activity")

        # A single busy hour has zero variance but says nothing about regularity
        if active_hours > 1 and pvariance(hour_counts.values()) < 2:
            score += 25
            patterns.append("consistent_hourly_pattern")

        return AnalysisResult(
            suspicious=score > 0,
            score=min(score, 100),
            details={
                "active_hours": active_hours,
                "off_hours_ratio": off_hours_ratio,
                "patterns": patterns,
            },
        )


class EndpointTargetingAnalysis(BehaviorAnalysis):
    pattern_type = "endpoint_targeting"

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        recent = store.query(
            RequestFilter(ip_address=ctx.ip_address, since=ctx.now - timedelta(hours=1)),
            order_by=None,
        )
        if len(recent) < 5:
            return AnalysisResult()

        score = 0
        patterns = []

        sensitive = [r for r in recent if any(p in r.endpoint for p in SENSITIVE_PATHS)]
        if sensitive:
            score += min(len(sensitive) * 15, 60)
            patterns.append("sensitive_endpoint_targeting")

        api_endpoints = {r.endpoint for r in recent if "/api/" in r.endpoint}
        if len(api_endpoints) > 10:
            score += 40
            patterns.append("api_enumeration")

        error_hunting = [
            r for r in recent if any(m in r.endpoint.lower() for m in ERROR_HUNTING_MARKERS)
        ]
        if len(error_hunting) > 2:
            score += 30
            patterns.append("error_page_targeting")

        return AnalysisResult(
            suspicious=score > 0,
            score=min(score, 100),
            details={
                "sensitive_requests": len(sensitive),
                "unique_api_endpoints": len(api_endpoints),
                "patterns": patterns,
            },
        )


class NullGeoAnalysis(BehaviorAnalysis):
    """Placeholder until a geolocation service is wired in."""

    pattern_type = "geographic_anomaly"

    def analyze(self, store: RequestStore, ctx: BehaviorContext) -> AnalysisResult:
        return AnalysisResult(details={"message": "geolocation service not configured"})


def risk_level(score: float) -> str:
    if score >= 80:
        return "critical"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    if score >= 20:
        return "low"
    return "minimal"


def recommendations_for(patterns: list[BehaviorPattern]) -> list[str]:
    return list(dict.fromkeys(RECOMMENDATIONS.get(p.type, DEFAULT_RECOMMENDATION) for p in patterns))


class BehaviorScorer:
    def __init__(
        self,
        store: RequestStore,
        frequency_windows: list[WindowThreshold],
        geo_analysis: BehaviorAnalysis | None = None,
    ):
        self.store = store
        self.analyses: list[BehaviorAnalysis] = [
            FrequencyAnalysis(frequency_windows),
            UserAgentConsistencyAnalysis(),
            SequentialPatternAnalysis(),
            TimeOfDayAnalysis(),
            EndpointTargetingAnalysis(),
            geo_analysis or NullGeoAnalysis(),
        ]

    def analyze(self, ctx: BehaviorContext) -> BehaviorResult:
        total = 0.0
        patterns = []
        failed = []
        for analysis in self.analyses:
            try:
                result = analysis.analyze(self.store, ctx)
            except StoreUnavailable:
                raise
            except Exception:
                logger.warning("behaviour analysis %s failed for %s", analysis.pattern_type, ctx.ip_address, exc_info=True)
                failed.append(analysis.pattern_type)
                continue
            total += result.score
            if result.suspicious:
                patterns.append(BehaviorPattern(analysis.pattern_type, result.score, result.details))

        total = min(total, 100)
        return BehaviorResult(
            total_score=total,
            patterns=patterns,
            recommendations=recommendations_for(patterns),
            risk_level=risk_level(total),
            failed=failed,
        )
