"""Operator actions over the request log and known-actor table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from botguard.behavior import BehaviorContext, BehaviorResult, BehaviorScorer
from botguard.clock import Clock, utc_now
from botguard.config import DetectionConfig
from botguard.fingerprint import FingerprintTracker
from botguard.fingerprint.tracker import ConsistencyResult
from botguard.signals import ProxyResult, ProxyScorer
from botguard.store.base import KnownActorStore, RequestStore
from botguard.store.models import KnownActor, ProxyType, RequestFilter, TrackedRequest

logger = logging.getLogger(__name__)

TIME_RANGES = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}

SUSPICIOUS_SCORE = 50
RECENT_LIMIT = 100


class RequestView(str, Enum):
    ALL = "all"
    SUSPICIOUS = "suspicious"
    BLOCKED = "blocked"


@dataclass
class DetectionStats:
    time_range: str
    total_requests: int
    suspicious_requests: int
    blocked_requests: int
    proxy_detections: int


@dataclass
class IpInspection:
    ip_address: str
    actor: KnownActor | None
    proxy: ProxyResult
    behavior: BehaviorResult
    fingerprint: ConsistencyResult
    recent_requests: int = 0


def range_start(time_range: str, now: datetime) -> datetime:
    if time_range not in TIME_RANGES:
        raise ValueError(f"unknown time range: {time_range}")
    return now - TIME_RANGES[time_range]


class AdminService:
    def __init__(
        self,
        requests: RequestStore,
        actors: KnownActorStore,
        config: DetectionConfig | None = None,
        clock: Clock = utc_now,
    ):
        self.requests = requests
        self.actors = actors
        self.config = config or DetectionConfig()
        self.clock = clock

    def block_ip(self, ip_address: str, reason: str = "Manually blocked") -> int:
        """Block ``ip_address`` and stamp its logged requests; returns the rows stamped."""
        now = self.clock()
        self.actors.upsert(
            KnownActor(
                ip_address=ip_address,
                proxy_type=ProxyType.BLOCKED,
                confidence_score=100,
                detected_at=now,
                is_blocked=True,
                reason=reason,
            )
        )
        stamped = self.requests.update_where(
            RequestFilter(ip_address=ip_address),
            {"blocked": True, "blocked_at": now},
        )
        logger.info("operator blocked %s (%d requests stamped)", ip_address, stamped)
        return stamped

    def unblock_ip(self, ip_address: str) -> bool:
        """Lift a block. The actor record stays so auto-blocking does not re-fire."""
        found = self.actors.set_blocked(ip_address, False)
        self.requests.update_where(
            RequestFilter(ip_address=ip_address, blocked=True),
            {"blocked": False, "blocked_at": None},
        )
        logger.info("operator unblocked %s", ip_address)
        return found

    def blocked_actors(self) -> list[KnownActor]:
        return sorted(
            (a for a in self.actors.all() if a.is_blocked),
            key=lambda a: a.detected_at,
            reverse=True,
        )

    def detection_stats(self, time_range: str = "24h") -> DetectionStats:
        now = self.clock()
        since = range_start(time_range, now)
        proxies = [
            a for a in self.actors.all()
            if a.proxy_type in (ProxyType.DATACENTER, ProxyType.VPN) and a.detected_at >= since
        ]
        return DetectionStats(
            time_range=time_range,
            total_requests=self.requests.count(RequestFilter(since=since)),
            suspicious_requests=self.requests.count(RequestFilter(since=since, min_score=SUSPICIOUS_SCORE)),
            blocked_requests=self.requests.count(RequestFilter(since=since, blocked=True)),
            proxy_detections=len(proxies),
        )

    def recent_requests(
        self,
        view: RequestView | str = RequestView.ALL,
        time_range: str = "24h",
        limit: int = RECENT_LIMIT,
    ) -> list[TrackedRequest]:
        view = RequestView(view)
        filters = RequestFilter(since=range_start(time_range, self.clock()))
        if view is RequestView.SUSPICIOUS:
            filters.min_score = SUSPICIOUS_SCORE
        elif view is RequestView.BLOCKED:
            filters.blocked = True
        return self.requests.query(filters, order_by="-timestamp", limit=min(limit, RECENT_LIMIT))

    def cleanup(self) -> int:
        cutoff = self.clock() - self.config.retention
        deleted = self.requests.delete_before(cutoff)
        logger.info("removed %d tracked requests older than %s", deleted, cutoff.isoformat())
        return deleted

    def inspect_ip(self, ip_address: str, user_agent: str | None = None) -> IpInspection:
        now = self.clock()
        actor = self.actors.get(ip_address)
        latest = self.requests.query(RequestFilter(ip_address=ip_address), order_by="-timestamp", limit=1)
        if user_agent is None and latest:
            user_agent = latest[0].user_agent

        proxy = ProxyScorer(self.requests, self.actors, self.config.datacenter_prefixes, remember_datacenters=False)
        behavior = BehaviorScorer(self.requests, self.config.behavior_frequency_windows)
        endpoint = latest[0].endpoint if latest else "/"

        return IpInspection(
            ip_address=ip_address,
            actor=actor,
            proxy=proxy.detect(ip_address, user_agent, {"user-agent": user_agent or ""}, now),
            behavior=behavior.analyze(BehaviorContext(ip_address, user_agent, endpoint, now)),
            fingerprint=FingerprintTracker(self.requests).consistency(ip_address),
            recent_requests=self.requests.count(
                RequestFilter(ip_address=ip_address, since=now - timedelta(hours=24))
            ),
        )

