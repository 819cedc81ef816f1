"""Proxy, VPN and datacenter-origin detection.

Five heuristics are summed and capped at 100: a known-actor lookup, proxy
header signatures, a datacenter-prefix match, header geo consistency and the
IP's recent scoring reputation. A request is treated as proxied at 50 or more.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping, Protocol

from botguard.store.base import KnownActorStore, RequestStore
from botguard.store.models import KnownActor, ProxyType, RequestFilter

logger = logging.getLogger(__name__)

PROXY_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "x-proxy-id",
    "x-forwarded-host",
    "via",
    "forwarded",
    "x-cluster-client-ip",
    "x-forwarded-proto",
    "x-originating-ip",
    "x-remote-ip",
)

DATACENTER_CONFIDENCE = 60


@dataclass
class ProxyResult:
    is_proxy: bool
    proxy_type: ProxyType | None
    confidence: int
    score: int
    details: dict = field(default_factory=dict)


class GeoConsistencyCheck(Protocol):
    def is_inconsistent(self, ip_address: str, headers: Mapping[str, str]) -> bool: ...


class HeaderGeoConsistency:
    """Flags a US-English browser that reports a non-American timezone.

    Stands in for a real geolocation lookup; it only compares what the client
    claims about itself.
    """

    def is_inconsistent(self, ip_address: str, headers: Mapping[str, str]) -> bool:
        accept_language = headers.get("accept-language", "")
        tz = headers.get("x-timezone", "")
        return "en-US" in accept_language and bool(tz) and "America" not in tz


def analyze_proxy_headers(headers: Mapping[str, str], user_agent: str | None = None) -> tuple[int, list[str]]:
    """Return the capped header subtotal and the headers that raised it."""
    score = 0
    suspicious = []

    for name in PROXY_HEADERS:
        if headers.get(name):
            score += 15
            suspicious.append(name)

    if has_header_manipulation(headers, user_agent):
        score += 25
        suspicious.append("header_manipulation")

    if not headers.get("accept-language"):
        score += 10
        suspicious.append("missing_accept_language")

    if not headers.get("accept-encoding"):
        score += 10
        suspicious.append("missing_accept_encoding")

    return min(score, 100), suspicious


def has_header_manipulation(headers: Mapping[str, str], user_agent: str | None = None) -> bool:
    ua = headers.get("user-agent") or user_agent or ""
    if len(ua) < 10 or ua == "Mozilla/5.0":
        return True
    return "*" in headers.get("accept-language", "")


class ProxyScorer:
    def __init__(
        self,
        requests: RequestStore,
        actors: KnownActorStore,
        datacenter_prefixes: tuple[str, ...],
        geo_check: GeoConsistencyCheck | None = None,
        remember_datacenters: bool = True,
    ):
        self.requests = requests
        self.actors = actors
        self.datacenter_prefixes = datacenter_prefixes
        self.geo_check = geo_check or HeaderGeoConsistency()
        self.remember_datacenters = remember_datacenters

    def detect(
        self,
        ip_address: str,
        user_agent: str | None,
        headers: Mapping[str, str],
        now: datetime,
    ) -> ProxyResult:
        total = 0
        proxy_type = None
        details = {
            "known_proxy": False,
            "suspicious_headers": [],
            "datacenter_ip": False,
            "geo_inconsistent": False,
            "reputation_score": 0,
        }

        known = self.actors.get(ip_address)
        if known is not None:
            total += known.confidence_score
            proxy_type = known.proxy_type
            details["known_proxy"] = True

        header_score, suspicious_headers = analyze_proxy_headers(headers, user_agent)
        total += header_score
        details["suspicious_headers"] = suspicious_headers

        if self.is_datacenter_ip(ip_address):
            total += DATACENTER_CONFIDENCE
            proxy_type = ProxyType.DATACENTER
            details["datacenter_ip"] = True
            if known is None and self.remember_datacenters:
                self._remember_datacenter(ip_address, now)

        if self.geo_check.is_inconsistent(ip_address, headers):
            total += 40
            details["geo_inconsistent"] = True

        reputation = self.reputation_score(ip_address, now)
        total += reputation
        details["reputation_score"] = reputation
        details["raw_score"] = total

        confidence = min(total, 100)
        return ProxyResult(
            is_proxy=total >= 50,
            proxy_type=proxy_type,
            confidence=confidence,
            score=confidence,
            details=details,
        )

    def is_datacenter_ip(self, ip_address: str) -> bool:
        return any(ip_address.startswith(prefix) for prefix in self.datacenter_prefixes)

    def reputation_score(self, ip_address: str, now: datetime) -> int:
        recent = self.requests.query(
            RequestFilter(ip_address=ip_address, since=now - timedelta(hours=24)),
            order_by="-suspicious_score",
            limit=10,
        )
        if not recent:
            return 0

        score = 0
        average = sum(r.suspicious_score for r in recent) / len(recent)
        if average > 50:
            score += 30
        if sum(1 for r in recent if r.suspicious_score > 70) > 5:
            score += 40
        return score

    def _remember_datacenter(self, ip_address: str, now: datetime) -> None:
        # Future lookups short-circuit through the known-actor table
        self.actors.upsert(
            KnownActor(
                ip_address=ip_address,
                proxy_type=ProxyType.DATACENTER,
                confidence_score=DATACENTER_CONFIDENCE,
                detected_at=now,
            )
        )
        logger.info("classified %s as datacenter origin", ip_address)
