"""Client fingerprints and per-IP fingerprint drift.

``generate_fingerprint`` hashes only stable signals, so the same device yields
the same token across visits; drift tracking depends on that. Throwaway
per-request identifiers come from ``generate_request_nonce`` instead.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field

from botguard.clock import epoch_ms, utc_now
from botguard.request import RequestMeta
from botguard.store.base import RequestStore
from botguard.store.models import RequestFilter

logger = logging.getLogger(__name__)

STABLE_HEADERS = (
    "accept-language",
    "accept-encoding",
    "dnt",
    "connection",
    "upgrade-insecure-requests",
    "sec-ch-ua-platform",
    "x-timezone",
    "ssl-version",
    "ssl-cipher",
)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def hash_string(text: str) -> str:
    """32-bit rolling hash (``h * 31 + c``) rendered in base 36."""
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    h = abs(h)
    if h == 0:
        return "0"
    digits = []
    while h:
        h, rem = divmod(h, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def fingerprint_signals(meta: RequestMeta) -> dict[str, str]:
    signals = {"user_agent": meta.user_agent or meta.header("user-agent") or "unknown"}
    for name in STABLE_HEADERS:
        signals[name] = meta.header(name) or "unknown"
    return signals


def generate_fingerprint(meta: RequestMeta) -> str:
    return hash_string(json.dumps(fingerprint_signals(meta), sort_keys=True))


def generate_request_nonce(meta: RequestMeta) -> str:
    salted = fingerprint_signals(meta)
    salted["timestamp"] = str(epoch_ms(meta.timestamp or utc_now()))
    salted["random"] = secrets.token_hex(8)
    return hash_string(json.dumps(salted, sort_keys=True))


@dataclass
class DriftResult:
    suspicious: bool
    score: int
    reasons: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)


@dataclass
class ConsistencyResult:
    consistent: bool
    score: int
    ratio: float = 0.0
    unique_count: int = 0
    total_count: int = 0


def analyze_consistency(history: list[str]) -> ConsistencyResult:
    if len(history) < 2:
        return ConsistencyResult(consistent=True, score=0, total_count=len(history), unique_count=len(set(history)))

    unique = len(set(history))
    ratio = unique / len(history)
    if ratio > 0.8:
        score = 80
    elif ratio > 0.5:
        score = 50
    elif ratio > 0.3:
        score = 20
    else:
        score = 0
    return ConsistencyResult(
        consistent=ratio <= 0.3,
        score=score,
        ratio=ratio,
        unique_count=unique,
        total_count=len(history),
    )


class FingerprintTracker:
    def __init__(self, store: RequestStore, history_limit: int = 20):
        self.store = store
        self.history_limit = history_limit

    def history(self, ip_address: str) -> list[str]:
        rows = self.store.query(
            RequestFilter(ip_address=ip_address, has_fingerprint=True),
            order_by="-timestamp",
            limit=self.history_limit,
        )
        return [r.fingerprint_hash for r in rows]

    def track_changes(self, ip_address: str, new_fingerprint: str) -> DriftResult:
        history = self.history(ip_address)
        if not history:
            return DriftResult(suspicious=False, score=0, reasons=["first_request_from_ip"])

        unique = list(dict.fromkeys(history))
        is_new = new_fingerprint not in unique
        score = 0
        reasons = []

        if len(unique) > 3:
            score += 25
            reasons.append("multiple_fingerprints")

        if len(unique) > 1 and len(history) < 10:
            score += 35
            reasons.append("rapid_fingerprint_change")

        if is_new:
            score += 15
            reasons.append("new_fingerprint_for_ip")

        if score > 30:
            logger.debug("fingerprint drift for %s: %s", ip_address, reasons)

        return DriftResult(
            suspicious=score > 30,
            score=min(score, 100),
            reasons=reasons,
            details={
                "total_requests": len(history),
                "unique_fingerprints": len(unique),
                "is_new_fingerprint": is_new,
            },
        )

    def consistency(self, ip_address: str) -> ConsistencyResult:
        return analyze_consistency(self.history(ip_address))
