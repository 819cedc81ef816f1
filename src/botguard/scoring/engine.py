"""Composite suspicion scoring.

Runs the five signal scorers against a request, weights their 0-100 scores
into a single integer score and maps it onto a recommendation tier. A failing
signal is logged and contributes nothing; it never aborts the request.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from botguard.behavior import BehaviorContext, BehaviorScorer
from botguard.clock import Clock, utc_now
from botguard.config import DetectionConfig
from botguard.request import RequestMeta
from botguard.signals import FrequencyScorer, HoneypotScorer, ProxyScorer, UserAgentScorer
from botguard.store.base import KnownActorStore, RequestStore
from botguard.store.models import KnownActor, ProxyType

logger = logging.getLogger(__name__)


class Recommendation(str, Enum):
    BLOCK_IMMEDIATELY = "BLOCK_IMMEDIATELY"
    REQUIRE_CAPTCHA = "REQUIRE_CAPTCHA"
    RATE_LIMIT_STRICT = "RATE_LIMIT_STRICT"
    MONITOR_CLOSELY = "MONITOR_CLOSELY"
    ALLOW_NORMAL = "ALLOW_NORMAL"

    @classmethod
    def for_score(cls, score: int, config: DetectionConfig | None = None) -> Recommendation:
        config = config or DetectionConfig()
        # Tiers are checked highest first, so a lowered block or suspicious
        # threshold shadows the tiers below it
        if score >= config.block_threshold:
            return cls.BLOCK_IMMEDIATELY
        if score >= config.suspicious_threshold:
            return cls.REQUIRE_CAPTCHA
        if score >= config.rate_limit_threshold:
            return cls.RATE_LIMIT_STRICT
        if score >= config.monitor_threshold:
            return cls.MONITOR_CLOSELY
        return cls.ALLOW_NORMAL


@dataclass
class SignalOutcome:
    """Score of one signal, or the error that prevented computing it."""

    name: str
    score: float = 0
    patterns: list[str] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScoreBreakdown:
    signals: dict[str, SignalOutcome]
    weighted_total: float

    @property
    def failed_signals(self) -> list[str]:
        return [name for name, outcome in self.signals.items() if not outcome.ok]

    @property
    def patterns(self) -> list[str]:
        return [p for outcome in self.signals.values() for p in outcome.patterns]


@dataclass
class ScoreDecision:
    suspicious_score: int
    recommendation: Recommendation
    should_block: bool
    should_challenge: bool
    breakdown: ScoreBreakdown


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


class CompositeScoringEngine:
    """Weighted aggregation of user-agent, proxy, behaviour, honeypot and frequency signals."""

    def __init__(
        self,
        requests: RequestStore,
        actors: KnownActorStore,
        config: DetectionConfig | None = None,
        user_agent_scorer: UserAgentScorer | None = None,
        proxy_scorer: ProxyScorer | None = None,
        behavior_scorer: BehaviorScorer | None = None,
        honeypot_scorer: HoneypotScorer | None = None,
        frequency_scorer: FrequencyScorer | None = None,
        clock: Clock = utc_now,
    ):
        self.config = config or DetectionConfig()
        self.requests = requests
        self.actors = actors
        self.clock = clock
        self.user_agent_scorer = user_agent_scorer or UserAgentScorer()
        self.proxy_scorer = proxy_scorer or ProxyScorer(requests, actors, self.config.datacenter_prefixes)
        self.behavior_scorer = behavior_scorer or BehaviorScorer(requests, self.config.behavior_frequency_windows)
        self.honeypot_scorer = honeypot_scorer or HoneypotScorer()
        self.frequency_scorer = frequency_scorer or FrequencyScorer(requests, self.config.frequency_tiers)

    def score(self, meta: RequestMeta, now: datetime | None = None) -> ScoreDecision:
        now = now or self.clock()
        outcomes = {
            "user_agent": self._evaluate("user_agent", lambda: self._user_agent(meta)),
            "proxy": self._evaluate("proxy", lambda: self._proxy(meta, now)),
            "behavioral": self._evaluate("behavioral", lambda: self._behavioral(meta, now)),
            "honeypot": self._evaluate("honeypot", lambda: self._honeypot(meta, now)),
            "frequency": self._evaluate("frequency", lambda: self._frequency(meta, now)),
        }
        return self.decide(outcomes)

    def decide(self, outcomes: dict[str, SignalOutcome]) -> ScoreDecision:
        weights = self.config.weights.as_dict()
        weighted = sum(outcome.score * weights[name] for name, outcome in outcomes.items())
        score = clamp_score(weighted)
        should_block = score >= self.config.block_threshold
        return ScoreDecision(
            suspicious_score=score,
            recommendation=Recommendation.for_score(score, self.config),
            should_block=should_block,
            should_challenge=score >= self.config.suspicious_threshold and not should_block,
            breakdown=ScoreBreakdown(signals=outcomes, weighted_total=weighted),
        )

    def auto_block(self, ip_address: str, score: int, now: datetime | None = None) -> bool:
        """Record a block verdict for ``ip_address``; returns False when one already exists."""
        existing = self.actors.get(ip_address)
        if existing is not None and (existing.is_blocked or existing.proxy_type is ProxyType.BLOCKED):
            # Already blocked, or an operator deliberately unblocked it
            return False

        self.actors.upsert(
            KnownActor(
                ip_address=ip_address,
                proxy_type=ProxyType.BLOCKED,
                confidence_score=score,
                detected_at=now or self.clock(),
                is_blocked=True,
                reason=f"Auto-blocked: suspicious score {score}",
                auto_blocked=True,
            )
        )
        logger.info("auto-blocked %s (score %d)", ip_address, score)
        return True

    def _evaluate(self, name: str, compute: Callable[[], tuple[float, list[str]]]) -> SignalOutcome:
        try:
            score, patterns = compute()
        except Exception as exc:
            logger.warning("signal %s failed, contributing 0", name, exc_info=True)
            return SignalOutcome(name=name, error=exc)
        return SignalOutcome(name=name, score=max(0, min(score, 100)), patterns=patterns)

    def _user_agent(self, meta: RequestMeta) -> tuple[float, list[str]]:
        verdict = self.user_agent_scorer.analyze(meta.user_agent)
        return verdict.score, verdict.patterns

    def _proxy(self, meta: RequestMeta, now: datetime) -> tuple[float, list[str]]:
        result = self.proxy_scorer.detect(meta.ip_address, meta.user_agent, meta.headers, now)
        if not result.is_proxy:
            return 0, []
        return result.confidence, [f"proxy:{result.proxy_type.value if result.proxy_type else 'unknown'}"]

    def _behavioral(self, meta: RequestMeta, now: datetime) -> tuple[float, list[str]]:
        ctx = BehaviorContext(meta.ip_address, meta.user_agent, meta.endpoint, now)
        result = self.behavior_scorer.analyze(ctx)
        return result.total_score, [p.type for p in result.patterns]

    def _honeypot(self, meta: RequestMeta, now: datetime) -> tuple[float, list[str]]:
        result = self.honeypot_scorer.check(meta, now)
        if not result.violated:
            return 0, []
        return result.score, result.violation_types

    def _frequency(self, meta: RequestMeta, now: datetime) -> tuple[float, list[str]]:
        score = self.frequency_scorer.score(meta.ip_address, now)
        return score, ["request_burst"] if score else []
