"""Tunable thresholds for scoring and rate limiting.

Everything an operator may want to adjust lives in :class:`DetectionConfig`,
which is built once and handed to the engine, rate limiter and orchestrator.
"""

from __future__ import annotations

import os
from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class LimitScope(str, Enum):
    IP = "ip"
    USER = "user"
    GLOBAL = "global"


class MatchKind(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"
    CONTAINS = "contains"


class RateLimitRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests: int = Field(gt=0)
    window: timedelta
    scope: LimitScope = LimitScope.IP


class EndpointLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern: str
    limit: RateLimitRule
    match: MatchKind = MatchKind.PREFIX

    def matches(self, endpoint: str) -> bool:
        if self.match is MatchKind.EXACT:
            return endpoint == self.pattern
        if self.match is MatchKind.PREFIX:
            return endpoint.startswith(self.pattern)
        return self.pattern in endpoint

    def precedence(self) -> tuple[int, int]:
        rank = {MatchKind.EXACT: 0, MatchKind.PREFIX: 1, MatchKind.CONTAINS: 2}[self.match]
        return rank, -len(self.pattern)


class WindowThreshold(BaseModel):
    model_config = ConfigDict(frozen=True)

    minutes: int = Field(gt=0)
    threshold: int = Field(gt=0)


class FrequencyTier(BaseModel):
    """Score awarded when the one-minute request count exceeds ``above``."""

    model_config = ConfigDict(frozen=True)

    above: int
    score: int = Field(ge=0, le=100)


class ScoringWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_agent: float = 0.20
    proxy: float = 0.25
    behavioral: float = 0.30
    honeypot: float = 0.15
    frequency: float = 0.10

    @model_validator(mode="after")
    def _check_total(self) -> ScoringWeights:
        total = self.user_agent + self.proxy + self.behavioral + self.honeypot + self.frequency
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {total:.4f}")
        return self

    def as_dict(self) -> dict[str, float]:
        return self.model_dump()


_HOUR = timedelta(hours=1)

DEFAULT_RATE_LIMITS: dict[str, RateLimitRule] = {
    "global": RateLimitRule(requests=1000, window=_HOUR, scope=LimitScope.GLOBAL),
    "per_ip": RateLimitRule(requests=100, window=_HOUR),
    "per_user": RateLimitRule(requests=200, window=_HOUR, scope=LimitScope.USER),
    "api": RateLimitRule(requests=50, window=_HOUR),
    "auth": RateLimitRule(requests=10, window=timedelta(minutes=15)),
    "sensitive": RateLimitRule(requests=5, window=_HOUR),
}

DEFAULT_ENDPOINT_LIMITS: list[EndpointLimit] = [
    EndpointLimit(pattern="/api/auth/login", limit=RateLimitRule(requests=5, window=timedelta(minutes=15))),
    EndpointLimit(pattern="/api/auth/register", limit=RateLimitRule(requests=3, window=_HOUR)),
    EndpointLimit(pattern="/api/auth/reset-password", limit=RateLimitRule(requests=3, window=_HOUR)),
    EndpointLimit(pattern="/api/products", limit=RateLimitRule(requests=100, window=_HOUR)),
    EndpointLimit(pattern="/api/admin", limit=RateLimitRule(requests=20, window=_HOUR)),
]

DEFAULT_DATACENTER_PREFIXES: tuple[str, ...] = (
    "104.", "107.", "162.", "172.", "185.", "188.", "192.", "195.",
)


class DetectionConfig(BaseModel):
    """Thresholds shared by every detection component."""

    model_config = ConfigDict(frozen=True)

    block_threshold: int = Field(default=90, ge=0, le=100)
    suspicious_threshold: int = Field(default=70, ge=0, le=100)
    rate_limit_threshold: int = Field(default=50, ge=0, le=100)
    monitor_threshold: int = Field(default=30, ge=0, le=100)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    behavior_frequency_windows: list[WindowThreshold] = Field(
        default_factory=lambda: [
            WindowThreshold(minutes=1, threshold=10),
            WindowThreshold(minutes=5, threshold=30),
            WindowThreshold(minutes=15, threshold=100),
            WindowThreshold(minutes=60, threshold=200),
        ]
    )
    frequency_tiers: list[FrequencyTier] = Field(
        default_factory=lambda: [
            FrequencyTier(above=60, score=100),
            FrequencyTier(above=30, score=70),
            FrequencyTier(above=10, score=40),
        ]
    )

    rate_limits: dict[str, RateLimitRule] = Field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    endpoint_limits: list[EndpointLimit] = Field(default_factory=lambda: list(DEFAULT_ENDPOINT_LIMITS))
    datacenter_prefixes: tuple[str, ...] = DEFAULT_DATACENTER_PREFIXES
    retention: timedelta = timedelta(days=7)

    @model_validator(mode="after")
    def _check_thresholds(self) -> DetectionConfig:
        if self.suspicious_threshold > self.block_threshold:
            raise ValueError("suspicious_threshold must not exceed block_threshold")
        if "per_ip" not in self.rate_limits:
            raise ValueError("rate_limits must define a 'per_ip' class")
        return self

    def ordered_endpoint_limits(self) -> list[EndpointLimit]:
        return sorted(self.endpoint_limits, key=EndpointLimit.precedence)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> DetectionConfig:
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        if "BOTGUARD_BLOCK_THRESHOLD" in env:
            overrides["block_threshold"] = env["BOTGUARD_BLOCK_THRESHOLD"]
        if "BOTGUARD_SUSPICIOUS_THRESHOLD" in env:
            overrides["suspicious_threshold"] = env["BOTGUARD_SUSPICIOUS_THRESHOLD"]
        if "BOTGUARD_RETENTION_DAYS" in env:
            overrides["retention"] = timedelta(days=float(env["BOTGUARD_RETENTION_DAYS"]))
        try:
            return cls(**overrides)
        except ValidationError as exc:
            raise ValueError(f"invalid botguard configuration: {exc}") from exc
