"""User-agent heuristics.

Scores a raw user-agent string on its own, with no history and no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field

AUTOMATION_MARKERS = (
    "bot", "crawler", "spider", "scraper", "curl", "wget", "python", "requests",
    "scrapy", "selenium", "headless", "go-http-client", "java/", "libwww",
)

BROWSER_MARKERS = ("mozilla", "chrome", "firefox", "safari", "edge", "opera")


@dataclass
class UserAgentVerdict:
    score: int
    patterns: list[str] = field(default_factory=list)


class UserAgentScorer:
    """Additive heuristics over the user-agent string."""

    def __init__(self, min_length: int = 20, max_length: int = 500):
        self.min_length = min_length
        self.max_length = max_length

    def analyze(self, user_agent: str | None) -> UserAgentVerdict:
        # Unknown is moderately suspicious, not maximal
        if not user_agent:
            return UserAgentVerdict(score=50, patterns=["missing_user_agent"])

        ua_lower = user_agent.lower()
        score = 0
        patterns = []

        if any(marker in ua_lower for marker in AUTOMATION_MARKERS):
            score += 60
            patterns.append("automation_tool")

        if not any(marker in ua_lower for marker in BROWSER_MARKERS):
            score += 30
            patterns.append("non_browser")

        if not self.min_length <= len(user_agent) <= self.max_length:
            score += 20
            patterns.append("unusual_length")

        return UserAgentVerdict(score=min(score, 100), patterns=patterns)

    def score(self, user_agent: str | None) -> int:
        return self.analyze(user_agent).score
