"""One-minute request frequency signal."""

from __future__ import annotations

from datetime import datetime, timedelta

from botguard.config import FrequencyTier
from botguard.store.base import RequestStore
from botguard.store.models import RequestFilter


class FrequencyScorer:
    """Maps the trailing-minute request count for an IP onto a stepped score."""

    def __init__(self, store: RequestStore, tiers: list[FrequencyTier], window: timedelta = timedelta(minutes=1)):
        self.store = store
        self.tiers = sorted(tiers, key=lambda t: t.above, reverse=True)
        self.window = window

    def score(self, ip_address: str, now: datetime) -> int:
        count = self.store.count(RequestFilter(ip_address=ip_address, since=now - self.window))
        for tier in self.tiers:
            if count > tier.above:
                return tier.score
        return 0
