from botguard.signals.frequency import FrequencyScorer
from botguard.signals.honeypot import HoneypotResult, HoneypotScorer
from botguard.signals.proxy import ProxyResult, ProxyScorer
from botguard.signals.user_agent import UserAgentScorer

__all__ = [
    "FrequencyScorer",
    "HoneypotResult",
    "HoneypotScorer",
    "ProxyResult",
    "ProxyScorer",
    "UserAgentScorer",
]
