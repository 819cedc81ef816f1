"""Bot and abuse detection with adaptive rate limiting."""

from botguard.config import DetectionConfig
from botguard.errors import BotGuardError, InvalidInput, StoreUnavailable
from botguard.orchestrator import DetectionDecision, DetectionOrchestrator
from botguard.request import RequestMeta
from botguard.scoring import CompositeScoringEngine, Recommendation

__version__ = "0.1.0"

__all__ = [
    "BotGuardError",
    "CompositeScoringEngine",
    "DetectionConfig",
    "DetectionDecision",
    "DetectionOrchestrator",
    "InvalidInput",
    "Recommendation",
    "RequestMeta",
    "StoreUnavailable",
]
