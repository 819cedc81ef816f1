from botguard.scoring.engine import (
    CompositeScoringEngine,
    Recommendation,
    ScoreBreakdown,
    ScoreDecision,
    SignalOutcome,
)

__all__ = [
    "CompositeScoringEngine",
    "Recommendation",
    "ScoreBreakdown",
    "ScoreDecision",
    "SignalOutcome",
]
