from botguard.behavior.analyzer import BehaviorContext, BehaviorResult, BehaviorScorer

__all__ = ["BehaviorContext", "BehaviorResult", "BehaviorScorer"]
