from botguard.orchestrator.detector import DetectionDecision, DetectionOrchestrator

__all__ = ["DetectionDecision", "DetectionOrchestrator"]
