from datetime import datetime, timedelta, timezone

from botguard.behavior import BehaviorContext, BehaviorScorer
from botguard.behavior.analyzer import (
    BehaviorAnalysis,
    BehaviorPattern,
    EndpointTargetingAnalysis,
    FrequencyAnalysis,
    SequentialPatternAnalysis,
    TimeOfDayAnalysis,
    UserAgentConsistencyAnalysis,
    is_alphabetical_sequence,
    is_numeric_sequence,
    recommendations_for,
    risk_level,
)
from botguard.config import DetectionConfig

IP = "198.51.100.7"


def _ctx(clock, endpoint="/"):
    return BehaviorContext(IP, "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0", endpoint, clock())


def _scorer(request_store):
    return BehaviorScorer(request_store, DetectionConfig().behavior_frequency_windows)


def test_no_history_is_not_suspicious(request_store, clock):
    result = _scorer(request_store).analyze(_ctx(clock))
    assert result.total_score == 0
    assert not result.suspicious
    assert result.patterns == []
    assert result.risk_level == "minimal"


def test_frequency_over_one_minute_threshold(request_store, clock, seed):
    for i in range(15):
        seed(IP, ago=timedelta(seconds=i))
    result = FrequencyAnalysis(DetectionConfig().behavior_frequency_windows).analyze(request_store, _ctx(clock))
    # 15 requests against a threshold of 10: (1.5 - 1) * 50
    assert result.score == 25
    assert result.details["minutes"] == 1


def test_frequency_score_is_capped(request_store, clock, seed):
    for i in range(40):
        seed(IP, ago=timedelta(seconds=i))
    result = FrequencyAnalysis(DetectionConfig().behavior_frequency_windows).analyze(request_store, _ctx(clock))
    assert result.score == 80


def test_user_agent_rotation(request_store, clock, seed):
    for i in range(12):
        seed(IP, ago=timedelta(minutes=i), user_agent=f"Mozilla/5.0 (X11; Linux x86_64) Firefox/1{i:02d}.0")
    result = UserAgentConsistencyAnalysis().analyze(request_store, _ctx(clock))
    assert result.score == 60
    assert result.details["issues"] == ["high_user_agent_rotation"]


def test_bot_and_generic_user_agents(request_store, clock, seed):
    for i, ua in enumerate(["curl", "wget", "httpie", "SiteBot/1.0 (+https://example.org/bot)"]):
        seed(IP, ago=timedelta(minutes=i), user_agent=ua)
    result = UserAgentConsistencyAnalysis().analyze(request_store, _ctx(clock))
    assert result.score == 70
    assert result.details["issues"] == ["generic_user_agents", "bot_user_agents"]


def test_consistent_timing_and_ordering(request_store, clock, seed):
    for i in range(6):
        seed(IP, ago=timedelta(seconds=10 - i), endpoint=f"/api/items/{i + 1}")
    result = SequentialPatternAnalysis().analyze(request_store, _ctx(clock))
    assert result.details["patterns"] == ["consistent_timing", "systematic_ordering"]
    assert result.score == 100


def test_sequential_needs_five_requests(request_store, clock, seed):
    for i in range(4):
        seed(IP, ago=timedelta(seconds=10 - i), endpoint=f"/api/items/{i + 1}")
    assert SequentialPatternAnalysis().analyze(request_store, _ctx(clock)).score == 0


def test_sequence_helpers():
    assert is_alphabetical_sequence(["/a", "/b", "/c"])
    assert not is_alphabetical_sequence(["/b", "/a", "/c"])
    assert not is_alphabetical_sequence(["/a", "/a", "/b"])
    assert not is_alphabetical_sequence(["/a", "/b"])

    assert is_numeric_sequence(["/p/10", "/p/20", "/p/30"])
    assert is_numeric_sequence(["/p/9", "/p/6", "/p/3"])
    assert not is_numeric_sequence(["/p/1", "/p/1", "/p/1"])
    assert not is_numeric_sequence(["/p/1", "/p/2", "/p/4"])
    assert not is_numeric_sequence(["/p/1", "/about", "/p/2"])


def test_off_hours_activity(request_store, seed, clock):
    clock.now = datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc)
    for day in range(1, 6):
        for minute in (5, 40):
            at = datetime(2026, 3, 9 - day, 3, minute, tzinfo=timezone.utc)
            seed(IP, ago=clock() - at)
    result = TimeOfDayAnalysis().analyze(request_store, _ctx(clock))
    # a single active hour never counts as a uniform hourly pattern
    assert result.details["patterns"] == ["off_hours_activity"]
    assert result.score == 30


def test_uniform_hourly_pattern(request_store, seed, clock):
    for hour in range(12):
        seed(IP, ago=timedelta(hours=hour, minutes=30))
    result = TimeOfDayAnalysis().analyze(request_store, _ctx(clock))
    assert "consistent_hourly_pattern" in result.details["patterns"]


def test_sensitive_endpoint_targeting(request_store, clock, seed):
    for i in range(5):
        seed(IP, ago=timedelta(minutes=i), endpoint=f"/admin/page{i}")
    result = EndpointTargetingAnalysis().analyze(request_store, _ctx(clock))
    assert result.score == 60
    assert result.details["patterns"] == ["sensitive_endpoint_targeting"]


def test_error_page_hunting(request_store, clock, seed):
    for i, path in enumerate(["/404", "/error", "/notfound", "/shop", "/shop/cart"]):
        seed(IP, ago=timedelta(minutes=i), endpoint=path)
    result = EndpointTargetingAnalysis().analyze(request_store, _ctx(clock))
    assert result.details["patterns"] == ["error_page_targeting"]
    assert result.score == 30


def test_aggregate_is_capped_and_labelled(request_store, clock, seed):
    for i in range(30):
        seed(IP, ago=timedelta(seconds=30 - i), endpoint=f"/admin/{i:02d}", user_agent="crawler")
    result = _scorer(request_store).analyze(_ctx(clock))
    assert result.total_score == 100
    assert result.risk_level == "critical"
    types = [p.type for p in result.patterns]
    assert "high_frequency" in types
    assert "endpoint_targeting" in types
    assert "geographic_anomaly" not in types
    assert "Implement rate limiting" in result.recommendations


def test_risk_levels():
    assert risk_level(80) == "critical"
    assert risk_level(60) == "high"
    assert risk_level(40) == "medium"
    assert risk_level(20) == "low"
    assert risk_level(19.9) == "minimal"


def test_recommendations_are_deduplicated():
    patterns = [BehaviorPattern("time_patterns", 30), BehaviorPattern("geographic_anomaly", 10)]
    assert recommendations_for(patterns) == ["Monitor this IP closely"]


class BrokenGeoAnalysis(BehaviorAnalysis):
    pattern_type = "geographic_anomaly"

    def analyze(self, store, ctx):
        raise RuntimeError("geo service bug")


def test_failing_analysis_does_not_discard_the_others(request_store, clock, seed):
    for i in range(15):
        seed(IP, ago=timedelta(seconds=i))
    scorer = BehaviorScorer(request_store, DetectionConfig().behavior_frequency_windows, geo_analysis=BrokenGeoAnalysis())
    result = scorer.analyze(_ctx(clock))
    assert result.failed == ["geographic_anomaly"]
    frequency = [p for p in result.patterns if p.type == "high_frequency"]
    assert frequency[0].score == 25
    assert result.total_score >= 25
