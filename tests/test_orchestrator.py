from datetime import timedelta

import pytest

from botguard.admin import AdminService
from botguard.config import DetectionConfig
from botguard.orchestrator import DetectionOrchestrator
from botguard.request import RequestMeta
from botguard.scoring import Recommendation
from botguard.store import ProxyType
from botguard.store.sql import SqlKnownActorStore, SqlRequestStore
from conftest import BROWSER_HEADERS, CHROME_UA, FailingActorStore, FailingRequestStore

BOT_IP = "185.220.101.4"
BOT_UA = "sitebot/0.1"


def _bot_request():
    return RequestMeta(
        ip_address=BOT_IP,
        user_agent=BOT_UA,
        endpoint="/api/admin/users",
        headers={"user-agent": BOT_UA, "x-forwarded-for": "10.0.0.1"},
    )


def _browser_request(ip="203.0.113.7", endpoint="/products"):
    return RequestMeta(ip_address=ip, user_agent=CHROME_UA, endpoint=endpoint, headers=dict(BROWSER_HEADERS))


@pytest.fixture
def orchestrator(request_store, actor_store, clock):
    return DetectionOrchestrator(request_store, actor_store, clock=clock)


class BrokenEngine:
    def score(self, meta, now=None):
        raise RuntimeError("engine misconfigured")


def test_browser_request_is_allowed_and_recorded(orchestrator, request_store):
    decision = orchestrator.detect(_browser_request())
    assert decision.allowed
    assert not decision.needs_challenge
    assert decision.score == 0
    assert decision.recommendation is Recommendation.ALLOW_NORMAL

    row = request_store.get(decision.request_id)
    assert row.ip_address == "203.0.113.7"
    assert row.fingerprint_hash == decision.fingerprint
    assert not row.blocked


def test_repeated_automation_requests_reach_captcha_threshold(orchestrator, clock):
    decisions = []
    for _ in range(5):
        decisions.append(orchestrator.detect(_bot_request()))
        clock.advance(seconds=2)

    fifth = decisions[-1]
    assert fifth.score >= 70
    assert fifth.recommendation is Recommendation.REQUIRE_CAPTCHA
    assert fifth.needs_challenge
    assert fifth.allowed
    assert [d.score for d in decisions] == sorted(d.score for d in decisions)


def test_first_request_drift_is_clean(orchestrator):
    decision = orchestrator.detect(_browser_request())
    assert not decision.drift.suspicious
    assert decision.drift.score == 0


def test_stored_score_is_never_rewritten(orchestrator, request_store, actor_store, clock):
    decision = orchestrator.detect(_bot_request())
    AdminService(request_store, actor_store, clock=clock).block_ip(BOT_IP)

    row = request_store.get(decision.request_id)
    assert row.suspicious_score == decision.score
    assert row.blocked
    with pytest.raises(ValueError):
        request_store.update(decision.request_id, {"suspicious_score": 0})


def test_auto_block_above_threshold(request_store, actor_store, clock):
    config = DetectionConfig(block_threshold=50, suspicious_threshold=40)
    orchestrator = DetectionOrchestrator(request_store, actor_store, config, clock=clock)

    decision = orchestrator.detect(_bot_request())
    assert not decision.allowed
    assert not decision.needs_challenge
    assert "auto_blocked" in decision.reasons

    actor = actor_store.get(BOT_IP)
    assert actor.is_blocked
    assert actor.proxy_type is ProxyType.BLOCKED
    assert len(actor_store) == 1

    row = request_store.get(decision.request_id)
    assert row.blocked
    assert row.blocked_at == clock()


def test_blocked_actor_is_denied_regardless_of_score(orchestrator, request_store, actor_store, clock):
    AdminService(request_store, actor_store, clock=clock).block_ip("203.0.113.7")
    decision = orchestrator.detect(_browser_request())
    assert decision.score < 30
    assert not decision.allowed
    assert "known_blocked_actor" in decision.reasons
    assert request_store.get(decision.request_id).blocked


def test_rate_limit_denies_without_blocking(request_store, actor_store, clock, seed):
    for i in range(100):
        seed("203.0.113.7", ago=timedelta(seconds=30 * i + 90))
    orchestrator = DetectionOrchestrator(request_store, actor_store, clock=clock)

    decision = orchestrator.detect(_browser_request())
    assert not decision.allowed
    assert "rate_limit_exceeded" in decision.reasons
    assert decision.rate_limit.remaining == 0
    assert not request_store.get(decision.request_id).blocked
    assert actor_store.get("203.0.113.7") is None


def test_temp_block_denies(request_store, actor_store, clock, seed):
    for minutes in range(5):
        seed("203.0.113.7", ago=timedelta(minutes=minutes + 1), suspicious_score=90)
    decision = DetectionOrchestrator(request_store, actor_store, clock=clock).detect(_browser_request())
    assert not decision.allowed
    assert decision.temp_block.blocked
    assert "multiple_high_severity_violations" in decision.reasons


def test_accepts_loose_mappings(orchestrator, request_store):
    decision = orchestrator.detect(
        {"ipAddress": "203.0.113.7", "userAgent": CHROME_UA, "path": "/products", "headers": BROWSER_HEADERS}
    )
    assert decision.allowed
    row = request_store.get(decision.request_id)
    assert row.ip_address == "203.0.113.7"
    assert row.endpoint == "/products"


def test_garbage_input_still_gets_a_decision(orchestrator):
    decision = orchestrator.detect({"headers": "nope", "timestamp": "not a date", "formData": [1, 2]})
    assert decision.request_id is not None
    assert isinstance(decision.score, int)


def test_store_outage_fails_open(clock):
    orchestrator = DetectionOrchestrator(FailingRequestStore(), FailingActorStore(), clock=clock)
    decision = orchestrator.detect(_browser_request())
    assert decision.allowed
    assert decision.request_id is None
    assert decision.drift is None
    assert decision.rate_limit.reason == "error"


def test_pipeline_failure_allows_with_zero_score(request_store, actor_store, clock):
    orchestrator = DetectionOrchestrator(request_store, actor_store, engine=BrokenEngine(), clock=clock)
    decision = orchestrator.detect(_bot_request())
    assert decision.allowed
    assert decision.score == 0
    assert decision.reasons == ["detection_error"]
    assert len(request_store) == 0


def test_detection_over_sql_stores(engine, clock):
    orchestrator = DetectionOrchestrator(SqlRequestStore(engine), SqlKnownActorStore(engine), clock=clock)
    decisions = []
    for _ in range(5):
        decisions.append(orchestrator.detect(_bot_request()))
        clock.advance(seconds=2)

    assert decisions[-1].score >= 70
    assert all(d.request_id is not None for d in decisions)
    assert orchestrator.actors.get(BOT_IP).proxy_type is ProxyType.DATACENTER
