import pytest

from botguard.signals import UserAgentScorer
from conftest import CHROME_UA


@pytest.mark.parametrize(
    "user_agent",
    [
        "Googlebot/2.1 (+http://www.google.com/bot.html)",
        "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
        "AhrefsBot",
        "SiteCrawler/3.1",
        "Mozilla/5.0 (compatible; MyCrawler/1.0)",
        "curl/8.4.0",
        "CURL",
    ],
)
def test_automation_markers_score_at_least_60(user_agent):
    assert UserAgentScorer().score(user_agent) >= 60


def test_real_browser_scores_zero():
    verdict = UserAgentScorer().analyze(CHROME_UA)
    assert verdict.score == 0
    assert verdict.patterns == []


def test_missing_user_agent_is_moderately_suspicious():
    scorer = UserAgentScorer()
    assert scorer.score(None) == 50
    assert scorer.score("") == 50
    assert scorer.analyze(None).patterns == ["missing_user_agent"]


def test_short_non_browser_agent():
    verdict = UserAgentScorer().analyze("x")
    # non-browser (30) + unusual length (20)
    assert verdict.score == 50
    assert verdict.patterns == ["non_browser", "unusual_length"]


def test_score_is_capped():
    verdict = UserAgentScorer().analyze("python-requests")
    assert verdict.score == 100
    assert "automation_tool" in verdict.patterns


def test_overlong_browser_agent():
    scorer = UserAgentScorer(max_length=50)
    assert scorer.score(CHROME_UA) == 20
