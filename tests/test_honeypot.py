import pytest

from botguard.clock import epoch_ms
from botguard.request import RequestMeta
from botguard.signals import HoneypotScorer
from botguard.signals.honeypot import ViolationType, matches_trap_url
from conftest import BROWSER_HEADERS, START


def _meta(**kwargs):
    kwargs.setdefault("headers", dict(BROWSER_HEADERS))
    return RequestMeta(ip_address="203.0.113.7", **kwargs)


def test_clean_request_does_not_violate():
    result = HoneypotScorer().check(_meta(endpoint="/products/42"))
    assert not result.violated
    assert result.score == 0
    assert result.violations == []


def test_filled_website_field():
    meta = _meta(endpoint="/contact", method="POST", form_data={"website": "http://x.com", "name": "Ann"})
    result = HoneypotScorer().check(meta)
    assert result.violated
    assert result.score >= 40
    assert result.violation_types == ["HIDDEN_FIELD_FILLED"]
    assert result.violations[0].details["filled_fields"] == ["website"]


def test_blank_honeypot_fields_are_ignored():
    meta = _meta(endpoint="/contact", method="POST", form_data={"website": "  ", "fax": None})
    assert not HoneypotScorer().check(meta).violated


@pytest.mark.parametrize(
    "path",
    ["/wp-admin", "/wp-admin/install.php", "/administrator", "/.env", "/static/.git/config", "/API/Secret"],
)
def test_trap_urls(path):
    assert matches_trap_url(RequestMeta(endpoint=path).path)


@pytest.mark.parametrize("path", ["/testimonials", "/admin-panel", "/developers", "/products"])
def test_trap_urls_match_whole_segments(path):
    assert not matches_trap_url(path)


def test_trap_and_robots_violations_combine():
    result = HoneypotScorer().check(_meta(endpoint="/private/files"))
    assert result.violation_types == ["TRAP_URL_ACCESS", "ROBOTS_VIOLATION"]
    assert result.score == 100


def test_api_call_without_js_challenge():
    result = HoneypotScorer().check(_meta(endpoint="/api/orders"))
    assert result.violation_types == ["MISSING_JS_CHALLENGE"]
    assert result.score == 30


@pytest.mark.parametrize(
    "extra",
    [{"x-requested-with": "XMLHttpRequest"}, {"x-csrf-token": "abc"}, {"x-js-challenge": "solved"}],
)
def test_js_challenge_satisfied(extra):
    meta = _meta(endpoint="/api/orders", headers={**BROWSER_HEADERS, **extra})
    assert not HoneypotScorer().check(meta).violated


def test_public_api_is_exempt_from_js_challenge():
    assert not HoneypotScorer().check(_meta(endpoint="/api/public/catalog")).violated


@pytest.mark.parametrize("elapsed_ms, expected", [(300, 80), (1500, 35), (5000, None)])
def test_form_timing(elapsed_ms, expected):
    headers = {
        **BROWSER_HEADERS,
        "x-page-load-time": str(epoch_ms(START) - elapsed_ms - 1000),
        "x-form-start-time": str(epoch_ms(START) - elapsed_ms),
    }
    meta = _meta(endpoint="/signup", method="POST", headers=headers, timestamp=START, form_data={"email": "a@example.org"})
    result = HoneypotScorer().check(meta)
    if expected is None:
        assert not result.violated
    else:
        assert result.violations[0].type is ViolationType.TIMING_VIOLATION
        assert result.score == expected


def test_unparseable_timing_header_is_ignored():
    headers = {**BROWSER_HEADERS, "x-page-load-time": "1", "x-form-start-time": "yesterday"}
    meta = _meta(endpoint="/signup", headers=headers, timestamp=START, form_data={"email": "a@example.org"})
    assert not HoneypotScorer().check(meta).violated


def test_page_view_without_form_is_not_a_timing_violation():
    headers = {**BROWSER_HEADERS, "x-page-load-time": str(epoch_ms(START) - 300)}
    meta = _meta(endpoint="/products", headers=headers, timestamp=START)
    assert not HoneypotScorer().check(meta).violated
    assert not HoneypotScorer().check(meta, now=START).violated


def test_timing_needs_both_start_headers():
    headers = {**BROWSER_HEADERS, "x-form-start-time": str(epoch_ms(START) - 300)}
    meta = _meta(endpoint="/signup", method="POST", headers=headers, timestamp=START, form_data={"email": "a@example.org"})
    assert not HoneypotScorer().check(meta).violated


def test_css_traps():
    meta = _meta(endpoint="/signup", method="POST", form_data={"css_hidden": "1", "display_none": "y"})
    result = HoneypotScorer().check(meta)
    assert result.violation_types == ["CSS_TRAP_TRIGGERED"]
    assert result.score == 100
