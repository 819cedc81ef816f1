"""Honeypot traps that only automated clients fall into.

Six independent checks: trap URLs the UI never links to, hidden form fields,
API calls without the JS challenge token, robots-disallowed paths, forms
submitted faster than a person can type, and CSS-hidden inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from botguard.request import RequestMeta

TRAP_URLS = (
    "/admin",
    "/admin-login",
    "/wp-admin",
    "/wp-login.php",
    "/administrator",
    "/phpmyadmin",
    "/mysql",
    "/database",
    "/api/internal",
    "/api/admin",
    "/api/secret",
    "/robots.txt.backup",
    "/sitemap.xml.backup",
    "/.env",
    "/.git",
    "/config.php",
    "/config.json",
    "/backup",
    "/test",
    "/dev",
    "/staging",
    "/hidden",
    "/secret",
    "/private",
    "/internal",
)

HONEYPOT_FIELDS = (
    "website",
    "url",
    "contact",
    "phone_number",
    "fax",
    "address_line_3",
    "middle_name_2",
    "company_website",
    "business_phone",
    "honeypot",
    "bot_trap",
    "hidden_field",
    "do_not_fill",
    "leave_empty",
    "spam_protection",
)

CSS_TRAP_FIELDS = (
    "css_hidden",
    "invisible_field",
    "display_none",
    "off_screen",
    "zero_opacity",
    "negative_tab_index",
)

JS_CHALLENGE_EXEMPT = ("/api/public", "/health", "/status", "/robots.txt", "/sitemap.xml")

ROBOTS_DISALLOWED = (
    "/admin",
    "/private",
    "/internal",
    "/api/admin",
    "/dashboard/bot-detection",
    "/dashboard/resource-distribution",
)


class ViolationType(str, Enum):
    TRAP_URL_ACCESS = "TRAP_URL_ACCESS"
    HIDDEN_FIELD_FILLED = "HIDDEN_FIELD_FILLED"
    MISSING_JS_CHALLENGE = "MISSING_JS_CHALLENGE"
    ROBOTS_VIOLATION = "ROBOTS_VIOLATION"
    TIMING_VIOLATION = "TIMING_VIOLATION"
    CSS_TRAP_TRIGGERED = "CSS_TRAP_TRIGGERED"


@dataclass
class HoneypotViolation:
    type: ViolationType
    score: int
    details: dict = field(default_factory=dict)


@dataclass
class HoneypotResult:
    violated: bool
    score: int
    violations: list[HoneypotViolation] = field(default_factory=list)

    @property
    def violation_types(self) -> list[str]:
        return [v.type.value for v in self.violations]


def matches_trap_url(path: str) -> bool:
    segments = path.split("/")
    for trap in TRAP_URLS:
        if path == trap or path.startswith(trap + "/"):
            return True
        # Dotfiles are probed at any depth, e.g. /static/.git/config
        if trap.startswith("/.") and trap[1:] in segments:
            return True
    return False


def filled_fields(form_data: Mapping[str, Any] | None, names: tuple[str, ...]) -> list[str]:
    if not form_data:
        return []
    return [name for name in names if form_data.get(name) is not None and str(form_data[name]).strip() != ""]


class HoneypotScorer:
    def check(self, meta: RequestMeta, now: datetime | None = None) -> HoneypotResult:
        checks = (
            self._trap_url(meta),
            self._hidden_fields(meta),
            self._js_challenge(meta),
            self._robots(meta),
            self._timing(meta, now),
            self._css_traps(meta),
        )
        violations = [v for v in checks if v is not None]
        total = sum(v.score for v in violations)
        return HoneypotResult(violated=bool(violations), score=min(total, 100), violations=violations)

    def _trap_url(self, meta: RequestMeta) -> HoneypotViolation | None:
        if not matches_trap_url(meta.path):
            return None
        return HoneypotViolation(ViolationType.TRAP_URL_ACCESS, 80, {"endpoint": meta.endpoint})

    def _hidden_fields(self, meta: RequestMeta) -> HoneypotViolation | None:
        filled = filled_fields(meta.form_data, HONEYPOT_FIELDS)
        if not filled:
            return None
        return HoneypotViolation(ViolationType.HIDDEN_FIELD_FILLED, 40 * len(filled), {"filled_fields": filled})

    def _js_challenge(self, meta: RequestMeta) -> HoneypotViolation | None:
        path = meta.path
        if "/api/" not in path or any(skip in path for skip in JS_CHALLENGE_EXEMPT):
            return None
        has_challenge = (
            meta.header("x-js-challenge")
            or meta.header("x-csrf-token")
            or meta.header("x-requested-with") == "XMLHttpRequest"
        )
        if has_challenge:
            return None
        return HoneypotViolation(ViolationType.MISSING_JS_CHALLENGE, 30, {"endpoint": meta.endpoint})

    def _robots(self, meta: RequestMeta) -> HoneypotViolation | None:
        if not meta.path.startswith(ROBOTS_DISALLOWED):
            return None
        return HoneypotViolation(ViolationType.ROBOTS_VIOLATION, 25, {"endpoint": meta.endpoint})

    def _timing(self, meta: RequestMeta, now: datetime | None) -> HoneypotViolation | None:
        if not meta.form_data:
            return None
        page_loaded = meta.header("x-page-load-time")
        started = meta.header("x-form-start-time")
        submitted = meta.timestamp or now
        if not page_loaded or not started or submitted is None:
            return None
        try:
            start_ms = int(float(started))
        except (ValueError, OverflowError):
            return None

        elapsed = int(submitted.timestamp() * 1000) - start_ms
        reasons = []
        score = 0
        if elapsed < 2000:
            reasons.append("too_fast")
            score += 35
        if elapsed < 500:
            reasons.append("impossibly_fast")
            score += 45
        if not reasons:
            return None
        return HoneypotViolation(ViolationType.TIMING_VIOLATION, score, {"elapsed_ms": elapsed, "reasons": reasons})

    def _css_traps(self, meta: RequestMeta) -> HoneypotViolation | None:
        triggered = filled_fields(meta.form_data, CSS_TRAP_FIELDS)
        if not triggered:
            return None
        return HoneypotViolation(ViolationType.CSS_TRAP_TRIGGERED, 50 * len(triggered), {"triggered": triggered})
