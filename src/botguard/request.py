"""Inbound request metadata as seen by the detection pipeline.

Every field is attacker-controlled. Parsing never raises: anything missing or
malformed collapses to the most uncertain default (no user-agent, empty
headers, root endpoint) so scoring still produces a decision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from botguard.errors import InvalidInput

logger = logging.getLogger(__name__)

UNKNOWN_IP = "0.0.0.0"


@dataclass
class RequestMeta:
    ip_address: str = UNKNOWN_IP
    user_agent: str | None = None
    endpoint: str = "/"
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    referer: str | None = None
    user_id: str | None = None
    form_data: dict[str, Any] | None = None
    timestamp: datetime | None = None

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def path(self) -> str:
        return self.endpoint.split("?", 1)[0].lower()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> RequestMeta:
        """Build metadata from a loosely shaped dict (snake_case or camelCase keys)."""
        if not isinstance(data, Mapping):
            logger.debug("request metadata is not a mapping: %r", type(data).__name__)
            return cls()

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) not in (None, ""):
                    return data[key]
            return None

        headers = normalize_headers(pick("headers"))
        user_agent = _as_text(pick("user_agent", "userAgent")) or headers.get("user-agent") or None
        form_data = pick("form_data", "formData")

        return cls(
            ip_address=_as_text(pick("ip_address", "ipAddress", "ip")) or UNKNOWN_IP,
            user_agent=user_agent,
            endpoint=_as_text(pick("endpoint", "path")) or "/",
            method=(_as_text(pick("method")) or "GET").upper(),
            headers=headers,
            referer=_as_text(pick("referer", "referrer")) or headers.get("referer") or None,
            user_id=_as_text(pick("user_id", "userId")),
            form_data=dict(form_data) if isinstance(form_data, Mapping) else None,
            timestamp=_parse_timestamp(pick("timestamp")),
        )


def normalize_headers(raw: Any) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    headers = {}
    for key, value in raw.items():
        if value is None:
            continue
        headers[str(key).lower()] = str(value)
    return headers


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_timestamp(value: Any) -> datetime | None:
    try:
        return parse_timestamp(value)
    except InvalidInput:
        logger.debug("ignoring unparseable timestamp %r", value)
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes, ISO-8601 strings and epoch milliseconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise InvalidInput(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return _from_epoch_ms(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidInput(f"not a timestamp: {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise InvalidInput(f"not a timestamp: {value!r}")


def _from_epoch_ms(value: float) -> datetime:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise InvalidInput(f"epoch milliseconds out of range: {value!r}") from exc
