"""Shared utilities used across the voice gateway."""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def parse_tool_args(raw: Any) -> dict[str, Any]:
    """Normalize model-supplied function arguments to a dict.

    Accepts a mapping or a JSON-encoded string. Malformed JSON and
    non-object payloads degrade to an empty dict.

    Examples:
        >>> parse_tool_args('{"query": "hours"}')
        {'query': 'hours'}
        >>> parse_tool_args("{not json")
        {}
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, (str, bytes)):
        try:
            parsed = json.loads(raw)
        except (ValueError, TypeError):
            logger.warning("Discarding malformed tool arguments: %r", raw)
            return {}
        return parsed if isinstance(parsed, dict) else {}
    try:
        return dict(raw)
    except (TypeError, ValueError):
        return {}


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys so equal arguments produce equal strings."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def stable_hash(*parts: Optional[str]) -> str:
    """SHA-256 over the joined parts; None parts hash as empty strings."""
    joined = "|".join(p or "" for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO8601 timestamp, tolerating a trailing ``Z``."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable timestamp: %r", value)
        return None


def format_booking_time(start: Optional[str], timezone: Optional[str] = None) -> str:
    """Render a booking start time the way it should be spoken.

    Examples:
        >>> format_booking_time("2025-03-18T15:00:00Z", "UTC")
        'Tuesday, March 18 at 3:00 PM'
    """
    moment = parse_iso_datetime(start)
    if moment is None:
        return "the selected time"
    if timezone and moment.tzinfo is not None:
        try:
            moment = moment.astimezone(ZoneInfo(timezone))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone %r, keeping original offset", timezone)
    hour = moment.strftime("%I").lstrip("0") or "12"
    return f"{moment.strftime('%A, %B')} {moment.day} at {hour}:{moment.strftime('%M %p')}"


def speech_language_code(language: Optional[str], default: str = "es-ES") -> str:
    """Map a bot's short language setting to a speech recognition locale."""
    if not language:
        return default
    normalized = language.strip().lower()
    if normalized == "en":
        return "en-US"
    if normalized == "es":
        return "es-ES"
    if "-" in normalized:
        lang, region = normalized.split("-", 1)
        return f"{lang}-{region.upper()}"
    return default
