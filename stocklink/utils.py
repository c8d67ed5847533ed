import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def get_date_suffix_for_filename() -> str:
    """Returns the current date as a YYYY-MM-DD string for filenames."""
    return datetime.now().strftime("%Y-%m-%d")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parses the platform's ISO-8601 timestamps ('2025-02-09T23:13:09Z')."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_positive_int(value: Any) -> bool:
    # bool is an int subclass; True must not pass as a ratio of 1.
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def parse_bool(raw: Optional[str]) -> bool:
    return str(raw).strip().lower() == "true" if raw is not None else False


def parse_reference_list(raw: Optional[str]) -> list[str]:
    """
    Decodes a list-of-references attribute value.
    The wire format is a JSON array of ids; an empty array means "no references".
    Anything unparseable is treated as empty and logged.
    """
    if raw is None or raw == "":
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Could not parse reference list: {raw!r}")
        return []
    if isinstance(parsed, list):
        return [str(ref) for ref in parsed if ref]
    return []


def parse_source_ref(raw: Optional[str]) -> Optional[str]:
    """
    Decodes the back-reference attribute into a single item id.
    Stored as a one-element reference list, but older writers left a bare
    JSON string or even the raw id, so both are accepted.
    """
    if raw is None or raw in ("", "[]", "null"):
        return None
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return raw
    if isinstance(parsed, list):
        return str(parsed[0]) if parsed else None
    if isinstance(parsed, str):
        return parsed or None
    return None


def coerce_ratio(raw: Any) -> int:
    """Stored ratios that are absent or invalid read as 1."""
    if raw is None:
        return 1
    if is_positive_int(raw):
        return raw
    try:
        value = int(str(raw).strip())
    except ValueError:
        return 1
    return value if value > 0 else 1


def parse_ratio(value: Any) -> Optional[int]:
    """
    Parses a ratio coming from a caller (CLI argument, form field).
    Returns None for anything that is not a positive whole number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdecimal():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None
