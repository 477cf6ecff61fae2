"""
Tag decisions for volumes and snapshots. No AWS calls in here.

Tags are handled the way boto3 returns them: a list of {"Key": ..., "Value": ...}
dicts. Keys are not guaranteed unique, so every lookup commits to the first match.
"""
from __future__ import annotations

import datetime as dt
import re
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

Tags = List[Dict[str, Any]]

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MAX = 2 ** 63 - 1

_RFC3339 = re.compile(
    r"\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})",
    re.ASCII,
)


def find_tag(tags: Optional[Tags], key: str) -> Optional[Dict[str, Any]]:
    """First tag whose key equals `key` exactly."""
    for tag in tags or []:
        if tag.get("Key") == key:
            return tag
    return None


def find_tag_ci(tags: Optional[Tags], key: str) -> Optional[Dict[str, Any]]:
    """First tag whose key equals `key` ignoring case."""
    wanted = key.lower()
    for tag in tags or []:
        k = tag.get("Key")
        if k is not None and k.lower() == wanted:
            return tag
    return None


def backup_tag_filter_values(backup_tag: str) -> List[str]:
    # tag-key filters are case sensitive on EC2, operators are not
    return [backup_tag, backup_tag.lower()]


def is_eligible_for_backup(tags: Optional[Tags], backup_tag: str) -> bool:
    return find_tag_ci(tags, backup_tag) is not None


def resolve_retention_days(tags: Optional[Tags], retention_tag: str, default_days: int,
                           log=None) -> int:
    """
    Days to keep a snapshot of a volume carrying `tags`.

    The first tag matching `retention_tag` case-insensitively is parsed as a
    base-10 integer. Missing tag, missing value, unparsable value and zero all
    fall back to `default_days`; an unparsable value also logs a warning.
    """
    log = log or logger
    tag = find_tag_ci(tags, retention_tag)
    if tag is None:
        return default_days
    value = tag.get("Value")
    if value is None or value == "":
        log.warning("Retention tag has no value", tag=tag.get("Key"))
        return default_days
    # ASCII digits with an optional sign, within int64
    if not _INTEGER.fullmatch(value) or len(value.lstrip("+-").lstrip("0")) > 19 \
            or abs(int(value, 10)) > _INT64_MAX:
        log.warning("Couldn't parse retention days. Falling back to default value", value=value)
        return default_days
    days = int(value, 10)
    if days == 0:
        return default_days
    return days


def compute_delete_after(created: dt.datetime, retention_days: int) -> dt.datetime:
    return created + dt.timedelta(days=retention_days)


def is_expired(delete_after: dt.datetime, now: dt.datetime) -> bool:
    # boundary inclusive: deletable as soon as now is not before the threshold
    return not now < delete_after


def format_rfc3339(ts: dt.datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str) -> dt.datetime:
    if not isinstance(value, str) or not _RFC3339.fullmatch(value):
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    text = value.upper()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    date_part, _, time_part = text.partition("T")
    # fromisoformat on older interpreters only takes 3 or 6 fractional digits
    m = re.match(r"^(\d{2}:\d{2}:\d{2})(?:\.(\d+))?(.*)$", time_part)
    clock, frac, offset = m.group(1), m.group(2), m.group(3)
    if frac:
        clock += "." + (frac + "000000")[:6]
    return dt.datetime.fromisoformat(f"{date_part}T{clock}{offset}")
