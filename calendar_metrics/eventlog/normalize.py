from __future__ import annotations

import json
import math
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from calendar_metrics.eventlog.models import DownloadRecord, VisitRecord

SESSION_ID_MAX_LEN = 64
UNKNOWN_IP = "unknown"

_IPV4_MAPPED_PREFIX = "::ffff:"


# -----------------------------
# Client address
# -----------------------------
def client_ip(forwarded_for: Optional[str], peer: Optional[str]) -> str:
    """First X-Forwarded-For hop when present, else the transport peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return (peer or "").strip()


def normalize_ip(value: Optional[str]) -> str:
    if not value:
        return UNKNOWN_IP
    if value.lower().startswith(_IPV4_MAPPED_PREFIX):
        return value[len(_IPV4_MAPPED_PREFIX):]
    if value == "::1":
        return "127.0.0.1"
    return value


# -----------------------------
# Payload fields
# -----------------------------
def sanitize_session_id(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:SESSION_ID_MAX_LEN]


def _stringify(value: Any) -> str:
    # Scalars render as JavaScript String() would, so labels match the existing logs.
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, float):
        return js_number(value)
    if isinstance(value, int):
        return str(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def js_number(value: float) -> str:
    """Render a float the way JavaScript String(number) does (1e-7, 1e+21, 3)."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""

    # repr() is the shortest round-trip form, same digit choice as JS.
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    k = len(digits)
    n = exponent + k  # value == 0.digits * 10**n

    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + body


def coerce_days(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [_stringify(v) for v in value]


def coerce_meta(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    return None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


# -----------------------------
# Time
# -----------------------------
def format_timestamp(instant: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a Z suffix."""
    utc = instant.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_date(instant: datetime, tz: tzinfo) -> str:
    return instant.astimezone(tz).strftime("%Y-%m-%d")


# -----------------------------
# Records
# -----------------------------
def build_visit_record(
    body: Mapping[str, Any],
    *,
    now: datetime,
    tz: tzinfo,
    ip: str,
    headers: Mapping[str, str],
    query_path: Optional[str] = None,
) -> VisitRecord:
    path = body.get("path")
    if not isinstance(path, str):
        path = query_path or "/"

    return VisitRecord(
        timestamp=format_timestamp(now),
        local_date=local_date(now, tz),
        ip=normalize_ip(ip),
        session_id=sanitize_session_id(body.get("sessionId")),
        user_agent=headers.get("user-agent") or "",
        referer=headers.get("referer") or "",
        path=path,
        meta=coerce_meta(body.get("meta")),
    )


def build_download_record(
    body: Mapping[str, Any],
    *,
    now: datetime,
    tz: tzinfo,
    ip: str,
    headers: Mapping[str, str],
) -> DownloadRecord:
    return DownloadRecord(
        timestamp=format_timestamp(now),
        local_date=local_date(now, tz),
        ip=normalize_ip(ip),
        session_id=sanitize_session_id(body.get("sessionId")),
        user_agent=headers.get("user-agent") or "",
        referer=headers.get("referer") or "",
        days=coerce_days(body.get("days")),
        filename=_optional_str(body.get("filename")),
        meta=coerce_meta(body.get("meta")),
    )


def ensure_object(payload: Any) -> Dict[str, Any]:
    """Semantically empty or non-object bodies are treated as {}."""
    return payload if isinstance(payload, dict) else {}
