from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from calendar_metrics.eventlog.models import DOWNLOADS, VISITS

TOP_LIMIT = 10
UNKNOWN_COMBO = "unknown"
COMBO_SEPARATOR = "-"

_RX_DATE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


class InvalidScopeError(ValueError):
    pass


@dataclass(frozen=True)
class Scope:
    date: Optional[str] = None  # None means all time

    @staticmethod
    def overall() -> "Scope":
        return Scope(None)

    @staticmethod
    def for_date(date: str) -> "Scope":
        return Scope(date)

    @property
    def is_overall(self) -> bool:
        return self.date is None

    def includes(self, record: Mapping[str, Any]) -> bool:
        if self.date is None:
            return True
        return record_date_key(record) == self.date


def parse_scope(date: Optional[str], scope: Optional[str] = None) -> Scope:
    """Validate caller input into a Scope. The aggregator only ever sees the result."""
    if scope == "overall" or date == "all":
        return Scope.overall()
    if not date:
        raise InvalidScopeError('Query parameter "date" (YYYY-MM-DD) is required')
    if not _RX_DATE.match(date):
        raise InvalidScopeError("Invalid date format; expected YYYY-MM-DD")
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise InvalidScopeError("Invalid date format; expected YYYY-MM-DD")
    return Scope.for_date(date)


# -----------------------------
# Helpers
# -----------------------------
def record_date_key(record: Mapping[str, Any]) -> Optional[str]:
    return record.get("localDate") or record.get("date")


def count_unique(records: Iterable[Mapping[str, Any]], key: str) -> int:
    seen = set()
    for record in records:
        value = record.get(key)
        if isinstance(value, str) and value:
            seen.add(value)
    return len(seen)


def combo_key(record: Mapping[str, Any]) -> str:
    days = record.get("days")
    if isinstance(days, list) and days:
        return COMBO_SEPARATOR.join(str(d) for d in days)
    return UNKNOWN_COMBO


def summarize_combos(
    records: Iterable[Mapping[str, Any]], limit: int = TOP_LIMIT
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Rank download combinations by count.

    Ties keep first-appearance order: dicts preserve insertion order and
    sorted() is stable.
    """
    counts: Dict[str, int] = {}
    for record in records:
        key = combo_key(record)
        counts[key] = counts.get(key, 0) + 1

    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    groups = [{"label": label, "count": count} for label, count in ranked]
    return groups[:limit], groups[limit:]


def conversion_rate(visits: int, downloads: int) -> Union[int, float]:
    if not visits:
        return 0
    ratio = Decimal(downloads / visits).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
    # Whole ratios serialize as 1, not 1.0, matching the existing report output.
    if ratio == ratio.to_integral_value():
        return int(ratio)
    return float(ratio)


# -----------------------------
# Summary
# -----------------------------
def summarize(
    visit_records: Iterable[Mapping[str, Any]],
    download_records: Iterable[Mapping[str, Any]],
    scope: Scope,
) -> Dict[str, Any]:
    visits = [r for r in visit_records if scope.includes(r)]
    downloads = [r for r in download_records if scope.includes(r)]
    top, others = summarize_combos(downloads)

    summary: Dict[str, Any] = {"range": "all"} if scope.is_overall else {"date": scope.date}
    summary.update(
        {
            "visits": len(visits),
            "uniqueVisitors": count_unique(visits, "ip"),
            "uniqueSessions": count_unique(visits, "sessionId"),
            "downloads": len(downloads),
            "uniqueDownloadIps": count_unique(downloads, "ip"),
            "uniqueDownloadSessions": count_unique(downloads, "sessionId"),
            "conversionRate": conversion_rate(len(visits), len(downloads)),
            "topDownloads": top,
            "otherDownloads": others,
        }
    )
    return summary


async def aggregate(store, scope: Scope) -> Dict[str, Any]:
    visit_records, download_records = await asyncio.gather(
        store.load_all(VISITS),
        store.load_all(DOWNLOADS),
    )
    return summarize(visit_records, download_records, scope)
