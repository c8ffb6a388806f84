#!/usr/bin/env python3
"""Print visit/download stats as JSON.

Reads the same NDJSON logs the API writes (METRICS_LOG_DIR). Examples:
  calendar-metrics-report                      # today, in METRICS_TZ
  calendar-metrics-report --date=2024-05-01
  calendar-metrics-report --overall            # same as --scope=overall
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

from calendar_metrics.config import Settings
from calendar_metrics.eventlog.aggregate import InvalidScopeError, aggregate, parse_scope
from calendar_metrics.eventlog.normalize import local_date
from calendar_metrics.store import LogStore

MSG_EXCLUSIVE = "`--overall`와 `--date=` 옵션은 동시에 사용할 수 없습니다."
MSG_BAD_DATE = "날짜 형식이 잘못되었습니다. YYYY-MM-DD 형식으로 입력하세요."
MSG_FAILED = "통계 집계 중 오류가 발생했습니다:"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Daily / all-time download metrics report")
    p.add_argument("--date", default=None, help="Day to report (YYYY-MM-DD); defaults to today in METRICS_TZ")
    p.add_argument("--overall", action="store_true", help="Report over every recorded event")
    p.add_argument("--scope", choices=["overall"], default=None, help="Alias: --scope=overall")
    return p


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, stream=sys.stderr)

    overall = args.overall or args.scope == "overall"
    if overall and args.date is not None:
        print(MSG_EXCLUSIVE, file=sys.stderr)
        return 1

    if overall:
        scope = parse_scope(None, "overall")
    else:
        date = args.date if args.date is not None else local_date(datetime.now(timezone.utc), settings.tzinfo())
        try:
            scope = parse_scope(date)
        except InvalidScopeError:
            print(MSG_BAD_DATE, file=sys.stderr)
            return 1

    try:
        summary = asyncio.run(aggregate(LogStore(settings.log_dir), scope))
    except OSError as e:
        print(MSG_FAILED, e, file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
