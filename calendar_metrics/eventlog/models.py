from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Category names double as log file stems.
VISITS = "visits"
DOWNLOADS = "downloads"
CATEGORIES = (VISITS, DOWNLOADS)


@dataclass(frozen=True)
class VisitRecord:
    timestamp: str  # UTC, e.g. 2024-05-01T03:04:05.678Z
    local_date: str  # YYYY-MM-DD in METRICS_TZ
    ip: str
    session_id: Optional[str]
    user_agent: str = ""
    referer: str = ""
    path: str = "/"
    meta: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "visit",
            "timestamp": self.timestamp,
            "localDate": self.local_date,
            "date": self.local_date,
            "ip": self.ip,
            "sessionId": self.session_id,
            "userAgent": self.user_agent,
            "referer": self.referer,
            "path": self.path,
            "meta": self.meta,
        }


@dataclass(frozen=True)
class DownloadRecord:
    timestamp: str
    local_date: str
    ip: str
    session_id: Optional[str]
    user_agent: str = ""
    referer: str = ""
    days: List[str] = field(default_factory=list)
    filename: Optional[str] = None
    meta: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "download",
            "timestamp": self.timestamp,
            "localDate": self.local_date,
            "date": self.local_date,
            "ip": self.ip,
            "sessionId": self.session_id,
            "userAgent": self.user_agent,
            "referer": self.referer,
            "days": list(self.days),
            "filename": self.filename,
            "meta": self.meta,
        }
