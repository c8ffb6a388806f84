from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("calendar_metrics")

DEFAULT_MAX_BODY_BYTES = 512 * 1024


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _get_str(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip() or default


@dataclass(frozen=True)
class Settings:
    # Listener
    host: str
    port: int

    # Date derivation. Every record's localDate comes from this zone only.
    metrics_tz: str

    # Ingestion
    max_body_bytes: int

    # Storage
    log_dir: str

    # Static assets served for unmatched paths
    static_root: str

    # General
    log_level: str
    environment: str

    @staticmethod
    def from_env() -> "Settings":
        cwd = os.getcwd()
        max_body = _get_int("MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES)

        return Settings(
            host=_get_str("HOST", "0.0.0.0"),
            port=_get_int("PORT", 5174),
            metrics_tz=_get_str("METRICS_TZ", "Asia/Seoul"),
            max_body_bytes=max_body if max_body > 0 else DEFAULT_MAX_BODY_BYTES,
            log_dir=_get_str("METRICS_LOG_DIR", os.path.join(cwd, "data", "logs")),
            static_root=_get_str("STATIC_ROOT", cwd),
            log_level=_get_str("LOG_LEVEL", "INFO").upper(),
            environment=(os.getenv("ENVIRONMENT") or os.getenv("ENV") or "stage").strip() or "stage",
        )

    def tzinfo(self) -> tzinfo:
        try:
            return ZoneInfo(self.metrics_tz)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning("Unknown METRICS_TZ %r (%s); falling back to UTC", self.metrics_tz, e)
            return timezone.utc
