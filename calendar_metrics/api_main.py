# api_main.py
# FastAPI service for calendar metrics
# - Visit / download ingestion into append-only NDJSON logs
# - Daily and all-time stats
# - Static assets for every other path

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, MutableMapping, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from calendar_metrics.config import Settings
from calendar_metrics.eventlog.aggregate import InvalidScopeError, aggregate, parse_scope
from calendar_metrics.eventlog.models import DOWNLOADS, VISITS
from calendar_metrics.eventlog.normalize import (
    build_download_record,
    build_visit_record,
    client_ip,
    ensure_object,
)
from calendar_metrics.store import LogStore, encode_json

logger = logging.getLogger("calendar_metrics")


class Utf8JSONResponse(JSONResponse):
    media_type = "application/json; charset=utf-8"

    def render(self, content: Any) -> bytes:
        return encode_json(content)


def _error(status_code: int, message: str) -> Utf8JSONResponse:
    return Utf8JSONResponse(status_code=status_code, content={"error": message})


# ---------- utils ----------
def _reject_constant(name: str) -> Any:
    # NaN / Infinity are not JSON.
    raise ValueError(f"Invalid JSON constant {name}")


async def _read_json_body(request: Request, limit: int) -> Dict[str, Any]:
    declared = request.headers.get("content-length") or ""
    if declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="Payload too large")

    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise HTTPException(status_code=413, detail="Payload too large")
        chunks.append(chunk)

    raw = b"".join(chunks)
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    return ensure_object(payload)


def _request_ip(request: Request) -> str:
    peer = request.client.host if request.client else ""
    return client_ip(request.headers.get("x-forwarded-for"), peer)


async def _append(request: Request, category: str, record: Dict[str, Any]) -> None:
    store: LogStore = request.app.state.store
    try:
        await store.append(category, record)
    except OSError:
        logger.exception("Failed to append %s record to %s", category, store.log_dir)
        raise HTTPException(status_code=500, detail="Failed to record event")


def resolve_static_path(root: str, url_path: str) -> Optional[str]:
    """Map a URL path onto a file under root. None when it escapes the root."""
    rel = url_path.lstrip("/") or "index.html"
    root_real = os.path.realpath(root)
    target = os.path.realpath(os.path.join(root_real, rel))
    if os.path.commonpath([root_real, target]) != root_real:
        return None
    return target


def _is_within(path: str, directory: str) -> bool:
    directory = os.path.realpath(directory)
    return os.path.commonpath([directory, path]) == directory


# ---------- cors ----------
CORS_ALLOW_METHODS = "GET,POST,OPTIONS"
CORS_DEFAULT_ALLOW_HEADERS = "Content-Type, Accept"


def apply_cors_headers(request_headers: Mapping[str, str], response_headers: MutableMapping[str, str]) -> None:
    """Reflect a credentialed Origin; methods and headers are advertised on every response."""
    origin = request_headers.get("origin")
    if origin:
        response_headers["Access-Control-Allow-Origin"] = origin
        response_headers["Vary"] = "Origin"
    requested = request_headers.get("access-control-request-headers")
    response_headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    response_headers["Access-Control-Allow-Headers"] = requested or CORS_DEFAULT_ALLOW_HEADERS
    response_headers["Access-Control-Allow-Credentials"] = "true"


# ---------- routes ----------
# Everything but OPTIONS; OPTIONS always gets the 204 below.
ANY_METHOD = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]

router = APIRouter()


@router.api_route("/healthz", methods=ANY_METHOD)
async def healthz():
    return {"ok": True}


@router.post("/api/visit", status_code=201)
async def ingest_visit(request: Request):
    settings: Settings = request.app.state.settings
    body = await _read_json_body(request, settings.max_body_bytes)

    record = build_visit_record(
        body,
        now=datetime.now(timezone.utc),
        tz=request.app.state.tz,
        ip=_request_ip(request),
        headers=request.headers,
        query_path=request.query_params.get("path"),
    )
    await _append(request, VISITS, record.to_dict())
    return {"ok": True, "received": {"timestamp": record.timestamp, "ip": record.ip}}


@router.post("/api/download", status_code=201)
async def ingest_download(request: Request):
    settings: Settings = request.app.state.settings
    body = await _read_json_body(request, settings.max_body_bytes)

    record = build_download_record(
        body,
        now=datetime.now(timezone.utc),
        tz=request.app.state.tz,
        ip=_request_ip(request),
        headers=request.headers,
    )
    await _append(request, DOWNLOADS, record.to_dict())
    return {
        "ok": True,
        "received": {"timestamp": record.timestamp, "ip": record.ip, "days": list(record.days)},
    }


@router.get("/api/stats")
async def stats(request: Request, date: Optional[str] = None, scope: Optional[str] = None):
    try:
        target = parse_scope(date, scope)
    except InvalidScopeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await aggregate(request.app.state.store, target)
    except OSError:
        logger.exception("Failed to read event logs")
        raise HTTPException(status_code=500, detail="Failed to read event logs")


@router.options("/{full_path:path}")
async def options_any(full_path: str):
    return Response(status_code=204)


@router.api_route("/{full_path:path}", methods=ANY_METHOD)
async def static_file(request: Request, full_path: str):
    settings: Settings = request.app.state.settings
    target = resolve_static_path(settings.static_root, full_path)
    if target is None:
        return _error(403, "Forbidden")
    if _is_within(target, settings.log_dir):
        return _error(404, "Not Found")

    try:
        if not os.path.isfile(target):
            return _error(404, "Not Found")
        # FileResponse opens lazily; open it here first so an unreadable file is a clean 500.
        with open(target, "rb"):
            pass
    except FileNotFoundError:
        return _error(404, "Not Found")
    except OSError:
        logger.exception("Static serve error for %s", target)
        return _error(500, "Internal Server Error")

    return FileResponse(target)


# ---------- app ----------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Calendar Metrics API",
        version="1.0.0",
        default_response_class=Utf8JSONResponse,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    store = LogStore(settings.log_dir)
    store.start()

    app.state.settings = settings
    app.state.store = store
    app.state.tz = settings.tzinfo()

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.middleware("http")
    async def _cors_and_errors(request: Request, call_next):
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("API error on %s %s", request.method, request.url.path)
            response = _error(500, "Internal Server Error")
        apply_cors_headers(request.headers, response.headers)
        return response

    app.include_router(router)

    logger.info(
        "Metrics API configured: env=%s log_dir=%s tz=%s",
        settings.environment,
        settings.log_dir,
        settings.metrics_tz,
    )
    return app


# ---------- uvicorn entry ----------
def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("Metrics API listening on http://%s:%d", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
