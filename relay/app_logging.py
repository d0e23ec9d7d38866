"""Logging setup for the webhook receiver and the worker.

- A JSON formatter (opt-in via LOG_JSON) or a human-readable formatter.
- Timed rotation of ``relay.log`` and, for the HTTP app, ``access.log``.
- An HTTP middleware writing one structured access line per request with
  webhook signatures, internal auth headers and tokens scrubbed.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC, LOG_STDERR.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

LOGGER_NAME = "relay"


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "password",
    "token",
    "access_token",
    "api_key",
    "webhook-signature",
    "x-hub-signature-256",
    "x-internal-auth",
}


def _scrub(data: object) -> object:
    """Recursively scrub sensitive fields from dictionaries and lists."""

    if isinstance(data, dict):
        return {
            k: ("***" if k.lower() in SENSITIVE_FIELDS else _scrub(v))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def _install_access_logging(app: FastAPI) -> None:
    """Log one JSON line per request (health and metrics excluded).

    A generated X-Request-Id is echoed back in the response headers.
    """

    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    skip_paths = {"/api/health", "/api/metrics"}
    access_logger = logging.getLogger("uvicorn.access")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in skip_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id

        start = time.time()

        body_content = None
        if log_request_bodies:
            body_bytes = await request.body()

            async def receive() -> dict:  # pragma: no cover - internal
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]

            if body_bytes:
                try:
                    body_content = _scrub(json.loads(body_bytes))
                except ValueError:
                    body_content = body_bytes.decode("utf-8", errors="replace")

        response = await call_next(request)

        client = request.client
        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and client is not None:
            client_ip = client.host

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "client_ip": client_ip,
            "headers": _scrub(dict(request.headers)),
        }
        if body_content is not None:
            log_data["body"] = body_content

        response.headers["X-Request-Id"] = request_id

        access_logger.info(json.dumps(log_data, default=str))
        return response


def _rotating_handler(log_dir: str, filename: str, formatter: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=int(os.getenv("LOG_RETENTION_DAYS", "7")),
        utc=os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> logging.Logger:
    """Initialise the ``relay`` logger and, for an app, access logging.

    The worker calls this without an app; it then also logs to stderr unless
    ``LOG_STDERR=false``.
    """

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)

    formatter = _get_formatter(log_json)
    log_level = getattr(logging, log_level_str, logging.INFO)

    relay_logger = logging.getLogger(LOGGER_NAME)
    if not relay_logger.handlers:
        relay_logger.addHandler(_rotating_handler(log_dir, "relay.log", formatter))
        if app is None and os.getenv("LOG_STDERR", "true").lower() == "true":
            stream = logging.StreamHandler(sys.stderr)
            stream.setFormatter(formatter)
            relay_logger.addHandler(stream)
    relay_logger.setLevel(log_level)

    if app is not None:
        access_logger = logging.getLogger("uvicorn.access")
        access_logger.handlers.clear()
        access_logger.addHandler(_rotating_handler(log_dir, "access.log", formatter))
        access_logger.setLevel(log_level)

        cast(Any, app).logger = relay_logger
        _install_access_logging(app)
    return relay_logger
