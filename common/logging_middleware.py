"""HTTP audit logging middleware shared by services."""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from time import time
from typing import Optional

from fastapi import FastAPI, Request

_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_LOG_DIR.mkdir(exist_ok=True)

# Domain modules log through these; they share the service's file handler.
DOMAIN_LOGGERS = ("common", "services")


def _build_logger(service_name: str) -> logging.Logger:
    logger = logging.getLogger(f"audit.{service_name}")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(_LOG_DIR / f"{service_name}.log")
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    for name in DOMAIN_LOGGERS:
        domain_logger = logging.getLogger(name)
        if not domain_logger.handlers:
            domain_logger.setLevel(logging.INFO)
            domain_logger.addHandler(handler)
    return logger


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    logger = _build_logger(service_name)

    @app.middleware("http")
    async def audit_logger(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        start = time()
        response = await call_next(request)
        duration_ms = (time() - start) * 1000
        client_ip: Optional[str] = None
        if request.client:
            client_ip = request.client.host
        logger.info(
            "%s %s | status=%s | client=%s | request_id=%s | duration=%.2fms",
            request.method,
            request.url.path,
            response.status_code,
            client_ip or "unknown",
            request_id,
            duration_ms,
        )
        response.headers["X-Request-ID"] = request_id
        return response
