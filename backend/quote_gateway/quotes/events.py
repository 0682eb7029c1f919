"""Builders for the JSON events sent back to gateway clients.

Every event is a plain dict with a ``type`` key so it can go straight through
``json.dumps``. Sessions and the batch orchestrator never touch the socket;
they hand events to an ``Emit`` callback supplied by the connection layer.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .models import BatchJob, Credentials, OhlcQuote

Event = dict[str, Any]
Emit = Callable[[Event], Awaitable[None]]


def connected(code: str) -> Event:
    return {"type": "connected", "code": code, "message": "Connected to MQTT"}


def subscribed(code: str, topic: str) -> Event:
    return {"type": "subscribed", "code": code, "topic": topic}


def price_update(code: str, quote: OhlcQuote) -> Event:
    return {"type": "price_update", "code": code, "data": quote.to_dict()}


def timeout(code: str, message: str = "No data received for stock") -> Event:
    return {"type": "timeout", "code": code, "message": message}


def error(message: str, code: str | None = None) -> Event:
    event: Event = {"type": "error", "error": message}
    if code is not None:
        event["code"] = code
    return event


def auth_error(code: str, message: str) -> Event:
    return {"type": "auth_error", "code": code, "error": message}


def token_refreshed(code: str, credentials: Credentials) -> Event:
    return {
        "type": "token_refreshed",
        "code": code,
        "message": "Token refreshed automatically. Retrying subscription...",
        "newCredentials": credentials.to_dict(),
    }


def batch_start(total: int) -> Event:
    return {"type": "batch_start", "total": total}


def batch_progress(job: BatchJob) -> Event:
    return {
        "type": "batch_progress",
        "processed": job.processed,
        "total": job.total,
        "success": job.succeeded,
        "failed": job.failed,
    }


def batch_complete(job: BatchJob) -> Event:
    return {
        "type": "batch_complete",
        "total": job.total,
        "success": job.succeeded,
        "failed": job.failed,
    }
