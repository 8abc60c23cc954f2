"""Event ingress: `POST /notify` on the loopback interface.

Checks run in a fixed order: method/path (404), bearer secret (401), body (400).
The response is sent before routing runs; delivery is best-effort.
"""
from __future__ import annotations

import hmac
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from ... import __version__
from ...contracts.v1 import NotifyEvent

logger = logging.getLogger("awayrelay.ingress")

NOTIFY_PATH = "/notify"

EventHandler = Callable[[NotifyEvent], Awaitable[Any]]


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": {"code": code, "message": message}})


def check_bearer(header: Optional[str], secret: str) -> bool:
    """Constant-time compare of `Authorization: Bearer <secret>`."""
    auth = str(header or "").strip()
    expected = f"Bearer {secret}"
    return hmac.compare_digest(auth.encode("utf-8"), expected.encode("utf-8"))


def create_app(on_event: EventHandler, secret_provider: Callable[[], str]) -> FastAPI:
    app = FastAPI(title="awayrelay ingress", version=__version__, docs_url=None, redoc_url=None, openapi_url=None)
    warned_open = {"done": False}

    @app.middleware("http")
    async def _gate(request: Request, call_next):  # type: ignore[no-untyped-def]
        if request.method != "POST" or request.url.path != NOTIFY_PATH:
            return _error(404, "not_found", "not found")
        secret = str(secret_provider() or "").strip()
        if not secret:
            if not warned_open["done"]:
                warned_open["done"] = True
                logger.warning("[ingress] no shared secret configured; accepting unauthenticated events")
            return await call_next(request)
        if not check_bearer(request.headers.get("authorization"), secret):
            logger.warning("[ingress] rejected request with missing/invalid bearer token", extra={"op": "notify"})
            return _error(401, "unauthorized", "missing/invalid token")
        return await call_next(request)

    @app.post(NOTIFY_PATH)
    async def notify(request: Request, background_tasks: BackgroundTasks) -> Any:
        raw = await request.body()
        if not raw.strip():
            logger.warning("[ingress] empty body", extra={"op": "notify"})
            return _error(400, "invalid_body", "empty body")
        try:
            doc = json.loads(raw)
        except ValueError as e:
            logger.warning(f"[ingress] invalid JSON: {e}", extra={"op": "notify"})
            return _error(400, "invalid_json", "invalid JSON body")
        if not isinstance(doc, dict):
            logger.warning("[ingress] body is not a JSON object", extra={"op": "notify"})
            return _error(400, "invalid_body", "expected a JSON object")
        try:
            event = NotifyEvent.model_validate(doc)
        except ValidationError as e:
            logger.warning(f"[ingress] invalid event: {e.error_count()} error(s)", extra={"op": "notify"})
            return _error(400, "invalid_event", "invalid event")

        logger.info(
            f"[ingress] {event.kind} event accepted",
            extra={"op": "notify", "category": event.category, "target_id": event.target_id},
        )
        background_tasks.add_task(on_event, event)
        return PlainTextResponse("OK")

    return app
