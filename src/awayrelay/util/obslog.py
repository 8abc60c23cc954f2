"""JSONL logging for the service and the hook.

One JSON object per line on stderr. Module loggers are named `awayrelay.<area>`
and pass correlation fields through `extra={...}`.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

# Keys passed as `extra=` by awayrelay loggers.
CORRELATION_KEYS = ("op", "target_id", "category", "channel", "verdict", "operator_id")

_configured: Dict[str, bool] = {}


class JsonlFormatter(logging.Formatter):
    def __init__(self, *, component: str):
        super().__init__()
        self.component = str(component or "").strip() or "awayrelay"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "component": self.component,
            "msg": record.getMessage(),
        }
        for key in CORRELATION_KEYS:
            value = str(getattr(record, key, "") or "").strip()
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def default_level() -> str:
    return str(os.environ.get("AWAYRELAY_LOG_LEVEL") or "").strip().upper() or "INFO"


def _level_number(level: Optional[str]) -> int:
    name = str(level or default_level()).strip().upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def setup_root_json_logging(
    *,
    component: str,
    level: Optional[str] = None,
    stream: Optional[TextIO] = None,
    force: bool = False,
) -> None:
    """Install the JSONL handler on the root logger, once per component unless `force`."""
    if _configured.get(component) and not force:
        return
    _configured[component] = True

    lvl = _level_number(level)
    root = logging.getLogger()
    root.setLevel(lvl)
    if force:
        for h in list(root.handlers):
            root.removeHandler(h)

    existing = [h for h in root.handlers if isinstance(h.formatter, JsonlFormatter)]
    if existing:
        for h in existing:
            h.setLevel(lvl)
        return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(lvl)
    handler.setFormatter(JsonlFormatter(component=component))
    root.addHandler(handler)
