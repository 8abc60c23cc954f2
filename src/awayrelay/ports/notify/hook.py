"""Agent hook client: enrich the hook JSON with tmux context and POST it.

Never blocks or fails the agent: every error is logged and swallowed.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import requests

from ...kernel.pane_state import CLASSIFY_CAPTURE_LINES
from ...kernel.settings import get_relay_settings, load_secret
from ...runners import tmux
from .app import NOTIFY_PATH

logger = logging.getLogger("awayrelay.hook")

HOOK_TIMEOUT_SECONDS = 3.0


def ingress_url(host: str, port: int) -> str:
    return f"http://{host}:{int(port)}{NOTIFY_PATH}"


def enrich(payload: Dict[str, Any], pane: Optional[str] = None) -> Dict[str, Any]:
    """Add tmux_pane, terminal_context, tmux_session and project when available."""
    out = dict(payload)
    pane = pane if pane is not None else os.environ.get("TMUX_PANE", "").strip()
    if pane:
        out["tmux_pane"] = pane
        try:
            out["terminal_context"] = tmux.capture_pane(pane, CLASSIFY_CAPTURE_LINES)
        except tmux.TmuxError as e:
            logger.debug(f"[hook] capture failed: {e}")
        session = tmux.pane_session_name(pane)
        if session:
            out["tmux_session"] = session
    if not out.get("project"):
        cwd = str(out.get("cwd") or os.getcwd())
        label = os.path.basename(cwd.rstrip("/"))
        if label:
            out["project"] = label
    return out


def post_event(payload: Dict[str, Any], *, url: str, secret: str, timeout: float = HOOK_TIMEOUT_SECONDS) -> bool:
    headers: Dict[str, str] = {}
    if secret:
        headers["Authorization"] = f"Bearer {secret}"
    try:
        r = requests.post(url, json=payload, headers=headers, timeout=timeout)
        r.raise_for_status()
        return True
    except Exception as e:
        logger.warning(f"[hook] post failed: {e}")
        return False


def run_hook(raw: str, *, url: Optional[str] = None) -> bool:
    try:
        doc = json.loads(raw) if raw.strip() else {}
    except ValueError as e:
        logger.warning(f"[hook] stdin is not JSON: {e}")
        return False
    if not isinstance(doc, dict):
        logger.warning("[hook] stdin JSON is not an object")
        return False
    settings = get_relay_settings()
    target = url or ingress_url(settings.listen_host, settings.listen_port)
    return post_event(enrich(doc), url=target, secret=load_secret())
