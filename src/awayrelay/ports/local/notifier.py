"""Local desktop channel.

macOS: `osascript -e 'display notification ...'`; Linux: `notify-send`.
Delivery is best-effort: a missing notifier or a failed command is logged, not raised.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import sys
from typing import List, Optional, Tuple

from ...contracts.v1 import NotifyEvent

logger = logging.getLogger("awayrelay.local")

_TITLES = {
    "permission": "Permission Request",
    "question": "Claude is asking",
    "stop": "Claude finished",
}


def notification_text(event: NotifyEvent) -> Tuple[str, str]:
    """(title, body) for a desktop notification."""
    title = _TITLES.get(event.category) or (event.title or "Claude Code")
    parts: List[str] = []
    if event.title and event.category in ("generic", "permission"):
        parts.append(event.title)
    if event.message:
        parts.append(event.message)
    return title, "\n".join(parts)


def _osascript_quote(s: str) -> str:
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_command(title: str, body: str, *, sound: bool, platform: Optional[str] = None) -> Optional[List[str]]:
    plat = platform or sys.platform
    if plat == "darwin":
        script = f"display notification {_osascript_quote(body)} with title {_osascript_quote(title)}"
        if sound:
            script += ' sound name "default"'
        return ["osascript", "-e", script]
    if plat.startswith("linux"):
        if not shutil.which("notify-send"):
            return None
        cmd = ["notify-send", "--app-name=awayrelay"]
        if not sound:
            cmd.append("--hint=boolean:suppress-sound:true")
        return cmd + [title, body]
    return None


class LocalNotifier:
    def __init__(self, *, platform: Optional[str] = None) -> None:
        self.platform = platform or sys.platform

    def notify(self, title: str, body: str, *, sound: bool = False) -> bool:
        cmd = build_command(title, body, sound=sound, platform=self.platform)
        delivered = False
        if cmd is not None:
            try:
                p = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True, timeout=5, check=False)
                delivered = p.returncode == 0
                if not delivered:
                    logger.warning(f"[local] {cmd[0]} exited {p.returncode}: {(p.stderr or '').strip()[:200]}")
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning(f"[local] {cmd[0]} failed: {e}")
        else:
            logger.debug(f"[local] no desktop notifier on {self.platform}")
        return delivered

    async def deliver(self, event: NotifyEvent, sound: bool) -> bool:
        title, body = notification_text(event)
        return await asyncio.to_thread(self.notify, title, body, sound=sound)
