"""OS presence queries (macOS via ioreg/pmset, Linux via xprintidle/loginctl).

Every query returns None when the platform cannot answer, so callers keep their
previous signal value instead of guessing.
"""
from __future__ import annotations

import os
import re
import subprocess
import sys
from typing import List, Optional, Tuple


def _run(cmd: List[str], *, timeout_s: float = 3.0) -> Tuple[int, str]:
    try:
        p = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return int(p.returncode), (p.stdout or "")
    except subprocess.TimeoutExpired:
        return 124, ""
    except Exception:
        return 1, ""


_HID_IDLE_RE = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')
_DISPLAY_STATE_RE = re.compile(r"IODisplayWrangler\s+(\d+)\s+(\d+)")


def query_idle_seconds() -> Optional[float]:
    """Seconds since the last keyboard/mouse input."""
    if sys.platform == "darwin":
        code, out = _run(["ioreg", "-c", "IOHIDSystem", "-d", "4"])
        if code != 0:
            return None
        m = _HID_IDLE_RE.search(out)
        if not m:
            return None
        # HIDIdleTime is in nanoseconds
        return int(m.group(1)) / 1_000_000_000.0
    if sys.platform.startswith("linux") and os.environ.get("DISPLAY"):
        code, out = _run(["xprintidle"])
        if code != 0:
            return None
        try:
            return int(out.strip()) / 1000.0
        except ValueError:
            return None
    return None


def query_screen_locked() -> Optional[bool]:
    if sys.platform == "darwin":
        code, out = _run(["ioreg", "-n", "Root", "-d1"])
        if code != 0:
            return None
        return '"CGSSessionScreenIsLocked"=Yes' in out.replace(" ", "")
    if sys.platform.startswith("linux"):
        session_id = os.environ.get("XDG_SESSION_ID", "").strip()
        if not session_id:
            return None
        code, out = _run(["loginctl", "show-session", session_id, "-p", "LockedHint"])
        if code != 0:
            return None
        value = out.strip().partition("=")[2].strip().lower()
        if value in ("yes", "no"):
            return value == "yes"
    return None


def query_display_asleep() -> Optional[bool]:
    if sys.platform != "darwin":
        return None
    code, out = _run(["pmset", "-g", "powerstate", "IODisplayWrangler"])
    if code != 0:
        return None
    m = _DISPLAY_STATE_RE.search(out)
    if not m:
        return None
    # Power state 4 = on, 3 = dimmed, <= 1 = off.
    return int(m.group(1)) <= 1
