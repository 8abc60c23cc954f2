from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Tuple


class TmuxError(RuntimeError):
    pass


def _tmux_bin() -> str:
    return os.environ.get("AWAYRELAY_TMUX", "").strip() or "tmux"


def _run_tmux(args: List[str], *, timeout_s: float = 3.0) -> Tuple[int, str, str]:
    try:
        p = subprocess.run(
            [_tmux_bin(), *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return int(p.returncode), (p.stdout or ""), (p.stderr or "")
    except subprocess.TimeoutExpired:
        return 124, "", "tmux timeout"
    except Exception as e:
        return 1, "", str(e)


@dataclass(frozen=True)
class SessionInfo:
    name: str


def list_sessions_raw() -> str:
    code, out, _ = _run_tmux(["list-sessions"])
    if code != 0 or not out.strip():
        return "No active tmux sessions found."
    return out.strip()


def list_sessions_by_prefix(prefix: str) -> List[SessionInfo]:
    code, out, _ = _run_tmux(["list-sessions", "-F", "#{session_name}"])
    if code != 0:
        return []
    sessions: List[SessionInfo] = []
    for ln in (out or "").splitlines():
        name = ln.strip()
        if name and name.startswith(prefix):
            sessions.append(SessionInfo(name=name))
    return sessions


def list_panes(session: str) -> List[str]:
    code, out, _ = _run_tmux(["list-panes", "-s", "-t", session, "-F", "#{pane_id}"])
    if code != 0:
        return []
    return [ln.strip() for ln in (out or "").splitlines() if ln.strip()]


def pane_project_label(pane: str) -> Optional[str]:
    """Last path component of the pane's working directory."""
    code, out, _ = _run_tmux(["display-message", "-p", "-t", pane, "#{pane_current_path}"])
    if code != 0:
        return None
    path = (out or "").strip().rstrip("/")
    if not path.startswith("/"):
        return None
    return path.rsplit("/", 1)[-1] or None


def pane_session_name(pane: str) -> Optional[str]:
    code, out, _ = _run_tmux(["display-message", "-p", "-t", pane, "#{session_name}"])
    if code != 0:
        return None
    return (out or "").strip() or None


def capture_pane(pane: str, lines: int = 50) -> str:
    code, out, err = _run_tmux(["capture-pane", "-p", "-t", pane, "-S", f"-{int(lines)}"])
    if code != 0:
        raise TmuxError(f"tmux capture-pane failed for {pane}: {err.strip() or code}")
    return out


def send_keys(pane: str, text: str) -> None:
    """Type `text` literally into the pane, then submit with a separate Enter.

    `-l` disables key-name lookup so text like "C-c" or shell metacharacters is
    never interpreted.
    """
    code, _, err = _run_tmux(["send-keys", "-t", pane, "-l", text])
    if code != 0:
        raise TmuxError(f"tmux send-keys failed for {pane}: {err.strip() or code}")
    code, _, err = _run_tmux(["send-keys", "-t", pane, "Enter"])
    if code != 0:
        raise TmuxError(f"tmux send-keys Enter failed for {pane}: {err.strip() or code}")
