"""Pane State Classifier.

Decides from captured terminal text whether an agent pane is waiting for operator
input. Pure heuristic over the visible tail: Unknown is the safe answer, since
replies are only auto-injected into panes classified as waiting.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Literal, Optional, Pattern, Tuple

PaneState = Literal["waiting", "idle", "unknown"]

CLASSIFY_CAPTURE_LINES = 20
MATCH_TAIL_LINES = 10

# Tested in order; the first match wins.
WAITING_PATTERNS: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"Allow once", re.I), "permission-prompt"),
    (re.compile(r"Allow always", re.I), "permission-prompt"),
    (re.compile(r"\bDeny\b"), "permission-prompt"),
    (re.compile(r"Do you want to proceed", re.I), "confirmation-prompt"),
    (re.compile(r"\(y/n\)", re.I), "yes-no-prompt"),
    (re.compile(r"\[Y/n\]", re.I), "yes-no-prompt"),
    (re.compile(r"\[y/N\]", re.I), "yes-no-prompt"),
    (re.compile(r"approve", re.I), "approval-prompt"),
    (re.compile(r"Yes\s*,?\s*allow\s+this", re.I), "permission-prompt"),
    (re.compile(r"No\s*,?\s*deny\s+this", re.I), "permission-prompt"),
    (re.compile(r"\?\s*\Z"), "question-prompt"),
    (re.compile(r"^\s*\d+\.\s+.+", re.M), "numbered-options"),
    (re.compile(r"Enter your (choice|answer|response)", re.I), "input-prompt"),
    (re.compile(r"Type your (message|response|answer)", re.I), "input-prompt"),
    (re.compile(r"Please (choose|select|enter|type|provide)", re.I), "input-prompt"),
)

IDLE_PATTERNS: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"\$\s*\Z"), "shell-prompt"),
    (re.compile(r">\s*\Z"), "shell-prompt"),
    (re.compile(r"❯\s*\Z"), "shell-prompt"),
    (re.compile(r"➜\s*\Z"), "shell-prompt"),
)


@dataclass(frozen=True)
class PaneStatus:
    target_id: str
    state: PaneState
    matched_pattern: Optional[str]
    last_lines: str

    @property
    def is_waiting(self) -> bool:
        return self.state == "waiting"


def tail_lines(captured_text: str, limit: int = MATCH_TAIL_LINES) -> str:
    lines: List[str] = [ln for ln in (captured_text or "").splitlines() if ln.strip()]
    return "\n".join(lines[-limit:])


def classify(captured_text: str, target_id: str = "") -> PaneStatus:
    last = tail_lines(captured_text)
    for pattern, label in WAITING_PATTERNS:
        if pattern.search(last):
            return PaneStatus(target_id=target_id, state="waiting", matched_pattern=label, last_lines=last)
    for pattern, label in IDLE_PATTERNS:
        if pattern.search(last):
            return PaneStatus(target_id=target_id, state="idle", matched_pattern=label, last_lines=last)
    return PaneStatus(target_id=target_id, state="unknown", matched_pattern=None, last_lines=last)
