"""Inbound event contract posted by the agent hook to `POST /notify`.

The hook forwards the agent's own hook JSON and enriches it with tmux context:
- tmux_pane: pane id the agent runs in (e.g. "%3")
- terminal_context: last lines captured from that pane
- tmux_session / project: labels shown to the operator
"""
from __future__ import annotations

import os
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, field_validator


EventKind = Literal["Notification", "Stop", "Other"]

EventCategory = Literal["permission", "question", "stop", "generic"]

_PERMISSION_WORDS = ("permission", "approve", "allow")
_QUESTION_WORDS = ("question", "asking", "input")


def classify_event(kind: str, title: Optional[str], message: Optional[str]) -> EventCategory:
    """Keyword heuristic over title + message. An explicit Stop kind always wins."""
    if kind == "Stop":
        return "stop"
    combined = " ".join(p for p in (title, message) if p).lower()
    if any(w in combined for w in _PERMISSION_WORDS):
        return "permission"
    if any(w in combined for w in _QUESTION_WORDS):
        return "question"
    return "generic"


class NotifyEvent(BaseModel):
    kind: EventKind = Field(
        default="Notification",
        validation_alias=AliasChoices("type", "hook_event_name", "kind"),
    )
    title: Optional[str] = None
    message: Optional[str] = None

    # Enrichment added by the hook.
    tmux_pane: Optional[str] = None
    terminal_context: Optional[str] = None
    tmux_session: Optional[str] = None
    project: Optional[str] = None
    cwd: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    _category: EventCategory = PrivateAttr(default="generic")

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v: Any) -> str:
        if v is None:
            return "Notification"
        s = str(v).strip()
        if s in ("Notification", "Stop"):
            return s
        return "Other"

    def model_post_init(self, __context: Any) -> None:
        if not self.project and self.cwd:
            label = os.path.basename(self.cwd.rstrip("/"))
            self.project = label or None
        self._category = classify_event(self.kind, self.title, self.message)

    @property
    def category(self) -> EventCategory:
        return self._category

    @property
    def target_id(self) -> Optional[str]:
        return self.tmux_pane or None
