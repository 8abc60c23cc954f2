"""Presence Engine.

Three independently sourced signals plus a manual override, fused by a pure
function into a single Away/Present verdict:
1. idle expired - system idle time sampled against a threshold
2. screen locked - edge-triggered lock/unlock
3. display asleep - edge-triggered sleep/wake

The verdict is recomputed from the current signal values on every query and is
never stored, so it cannot drift from its inputs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Literal, Optional, Tuple

logger = logging.getLogger("awayrelay.presence")

DetectionMode = Literal["automatic", "manual"]
Verdict = Literal["away", "present"]

DETECTION_MODES: Tuple[str, ...] = ("automatic", "manual")

DEFAULT_IDLE_THRESHOLD_SECONDS = 300
IDLE_POLL_INTERVAL_SECONDS = 30.0

IDLE_THRESHOLD_OPTIONS: Tuple[Tuple[int, str], ...] = (
    (60, "1 minute"),
    (120, "2 minutes"),
    (180, "3 minutes"),
    (300, "5 minutes"),
    (600, "10 minutes"),
    (900, "15 minutes"),
    (1800, "30 minutes"),
)


@dataclass(frozen=True)
class PresenceSignal:
    idle_expired: bool = False
    locked: bool = False
    display_asleep: bool = False
    mode: DetectionMode = "automatic"
    manual_away: bool = False


def compute_verdict(
    signal: PresenceSignal,
    *,
    screen_lock_away: bool = True,
    display_sleep_away: bool = True,
) -> Verdict:
    if signal.mode == "manual":
        return "away" if signal.manual_away else "present"
    away = signal.idle_expired
    if screen_lock_away:
        away = away or signal.locked
    if display_sleep_away:
        away = away or signal.display_asleep
    return "away" if away else "present"


class PresenceMonitor:
    """Single writer of presence signals; readers only call `verdict()`/`snapshot()`."""

    def __init__(
        self,
        *,
        idle_threshold_seconds: float = DEFAULT_IDLE_THRESHOLD_SECONDS,
        screen_lock_away: bool = True,
        display_sleep_away: bool = True,
        mode: DetectionMode = "automatic",
        manual_away: bool = False,
    ) -> None:
        self.idle_threshold_seconds = float(idle_threshold_seconds)
        self.screen_lock_away = bool(screen_lock_away)
        self.display_sleep_away = bool(display_sleep_away)
        self._signal = PresenceSignal(mode=mode, manual_away=bool(manual_away))

    # -- writers --

    def _update(self, **changes: Any) -> None:
        before = self.verdict()
        self._signal = replace(self._signal, **changes)
        after = self.verdict()
        if before != after:
            logger.info(f"[presence] {before} -> {after}", extra={"verdict": after})

    def sample_idle(self, idle_seconds: Optional[float]) -> None:
        """Apply one idle-time sample. A failed query (None) keeps the previous value."""
        if idle_seconds is None:
            return
        self._update(idle_expired=float(idle_seconds) >= self.idle_threshold_seconds)

    def on_lock(self) -> None:
        self._update(locked=True)

    def on_unlock(self) -> None:
        # Unlocking means the user is back; don't wait for the next idle sample.
        self._update(locked=False, idle_expired=False)

    def on_sleep(self) -> None:
        self._update(display_asleep=True)

    def on_wake(self) -> None:
        self._update(display_asleep=False, idle_expired=False)

    def observe_lock(self, locked: Optional[bool]) -> None:
        """Turn a polled lock level into lock/unlock edges (None = query failed)."""
        if locked is None or bool(locked) == self._signal.locked:
            return
        if locked:
            self.on_lock()
        else:
            self.on_unlock()

    def observe_display(self, asleep: Optional[bool]) -> None:
        if asleep is None or bool(asleep) == self._signal.display_asleep:
            return
        if asleep:
            self.on_sleep()
        else:
            self.on_wake()

    def set_manual(self, mode: DetectionMode, manual_away: bool = False) -> None:
        if mode not in DETECTION_MODES:
            raise ValueError(f"unknown detection mode: {mode}")
        self._update(mode=mode, manual_away=bool(manual_away))

    # -- readers --

    def snapshot(self) -> PresenceSignal:
        return self._signal

    def verdict(self) -> Verdict:
        return compute_verdict(
            self._signal,
            screen_lock_away=self.screen_lock_away,
            display_sleep_away=self.display_sleep_away,
        )

    def is_away(self) -> bool:
        return self.verdict() == "away"

    def describe(self) -> Dict[str, Any]:
        s = self._signal
        return {
            "status": "Away" if self.is_away() else "At computer",
            "verdict": self.verdict(),
            "mode": s.mode,
            "manual_away": s.manual_away,
            "idle_expired": s.idle_expired,
            "locked": s.locked,
            "display_asleep": s.display_asleep,
            "idle_threshold_seconds": int(self.idle_threshold_seconds),
        }


def idle_threshold_label(seconds: int) -> str:
    for value, label in IDLE_THRESHOLD_OPTIONS:
        if value == int(seconds):
            return label
    return f"{int(seconds)} seconds"
