"""Notification Router.

Decides, from the presence verdict and the event category, which channel(s) an
event is delivered on, then performs the deliveries.

present: local only (optional sound)
away:    remote when configured, plus an optional muted local copy
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Literal, Optional, Tuple

from ..contracts.v1 import EventCategory, NotifyEvent
from .presence import PresenceMonitor, Verdict
from .settings import RelaySettings

logger = logging.getLogger("awayrelay.router")

Channel = Literal["local", "remote"]
Diagnostic = Literal["remote_unconfigured", "lost"]

DIAGNOSTICS_MAX = 50


@dataclass(frozen=True)
class Delivery:
    channel: Channel
    sound: bool = False


@dataclass(frozen=True)
class RoutePlan:
    deliveries: Tuple[Delivery, ...]
    diagnostic: Optional[Diagnostic] = None

    def channels(self) -> Tuple[str, ...]:
        return tuple(d.channel for d in self.deliveries)


@dataclass(frozen=True)
class RoutingPolicy:
    notify_local_when_present: bool = True
    notify_sound_when_present: bool = False
    notify_remote_when_away: bool = True
    notify_local_when_away: bool = True
    remote_configured: bool = False

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "RoutingPolicy":
        return cls(
            notify_local_when_present=settings.notify_local_when_present,
            notify_sound_when_present=settings.notify_sound_when_present,
            notify_remote_when_away=settings.notify_remote_when_away,
            notify_local_when_away=settings.notify_local_when_away,
            remote_configured=settings.telegram.is_configured,
        )


def plan_deliveries(category: EventCategory, verdict: Verdict, policy: RoutingPolicy) -> RoutePlan:
    # Category shapes the message body, not the channel choice.
    _ = category
    if verdict == "present":
        if policy.notify_local_when_present:
            return RoutePlan(deliveries=(Delivery("local", sound=policy.notify_sound_when_present),))
        return RoutePlan(deliveries=())

    deliveries: List[Delivery] = []
    diagnostic: Optional[Diagnostic] = None
    if policy.notify_remote_when_away:
        if policy.remote_configured:
            deliveries.append(Delivery("remote"))
        else:
            diagnostic = "remote_unconfigured"
    if policy.notify_local_when_away:
        deliveries.append(Delivery("local", sound=False))
    if diagnostic is not None and not deliveries:
        diagnostic = "lost"
    return RoutePlan(deliveries=tuple(deliveries), diagnostic=diagnostic)


LocalSink = Callable[[NotifyEvent, bool], Awaitable[Any]]
RemoteSink = Callable[[NotifyEvent], Awaitable[Any]]


class NotificationRouter:
    """Reads the verdict and policy, never writes them."""

    def __init__(
        self,
        *,
        presence: PresenceMonitor,
        policy: Callable[[], RoutingPolicy],
        local: Optional[LocalSink] = None,
        remote: Optional[RemoteSink] = None,
        refresh: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self.presence = presence
        self._policy = policy
        self._local = local
        self._remote = remote
        # Awaited before each verdict read.
        self._refresh = refresh
        self.diagnostics: Deque[Dict[str, Any]] = deque(maxlen=DIAGNOSTICS_MAX)

    def set_remote(self, remote: Optional[RemoteSink]) -> None:
        self._remote = remote

    def _record(self, event: NotifyEvent, plan: RoutePlan) -> None:
        if plan.diagnostic is None:
            return
        entry = {
            "ts": time.time(),
            "diagnostic": plan.diagnostic,
            "category": event.category,
            "target_id": event.target_id,
            "title": event.title or "",
        }
        self.diagnostics.append(entry)
        if plan.diagnostic == "lost":
            msg = "[route] notification lost: away, remote channel not configured, local disabled"
        else:
            msg = "[route] remote channel not configured; delivered locally only"
        logger.warning(msg, extra={"category": event.category, "target_id": event.target_id, "verdict": "away"})

    async def _deliver(self, event: NotifyEvent, delivery: Delivery) -> None:
        if delivery.channel == "local":
            if self._local is not None:
                await self._local(event, delivery.sound)
            return
        if self._remote is not None:
            await self._remote(event)

    async def route(self, event: NotifyEvent) -> RoutePlan:
        if self._refresh is not None:
            await self._refresh()
        verdict = self.presence.verdict()
        plan = plan_deliveries(event.category, verdict, self._policy())
        self._record(event, plan)
        logger.info(
            f"[route] {event.category} -> {','.join(plan.channels()) or 'none'}",
            extra={"category": event.category, "verdict": verdict, "target_id": event.target_id},
        )
        if not plan.deliveries:
            return plan
        results = await asyncio.gather(
            *(self._deliver(event, d) for d in plan.deliveries), return_exceptions=True
        )
        for delivery, res in zip(plan.deliveries, results):
            if isinstance(res, Exception):
                logger.error(
                    f"[route] {delivery.channel} delivery failed: {type(res).__name__}: {res}",
                    extra={"channel": delivery.channel, "category": event.category},
                )
        return plan
