"""Target Resolver.

Enumerates live agent panes (tmux sessions named with the configured prefix) and
classifies each one concurrently to find the pane an operator reply belongs to.
Several waiting panes are reported as ambiguous; the resolver never picks one.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from ..runners import tmux
from .pane_state import CLASSIFY_CAPTURE_LINES, PaneStatus, classify
from .settings import DEFAULT_SESSION_PREFIX

logger = logging.getLogger("awayrelay.targets")

DEFAULT_CONCURRENCY = 4
DEFAULT_CLASSIFY_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class Target:
    target_id: str
    session: str
    project: Optional[str] = None


@dataclass(frozen=True)
class NoneWaiting:
    candidates: Tuple[Target, ...] = ()


@dataclass(frozen=True)
class SingleWaiting:
    status: PaneStatus
    candidates: Tuple[Target, ...] = ()


@dataclass(frozen=True)
class MultipleWaiting:
    statuses: Tuple[PaneStatus, ...]
    candidates: Tuple[Target, ...] = ()


Resolution = Union[NoneWaiting, SingleWaiting, MultipleWaiting]


def select_waiting(statuses: Iterable[PaneStatus], candidates: Sequence[Target] = ()) -> Resolution:
    waiting = tuple(s for s in statuses if s.is_waiting)
    cands = tuple(candidates)
    if not waiting:
        return NoneWaiting(candidates=cands)
    if len(waiting) == 1:
        return SingleWaiting(status=waiting[0], candidates=cands)
    return MultipleWaiting(statuses=waiting, candidates=cands)


def find_target(candidates: Iterable[Target], target_id: str) -> Optional[Target]:
    for t in candidates:
        if t.target_id == target_id:
            return t
    return None


class TargetResolver:
    """Fresh enumeration + classification on every call; nothing is cached."""

    def __init__(
        self,
        *,
        session_prefix: str = DEFAULT_SESSION_PREFIX,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout_s: float = DEFAULT_CLASSIFY_TIMEOUT_SECONDS,
        capture: Callable[[str, int], str] = tmux.capture_pane,
        list_sessions: Callable[[str], List[tmux.SessionInfo]] = tmux.list_sessions_by_prefix,
        list_panes: Callable[[str], List[str]] = tmux.list_panes,
        project_label: Callable[[str], Optional[str]] = tmux.pane_project_label,
    ) -> None:
        self.session_prefix = session_prefix
        self.concurrency = max(1, int(concurrency))
        self.timeout_s = float(timeout_s)
        self._capture = capture
        self._list_sessions = list_sessions
        self._list_panes = list_panes
        self._project_label = project_label

    def _enumerate_blocking(self) -> List[Target]:
        targets: List[Target] = []
        for sess in self._list_sessions(self.session_prefix):
            for pane in self._list_panes(sess.name):
                targets.append(Target(target_id=pane, session=sess.name, project=self._project_label(pane)))
        return targets

    async def enumerate(self) -> List[Target]:
        return await asyncio.to_thread(self._enumerate_blocking)

    async def classify_target(self, target: Target) -> PaneStatus:
        text = await asyncio.to_thread(self._capture, target.target_id, CLASSIFY_CAPTURE_LINES)
        return classify(text, target.target_id)

    async def classify_all(self, candidates: Sequence[Target]) -> List[PaneStatus]:
        """Classify every candidate; failures and timeouts are logged and dropped."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(target: Target) -> PaneStatus:
            async with semaphore:
                return await asyncio.wait_for(self.classify_target(target), timeout=self.timeout_s)

        results = await asyncio.gather(*(_one(t) for t in candidates), return_exceptions=True)
        statuses: List[PaneStatus] = []
        for target, res in zip(candidates, results):
            if isinstance(res, BaseException):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                logger.warning(
                    f"[resolve] classify failed for {target.target_id}: {type(res).__name__}: {res}",
                    extra={"op": "classify", "target_id": target.target_id},
                )
                continue
            statuses.append(res)
        return statuses

    async def resolve(self, candidates: Optional[Sequence[Target]] = None) -> Resolution:
        cands = list(candidates) if candidates is not None else await self.enumerate()
        statuses = await self.classify_all(cands)
        resolution = select_waiting(statuses, cands)
        logger.debug(
            f"[resolve] {len(cands)} candidates -> {type(resolution).__name__}",
            extra={"op": "resolve"},
        )
        return resolution
