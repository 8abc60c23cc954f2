"""
Remote command bridge (Telegram <-> tmux panes).

Handles:
- Outbound: routed events -> formatted HTML -> chunked messages
- Inbound: operator commands and free text -> keystrokes into the right pane
- Target disambiguation through inline keyboards and pending replies

All methods run on the service event loop; blocking adapter and tmux calls are
pushed to worker threads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from ...contracts.v1 import NotifyEvent
from ...kernel.presence import PresenceMonitor
from ...kernel.targets import MultipleWaiting, SingleWaiting, Target, TargetResolver, find_target
from ...runners import tmux
from .adapters.base import IMAdapter, chunk_text
from .commands import (
    CB_SELECT,
    CB_STATUS,
    CB_STATUS_ALL,
    EXPIRED_TEXT,
    NOTHING_WAITING_TEXT,
    STATUS_CAPTURE_LINES,
    CommandType,
    ParsedCommand,
    escape_html,
    format_event,
    format_help,
    format_pane_capture,
    format_sessions,
    format_unknown_command,
    format_waiting_list,
    no_sessions_text,
    parse_callback,
    parse_message,
    select_callback,
    split_target_args,
    status_callback,
    target_label,
)
from .pending import PendingReplies

logger = logging.getLogger("awayrelay.bridge")

POLL_ERROR_BACKOFF_SECONDS = 2.0
CAPTURE_CONCURRENCY = 4


class RemoteBridge:
    """
    Coordinates:
    - Adapter (platform-specific communication)
    - Target resolver (which pane is waiting)
    - Pending replies (free text awaiting a target)
    """

    def __init__(
        self,
        adapter: IMAdapter,
        *,
        operator_id: int,
        resolver: TargetResolver,
        presence: Optional[PresenceMonitor] = None,
        inject: Callable[[str, str], None] = tmux.send_keys,
        capture: Callable[[str, int], str] = tmux.capture_pane,
        list_sessions_raw: Callable[[], str] = tmux.list_sessions_raw,
    ) -> None:
        self.adapter = adapter
        self.operator_id = int(operator_id)
        self.chat_id = str(operator_id)  # private chat with the operator
        self.resolver = resolver
        self.presence = presence
        self.pending = PendingReplies()
        self._send_keys = inject
        self._capture = capture
        self._list_sessions_raw = list_sessions_raw
        self._running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> str:
        """Connect the adapter; raises the adapter's error on bad credentials."""
        name = await asyncio.to_thread(self.adapter.connect)
        self._running = True
        logger.info(f"[start] bridge connected ({self.adapter.platform} @{name})")
        return name

    async def stop(self) -> None:
        self._running = False
        await asyncio.to_thread(self.adapter.disconnect)
        logger.info("[stop] bridge stopped")

    async def announce_start(self) -> None:
        targets = await self.resolver.enumerate()
        sessions = sorted({t.session for t in targets})
        if sessions:
            status = f"Found {len(sessions)} session(s): {', '.join(sessions)}"
        else:
            status = f"No {self.resolver.session_prefix}* sessions found yet."
        await self.send_text(f"<b>awayrelay started</b>\n{escape_html(status)}\n\nReady to relay commands.")

    async def poll_once(self) -> int:
        updates = await asyncio.to_thread(self.adapter.poll)
        for update in updates:
            try:
                await self.handle_update(update)
            except Exception as e:
                logger.exception(f"[inbound] update failed: {e}", extra={"op": "handle_update"})
        return len(updates)

    async def run_forever(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[poll] loop error: {type(e).__name__}: {e}")
                await asyncio.sleep(POLL_ERROR_BACKOFF_SECONDS)

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_text(self, text: str, *, html: bool = True) -> bool:
        """Send `text` as ordered chunks; a failed chunk doesn't stop the rest."""
        all_ok = True
        for chunk in chunk_text(text):
            if not chunk:
                continue
            ok = await asyncio.to_thread(self.adapter.send_message, self.chat_id, chunk, html=html)
            if not ok and html:
                logger.info("[send] HTML chunk rejected; retrying as plain text", extra={"channel": "remote"})
                ok = await asyncio.to_thread(self.adapter.send_message, self.chat_id, chunk, html=False)
            if not ok:
                all_ok = False
                logger.warning(f"[send] chunk of {len(chunk)} chars not delivered", extra={"channel": "remote"})
        return all_ok

    async def notify(self, event: NotifyEvent) -> bool:
        """Remote channel sink for the notification router."""
        return await self.send_text(format_event(event))

    async def _reply(self, text: str) -> None:
        await self.send_text(text, html=False)

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_update(self, update: Dict[str, Any]) -> None:
        try:
            sender = int(update.get("from_user_id") or 0)
        except (TypeError, ValueError):
            sender = 0
        if sender != self.operator_id:
            logger.debug("[inbound] ignoring update from non-operator", extra={"operator_id": sender})
            return
        if update.get("kind") == "callback":
            await self.handle_callback(update)
            return
        text = str(update.get("text") or "")
        if text.strip():
            await self.handle_message(text)

    async def handle_message(self, text: str) -> None:
        parsed = parse_message(text)
        logger.info(f"[inbound] {parsed.type.value}", extra={"op": parsed.type.value, "operator_id": self.operator_id})

        if parsed.type == CommandType.APPROVE:
            await self._reply_to_waiting("y")
        elif parsed.type == CommandType.DENY:
            await self._reply_to_waiting("n")
        elif parsed.type == CommandType.SELECT:
            await self._handle_select(parsed)
        elif parsed.type == CommandType.TARGET:
            await self._handle_target(parsed)
        elif parsed.type == CommandType.PROMPT:
            if not parsed.text:
                await self._reply("Usage: /prompt <text>\nExample: /prompt Explain this code")
                return
            await self._new_instruction(parsed.text)
        elif parsed.type == CommandType.STATUS:
            await self._handle_status()
        elif parsed.type == CommandType.SCREENSHOT:
            await self._handle_screenshot()
        elif parsed.type == CommandType.SESSIONS:
            raw = await asyncio.to_thread(self._list_sessions_raw)
            for message in format_sessions(raw):
                await self.send_text(message)
        elif parsed.type == CommandType.HELP:
            await self._reply(format_help())
        elif parsed.type == CommandType.UNKNOWN:
            await self._reply(format_unknown_command())
        else:
            await self._free_text(parsed.text)

    async def _handle_select(self, parsed: ParsedCommand) -> None:
        choice = parsed.args[0] if parsed.args else ""
        if not choice.isdigit():
            await self._reply("Usage: /select <number>\nExample: /select 1")
            return
        await self._reply_to_waiting(choice)

    async def _handle_target(self, parsed: ParsedCommand) -> None:
        split = split_target_args(parsed.text)
        if split is None:
            await self._reply(f"Usage: /{parsed.name or 'target'} <id> <text>\nExample: /{parsed.name or 'target'} %0 y")
            return
        target_id, text = split
        # The operator named the pane explicitly; no waiting check.
        await self._inject_and_report(Target(target_id=target_id, session=""), text)

    async def _reply_to_waiting(self, text: str) -> None:
        resolution = await self.resolver.resolve()
        if isinstance(resolution, SingleWaiting):
            target = find_target(resolution.candidates, resolution.status.target_id)
            await self._inject_and_report(target or Target(resolution.status.target_id, ""), text)
        elif isinstance(resolution, MultipleWaiting):
            await self._ask_for_target(text, self._waiting_targets(resolution), format_waiting_list)
        else:
            await self._reply(NOTHING_WAITING_TEXT)

    async def _free_text(self, text: str) -> None:
        resolution = await self.resolver.resolve()
        if isinstance(resolution, SingleWaiting):
            target = find_target(resolution.candidates, resolution.status.target_id)
            await self._inject_and_report(target or Target(resolution.status.target_id, ""), text)
        elif isinstance(resolution, MultipleWaiting):
            await self._ask_for_target(text, self._waiting_targets(resolution), format_waiting_list)
        else:
            await self._new_instruction(text, resolution.candidates)

    async def _new_instruction(self, text: str, candidates: Optional[Sequence[Target]] = None) -> None:
        """Nothing is waiting: treat the text as a fresh prompt for any live pane."""
        targets = list(candidates) if candidates is not None else await self.resolver.enumerate()
        if not targets:
            await self._reply(no_sessions_text(self.resolver.session_prefix))
            return
        if len(targets) == 1:
            await self._inject_and_report(targets[0], text, verb="Prompt sent")
            return
        await self._ask_for_target(
            text, targets, lambda _ts: "Multiple panes found. Choose where to send your message:"
        )

    @staticmethod
    def _waiting_targets(resolution: MultipleWaiting) -> List[Target]:
        out: List[Target] = []
        for status in resolution.statuses:
            out.append(find_target(resolution.candidates, status.target_id) or Target(status.target_id, ""))
        return out

    async def _ask_for_target(
        self, text: str, targets: Sequence[Target], header: Callable[[Sequence[Target]], str]
    ) -> None:
        reply = self.pending.stash(self.operator_id, text)
        buttons = [(target_label(t), select_callback(reply.token, t.target_id)) for t in targets]
        ok = await asyncio.to_thread(self.adapter.send_keyboard, self.chat_id, header(targets), buttons)
        if not ok:
            logger.warning("[inbound] failed to send target keyboard", extra={"operator_id": self.operator_id})

    async def _inject(self, target_id: str, text: str) -> None:
        await asyncio.to_thread(self._send_keys, target_id, text)

    async def _inject_and_report(self, target: Target, text: str, *, verb: str = "Sent") -> bool:
        label = target_label(target) if target.session else f"pane {target.target_id}"
        try:
            await self._inject(target.target_id, text)
        except tmux.TmuxError as e:
            logger.warning(f"[inject] {e}", extra={"target_id": target.target_id})
            await self._reply(f"✗ Failed to send to {label}: {e}")
            return False
        logger.info("[inject] delivered", extra={"target_id": target.target_id})
        await self._reply(f"✓ {verb} to {label}")
        return True

    # =========================================================================
    # Callbacks (inline keyboard buttons)
    # =========================================================================

    async def handle_callback(self, update: Dict[str, Any]) -> None:
        callback_id = str(update.get("callback_id") or "")
        message_id = int(update.get("message_id") or 0)
        kind, args = parse_callback(str(update.get("text") or ""))

        if kind == CB_SELECT and len(args) == 2:
            await self._handle_select_callback(callback_id, message_id, args[0], args[1])
        elif kind == CB_STATUS and args:
            await asyncio.to_thread(self.adapter.answer_callback, callback_id, "")
            await self._handle_status_callback(args[0])
            if message_id:
                await asyncio.to_thread(self.adapter.delete_message, self.chat_id, message_id)
        else:
            await asyncio.to_thread(self.adapter.answer_callback, callback_id, "Unknown action")

    async def _handle_select_callback(self, callback_id: str, message_id: int, token: str, target_id: str) -> None:
        reply = self.pending.peek(self.operator_id)
        if reply is None or reply.token != token or not target_id:
            await asyncio.to_thread(self.adapter.answer_callback, callback_id, EXPIRED_TEXT)
            return
        try:
            await self._inject(target_id, reply.text)
        except tmux.TmuxError as e:
            logger.warning(f"[inject] {e}", extra={"target_id": target_id})
            await asyncio.to_thread(self.adapter.answer_callback, callback_id, f"✗ Failed: {e}")
            return
        self.pending.take(self.operator_id, token)
        await asyncio.to_thread(self.adapter.answer_callback, callback_id, "✓ Message sent!")
        if message_id:
            await asyncio.to_thread(
                self.adapter.edit_message, self.chat_id, message_id, f'✓ Sent to pane {target_id}:\n"{reply.text}"'
            )

    # =========================================================================
    # Views
    # =========================================================================

    def _presence_line(self) -> str:
        if self.presence is None:
            return ""
        info = self.presence.describe()
        return f"Presence: {info['status']} ({info['mode']})"

    async def _handle_status(self) -> None:
        targets = await self.resolver.enumerate()
        if not targets:
            await self._reply(no_sessions_text(self.resolver.session_prefix))
            return
        line = self._presence_line()
        if line:
            await self._reply(line)
        if len(targets) == 1:
            await self._send_captures(targets)
            return
        buttons = [(target_label(t), status_callback(t.target_id)) for t in targets]
        buttons.append(("All panes", status_callback(CB_STATUS_ALL)))
        await asyncio.to_thread(self.adapter.send_keyboard, self.chat_id, "Select a pane to view status:", buttons)

    async def _handle_status_callback(self, target_id: str) -> None:
        targets = await self.resolver.enumerate()
        if target_id == CB_STATUS_ALL:
            if not targets:
                await self._reply(no_sessions_text(self.resolver.session_prefix))
                return
            await self._send_captures(targets)
            return
        target = find_target(targets, target_id) or Target(target_id=target_id, session="")
        await self._send_captures([target])

    async def _capture_many(self, targets: Sequence[Target]) -> List[Any]:
        """Capture all targets concurrently; results are text or the raised exception."""
        semaphore = asyncio.Semaphore(CAPTURE_CONCURRENCY)

        async def _one(t: Target) -> str:
            async with semaphore:
                return await asyncio.to_thread(self._capture, t.target_id, STATUS_CAPTURE_LINES)

        return list(await asyncio.gather(*(_one(t) for t in targets), return_exceptions=True))

    async def _send_captures(self, targets: Sequence[Target]) -> None:
        results = await self._capture_many(targets)
        for target, res in zip(targets, results):
            if isinstance(res, Exception):
                await self._reply(f"Failed to capture {target_label(target)}: {res}")
                continue
            for message in format_pane_capture(target, str(res)):
                await self.send_text(message)

    async def _handle_screenshot(self) -> None:
        targets = await self.resolver.enumerate()
        if not targets:
            await self._reply(no_sessions_text(self.resolver.session_prefix))
            return
        results = await self._capture_many(targets)
        for target, res in zip(targets, results):
            label = target_label(target)
            if isinstance(res, Exception):
                await self._reply(f"Failed to capture screenshot for {label}: {res}")
                continue
            filename = f"{target.session or 'pane'}-{target.target_id.lstrip('%')}.txt"
            ok = await asyncio.to_thread(
                self.adapter.send_file,
                self.chat_id,
                data=str(res).encode("utf-8"),
                filename=filename,
                caption=label,
            )
            if not ok:
                await self._reply(f"Failed to send screenshot for {label}")
