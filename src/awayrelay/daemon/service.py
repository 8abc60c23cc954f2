"""awayrelay service: one asyncio loop owning every long-running task.

Tasks:
- ingress: uvicorn serving POST /notify, restarted on failure with a fixed backoff
- presence: samples idle/lock/display every IDLE_POLL_INTERVAL_SECONDS and
  re-reads settings so `awayrelay away ...` takes effect without a restart
- bridge: Telegram long-poll (only when a bot token and operator id are set)

Blocking work runs in worker threads; presence state and pending replies are only
touched on the loop.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections import deque
from typing import Callable, Deque, Iterator, List, Optional

import uvicorn

from ..kernel.presence import IDLE_POLL_INTERVAL_SECONDS, PresenceMonitor
from ..kernel.router import NotificationRouter, RoutingPolicy
from ..kernel.settings import RelaySettings, ensure_secret, get_relay_settings, load_secret
from ..kernel.targets import TargetResolver
from ..paths import pid_path
from ..ports.im.adapters.base import IMAdapter
from ..ports.im.adapters.telegram import TelegramAdapter, TelegramError
from ..ports.im.bridge import RemoteBridge
from ..ports.local.notifier import LocalNotifier
from ..ports.notify.app import create_app
from ..runners import system
from ..util.fs import atomic_write_text, read_text

logger = logging.getLogger("awayrelay.service")

LISTENER_RESTART_BACKOFF_SECONDS = 2.0
LISTENER_MAX_RESTARTS = 5
LISTENER_RESTART_WINDOW_SECONDS = 60.0


class _IngressServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the service loop."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def write_pid() -> None:
    atomic_write_text(pid_path(), f"{os.getpid()}\n")


def read_pid() -> Optional[int]:
    raw = read_text(pid_path()).strip()
    try:
        pid = int(raw)
    except ValueError:
        return None
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return None
    except PermissionError:
        return pid
    return pid


def _remove_pid() -> None:
    try:
        if read_text(pid_path()).strip() == str(os.getpid()):
            pid_path().unlink()
    except OSError:
        pass


class RelayService:
    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        *,
        secret_provider: Callable[[], str] = load_secret,
        adapter: Optional[IMAdapter] = None,
        settings_loader: Callable[[], RelaySettings] = get_relay_settings,
    ) -> None:
        self.settings = settings or settings_loader()
        self._load_settings = settings_loader
        s = self.settings
        self.presence = PresenceMonitor(
            idle_threshold_seconds=s.idle_threshold_seconds,
            screen_lock_away=s.screen_lock_away,
            display_sleep_away=s.display_sleep_away,
            mode="manual" if s.detection_mode == "manual" else "automatic",
            manual_away=s.manual_away,
        )
        self.resolver = TargetResolver(session_prefix=s.tmux_session_prefix)
        self.local = LocalNotifier()

        self.bridge: Optional[RemoteBridge] = None
        if adapter is None and s.telegram.is_configured:
            adapter = TelegramAdapter(s.telegram.resolved_token())
        if adapter is not None:
            self.bridge = RemoteBridge(
                adapter,
                operator_id=s.telegram.resolved_operator_id(),
                resolver=self.resolver,
                presence=self.presence,
            )
        self._remote_ready = False

        self.router = NotificationRouter(
            presence=self.presence,
            policy=self.policy,
            local=self.local.deliver,
            refresh=self.refresh_settings,
        )
        self.app = create_app(self.router.route, secret_provider)

        self._stop = asyncio.Event()
        self._server: Optional[_IngressServer] = None
        self._restarts: Deque[float] = deque()

    # -- settings --

    def policy(self) -> RoutingPolicy:
        base = RoutingPolicy.from_settings(self.settings)
        return RoutingPolicy(
            notify_local_when_present=base.notify_local_when_present,
            notify_sound_when_present=base.notify_sound_when_present,
            notify_remote_when_away=base.notify_remote_when_away,
            notify_local_when_away=base.notify_local_when_away,
            remote_configured=self._remote_ready,
        )

    def apply_settings(self, s: RelaySettings) -> None:
        self.settings = s
        self.presence.idle_threshold_seconds = float(s.idle_threshold_seconds)
        self.presence.screen_lock_away = s.screen_lock_away
        self.presence.display_sleep_away = s.display_sleep_away
        snap = self.presence.snapshot()
        mode = "manual" if s.detection_mode == "manual" else "automatic"
        if snap.mode != mode or snap.manual_away != s.manual_away:
            self.presence.set_manual(mode, s.manual_away)

    async def refresh_settings(self) -> None:
        """Re-read settings.yaml; `awayrelay away` and routing toggles take effect on the next event."""
        try:
            self.apply_settings(await asyncio.to_thread(self._load_settings))
        except Exception as e:
            logger.warning(f"[settings] reload failed, keeping previous values: {type(e).__name__}: {e}")

    # -- tasks --

    async def _presence_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.refresh_settings()
                self.presence.sample_idle(await asyncio.to_thread(system.query_idle_seconds))
                self.presence.observe_lock(await asyncio.to_thread(system.query_screen_locked))
                self.presence.observe_display(await asyncio.to_thread(system.query_display_asleep))
            except Exception as e:
                logger.error(f"[presence] poll failed: {type(e).__name__}: {e}")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=IDLE_POLL_INTERVAL_SECONDS)

    def _note_restart(self, now: float) -> bool:
        """Record a listener failure; False once the per-minute budget is spent."""
        while self._restarts and now - self._restarts[0] > LISTENER_RESTART_WINDOW_SECONDS:
            self._restarts.popleft()
        if len(self._restarts) >= LISTENER_MAX_RESTARTS:
            return False
        self._restarts.append(now)
        return True

    async def _ingress_loop(self) -> None:
        host, port = self.settings.listen_host, self.settings.listen_port
        while not self._stop.is_set():
            config = uvicorn.Config(self.app, host=host, port=port, log_level="warning", lifespan="off", access_log=False)
            self._server = _IngressServer(config)
            logger.info(f"[ingress] listening on http://{host}:{port}/notify")
            try:
                await self._server.serve()
                if self._stop.is_set():
                    return
                logger.warning("[ingress] listener exited unexpectedly")
            except (OSError, SystemExit) as e:
                # uvicorn exits via SystemExit when the bind fails.
                logger.warning(f"[ingress] listener failed: {type(e).__name__}: {e}")
            if not self._note_restart(time.monotonic()):
                logger.error(
                    f"[ingress] listener failed {LISTENER_MAX_RESTARTS} times within "
                    f"{int(LISTENER_RESTART_WINDOW_SECONDS)}s; giving up"
                )
                self.request_stop()
                return
            await asyncio.sleep(LISTENER_RESTART_BACKOFF_SECONDS)

    async def _start_bridge(self) -> None:
        if self.bridge is None:
            logger.info("[remote] telegram not configured; remote channel disabled")
            return
        try:
            await self.bridge.start()
        except TelegramError as e:
            logger.error(f"[remote] {e}; remote channel disabled")
            self.bridge = None
            return
        self._remote_ready = True
        self.router.set_remote(self.bridge.notify)
        try:
            await self.bridge.announce_start()
        except Exception as e:
            logger.warning(f"[remote] start announcement failed: {e}")

    def request_stop(self) -> None:
        self._stop.set()
        if self._server is not None:
            self._server.should_exit = True

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                pass

        if not load_secret():
            ensure_secret()
            logger.info("[secret] generated shared ingress secret")

        write_pid()
        await self._start_bridge()

        tasks: List[asyncio.Task] = [
            asyncio.create_task(self._ingress_loop(), name="ingress"),
            asyncio.create_task(self._presence_loop(), name="presence"),
        ]
        if self.bridge is not None:
            tasks.append(asyncio.create_task(self.bridge.run_forever(), name="bridge"))
        logger.info(f"[service] started ({self.presence.verdict()})", extra={"verdict": self.presence.verdict()})

        try:
            await self._stop.wait()
        finally:
            self.request_stop()
            for t in tasks:
                if t.get_name() != "ingress":
                    t.cancel()
            # Give uvicorn a moment to close its socket before cancelling it too.
            _, pending = await asyncio.wait(tasks, timeout=5.0)
            for t in pending:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if self.bridge is not None:
                await self.bridge.stop()
            _remove_pid()
            logger.info("[service] stopped")
        return 0


def run_service(settings: Optional[RelaySettings] = None) -> int:
    return asyncio.run(RelayService(settings).run())
