from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from . import __version__
from .kernel.presence import IDLE_THRESHOLD_OPTIONS, PresenceMonitor, idle_threshold_label
from .kernel.settings import (
    SettingsError,
    ensure_secret,
    get_relay_settings,
    load_secret,
    set_detection,
    set_idle_threshold,
)
from .kernel.targets import TargetResolver
from .paths import awayrelay_home, secret_path
from .runners import system, tmux
from .util.obslog import setup_root_json_logging


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def cmd_run(args: argparse.Namespace) -> int:
    from .daemon.service import read_pid, run_service

    setup_root_json_logging(component="service", level=args.log_level or None)
    running = read_pid()
    if running is not None:
        print(f"awayrelay: already running pid={running}", file=sys.stderr)
        return 1
    return run_service()


def _sampled_presence() -> PresenceMonitor:
    s = get_relay_settings()
    monitor = PresenceMonitor(
        idle_threshold_seconds=s.idle_threshold_seconds,
        screen_lock_away=s.screen_lock_away,
        display_sleep_away=s.display_sleep_away,
        mode="manual" if s.detection_mode == "manual" else "automatic",
        manual_away=s.manual_away,
    )
    monitor.sample_idle(system.query_idle_seconds())
    monitor.observe_lock(system.query_screen_locked())
    monitor.observe_display(system.query_display_asleep())
    return monitor


def cmd_status(args: argparse.Namespace) -> int:
    from .daemon.service import read_pid

    s = get_relay_settings()
    pid = read_pid()
    info = _sampled_presence().describe()
    out = {
        "running": pid is not None,
        "pid": pid,
        "home": str(awayrelay_home()),
        "presence": info,
        "idle_threshold": idle_threshold_label(s.idle_threshold_seconds),
        "listen": f"{s.listen_host}:{s.listen_port}",
        "telegram_configured": s.telegram.is_configured,
        "secret_configured": bool(load_secret()),
        "session_prefix": s.tmux_session_prefix,
    }
    if args.json:
        _print_json(out)
        return 0
    print(f"awayrelay {__version__}: {'running pid=' + str(pid) if pid is not None else 'not running'}")
    print(f"presence: {info['status']} (mode={info['mode']}, idle threshold {out['idle_threshold']})")
    print(
        f"signals: idle_expired={info['idle_expired']} locked={info['locked']} "
        f"display_asleep={info['display_asleep']}"
    )
    print(f"ingress: http://{out['listen']}/notify (secret {'set' if out['secret_configured'] else 'NOT set'})")
    print(f"telegram: {'configured' if out['telegram_configured'] else 'not configured'}")
    return 0


def cmd_away(args: argparse.Namespace) -> int:
    try:
        if args.state == "auto":
            s = set_detection("automatic")
        else:
            s = set_detection("manual", manual_away=args.state == "on")
    except SettingsError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    if s.detection_mode == "automatic":
        print("presence: automatic detection")
    else:
        print(f"presence: manual ({'away' if s.manual_away else 'at computer'})")
    return 0


def cmd_threshold(args: argparse.Namespace) -> int:
    if args.seconds is None:
        s = get_relay_settings()
        print(f"idle threshold: {idle_threshold_label(s.idle_threshold_seconds)}")
        print("options: " + ", ".join(f"{v} ({label})" for v, label in IDLE_THRESHOLD_OPTIONS))
        return 0
    try:
        s = set_idle_threshold(args.seconds)
    except SettingsError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    print(f"idle threshold: {idle_threshold_label(s.idle_threshold_seconds)}")
    return 0


def cmd_secret(args: argparse.Namespace) -> int:
    if args.rotate:
        value = ensure_secret(rotate=True)
        print(f"secret rotated: {secret_path()}")
    elif args.init:
        value = ensure_secret()
        print(f"secret: {secret_path()}")
    else:
        value = load_secret()
        if not value:
            print("secret: not configured (run: awayrelay secret --init)")
            return 1
    if args.show:
        print(value)
    return 0


def cmd_hook(args: argparse.Namespace) -> int:
    from .ports.notify.hook import run_hook

    setup_root_json_logging(component="hook", level=args.log_level or "WARNING")
    try:
        run_hook(sys.stdin.read(), url=args.url or None)
    except Exception as e:
        # The agent must never be blocked by its notification hook.
        print(f"awayrelay hook: {e}", file=sys.stderr)
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    if args.raw:
        print(tmux.list_sessions_raw())
        return 0
    s = get_relay_settings()
    resolver = TargetResolver(session_prefix=s.tmux_session_prefix)

    async def _collect() -> list:
        targets = await resolver.enumerate()
        statuses = {st.target_id: st for st in await resolver.classify_all(targets)}
        return [(t, statuses.get(t.target_id)) for t in targets]

    rows = asyncio.run(_collect())
    if args.json:
        _print_json([
            {
                "target_id": t.target_id,
                "session": t.session,
                "project": t.project,
                "state": st.state if st else "unknown",
                "matched_pattern": st.matched_pattern if st else None,
            }
            for t, st in rows
        ])
        return 0
    if not rows:
        print(f"No {s.tmux_session_prefix}* tmux sessions found.")
        return 0
    for t, st in rows:
        state = st.state if st else "unknown"
        pattern = f" ({st.matched_pattern})" if st and st.matched_pattern else ""
        print(f"{t.target_id}\t{t.session}\t{t.project or '-'}\t{state}{pattern}")
    return 0


def cmd_version(_: argparse.Namespace) -> int:
    print(__version__)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="awayrelay", description="Presence-aware relay between tmux agents and Telegram")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Run the relay service (ingress + presence + telegram)")
    p_run.add_argument("--log-level", default="", help="Log level (default: AWAYRELAY_LOG_LEVEL or INFO)")
    p_run.set_defaults(func=cmd_run)

    p_status = sub.add_parser("status", help="Show presence verdict and configuration")
    p_status.add_argument("--json", action="store_true", help="Print JSON")
    p_status.set_defaults(func=cmd_status)

    p_away = sub.add_parser("away", help="Override presence detection")
    p_away.add_argument("state", choices=["on", "off", "auto"], help="on=away, off=at computer, auto=automatic")
    p_away.set_defaults(func=cmd_away)

    p_thr = sub.add_parser("threshold", help="Show or set the idle threshold (seconds)")
    p_thr.add_argument("seconds", nargs="?", type=int, default=None, help="One of the listed options")
    p_thr.set_defaults(func=cmd_threshold)

    p_secret = sub.add_parser("secret", help="Manage the shared ingress secret")
    p_secret.add_argument("--init", action="store_true", help="Create the secret if missing")
    p_secret.add_argument("--rotate", action="store_true", help="Replace the secret")
    p_secret.add_argument("--show", action="store_true", help="Print the secret value")
    p_secret.set_defaults(func=cmd_secret)

    p_hook = sub.add_parser("hook", help="Agent hook: read event JSON on stdin and forward it")
    p_hook.add_argument("--url", default="", help="Ingress URL (default: from settings)")
    p_hook.add_argument("--log-level", default="", help="Log level (default: WARNING)")
    p_hook.set_defaults(func=cmd_hook)

    p_sessions = sub.add_parser("sessions", help="List agent panes and their input state")
    p_sessions.add_argument("--raw", action="store_true", help="Raw `tmux list-sessions` output")
    p_sessions.add_argument("--json", action="store_true", help="Print JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
