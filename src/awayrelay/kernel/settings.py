"""Settings for awayrelay.

Settings are stored in ~/.awayrelay/settings.yaml and cover:
- presence detection (idle threshold, lock/sleep toggles, manual override)
- routing toggles per channel
- tmux session prefix and ingress bind address
- telegram bot token / operator id (or the env vars holding them)

The shared ingress secret lives in its own 0600 file (~/.awayrelay/secret) so the
hook can read it without parsing YAML.
"""
from __future__ import annotations

import os
import re
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore

from ..paths import ensure_home, secret_path, settings_path
from ..util.conv import coerce_bool, coerce_int
from ..util.fs import atomic_write_text, read_text
from .presence import DEFAULT_IDLE_THRESHOLD_SECONDS, DETECTION_MODES, IDLE_THRESHOLD_OPTIONS


class SettingsError(ValueError):
    pass


DEFAULT_SESSION_PREFIX = "claude-"
DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 7677
SECRET_FILE_MODE = 0o600


def _is_env_var_name(value: str) -> bool:
    return bool(re.fullmatch(r"[A-Z_][A-Z0-9_]*", (value or "").strip()))


@dataclass
class TelegramSettings:
    token: str = ""
    token_env: str = ""
    operator_id: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "token_env": self.token_env, "operator_id": self.operator_id}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TelegramSettings":
        return cls(
            token=str(d.get("token") or "").strip(),
            token_env=str(d.get("token_env") or "").strip(),
            operator_id=coerce_int(d.get("operator_id"), default=0, min_value=0, max_value=2**63 - 1),
        )

    def resolved_token(self) -> str:
        env_override = os.environ.get("AWAYRELAY_TELEGRAM_TOKEN", "").strip()
        if env_override:
            return env_override
        token_env = self.token_env if _is_env_var_name(self.token_env) else ""
        if token_env:
            value = os.environ.get(token_env, "").strip()
            if value:
                return value
        if self.token:
            return self.token
        if self.token_env and not token_env:
            # Common misconfig: the raw token pasted into token_env.
            return self.token_env
        return ""

    def resolved_operator_id(self) -> int:
        raw = os.environ.get("AWAYRELAY_OPERATOR_ID", "").strip()
        if raw:
            return coerce_int(raw, default=0, min_value=0, max_value=2**63 - 1)
        return self.operator_id

    @property
    def is_configured(self) -> bool:
        return bool(self.resolved_token()) and self.resolved_operator_id() > 0


@dataclass
class RelaySettings:
    idle_threshold_seconds: int = DEFAULT_IDLE_THRESHOLD_SECONDS
    screen_lock_away: bool = True
    display_sleep_away: bool = True
    detection_mode: str = "automatic"
    manual_away: bool = False

    notify_local_when_present: bool = True
    notify_sound_when_present: bool = False
    notify_remote_when_away: bool = True
    notify_local_when_away: bool = True

    tmux_session_prefix: str = DEFAULT_SESSION_PREFIX
    listen_host: str = DEFAULT_LISTEN_HOST
    listen_port: int = DEFAULT_LISTEN_PORT

    telegram: TelegramSettings = field(default_factory=TelegramSettings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idle_threshold_seconds": self.idle_threshold_seconds,
            "screen_lock_away": self.screen_lock_away,
            "display_sleep_away": self.display_sleep_away,
            "detection_mode": self.detection_mode,
            "manual_away": self.manual_away,
            "notify_local_when_present": self.notify_local_when_present,
            "notify_sound_when_present": self.notify_sound_when_present,
            "notify_remote_when_away": self.notify_remote_when_away,
            "notify_local_when_away": self.notify_local_when_away,
            "tmux_session_prefix": self.tmux_session_prefix,
            "listen_host": self.listen_host,
            "listen_port": self.listen_port,
            "telegram": self.telegram.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RelaySettings":
        base = cls()
        mode = str(d.get("detection_mode") or base.detection_mode).strip().lower()
        if mode not in DETECTION_MODES:
            mode = base.detection_mode
        tg = d.get("telegram")
        return cls(
            idle_threshold_seconds=coerce_int(
                d.get("idle_threshold_seconds"), default=base.idle_threshold_seconds, min_value=1, max_value=86400
            ),
            screen_lock_away=coerce_bool(d.get("screen_lock_away"), default=base.screen_lock_away),
            display_sleep_away=coerce_bool(d.get("display_sleep_away"), default=base.display_sleep_away),
            detection_mode=mode,
            manual_away=coerce_bool(d.get("manual_away"), default=base.manual_away),
            notify_local_when_present=coerce_bool(
                d.get("notify_local_when_present"), default=base.notify_local_when_present
            ),
            notify_sound_when_present=coerce_bool(
                d.get("notify_sound_when_present"), default=base.notify_sound_when_present
            ),
            notify_remote_when_away=coerce_bool(d.get("notify_remote_when_away"), default=base.notify_remote_when_away),
            notify_local_when_away=coerce_bool(d.get("notify_local_when_away"), default=base.notify_local_when_away),
            tmux_session_prefix=str(d.get("tmux_session_prefix") or base.tmux_session_prefix),
            listen_host=str(d.get("listen_host") or base.listen_host).strip(),
            listen_port=coerce_int(d.get("listen_port"), default=base.listen_port, min_value=1, max_value=65535),
            telegram=TelegramSettings.from_dict(tg if isinstance(tg, dict) else {}),
        )


def _settings_path() -> Path:
    ensure_home()
    return settings_path()


def load_settings() -> Dict[str, Any]:
    """Load raw settings from ~/.awayrelay/settings.yaml."""
    p = _settings_path()
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        return doc if isinstance(doc, dict) else {}
    except Exception:
        return {}


def save_settings(settings: Dict[str, Any]) -> None:
    p = _settings_path()
    atomic_write_text(p, yaml.safe_dump(settings, allow_unicode=True, sort_keys=False))


def get_relay_settings() -> RelaySettings:
    return RelaySettings.from_dict(load_settings())


def save_relay_settings(settings: RelaySettings) -> None:
    save_settings(settings.to_dict())


def set_detection(mode: str, manual_away: bool = False) -> RelaySettings:
    m = str(mode or "").strip().lower()
    if m not in DETECTION_MODES:
        raise SettingsError(f"unknown detection mode: {mode!r} (expected one of {', '.join(DETECTION_MODES)})")
    s = get_relay_settings()
    s.detection_mode = m
    s.manual_away = bool(manual_away) if m == "manual" else False
    save_relay_settings(s)
    return s


def set_idle_threshold(seconds: int) -> RelaySettings:
    allowed = [v for v, _ in IDLE_THRESHOLD_OPTIONS]
    if int(seconds) not in allowed:
        raise SettingsError(f"idle threshold must be one of {allowed}")
    s = get_relay_settings()
    s.idle_threshold_seconds = int(seconds)
    save_relay_settings(s)
    return s


def load_secret() -> str:
    """Return the shared ingress secret, or "" when none is configured."""
    env = os.environ.get("AWAYRELAY_SECRET", "").strip()
    if env:
        return env
    return read_text(secret_path()).strip()


def ensure_secret(*, rotate: bool = False) -> str:
    existing = "" if rotate else read_text(secret_path()).strip()
    if existing:
        return existing
    value = secrets.token_urlsafe(32)
    atomic_write_text(secret_path(), value + "\n", mode=SECRET_FILE_MODE)
    return value
