from __future__ import annotations

import os
from pathlib import Path


def awayrelay_home() -> Path:
    env = os.environ.get("AWAYRELAY_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".awayrelay").resolve()


def ensure_home() -> Path:
    home = awayrelay_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def secret_path() -> Path:
    return awayrelay_home() / "secret"


def settings_path() -> Path:
    return awayrelay_home() / "settings.yaml"


def pid_path() -> Path:
    return awayrelay_home() / "relay.pid"
