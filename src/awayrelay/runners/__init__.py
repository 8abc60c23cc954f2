from __future__ import annotations

from . import system, tmux

__all__ = ["system", "tmux"]
