"""
Remote (IM) port: Telegram command bridge for away-from-keyboard operation.
"""

from .bridge import RemoteBridge

__all__ = ["RemoteBridge"]
