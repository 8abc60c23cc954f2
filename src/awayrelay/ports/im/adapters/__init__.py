"""
IM platform adapters.
"""

from .base import IMAdapter, chunk_text, utf16_len
from .telegram import TelegramAdapter, TelegramError

__all__ = ["IMAdapter", "TelegramAdapter", "TelegramError", "chunk_text", "utf16_len"]
