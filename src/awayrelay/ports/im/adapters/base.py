"""
Base class for IM platform adapters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence, Tuple

# Telegram's per-message limit, counted in UTF-16 code units; other platforms are
# at least as generous.
MAX_MESSAGE_LENGTH = 4096


def utf16_len(text: str) -> int:
    """Message length as Telegram counts it (astral characters take two units)."""
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


def _fitting_prefix(text: str, limit: int) -> int:
    """Number of leading characters whose UTF-16 length is within `limit` (at least 1)."""
    units = 0
    for i, ch in enumerate(text):
        units += 2 if ord(ch) > 0xFFFF else 1
        if units > limit:
            return max(i, 1)
    return len(text)


def chunk_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split text into chunks of at most `limit` UTF-16 units.

    Prefers the last newline at or before the limit (the newline itself is
    dropped); with no usable newline the text is cut hard at the limit.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")

    chunks: List[str] = []
    remaining = text
    while utf16_len(remaining) > limit:
        cut = _fitting_prefix(remaining, limit)
        split = remaining.rfind("\n", 0, cut + 1)
        if split <= 0:
            chunks.append(remaining[:cut])
            remaining = remaining[cut:]
        else:
            chunks.append(remaining[:split])
            remaining = remaining[split + 1 :]
    chunks.append(remaining)
    return chunks


class IMAdapter(ABC):
    """
    Abstract base class for IM platform adapters.

    Each adapter handles:
    - Connecting to the platform
    - Receiving updates (messages and button presses)
    - Sending messages, keyboards and documents
    """

    platform: str = "unknown"

    @abstractmethod
    def connect(self) -> str:
        """
        Verify credentials and initialize the connection.
        Returns the bot's display name; raises on invalid credentials.
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the platform."""

    @abstractmethod
    def poll(self) -> List[Dict[str, Any]]:
        """
        Poll for new updates.

        Returns list of update dicts with at least:
        - kind: "message" | "callback"
        - chat_id: str
        - from_user_id: int
        - text: str (message text, or callback data for buttons)
        - message_id: int
        - callback_id: str (callbacks only)
        """

    @abstractmethod
    def send_message(self, chat_id: str, text: str, *, html: bool = True) -> bool:
        """
        Send one message (already within the platform limit).
        Returns True if successful.
        """

    def send_keyboard(self, chat_id: str, text: str, buttons: Sequence[Tuple[str, str]]) -> bool:
        """Send a message with one button per row: (label, callback data)."""
        _ = buttons
        return self.send_message(chat_id, text, html=False)

    def answer_callback(self, callback_id: str, text: str = "") -> bool:
        _ = callback_id
        _ = text
        return False

    def edit_message(self, chat_id: str, message_id: int, text: str) -> bool:
        _ = chat_id
        _ = message_id
        _ = text
        return False

    def delete_message(self, chat_id: str, message_id: int) -> bool:
        _ = chat_id
        _ = message_id
        return False

    def send_file(self, chat_id: str, *, data: bytes, filename: str, caption: str = "") -> bool:
        """Send a document to a chat (platform-specific)."""
        _ = data
        _ = filename
        _ = caption
        return False
