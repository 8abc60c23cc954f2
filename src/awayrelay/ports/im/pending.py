"""
Pending replies for the IM bridge.

When free text can't be routed to exactly one pane, it is parked here until the
operator picks a target from an inline keyboard. One slot per operator: a newer
message replaces the older one, and the older keyboard's token stops matching.
Lives in memory only and is touched from the event loop only.
"""

from __future__ import annotations

import secrets
from typing import Dict, Optional


class PendingReply:
    """Text waiting for an explicit target selection."""

    def __init__(self, operator_id: int, text: str, token: Optional[str] = None):
        self.operator_id = int(operator_id)
        self.text = text
        self.token = token or secrets.token_hex(4)


class PendingReplies:
    def __init__(self) -> None:
        self._slots: Dict[int, PendingReply] = {}

    def stash(self, operator_id: int, text: str) -> PendingReply:
        """Park `text` for the operator, replacing anything parked before."""
        reply = PendingReply(operator_id, text)
        self._slots[int(operator_id)] = reply
        return reply

    def peek(self, operator_id: int) -> Optional[PendingReply]:
        return self._slots.get(int(operator_id))

    def take(self, operator_id: int, token: str) -> Optional[PendingReply]:
        """
        Remove and return the parked reply if `token` matches the current slot.

        Returns None for an empty slot or a token from a replaced keyboard.
        """
        reply = self._slots.get(int(operator_id))
        if reply is None or reply.token != token:
            return None
        del self._slots[int(operator_id)]
        return reply

    def __len__(self) -> int:
        return len(self._slots)
