"""
Telegram Bot API adapter.

- _api(): API call wrapper with JSON encoding, timeout, error handling
- poll(): long-poll getUpdates (messages and inline-button callbacks)
- per-chat rate limiting
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import MAX_MESSAGE_LENGTH, IMAdapter, utf16_len

logger = logging.getLogger("awayrelay.telegram")

TELEGRAM_API = "https://api.telegram.org"
LONG_POLL_SECONDS = 25


class TelegramError(RuntimeError):
    pass


class RateLimiter:
    """
    Rate limiter for Telegram API.

    Telegram limits:
    - Same chat: ~1 msg/sec
    - Different chats: ~30 msg/sec
    """

    def __init__(self, max_per_second: float = 1.0):
        self.min_interval = 1.0 / max_per_second
        self.last_send: Dict[str, float] = {}  # chat_id -> timestamp
        self.lock = threading.Lock()

    def acquire(self, chat_id: str) -> float:
        """
        Check if we can send to this chat.
        Returns wait time in seconds (0 if can send immediately).
        """
        with self.lock:
            now = time.time()
            last = self.last_send.get(chat_id, 0)
            elapsed = now - last

            if elapsed >= self.min_interval:
                self.last_send[chat_id] = now
                return 0.0
            return self.min_interval - elapsed

    def wait_and_acquire(self, chat_id: str) -> None:
        """Wait if needed, then acquire."""
        wait_time = self.acquire(chat_id)
        if wait_time > 0:
            time.sleep(wait_time)
            self.acquire(chat_id)


class TelegramAdapter(IMAdapter):
    """
    Telegram Bot API adapter using long-poll getUpdates.
    """

    platform = "telegram"

    def __init__(self, token: str, *, api_base: str = TELEGRAM_API, max_per_second: float = 1.0):
        self.token = token
        self.api_base = api_base.rstrip("/")

        self._offset = 0
        self._rate_limiter = RateLimiter(max_per_second=max_per_second)
        self._connected = False

    def _api(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: int = 35,
    ) -> Dict[str, Any]:
        """
        Call Telegram Bot API.

        Uses JSON body for consistent encoding (handles non-ASCII text).
        Never raises; failures come back as {"ok": False, ...}.
        """
        url = f"{self.api_base}/bot{self.token}/{method}"
        data = json.dumps(params or {}, ensure_ascii=False).encode("utf-8")

        req = urllib.request.Request(url, data=data, method="POST")
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
                return json.loads(body)
        except urllib.error.HTTPError as e:
            http_status = e.code
            err_text = ""
            try:
                err_text = e.read().decode("utf-8", "ignore")[:300]
            except Exception:
                pass
            logger.warning(f"[api] {method}: HTTP {http_status} - {err_text}", extra={"op": method})
            return {"ok": False, "error": err_text or str(e), "http_status": http_status}
        except Exception as e:
            # URLError carries the request URL (and token) in some messages; log the reason only.
            reason = getattr(e, "reason", None) or type(e).__name__
            logger.warning(f"[api] {method}: {reason}", extra={"op": method})
            return {"ok": False, "error": str(reason)}

    def connect(self) -> str:
        """Verify token and get bot info."""
        if not self.token:
            raise TelegramError("telegram bot token is not configured")
        resp = self._api("getMe", timeout=10)
        if not resp.get("ok"):
            raise TelegramError(f"invalid telegram bot token: {resp.get('error', 'unknown error')}")
        info = resp.get("result") if isinstance(resp.get("result"), dict) else {}
        username = str(info.get("username") or "").strip()
        self._connected = True
        logger.info(f"[connect] connected as @{username or 'unknown'}")
        return username

    def disconnect(self) -> None:
        """Disconnect (no-op for Telegram, just mark as disconnected)."""
        self._connected = False
        logger.info("[disconnect] disconnected")

    def poll(self) -> List[Dict[str, Any]]:
        """
        Long-poll for new updates using getUpdates.

        Returns list of normalized update dicts.
        """
        if not self._connected:
            return []

        resp = self._api(
            "getUpdates",
            {
                "offset": self._offset,
                "timeout": LONG_POLL_SECONDS,
                # Edited messages are ignored so a command is never processed twice.
                "allowed_updates": ["message", "callback_query"],
            },
            timeout=LONG_POLL_SECONDS + 10,
        )
        if not resp.get("ok") or not isinstance(resp.get("result"), list):
            return []
        return self.parse_updates(resp["result"])

    def parse_updates(self, updates: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for update in updates:
            try:
                update_id = int(update.get("update_id", 0))
                self._offset = max(self._offset, update_id + 1)

                cb = update.get("callback_query")
                if isinstance(cb, dict):
                    msg = cb.get("message") if isinstance(cb.get("message"), dict) else {}
                    chat = msg.get("chat") if isinstance(msg.get("chat"), dict) else {}
                    sender = cb.get("from") if isinstance(cb.get("from"), dict) else {}
                    out.append({
                        "kind": "callback",
                        "callback_id": str(cb.get("id") or ""),
                        "chat_id": str(chat.get("id") or sender.get("id") or ""),
                        "from_user_id": int(sender.get("id") or 0),
                        "text": str(cb.get("data") or ""),
                        "message_id": int(msg.get("message_id") or 0),
                        "update_id": update_id,
                    })
                    continue

                msg = update.get("message")
                if not isinstance(msg, dict):
                    continue
                text = msg.get("text") or ""
                if not text:
                    continue
                chat = msg.get("chat") if isinstance(msg.get("chat"), dict) else {}
                sender = msg.get("from") if isinstance(msg.get("from"), dict) else {}
                out.append({
                    "kind": "message",
                    "chat_id": str(chat.get("id") or ""),
                    "chat_type": str(chat.get("type") or "").strip(),
                    "from_user_id": int(sender.get("id") or 0),
                    "from_user": sender.get("username") or sender.get("first_name") or "user",
                    "text": text,
                    "message_id": int(msg.get("message_id") or 0),
                    "update_id": update_id,
                })
            except (TypeError, ValueError) as e:
                logger.warning(f"[poll] error parsing update: {e}")
                continue
        return out

    def send_message(self, chat_id: str, text: str, *, html: bool = True) -> bool:
        """
        Send a single message.

        Callers split long text first (see chunk_text); anything over the limit
        is rejected here rather than silently truncated.
        """
        if not text:
            return True
        if utf16_len(text) > MAX_MESSAGE_LENGTH:
            logger.warning(f"[send] message too long ({utf16_len(text)} units)", extra={"op": "sendMessage"})
            return False

        params: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if html:
            params["parse_mode"] = "HTML"
        return self._send_with_retry(str(chat_id), "sendMessage", params)

    def _send_with_retry(self, chat_id: str, method: str, params: Dict[str, Any], retries: int = 1) -> bool:
        self._rate_limiter.wait_and_acquire(chat_id)
        resp = self._api(method, params, timeout=15)
        if resp.get("ok"):
            return True

        # 4xx means Telegram rejected the content (bad HTML, bad chat); retrying won't help.
        status = int(resp.get("http_status") or 0)
        if retries > 0 and not (400 <= status < 500 and status != 429):
            time.sleep(1.0)
            return self._send_with_retry(chat_id, method, params, retries=retries - 1)

        logger.warning(f"[send] {method} to chat {chat_id} failed: {resp.get('error', 'unknown')}")
        return False

    def send_keyboard(self, chat_id: str, text: str, buttons: Sequence[Tuple[str, str]]) -> bool:
        params = {
            "chat_id": chat_id,
            "text": text,
            "reply_markup": {
                "inline_keyboard": [[{"text": label, "callback_data": data}] for label, data in buttons],
            },
        }
        return self._send_with_retry(str(chat_id), "sendMessage", params)

    def answer_callback(self, callback_id: str, text: str = "") -> bool:
        params: Dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            params["text"] = text
        return bool(self._api("answerCallbackQuery", params, timeout=10).get("ok"))

    def edit_message(self, chat_id: str, message_id: int, text: str) -> bool:
        params = {"chat_id": chat_id, "message_id": int(message_id), "text": text}
        return bool(self._api("editMessageText", params, timeout=10).get("ok"))

    def delete_message(self, chat_id: str, message_id: int) -> bool:
        params = {"chat_id": chat_id, "message_id": int(message_id)}
        return bool(self._api("deleteMessage", params, timeout=10).get("ok"))

    def send_file(self, chat_id: str, *, data: bytes, filename: str, caption: str = "") -> bool:
        if not self._connected:
            return False

        self._rate_limiter.wait_and_acquire(str(chat_id))

        boundary = "----awayrelay" + uuid.uuid4().hex
        url = f"{self.api_base}/bot{self.token}/sendDocument"

        fields: List[Tuple[str, str]] = [("chat_id", str(chat_id))]
        if caption:
            # Telegram caption length is limited; keep it short.
            fields.append(("caption", caption[:1000]))

        body = b""
        for k, v in fields:
            body += (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{k}"\r\n\r\n'
                f"{v}\r\n"
            ).encode("utf-8")

        safe_fn = (filename or "file").replace("\\", "_").replace("/", "_").replace('"', "_")
        body += (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="document"; filename="{safe_fn}"\r\n'
            f"Content-Type: application/octet-stream\r\n\r\n"
        ).encode("utf-8")
        body += data
        body += f"\r\n--{boundary}--\r\n".encode("utf-8")

        req = urllib.request.Request(url, data=body, method="POST")
        req.add_header("Content-Type", f"multipart/form-data; boundary={boundary}")
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=30) as resp:
                out = json.loads(resp.read().decode("utf-8", errors="replace"))
                return bool(out.get("ok"))
        except Exception as e:
            reason = getattr(e, "reason", None) or type(e).__name__
            logger.warning(f"[send_file] failed: {reason}", extra={"op": "sendDocument"})
            return False
