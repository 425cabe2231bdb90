import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from common.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Line-Signature"
LINE_TEXT_MAX_LEN = 5000
QUICK_REPLY_MAX_ITEMS = 13


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a webhook signature against the untouched request bytes.

    ``body`` must be exactly what arrived on the wire; re-serialising parsed
    JSON changes the bytes and breaks the comparison.
    """
    if not signature or not secret:
        return False
    expected = compute_signature(secret, body).encode("ascii")
    # Header values arrive latin-1 decoded and may hold non-ASCII characters.
    return hmac.compare_digest(expected, signature.encode("utf-8", "surrogateescape"))


def parse_event(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the fields the bot acts on from a raw webhook event.
    Supports text message and postback events.
    """
    if not isinstance(event, dict):
        return None
    source = event.get("source") or {}
    user_id = source.get("userId")
    reply_token = event.get("replyToken")
    event_type = event.get("type")

    if event_type == "message":
        message = event.get("message") or {}
        if message.get("type") == "text" and isinstance(message.get("text"), str):
            return {
                "kind": "message",
                "user_id": user_id,
                "reply_token": reply_token,
                "text": message["text"],
                "message_id": message.get("id"),
            }
        return None

    if event_type == "postback":
        postback = event.get("postback") or {}
        data = postback.get("data")
        if isinstance(data, str):
            return {
                "kind": "postback",
                "user_id": user_id,
                "reply_token": reply_token,
                "data": data,
            }
    return None


def build_quick_reply(labels: Sequence[str]) -> Dict[str, Any]:
    # Each shortcut simply sends its label back as a text message.
    return {
        "items": [
            {"type": "action", "action": {"type": "message", "label": label[:20], "text": label}}
            for label in list(labels)[:QUICK_REPLY_MAX_ITEMS]
        ]
    }


def build_text_message(text: str, quick_reply: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": "text", "text": (text or "")[:LINE_TEXT_MAX_LEN]}
    if quick_reply:
        message["quickReply"] = quick_reply
    return message


class LineMessagingClient:
    def __init__(self, access_token: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.access_token = access_token if access_token is not None else settings.LINE_CHANNEL_ACCESS_TOKEN
        self.base_url = (base_url or settings.LINE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.LINE_REQUEST_TIMEOUT_SECONDS

    def _get_headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise RuntimeError("LINE_CHANNEL_ACCESS_TOKEN not configured")
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._get_headers()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{self.base_url}{path}", headers=headers, json=payload)
            if resp.status_code >= 400:
                logger.error(
                    "LINE API call %s failed (status=%s, body=%s)",
                    path,
                    resp.status_code,
                    resp.text,
                )
            resp.raise_for_status()
            if not resp.content:
                return {}
            return resp.json()

    async def reply_message(self, reply_token: str, message: Any) -> Dict[str, Any]:
        """
        Replies to one inbound event. A reply token is single-use.
        """
        messages: List[Dict[str, Any]] = list(message) if isinstance(message, (list, tuple)) else [message]
        return await self._post("/message/reply", {"replyToken": reply_token, "messages": messages[:5]})

    async def push_message(self, to: str, message: Any) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = list(message) if isinstance(message, (list, tuple)) else [message]
        return await self._post("/message/push", {"to": to, "messages": messages[:5]})

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetches a user's profile.

        Returns None when the user is unknown to the channel.
        """
        headers = self._get_headers()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(f"{self.base_url}/profile/{user_id}", headers=headers)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return resp.json()


line_client = LineMessagingClient()
