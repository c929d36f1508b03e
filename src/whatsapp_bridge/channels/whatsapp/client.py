"""
WhatsApp Bridge Client

Connects to the WhatsApp bridge plugin running inside the chat host.
The bridge owns the actual WhatsApp Web session (QR auth, send/receive);
this client only talks to its HTTP API.

Architecture:
    BridgeController <-> WhatsAppBridgeClient <-> Bridge plugin <-> WhatsApp Web
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import aiohttp

from ...core.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class InboundMessage:
    """Pending WhatsApp message fetched from the bridge inbox."""
    body: str
    has_media: bool = False
    media_type: Optional[str] = None
    from_id: Optional[str] = None
    id: Optional[str] = None
    timestamp: int = 0

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "InboundMessage":
        """Create from bridge message format."""
        has_media = bool(data.get("hasMedia", False))
        media_type = None
        if has_media:
            mimetype = data.get("mediaMimetype") or ""
            media_type = mimetype.split("/")[0] or "file"

        return cls(
            body=data.get("body") or "",
            has_media=has_media,
            media_type=media_type,
            from_id=data.get("from"),
            id=data.get("id"),
            timestamp=data.get("timestamp", 0),
        )


@dataclass
class BridgeStatus:
    """Connection status reported by the bridge."""
    state: str
    client_info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "BridgeStatus":
        return cls(
            state=data.get("state", "disconnected"),
            client_info=data.get("clientInfo") or {},
        )


def to_whatsapp_jid(phone_number: str) -> str:
    """Format a phone number as a WhatsApp JID (digits only + @c.us)."""
    if "@" in phone_number:
        return phone_number
    cleaned = re.sub(r"[^0-9]", "", phone_number)
    return f"{cleaned}@c.us"


class WhatsAppBridgeClient:
    """
    Client for the WhatsApp bridge HTTP API.

    All public calls degrade instead of raising: transport failures and
    non-2xx responses are logged and turned into None / [] / False.

    Example:
        async with WhatsAppBridgeClient("http://localhost:8000/api/plugins/whatsapp-bridge") as client:
            status = await client.get_status()
            for msg in await client.fetch_pending_messages():
                await client.send_message("15551234567@c.us", f"Echo: {msg.body}")
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000/api/plugins/whatsapp-bridge",
        headers: Optional[Dict[str, str]] = None,
        request_timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.request_timeout = request_timeout
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        """Create the HTTP session."""
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )

    async def close(self):
        """Close the HTTP session."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None
            logger.info("Closed WhatsApp bridge HTTP session")

    async def _request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Issue a request against the bridge. Raises TransportError."""
        if self._http_session is None:
            await self.open()

        url = f"{self.base_url}{endpoint}"
        try:
            async with self._http_session.request(method, url, json=body) as resp:
                if resp.status >= 400:
                    raise TransportError(endpoint, f"HTTP {resp.status}", status=resp.status)
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(endpoint, str(e) or type(e).__name__) from e

    async def _safe_request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            return await self._request(endpoint, method, body)
        except TransportError as e:
            logger.error(f"Bridge request failed: {e}")
            return None

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def get_status(self) -> Optional[BridgeStatus]:
        """Get WhatsApp connection status from the bridge."""
        data = await self._safe_request("/status")
        if data is None:
            return None
        return BridgeStatus.from_bridge(data)

    async def connect(self) -> bool:
        """Ask the bridge to start a WhatsApp session."""
        data = await self._safe_request("/connect", "POST")
        return bool(data and data.get("success"))

    async def disconnect(self) -> Optional[Dict[str, Any]]:
        """Disconnect the WhatsApp session (keeps credentials)."""
        return await self._safe_request("/disconnect", "POST")

    async def logout(self) -> Optional[Dict[str, Any]]:
        """Logout from WhatsApp (clears session, QR scan needed again)."""
        return await self._safe_request("/logout", "POST")

    async def get_qr(self) -> Optional[Dict[str, Any]]:
        """
        Get the current QR payload.

        Returns:
            {"available": True, "qr": "<data url>"} while waiting for a scan,
            {"available": False, "reason": "already_connected"} once linked.
        """
        return await self._safe_request("/qr")

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def fetch_pending_messages(self) -> List[InboundMessage]:
        """Fetch and drain the bridge inbox."""
        data = await self._safe_request("/messages")
        if not data:
            return []
        return [InboundMessage.from_bridge(m) for m in data.get("messages") or []]

    async def send_message(self, to: str, message: str) -> bool:
        """
        Send a text message.

        Args:
            to: WhatsApp JID (e.g., "15551234567@c.us")
            message: Text message to send

        Returns:
            True if the bridge accepted the message
        """
        data = await self._safe_request("/send", "POST", {"to": to, "message": message})
        if data is None:
            return False
        return data.get("success", True) is not False
