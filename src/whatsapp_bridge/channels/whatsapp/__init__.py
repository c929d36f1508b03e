"""
WhatsApp Channel

Components:
- WhatsAppBridgeClient: HTTP client for the bridge plugin
- InboundMessage / BridgeStatus: bridge payloads
- formatting: reply cleanup, chunking, inbound display text

The bridge plugin handles:
- WhatsApp Web connection (QR code authentication)
- Inbox buffering of received messages
- Message sending
"""

from .client import BridgeStatus, InboundMessage, WhatsAppBridgeClient, to_whatsapp_jid
from .formatting import chunk_text, describe_inbound, strip_markup, to_whatsapp_text

__all__ = [
    "BridgeStatus",
    "InboundMessage",
    "WhatsAppBridgeClient",
    "to_whatsapp_jid",
    "chunk_text",
    "describe_inbound",
    "strip_markup",
    "to_whatsapp_text",
]
