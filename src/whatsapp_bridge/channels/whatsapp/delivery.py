"""Outbound delivery of bot text to a WhatsApp chat."""

import logging

from .client import WhatsAppBridgeClient
from .formatting import chunk_text

logger = logging.getLogger(__name__)


async def send_text(
    client: WhatsAppBridgeClient,
    to: str,
    text: str,
    chunk_limit: int = 4000,
) -> bool:
    """
    Chunk and send text that is already in WhatsApp form.

    Returns:
        True only if every chunk was accepted by the bridge
    """
    if not text:
        logger.warning(f"Nothing to send to {to}")
        return False

    delivered = True
    for chunk in chunk_text(text, chunk_limit):
        if not await client.send_message(to, chunk):
            logger.error(f"Bridge rejected message chunk to {to}")
            delivered = False

    return delivered

