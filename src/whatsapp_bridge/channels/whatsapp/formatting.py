"""
WhatsApp Text Formatting

Converts generated replies into plain WhatsApp text and builds the display
text for inbound messages.
"""

import html
import re
from typing import List

from .client import InboundMessage

_BREAK_TAGS = re.compile(r"<\s*(br\s*/?|/p|/div|/li)\s*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")


def strip_markup(text: str) -> str:
    """Strip HTML tags from a generated reply, keeping line breaks."""
    if not text:
        return ""
    text = _BREAK_TAGS.sub("\n", text)
    text = _TAGS.sub("", text)
    text = html.unescape(text)
    # Collapse the blank runs left behind by block tags
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def markdown_to_whatsapp(markdown: str) -> str:
    """Convert Markdown to WhatsApp formatting."""
    text = markdown

    # Placeholders so bold isn't re-read as italic
    BOLD_START = "\uFFF0"
    BOLD_END = "\uFFF1"

    text = re.sub(r'\*\*(.+?)\*\*', BOLD_START + r'\1' + BOLD_END, text)
    text = re.sub(r'__(.+?)__', BOLD_START + r'\1' + BOLD_END, text)

    # Bullets first, otherwise "* item" looks like an unterminated italic
    text = re.sub(r'^[\*\-]\s+', '• ', text, flags=re.MULTILINE)

    text = re.sub(r'(?<!\*)\*([^*\n]+?)\*(?!\*)', r'_\1_', text)
    text = text.replace(BOLD_START, '*').replace(BOLD_END, '*')

    text = re.sub(r'~~(.+?)~~', r'~\1~', text)
    text = re.sub(r'`([^`]+)`', r'```\1```', text)

    # WhatsApp has no headers
    text = re.sub(r'^#{1,6}\s+', '', text, flags=re.MULTILINE)

    return text


def to_whatsapp_text(reply: str, convert_markdown: bool = True) -> str:
    """Clean a generated reply for delivery."""
    text = strip_markup(reply)
    if convert_markdown:
        text = markdown_to_whatsapp(text)
    return text


def chunk_text(text: str, limit: int) -> List[str]:
    """Split text into chunks that fit the WhatsApp message limit."""
    if len(text) <= limit:
        return [text]

    chunks = []
    current = ""

    for para in text.split("\n\n"):
        if len(current) + len(para) + 2 <= limit:
            current = f"{current}\n\n{para}" if current else para
            continue

        if current:
            chunks.append(current)
        current = ""

        if len(para) <= limit:
            current = para
            continue

        # Paragraph too long on its own: split by sentences, then hard-cut
        for sent in re.split(r"(?<=\.) ", para):
            while len(sent) > limit:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.append(sent[:limit])
                sent = sent[limit:]
            if len(current) + len(sent) + 1 <= limit:
                current = f"{current} {sent}" if current else sent
            else:
                if current:
                    chunks.append(current)
                current = sent

    if current:
        chunks.append(current)

    return chunks


def describe_inbound(message: InboundMessage, channel_label: str = "WhatsApp") -> str:
    """Build the conversation text for an inbound message."""
    body = message.body or ""
    if not message.has_media:
        return body

    note = f"[Sent a {message.media_type or 'file'} via {channel_label}]"
    return f"{note} {body}" if body else note
