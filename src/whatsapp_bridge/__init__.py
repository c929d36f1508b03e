"""
WhatsApp Bridge

Relays WhatsApp messages into a bot conversation and the bot's replies back
out, and lets the bot start conversations on its own after a period of
silence (proactive check-ins).

Architecture:
    WhatsApp <-> Bridge plugin (HTTP) <-> BridgeController <-> ReplyGenerator
"""

__version__ = "0.1.0"
