"""Bridge core: connection lifecycle, inbound relay, proactive scheduling."""
