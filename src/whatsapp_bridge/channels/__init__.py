"""Channel adapters for the bridge (currently WhatsApp only)."""
