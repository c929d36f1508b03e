"""
Bridge Error Taxonomy

None of these are fatal to the process. Each one degrades to
"skip this cycle, keep the state machine alive".
"""


class BridgeError(Exception):
    """Base class for WhatsApp bridge errors"""


class TransportError(BridgeError):
    """Bridge service unreachable or returned a non-success status"""

    def __init__(self, endpoint: str, message: str, status: int = None):
        self.endpoint = endpoint
        self.status = status
        super().__init__(f"{endpoint}: {message}")


class GenerationTimeout(BridgeError):
    """No reply was produced within the bounded wait"""


class MetadataParseError(BridgeError):
    """Scheduling metadata in generated text could not be parsed"""


class ConfigurationError(BridgeError):
    """Missing destination address or no active conversation"""


class InvalidTransition(BridgeError):
    """Illegal connection state change"""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current.value} to {target.value}")
