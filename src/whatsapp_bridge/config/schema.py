"""
WhatsApp Bridge Configuration Schema

Defines the configuration structure for the bridge.
All configuration can be specified via bridge.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path


@dataclass
class BridgeServiceConfig:
    """Connection to the WhatsApp bridge plugin"""
    url: str = "http://localhost:8000/api/plugins/whatsapp-bridge"
    # Extra request headers (auth tokens, CSRF) required by the host
    headers: Dict[str, str] = field(default_factory=dict)
    request_timeout: float = 30.0
    qr_poll_interval_ms: int = 2000
    # Status re-check while connected, and how many misses mean disconnected
    status_check_interval_ms: int = 30000
    max_status_failures: int = 3


@dataclass
class RelayConfig:
    """Inbound message relay settings"""
    poll_interval_ms: int = 3000
    reply_timeout_seconds: float = 120.0
    text_chunk_limit: int = 4000
    convert_markdown: bool = True


@dataclass
class ProactiveConfig:
    """Proactive outreach settings"""
    enabled: bool = True
    generation_timeout_seconds: float = 120.0


@dataclass
class LLMConfig:
    """Configuration for the reply generator"""
    model: str = "claude-sonnet-4-20250514"
    api_key: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: int = 1024
    history_limit: int = 40


@dataclass
class StorageConfig:
    """Where timer/session state and the conversation log live"""
    path: str = "~/.whatsapp_bridge"
    persist_conversation: bool = True

    @property
    def base_dir(self) -> Path:
        return Path(self.path).expanduser()


@dataclass
class BridgeConfig:
    """
    Central configuration for the WhatsApp bridge.

    Example bridge.yaml:
    ```yaml
    destination_phone: "${WHATSAPP_USER_PHONE}"
    auto_connect: true

    bridge:
      url: "${BRIDGE_URL:-http://localhost:8000/api/plugins/whatsapp-bridge}"

    relay:
      poll_interval_ms: 3000

    llm:
      model: claude-sonnet-4-20250514
      system_prompt: "You are Ava. You text like a close friend."
    ```
    """
    # The user's WhatsApp number (who receives texts)
    destination_phone: Optional[str] = None
    auto_connect: bool = False

    channel_name: str = "whatsapp"
    channel_label: str = "WhatsApp"

    bridge: BridgeServiceConfig = field(default_factory=BridgeServiceConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    proactive: ProactiveConfig = field(default_factory=ProactiveConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Create BridgeConfig from dictionary (e.g., parsed YAML)"""
        bridge_data = data.get("bridge") or {}
        bridge_config = BridgeServiceConfig(
            url=bridge_data.get("url", BridgeServiceConfig.url),
            headers=dict(bridge_data.get("headers") or {}),
            request_timeout=float(bridge_data.get("request_timeout", 30.0)),
            qr_poll_interval_ms=int(bridge_data.get("qr_poll_interval_ms", 2000)),
            status_check_interval_ms=int(bridge_data.get("status_check_interval_ms", 30000)),
            max_status_failures=int(bridge_data.get("max_status_failures", 3)),
        )

        relay_data = data.get("relay") or {}
        relay_config = RelayConfig(
            poll_interval_ms=int(relay_data.get("poll_interval_ms", 3000)),
            reply_timeout_seconds=float(relay_data.get("reply_timeout_seconds", 120.0)),
            text_chunk_limit=int(relay_data.get("text_chunk_limit", 4000)),
            convert_markdown=bool(relay_data.get("convert_markdown", True)),
        )

        proactive_data = data.get("proactive") or {}
        proactive_config = ProactiveConfig(
            enabled=bool(proactive_data.get("enabled", True)),
            generation_timeout_seconds=float(
                proactive_data.get("generation_timeout_seconds", 120.0)
            ),
        )

        llm_data = data.get("llm") or {}
        llm_config = LLMConfig(
            model=llm_data.get("model", LLMConfig.model),
            api_key=llm_data.get("api_key") or None,
            system_prompt=llm_data.get("system_prompt"),
            max_tokens=int(llm_data.get("max_tokens", 1024)),
            history_limit=int(llm_data.get("history_limit", 40)),
        )

        storage_data = data.get("storage") or {}
        storage_config = StorageConfig(
            path=storage_data.get("path", StorageConfig.path),
            persist_conversation=bool(storage_data.get("persist_conversation", True)),
        )

        destination = data.get("destination_phone")
        return cls(
            destination_phone=str(destination) if destination else None,
            auto_connect=bool(data.get("auto_connect", False)),
            channel_name=data.get("channel_name", "whatsapp"),
            channel_label=data.get("channel_label", "WhatsApp"),
            bridge=bridge_config,
            relay=relay_config,
            proactive=proactive_config,
            llm=llm_config,
            storage=storage_config,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "destination_phone": self.destination_phone,
            "auto_connect": self.auto_connect,
            "channel_name": self.channel_name,
            "channel_label": self.channel_label,
            "bridge": {
                "url": self.bridge.url,
                "headers": self.bridge.headers,
                "request_timeout": self.bridge.request_timeout,
                "qr_poll_interval_ms": self.bridge.qr_poll_interval_ms,
                "status_check_interval_ms": self.bridge.status_check_interval_ms,
                "max_status_failures": self.bridge.max_status_failures,
            },
            "relay": {
                "poll_interval_ms": self.relay.poll_interval_ms,
                "reply_timeout_seconds": self.relay.reply_timeout_seconds,
                "text_chunk_limit": self.relay.text_chunk_limit,
                "convert_markdown": self.relay.convert_markdown,
            },
            "proactive": {
                "enabled": self.proactive.enabled,
                "generation_timeout_seconds": self.proactive.generation_timeout_seconds,
            },
            "llm": {
                "model": self.llm.model,
                "system_prompt": self.llm.system_prompt,
                "max_tokens": self.llm.max_tokens,
                "history_limit": self.llm.history_limit,
            },
            "storage": {
                "path": self.storage.path,
                "persist_conversation": self.storage.persist_conversation,
            },
        }
