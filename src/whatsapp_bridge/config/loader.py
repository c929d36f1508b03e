"""
WhatsApp Bridge Configuration Loader

Reads bridge.yaml and expands environment references before building the
dataclass schema:

    ${WHATSAPP_USER_PHONE}         required, KeyError when unset
    ${BRIDGE_URL:-http://...}      falls back to the text after ":-"
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml

from .schema import BridgeConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "bridge.yaml"

ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _expand(match: "re.Match") -> str:
    name, fallback = match.group(1), match.group(2)
    value = os.environ.get(name, fallback)
    if value is None:
        raise KeyError(
            f"Environment variable '{name}' is not set and has no default "
            f"(write ${{{name}:-value}} to give it one)"
        )
    return value


def interpolate_env_vars(value: Any) -> Any:
    """Expand ${VAR} references in every string of a parsed YAML tree."""
    if isinstance(value, str):
        return ENV_VAR_PATTERN.sub(_expand, value)
    if isinstance(value, dict):
        return {key: interpolate_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def load_config_from_file(config_path: Union[str, Path], interpolate: bool = True) -> BridgeConfig:
    """
    Build a BridgeConfig from one YAML file.

    Raises:
        FileNotFoundError: no file at config_path
        KeyError: a required environment variable is unset
        yaml.YAMLError: malformed YAML
    """
    config_path = Path(config_path).expanduser()
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")
    raw = yaml.safe_load(config_path.read_text()) or {}

    if interpolate:
        try:
            raw = interpolate_env_vars(raw)
        except KeyError as e:
            logger.error(f"Configuration error in {config_path}: {e}")
            raise

    return BridgeConfig.from_dict(raw)


def _candidates(search_dir: Optional[Path]) -> List[Path]:
    dirs = [search_dir] if search_dir else []
    dirs.append(Path.cwd())
    return [d / name for d in dirs for name in (CONFIG_FILENAME, f"config/{CONFIG_FILENAME}")]


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    search_dir: Optional[Union[str, Path]] = None,
) -> BridgeConfig:
    """
    Load bridge.yaml, or fall back to built-in defaults.

    Looks at config_path when given, otherwise bridge.yaml and
    config/bridge.yaml in search_dir and then in the current directory.
    """
    if config_path:
        return load_config_from_file(config_path)

    for path in _candidates(Path(search_dir) if search_dir else None):
        if path.is_file():
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    return BridgeConfig()


DEFAULT_CONFIG = """# WhatsApp Bridge Configuration
# Values may reference the environment: ${VAR_NAME} or ${VAR_NAME:-default}

# The user's WhatsApp number, with country code (who receives texts)
destination_phone: "${WHATSAPP_USER_PHONE:-}"

# Connect to WhatsApp as soon as the bridge starts
auto_connect: false

bridge:
  url: "${BRIDGE_URL:-http://localhost:8000/api/plugins/whatsapp-bridge}"
  request_timeout: 30
  qr_poll_interval_ms: 2000
  # Re-read /status while connected; a dropped session disconnects
  status_check_interval_ms: 30000
  max_status_failures: 3

relay:
  poll_interval_ms: 3000
  reply_timeout_seconds: 120
  text_chunk_limit: 4000

proactive:
  enabled: true
  generation_timeout_seconds: 120

llm:
  model: "claude-sonnet-4-20250514"
  api_key: "${ANTHROPIC_API_KEY:-}"
  # system_prompt: |
  #   You are Ava. You text like a close friend would.

storage:
  path: "~/.whatsapp_bridge"
  persist_conversation: true
"""


def create_default_config(output_path: Optional[Union[str, Path]] = None) -> Path:
    """Write a starter bridge.yaml and return its path."""
    output_path = Path(output_path) if output_path else Path(CONFIG_FILENAME)
    output_path.write_text(DEFAULT_CONFIG)
    logger.info(f"Created default configuration at {output_path}")
    return output_path
