"""
WhatsApp Bridge - Entry Point

Runs the bridge daemon: relays WhatsApp messages to the bot and back, and
sends proactive check-ins.
"""

import asyncio
import argparse
import logging
import sys

from .config import create_default_config, load_config
from .core.controller import run_bridge
from .core.storage import BridgeStorage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main(argv=None):
    parser = argparse.ArgumentParser(
        description="WhatsApp Bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with ./bridge.yaml (or defaults)
  python -m whatsapp_bridge

  # Explicit config, connect on startup
  python -m whatsapp_bridge --config ~/bridge.yaml --auto-connect

  # Write a starter config
  python -m whatsapp_bridge --init
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to bridge.yaml'
    )

    parser.add_argument(
        '--phone',
        help="User's WhatsApp number (overrides destination_phone and is remembered)"
    )

    parser.add_argument(
        '--auto-connect',
        action='store_true',
        help='Connect WhatsApp on startup'
    )

    parser.add_argument(
        '--init',
        action='store_true',
        help='Write a default bridge.yaml and exit'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.init:
        path = create_default_config(args.config)
        print(f"Wrote {path}")
        return

    try:
        config = load_config(args.config)
    except (FileNotFoundError, KeyError) as e:
        logger.error(f"Cannot load configuration: {e}")
        sys.exit(1)

    storage = BridgeStorage(config.storage.base_dir)
    if args.phone:
        storage.set_destination(args.phone)
        config.destination_phone = args.phone
    if args.auto_connect:
        config.auto_connect = True

    if not config.destination_phone and not storage.get_destination():
        logger.warning("No destination_phone set: proactive messages are disabled until one is stored")

    await run_bridge(config)


def run():
    """Entry point for console script"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == '__main__':
    run()
