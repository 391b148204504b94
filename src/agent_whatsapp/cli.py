"""
Command-line interface for the agent WhatsApp session.

Pairs the session, sends single or bulk messages and reports session health.

Usage:
    agent-whatsapp pair
    agent-whatsapp send +15551234567 "Trip assigned"
    agent-whatsapp bulk recipients.json --delay 2
    agent-whatsapp status
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .client import SessionClient
from .config import ClientConfig, get_config_manager
from .exceptions import SessionClientError
from .logging import LogLevel, configure_logging
from .models import DeliveryResult
from .phone import sender_number
from .qr import render_terminal

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agent-whatsapp",
        description="WhatsApp session client for the logistics agent",
    )
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--bridge-url", help="Bridge base URL (overrides config)")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level (overrides config)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Seconds to wait for the session to become ready (default: 120)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("pair", help="Pair the session and print inbound messages")

    send = commands.add_parser("send", help="Send one message")
    send.add_argument("number", help="Destination phone number")
    send.add_argument("message", help="Message text")

    bulk = commands.add_parser("bulk", help="Send messages listed in a JSON file")
    bulk.add_argument("file", help='JSON list of {"to": ..., "body": ...}')
    bulk.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds between messages (default: bulk_delay_seconds)",
    )

    commands.add_parser("status", help="Connect and print session health")

    return parser


def load_client_config(args: argparse.Namespace) -> ClientConfig:
    """Resolve configuration: file, then environment, then command-line flags."""
    manager = get_config_manager()
    if args.config:
        manager.load_config(args.config)
    manager.load_config_from_env()

    if args.bridge_url:
        manager.update_config(bridge_url=args.bridge_url)
    if args.log_level:
        manager.update_config(log_level=LogLevel(args.log_level))
    return manager.get_config()


async def run_command(client: SessionClient, args: argparse.Namespace) -> int:
    """
    Run one CLI command against a client.

    Returns:
        Process exit code
    """
    if args.command == "pair":
        # Printed by print_qr, not logged
        client.config.log_qr = False

        @client.on_qr
        def print_qr(qr):
            print("📱 Scan this QR code with WhatsApp:")
            print(render_terminal(qr))

    if not await client.initialize():
        print(f"❌ Failed to start session: {client.get_state().last_error}")
        return 1

    if args.command == "status":
        try:
            await client.wait_until_ready(timeout=args.timeout)
        except SessionClientError as e:
            logger.warning(f"Session not ready: {e}")
        print(json.dumps(client.get_health(), indent=2))
        return 0

    try:
        state = await client.wait_until_ready(timeout=args.timeout)
    except SessionClientError as e:
        print(f"❌ Session not ready: {e}")
        return 1
    print(f"✅ Session ready as {state.address}")

    if args.command == "send":
        try:
            result = await client.send_message(args.number, args.message)
        except SessionClientError as e:
            print(f"❌ Send failed: {e}")
            return 1
        print(f"📤 Sent {result.id} to {result.destination}")
        return 0

    if args.command == "bulk":
        recipients = json.loads(Path(args.file).read_text())
        results = await client.send_bulk_messages(recipients, delay=args.delay)
        failures = 0
        for outcome in results:
            if isinstance(outcome, DeliveryResult):
                print(f"📤 {outcome.destination}: {outcome.id}")
            else:
                failures += 1
                print(f"❌ {outcome.destination}: {outcome.error}")
        print(f"Sent to {len(results) - failures}/{len(results)} recipients")
        return 0 if failures == 0 else 1

    # pair: keep the session open and show inbound traffic
    @client.on_message
    def print_message(msg):
        if isinstance(msg, dict):
            print(f"📨 [{sender_number(msg.get('from', ''))}] {msg.get('body', '')}")
        else:
            print(f"📨 {msg}")

    print("Listening for messages (Ctrl+C to quit)")
    await asyncio.Event().wait()
    return 0


async def _run(args: argparse.Namespace, config: ClientConfig) -> int:
    async with SessionClient(config=config) as client:
        return await run_command(client, args)


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)
    config = load_client_config(args)
    configure_logging(config.log_level, config.log_file)

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        return 0


if __name__ == "__main__":
    sys.exit(main())
