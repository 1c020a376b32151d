"""Watch a transaction until it is confirmed.

Usage:
    confirmwatch <TX_HASH> [--config PATH] [--rpc URL | --wss URL]

Examples:
    confirmwatch 0x5c50...e060 --wss wss://node.example/ws --confirmations 12
    confirmwatch 0x5c50...e060 --config confirmwatch.yaml -v

Exit codes: 0 confirmed, 2 timed out, 1 failed, 130 interrupted.
"""

import argparse
import asyncio
import sys
from dataclasses import replace
from typing import Optional, Sequence

from confirmwatch.config import TrackerSettings, create_provider, load_settings
from confirmwatch.core.exceptions import ConfigError, ObservationError
from confirmwatch.core.tracker import TrackerStatus, TransactionTracker
from confirmwatch.utils.logger import get_logger, parse_level, setup_console_logging, setup_file_logging

logger = get_logger(__name__)

EXIT_CONFIRMED = 0
EXIT_FAILED = 1
EXIT_TIMED_OUT = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="confirmwatch",
        description="Follow a transaction until it has enough confirmations.",
    )
    parser.add_argument("transaction_hash", help="Hash of the submitted transaction")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--rpc", help="HTTP JSON-RPC endpoint (polling)")
    parser.add_argument("--wss", help="WebSocket JSON-RPC endpoint (new heads)")
    parser.add_argument("--confirmations", type=int, help="Confirmations required")
    parser.add_argument("--max-checks", type=int, help="Observation cycles before giving up")
    parser.add_argument("--poll-interval-ms", type=int, help="Polling period in milliseconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def apply_arguments(settings: TrackerSettings, args: argparse.Namespace) -> TrackerSettings:
    """Command-line flags override file and environment settings."""
    observation = settings.observation
    try:
        observation = replace(
            observation,
            required_confirmations=args.confirmations or observation.required_confirmations,
            max_checks=args.max_checks or observation.max_checks,
            poll_interval_ms=args.poll_interval_ms or observation.poll_interval_ms,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e

    settings = replace(settings, observation=observation)
    if args.wss:
        settings = replace(settings, wss_endpoint=args.wss, rpc_endpoint=args.rpc or settings.rpc_endpoint)
    elif args.rpc:
        settings = replace(settings, rpc_endpoint=args.rpc, wss_endpoint=None)
    if args.verbose:
        settings = replace(settings, log_level="DEBUG")
    return settings


async def watch(transaction_hash: str, settings: TrackerSettings) -> int:
    provider = create_provider(settings)
    tracker = TransactionTracker(provider, settings.observation)
    mode = "new heads" if tracker.uses_subscriptions else f"polling every {settings.observation.poll_interval_ms}ms"
    print(f"🔍 Watching {transaction_hash} ({mode}), "
          f"need {settings.observation.required_confirmations} confirmations")

    try:
        async for event in tracker.observe(transaction_hash):
            receipt = event.receipt
            print(f"   ✅ {event.confirmations}/{settings.observation.required_confirmations} "
                  f"block={receipt.block_number} hash={receipt.block_hash}")
    except ObservationError as e:
        if tracker.status is TrackerStatus.TIMED_OUT:
            print(f"⏱️ {e.error} (confirmations={e.confirmations}, checks={e.confirmation_checks})")
            return EXIT_TIMED_OUT
        print(f"❌ Observation failed: {e.error}")
        logger.debug("Observation failure", exc_info=e)
        return EXIT_FAILED
    finally:
        await tracker.stop()
        await provider.close()

    print(f"🎉 Transaction {transaction_hash} confirmed")
    return EXIT_CONFIRMED


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = apply_arguments(load_settings(args.config), args)
        level = parse_level(settings.log_level)
    except (ConfigError, ValueError) as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILED

    setup_console_logging(level)
    if settings.log_file:
        log_path = setup_file_logging(settings.log_file, level=level)
        print(f"📝 Log file: {log_path}")

    try:
        return asyncio.run(watch(args.transaction_hash, settings))
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\n⏹️ Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
