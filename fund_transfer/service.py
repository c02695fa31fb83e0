"""
automated-fund-transfer service entry point

Keeps a configured balance on a sender keypair and transfers excess SOL to a
configured receiver, reporting each cycle to Slack.

Usage:
    automated-fund-transfer --config /etc/automated-fund-transfer/config.yaml [--dry-run]

Exit codes: 0 on graceful shutdown, 1 on fatal startup error.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from loguru import logger

from .clock import Clock
from .config import ServiceConfig, load_config
from .controller import CycleController
from .errors import ConfigError, InvalidAccount, KeypairError
from .executor import TransferExecutor
from .ledger import SolanaRpcClient, load_keypair, parse_pubkey
from .logging_setup import setup_logging
from .notifier import LogNotifier, SlackNotifier
from .retry import RetryPolicy
from .units import sol_to_lamports

DEFAULT_CONFIG_PATH = "/etc/automated-fund-transfer/config.yaml"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transfer SOL above a threshold from a sender keypair to a receiver"
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to the YAML config file")
    parser.add_argument("--dry-run", action="store_true", help="Do not actually send transactions")
    return parser.parse_args(argv)


def build_controller(config: ServiceConfig, dry_run: bool = False) -> CycleController:
    """
    Wire up ledger client, notifier, executor and controller

    Raises:
        KeypairError: sender keypair unreadable
        InvalidAccount: receiver pubkey malformed
    """
    keypair = load_keypair(config.sender_keypair)
    sender_pubkey = keypair.pubkey()
    logger.info(f"Loaded sender keypair: {sender_pubkey}")

    receiver = parse_pubkey(config.receiver_pubkey)

    ledger = SolanaRpcClient(config.rpc_provider, request_timeout=config.request_timeout_seconds)
    if config.slack_webhook:
        notifier = SlackNotifier(config.slack_webhook, sender=sender_pubkey, receiver=receiver)
    else:
        logger.info("No slack_webhook configured, notifications go to the log")
        notifier = LogNotifier(sender=sender_pubkey, receiver=receiver)

    clock = Clock()
    executor = TransferExecutor(
        ledger,
        retry_policy=RetryPolicy(
            max_attempts=config.submit_max_attempts,
            base_delay=config.submit_base_delay_seconds,
            max_delay=config.submit_max_delay_seconds
        ),
        clock=clock,
        confirm_timeout=config.confirm_timeout_seconds,
        confirm_poll_interval=config.confirm_poll_interval_seconds,
        dry_run=dry_run
    )

    return CycleController(
        ledger=ledger,
        executor=executor,
        notifier=notifier,
        sender=keypair,
        sender_pubkey=sender_pubkey,
        receiver=receiver,
        threshold=sol_to_lamports(config.sol_threshold),
        interval_seconds=config.poll_interval_seconds,
        clock=clock
    )


async def run(controller: CycleController):
    """Run the controller until SIGINT/SIGTERM, then close connections"""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.stop)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still reaches main()
            pass

    try:
        await controller.run_forever()
    finally:
        logger.info("Starting graceful shutdown...")
        await controller.ledger.close()
        await controller.notifier.close()
        logger.info("✓ Graceful shutdown complete")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    try:
        config = load_config(args.config)
        setup_logging(config.log_level, config.log_file)
        logger.info(f"Starting automated-fund-transfer with config: {args.config}")
        if args.dry_run:
            logger.info("⚡ Dry run enabled: transactions will not be sent")
        controller = build_controller(config, dry_run=args.dry_run)
    except (ConfigError, KeypairError, InvalidAccount) as e:
        logger.error(f"✗ Fatal startup error: {e}")
        return 1

    try:
        asyncio.run(run(controller))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
