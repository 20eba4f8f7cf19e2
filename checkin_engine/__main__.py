"""
Command line entry point

Usage:
    python -m checkin_engine run [--keys FILE] [--proxies FILE] [--delay S] [--concurrency K]
    python -m checkin_engine check [--proxies FILE]
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger

from .batch_orchestrator import BatchOrchestrator
from .chain_client import ChainClient
from .config_loader import CheckinConfig, load_config, read_lines_from_file
from .logging_setup import setup_logging
from .outcomes import ConfigFailure
from .proxy_config import parse_proxy
from .web_client import WebClient


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checkin_engine",
        description="Daily on-chain check-in for many wallets",
    )
    parser.add_argument("command", nargs="?", choices=("run", "check"), default="run",
                        help="run the batch (default) or check RPC/proxy connectivity")
    parser.add_argument("--config", help="YAML config file (default: checkin_config.yaml if present)")
    parser.add_argument("--keys", help="private key file, one key per line")
    parser.add_argument("--proxies", help="proxy file, one proxy per line")
    parser.add_argument("--delay", type=float, help="seconds between wallets")
    parser.add_argument("--concurrency", type=int, help="wallets in flight at once")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    return parser


async def run_batch(config: CheckinConfig, args: argparse.Namespace) -> int:
    orchestrator = BatchOrchestrator(config, delay=args.delay, concurrency=args.concurrency)
    results = await orchestrator.run_from_files(args.keys, args.proxies)

    for result in results:
        status = "✓" if result.success else "✗"
        detail = result.tx_hash if result.success else result.error
        logger.info(f"{status} #{result.index} {result.wallet_id} {result.address or '-'} {detail}")
    return 0


async def check_connectivity(config: CheckinConfig, args: argparse.Namespace) -> int:
    """Network info through the first proxy (if any) plus a proxy echo test"""
    proxies = read_lines_from_file(args.proxies or config.batch.proxies_file)
    proxy = parse_proxy(proxies[0]) if proxies else None

    chain = ChainClient(
        config.network.rpc,
        config.network.chain_id,
        proxy=proxy,
        gas_margin=config.checkin.gas_margin,
        label="check",
    )
    web = WebClient(
        proxy=proxy,
        timeout=config.http.timeout_seconds,
        user_agent=config.http.user_agent,
        random_user_agent=config.http.random_user_agent,
        label="check",
    )

    try:
        logger.info(f"🔍 Checking {config.network.name} via {config.network.rpc}")
        info = await chain.network_info()
        if not info.success:
            logger.error(f"✗ {info.message}")
            return 1

        network = info.data
        logger.info(f"✓ Chain ID: {network.chain_id}")
        logger.info(f"✓ Block: {network.block_number}")
        logger.info(f"✓ Gas price: {network.gas_price_gwei} gwei")
        if network.max_fee_per_gas_gwei is not None:
            logger.info(f"✓ Max fee: {network.max_fee_per_gas_gwei} gwei "
                        f"(priority {network.max_priority_fee_per_gas_gwei} gwei)")

        if proxy is None:
            logger.info("No proxies configured, skipping proxy test")
            return 0

        logger.info(f"🔍 Testing proxy {proxy.masked_url}")
        echo = await web.test_proxy()
        rpc = await chain.test_rpc_proxy()
        return 0 if echo.success and rpc.success else 1

    finally:
        await web.close()
        await chain.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level or "INFO")
    try:
        config = load_config(args.config)
        setup_logging(args.log_level or config.logging.level, config.logging.file)

        if args.command == "check":
            return asyncio.run(check_connectivity(config, args))
        return asyncio.run(run_batch(config, args))

    except ConfigFailure as e:
        logger.error(f"✗ Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("⚠ Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
