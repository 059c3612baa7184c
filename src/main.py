"""Entry point for bonk-bundler.

Usage:
    python -m src.main sell <MINT> [--percentage 100] [--slippage-bps 50]
    python -m src.main buy <MINT> --sol 0.05
    python -m src.main delayed-sell <MINT> --min-delay 5 --max-delay 30 [--confirm]
    python -m src.main dev-dump <MINT> [--percentage 100]

Wallet secrets come from WALLET_PRIVATE_KEYS (comma separated base58);
dev-dump also needs MAIN_WALLET_PRIVATE_KEY.
"""

import argparse
import asyncio
import sys

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from config.settings import settings
from src.trading.config import sol_to_lamports
from src.trading.engine import TradeReport, TradingEngine
from src.trading.wallet import load_keypairs, parse_secret_list
from src.utils.logger import setup_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bonk-bundler")
    sub = parser.add_subparsers(dest="command", required=True)

    sell = sub.add_parser("sell", help="Bundled sell from every wallet")
    sell.add_argument("mint")
    sell.add_argument("--percentage", type=int, default=100)
    sell.add_argument("--slippage-bps", type=int, default=None)
    sell.add_argument("--bundle-size", type=int, default=None)
    sell.add_argument("--tip-sol", type=float, default=None)

    buy = sub.add_parser("buy", help="Bundled buy from every wallet")
    buy.add_argument("mint")
    buy.add_argument("--sol", type=float, required=True, help="SOL per wallet")
    buy.add_argument("--slippage-bps", type=int, default=None)
    buy.add_argument("--bundle-size", type=int, default=None)
    buy.add_argument("--tip-sol", type=float, default=None)

    delayed = sub.add_parser("delayed-sell", help="One wallet at a time with random delays")
    delayed.add_argument("mint")
    delayed.add_argument("--min-delay", type=float, default=5.0)
    delayed.add_argument("--max-delay", type=float, default=30.0)
    delayed.add_argument("--percentage", type=int, default=100)
    delayed.add_argument("--confirm", action="store_true", help="Wait for each sell to confirm")

    dump = sub.add_parser("dev-dump", help="Move holdings into the main wallet, then sell there")
    dump.add_argument("mint")
    dump.add_argument("--percentage", type=int, default=100)
    dump.add_argument("--slippage-bps", type=int, default=None)

    return parser


def _log_report(report: TradeReport) -> None:
    for result in report.results:
        status = "OK" if result.success else f"FAILED ({result.error})"
        logger.info(f"Bundle {result.group_index}: {status} {result.bundle_id or ''}")
    for failure in report.failures:
        logger.warning(f"{failure.account[:12]}: {failure.reason}: {failure.error}")


def _exit_code(report: TradeReport) -> int:
    return 0 if report.results and all(r.success for r in report.results) else 1


async def run(args: argparse.Namespace) -> int:
    keypairs = load_keypairs(parse_secret_list(settings.wallet_private_keys))
    if not keypairs:
        logger.error("No wallets configured (WALLET_PRIVATE_KEYS is empty)")
        return 2

    asset = Pubkey.from_string(args.mint)
    engine = TradingEngine.from_settings(settings)
    try:
        if args.command == "delayed-sell":
            results = await engine.delayed_sell(
                keypairs,
                asset,
                args.min_delay,
                args.max_delay,
                args.percentage,
                confirm=args.confirm,
            )
            failed = [r for r in results if not r.success]
            for r in failed:
                logger.warning(f"Sell failed for {r.account[:12]}: {r.error}")
            return 1 if failed else 0

        if args.command == "dev-dump":
            if not settings.main_wallet_private_key:
                logger.error("dev-dump needs MAIN_WALLET_PRIVATE_KEY")
                return 2
            (main_wallet,) = load_keypairs([settings.main_wallet_private_key])
            dump = await engine.dev_dump(
                keypairs, main_wallet, asset, args.percentage, slippage_bps=args.slippage_bps
            )
            logger.info(
                f"Dump: {dump.transfers.accepted_bundles}/{len(dump.transfers.results)} "
                f"transfer bundle(s) accepted, {len(dump.transfers.failures)} failed"
            )
            _log_report(dump.sell)
            return _exit_code(dump.sell)

        tip = sol_to_lamports(args.tip_sol) if args.tip_sol is not None else None
        if args.command == "sell":
            report = await engine.sell_all(
                keypairs,
                asset,
                args.percentage,
                slippage_bps=args.slippage_bps,
                bundle_size=args.bundle_size,
                tip_lamports=tip,
            )
        else:
            report = await engine.buy_all(
                keypairs,
                asset,
                sol_to_lamports(args.sol),
                slippage_bps=args.slippage_bps,
                bundle_size=args.bundle_size,
                tip_lamports=tip,
            )

        _log_report(report)
        return _exit_code(report)
    finally:
        await engine.close()


def main() -> None:
    setup_logger(settings)
    args = build_parser().parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
