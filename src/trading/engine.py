"""Trading engine — multi-account sells and buys bundled through Jito.

Also sequential per-wallet sells and dev-dump consolidation into one wallet.

Pipeline per call:
  resolve venue → read pool → price → per-account instructions
  → bundles (shared blockhash, tip last) → sequential relay submission

Accounts are processed strictly one after another. A failing account is
recorded and skipped; the batch carries on. PoolNotFoundError and DecodeError
are about the asset rather than an account, so they propagate.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from spl.token.instructions import get_associated_token_address

from config.settings import Settings
from src.rpc.client import SolanaRpcClient
from src.trading.bundler import (
    AccountFailure,
    BundleJob,
    BundleOrchestrator,
    sign_transaction,
)
from src.trading.config import EngineConfig
from src.trading.exceptions import (
    DecodeError,
    InsufficientBalanceError,
    NetworkError,
    PoolNotFoundError,
    SizeExceededError,
)
from src.trading.instructions import InstructionBuilder, consolidation_instructions
from src.trading.relay import BundleSubmitResult, RelaySubmitter
from src.venues.models import AccountHolding, SwapDirection
from src.venues.pool_reader import PoolReader
from src.venues.resolver import VenueResolver

# Pause between the consolidation transfers landing and the main-wallet sell
DUMP_SETTLE_SEC = 2.0


@dataclass
class TradeReport:
    """Outcome of one bundled sell/buy call."""

    results: list[BundleSubmitResult] = field(default_factory=list)
    skipped: list[AccountFailure] = field(default_factory=list)
    failures: list[AccountFailure] = field(default_factory=list)

    @property
    def submitted(self) -> bool:
        return bool(self.results)

    @property
    def accepted_bundles(self) -> int:
        return sum(1 for r in self.results if r.success)


@dataclass
class DelayedSellResult:
    account: str
    success: bool
    signature: str | None = None
    error: str | None = None


@dataclass
class DumpReport:
    """Transfers into the main wallet, then its own sell."""

    transfers: TradeReport
    sell: TradeReport


def _check_percentage(percentage: int) -> None:
    if not 0 < percentage <= 100:
        raise ValueError(f"percentage must be in (0, 100], got {percentage}")


class TradingEngine:
    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        pool_reader: PoolReader,
        builder: InstructionBuilder,
        orchestrator: BundleOrchestrator,
        relay: RelaySubmitter,
        config: EngineConfig,
        rng: random.Random | None = None,
    ) -> None:
        self._rpc = rpc
        self._pools = pool_reader
        self._builder = builder
        self._orchestrator = orchestrator
        self._relay = relay
        self._config = config
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings) -> TradingEngine:
        config = EngineConfig.from_settings(settings)
        rpc = SolanaRpcClient(
            settings.solana_rpc_url,
            timeout=settings.rpc_timeout_sec,
            max_rps=settings.rpc_max_rps,
        )
        resolver = VenueResolver(rpc, ttl_sec=config.venue_cache_ttl_sec)
        pool_reader = PoolReader(rpc, resolver, ttl_sec=config.pool_cache_ttl_sec)
        return cls(
            rpc=rpc,
            pool_reader=pool_reader,
            builder=InstructionBuilder(rpc, pool_reader, config),
            orchestrator=BundleOrchestrator(rpc, config),
            relay=RelaySubmitter(settings.relay_url, timeout=settings.relay_timeout_sec),
            config=config,
        )

    async def close(self) -> None:
        await self._rpc.close()
        await self._relay.close()

    async def read_holding(self, owner: Pubkey, asset: Pubkey) -> AccountHolding:
        """Fresh token balance; never cached because sells change it."""
        token_account = get_associated_token_address(owner, asset)
        raw_amount = await self._rpc.get_token_balance(token_account)
        return AccountHolding(account=owner, asset=asset, raw_amount=raw_amount)

    # ─── Bundled operations ──────────────────────────────────────────

    async def sell_all(
        self,
        keypairs: Sequence[Keypair],
        asset: Pubkey,
        percentage: int = 100,
        *,
        slippage_bps: int | None = None,
        bundle_size: int | None = None,
        tip_lamports: int | None = None,
    ) -> TradeReport:
        """Sell ``percentage`` of every account's holding in bundles."""
        _check_percentage(percentage)
        report = TradeReport()
        jobs: list[BundleJob] = []

        with logger.contextualize(action="sell", asset=str(asset)[:12]):
            for keypair in keypairs:
                owner = keypair.pubkey()
                try:
                    holding = await self.read_holding(owner, asset)
                    amount = holding.raw_amount * percentage // 100
                    ixs = await self._builder.build_swap(
                        owner,
                        asset,
                        amount,
                        SwapDirection.SELL,
                        slippage_bps,
                        close_asset_account=percentage == 100,
                    )
                except InsufficientBalanceError as e:
                    logger.debug(f"[ENGINE] Skipping {str(owner)[:12]}: {e}")
                    report.skipped.append(AccountFailure.from_exception(owner, e))
                    continue
                except (NetworkError, SizeExceededError) as e:
                    logger.warning(f"[ENGINE] Sell prep failed for {str(owner)[:12]}: {e}")
                    report.failures.append(AccountFailure.from_exception(owner, e))
                    continue
                jobs.append(BundleJob(keypair=keypair, instructions=ixs))

            return await self._bundle_and_submit(
                jobs, asset, report, bundle_size, tip_lamports, "sell"
            )

    async def buy_all(
        self,
        keypairs: Sequence[Keypair],
        asset: Pubkey,
        lamports_per_account: int,
        *,
        slippage_bps: int | None = None,
        bundle_size: int | None = None,
        tip_lamports: int | None = None,
    ) -> TradeReport:
        """Buy ``asset`` with the same lamport amount from every account."""
        if lamports_per_account <= 0:
            raise ValueError("lamports_per_account must be positive")
        report = TradeReport()
        jobs: list[BundleJob] = []

        with logger.contextualize(action="buy", asset=str(asset)[:12]):
            for keypair in keypairs:
                owner = keypair.pubkey()
                try:
                    ixs = await self._builder.build_swap(
                        owner, asset, lamports_per_account, SwapDirection.BUY, slippage_bps
                    )
                except NetworkError as e:
                    logger.warning(f"[ENGINE] Buy prep failed for {str(owner)[:12]}: {e}")
                    report.failures.append(AccountFailure.from_exception(owner, e))
                    continue
                jobs.append(BundleJob(keypair=keypair, instructions=ixs))

            return await self._bundle_and_submit(
                jobs, asset, report, bundle_size, tip_lamports, "buy"
            )

    async def _bundle_and_submit(
        self,
        jobs: list[BundleJob],
        asset: Pubkey,
        report: TradeReport,
        bundle_size: int | None,
        tip_lamports: int | None,
        action: str,
    ) -> TradeReport:
        if not jobs:
            logger.info(
                f"[ENGINE] Nothing to {action} for {str(asset)[:12]} "
                f"({len(report.skipped)} skipped, {len(report.failures)} failed)"
            )
            return report

        built = await self._orchestrator.build_bundles(jobs, bundle_size, tip_lamports)
        report.failures.extend(built.failures)
        report.results = await self._relay.submit(built.bundles)

        if any(not r.success for r in report.results):
            # A rejected swap may mean our pool snapshot is stale
            self._pools.invalidate(asset)

        logger.info(
            f"[ENGINE] {action.upper()} {str(asset)[:12]}: "
            f"{report.accepted_bundles}/{len(report.results)} bundle(s) accepted, "
            f"{len(report.skipped)} skipped, {len(report.failures)} failed"
        )
        return report

    # ─── Single-transaction operations ───────────────────────────────

    async def individual_sell(
        self,
        keypair: Keypair,
        asset: Pubkey,
        percentage: int = 100,
        *,
        slippage_bps: int | None = None,
        confirm: bool = False,
    ) -> str:
        """Sell from one account via plain sendTransaction (no bundle, no tip).

        With ``confirm`` the call waits for the signature to reach "confirmed"
        and raises NetworkError when it fails on chain or times out.
        """
        _check_percentage(percentage)
        owner = keypair.pubkey()
        holding = await self.read_holding(owner, asset)
        amount = holding.raw_amount * percentage // 100
        if amount <= 0:
            raise InsufficientBalanceError(f"No tokens to sell for {owner}")

        ixs = await self._builder.build_swap(
            owner,
            asset,
            amount,
            SwapDirection.SELL,
            slippage_bps,
            close_asset_account=percentage == 100,
        )
        blockhash = await self._rpc.get_latest_blockhash()
        tx = sign_transaction(keypair, ixs, blockhash)
        try:
            signature = await self._rpc.send_transaction(tx)
        except NetworkError:
            self._pools.invalidate(asset)
            raise
        logger.info(f"[ENGINE] Individual sell {str(owner)[:12]} sent: {signature}")

        if confirm and not await self._rpc.confirm_transaction(signature):
            self._pools.invalidate(asset)
            raise NetworkError(f"Sell {signature[:16]} was not confirmed")
        return signature

    async def delayed_sell(
        self,
        keypairs: Sequence[Keypair],
        asset: Pubkey,
        min_delay_sec: float,
        max_delay_sec: float,
        percentage: int = 100,
        *,
        confirm: bool = False,
    ) -> list[DelayedSellResult]:
        """Sequential individual sells, each after a random delay."""
        if min_delay_sec < 0 or max_delay_sec < min_delay_sec:
            raise ValueError("Need 0 <= min_delay_sec <= max_delay_sec")
        _check_percentage(percentage)

        results: list[DelayedSellResult] = []
        with logger.contextualize(action="delayed-sell", asset=str(asset)[:12]):
            for index, keypair in enumerate(keypairs):
                await asyncio.sleep(self._rng.uniform(min_delay_sec, max_delay_sec))
                owner = str(keypair.pubkey())
                try:
                    sig = await self.individual_sell(keypair, asset, percentage, confirm=confirm)
                    results.append(DelayedSellResult(account=owner, success=True, signature=sig))
                except (DecodeError, PoolNotFoundError):
                    raise
                except Exception as e:
                    # BundlerError or a solders compile/sign error for this wallet only
                    logger.warning(f"[ENGINE] Delayed sell failed for {owner[:12]}: {e}")
                    results.append(DelayedSellResult(account=owner, success=False, error=str(e)))
                logger.info(f"[ENGINE] Delayed sell {index + 1}/{len(keypairs)} done")
        return results

    # ─── Consolidation ───────────────────────────────────────────────

    async def dev_dump(
        self,
        keypairs: Sequence[Keypair],
        main_wallet: Keypair,
        asset: Pubkey,
        percentage: int = 100,
        *,
        slippage_bps: int | None = None,
        settle_sec: float = DUMP_SETTLE_SEC,
    ) -> DumpReport:
        """Move ``percentage`` of every holding into ``main_wallet``, then sell from it.

        Transfers go out as tipless bundles. After ``settle_sec`` the main
        wallet sells ``percentage`` of what it then holds via ``sell_all``.
        """
        _check_percentage(percentage)
        main = main_wallet.pubkey()
        transfers = TradeReport()
        jobs: list[BundleJob] = []

        with logger.contextualize(action="dump", asset=str(asset)[:12]):
            main_token_account = get_associated_token_address(main, asset)
            create_destination = not await self._rpc.account_exists(main_token_account)

            for keypair in keypairs:
                owner = keypair.pubkey()
                if owner == main:
                    continue
                try:
                    holding = await self.read_holding(owner, asset)
                    ixs = consolidation_instructions(
                        owner,
                        main,
                        asset,
                        holding.raw_amount * percentage // 100,
                        create_destination=create_destination,
                    )
                except InsufficientBalanceError as e:
                    transfers.skipped.append(AccountFailure.from_exception(owner, e))
                    continue
                except NetworkError as e:
                    logger.warning(f"[ENGINE] Dump prep failed for {str(owner)[:12]}: {e}")
                    transfers.failures.append(AccountFailure.from_exception(owner, e))
                    continue
                jobs.append(BundleJob(keypair=keypair, instructions=ixs))

            if jobs:
                built = await self._orchestrator.build_bundles(jobs, incentive_lamports=0)
                transfers.failures.extend(built.failures)
                transfers.results = await self._relay.submit(built.bundles)
                logger.info(
                    f"[ENGINE] DUMP {str(asset)[:12]} -> {str(main)[:12]}: "
                    f"{transfers.accepted_bundles}/{len(transfers.results)} bundle(s) accepted, "
                    f"{len(transfers.skipped)} skipped, {len(transfers.failures)} failed"
                )
                await asyncio.sleep(settle_sec)
            else:
                logger.info(f"[ENGINE] Nothing to dump into {str(main)[:12]}")

        sell = await self.sell_all([main_wallet], asset, percentage, slippage_bps=slippage_bps)
        return DumpReport(transfers=transfers, sell=sell)
