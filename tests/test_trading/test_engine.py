"""Tests for TradingEngine — end-to-end bundling with mocked RPC and relay.

Pool reading, pricing, instruction building and signing are real; only the
network edges (SolanaRpcClient, RelaySubmitter) are mocked.
"""

from __future__ import annotations

import random
import struct
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from src.rpc.client import SolanaRpcClient
from src.trading.bundler import BundleOrchestrator, sign_transaction
from src.trading.config import EngineConfig
from src.trading.engine import DUMP_SETTLE_SEC, TradingEngine
from src.trading.exceptions import (
    DecodeError,
    InsufficientBalanceError,
    NetworkError,
    PoolNotFoundError,
)
from src.trading.instructions import InstructionBuilder
from src.trading.relay import BundleSubmitResult, RelaySubmitter
from src.venues.pool_reader import PoolReader
from src.venues.resolver import VenueResolver

BALANCE = 1_000_000_000


def _bonding_curve_data() -> bytes:
    buf = bytearray(49)
    struct.pack_into("<5Q", buf, 8, 30_000_000_000, 1_073_000_000_000_000, 0, 0, 10**15)
    return bytes(buf)


def _accept_all(bundles):
    return [
        BundleSubmitResult(group_index=i, success=True, bundle_id=f"b{i}", signatures=b.signatures)
        for i, b in enumerate(bundles)
    ]


@pytest.fixture
def asset() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def rpc() -> MagicMock:
    mock = MagicMock(spec=SolanaRpcClient)
    mock.get_program_accounts = AsyncMock(return_value=[])
    mock.get_account_info = AsyncMock(return_value=_bonding_curve_data())
    mock.account_exists = AsyncMock(return_value=True)
    mock.get_token_balance = AsyncMock(return_value=BALANCE)
    mock.get_latest_blockhash = AsyncMock(side_effect=lambda: Hash.new_unique())
    mock.send_transaction = AsyncMock(return_value="5sig")
    mock.confirm_transaction = AsyncMock(return_value=True)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def relay() -> MagicMock:
    mock = MagicMock(spec=RelaySubmitter)
    mock.submit = AsyncMock(side_effect=_accept_all)
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(bundle_size=5, tip_lamports=1_000_000, slippage_bps=50)


@pytest.fixture
def engine(rpc, relay, config) -> TradingEngine:
    resolver = VenueResolver(rpc, ttl_sec=300)
    pools = PoolReader(rpc, resolver, ttl_sec=300)
    return TradingEngine(
        rpc=rpc,
        pool_reader=pools,
        builder=InstructionBuilder(rpc, pools, config),
        orchestrator=BundleOrchestrator(rpc, config, rng=random.Random(1)),
        relay=relay,
        config=config,
        rng=random.Random(1),
    )


# ── sell_all ───────────────────────────────────────────────────────────


class TestSellAll:
    async def test_seven_accounts_two_bundles(self, engine, relay, asset):
        keypairs = [Keypair() for _ in range(7)]

        report = await engine.sell_all(keypairs, asset)

        bundles = relay.submit.await_args.args[0]
        assert [len(b.transactions) for b in bundles] == [6, 3]
        assert bundles[0].accounts == [kp.pubkey() for kp in keypairs[:5]]
        assert bundles[1].accounts == [kp.pubkey() for kp in keypairs[5:]]
        assert all(b.has_tip for b in bundles)
        assert report.accepted_bundles == 2
        assert report.skipped == [] and report.failures == []

    async def test_zero_balances_never_reach_relay(self, engine, rpc, relay, asset):
        rpc.get_token_balance.return_value = 0

        report = await engine.sell_all([Keypair() for _ in range(3)], asset)

        assert report.results == []
        assert not report.submitted
        assert len(report.skipped) == 3
        assert all(s.reason == "InsufficientBalanceError" for s in report.skipped)
        relay.submit.assert_not_awaited()

    async def test_zero_balance_account_skipped_others_sold(self, engine, rpc, relay, asset):
        keypairs = [Keypair() for _ in range(3)]
        empty = keypairs[1].pubkey()
        empty_ata = get_associated_token_address(empty, asset)
        rpc.get_token_balance.side_effect = lambda ata: 0 if ata == empty_ata else BALANCE

        report = await engine.sell_all(keypairs, asset)

        bundles = relay.submit.await_args.args[0]
        assert bundles[0].accounts == [keypairs[0].pubkey(), keypairs[2].pubkey()]
        assert [s.account for s in report.skipped] == [str(empty)]

    async def test_balance_network_error_recorded(self, engine, rpc, relay, asset):
        keypairs = [Keypair() for _ in range(2)]
        rpc.get_token_balance.side_effect = [NetworkError("down"), BALANCE]

        report = await engine.sell_all(keypairs, asset)

        assert len(report.failures) == 1
        assert report.failures[0].account == str(keypairs[0].pubkey())
        assert relay.submit.await_args.args[0][0].accounts == [keypairs[1].pubkey()]

    async def test_short_pool_data_raises_decode_error(self, engine, rpc, relay, asset):
        rpc.get_account_info.return_value = b"\x00" * 20
        with pytest.raises(DecodeError):
            await engine.sell_all([Keypair()], asset)
        relay.submit.assert_not_awaited()

    async def test_missing_pool_raises(self, engine, rpc, asset):
        rpc.get_account_info.return_value = None
        with pytest.raises(PoolNotFoundError):
            await engine.sell_all([Keypair()], asset)

    async def test_pool_read_once_for_batch(self, engine, rpc, asset):
        await engine.sell_all([Keypair() for _ in range(4)], asset)
        assert rpc.get_account_info.await_count == 1

    async def test_failed_bundle_invalidates_pool(self, engine, rpc, relay, asset):
        relay.submit.side_effect = lambda bundles: [
            BundleSubmitResult(group_index=0, success=False, error="HTTP 500")
        ]

        await engine.sell_all([Keypair()], asset)
        await engine.sell_all([Keypair()], asset)

        assert rpc.get_account_info.await_count == 2

    async def test_overrides_passed_through(self, engine, relay, asset):
        await engine.sell_all(
            [Keypair() for _ in range(3)], asset, bundle_size=2, tip_lamports=0
        )
        bundles = relay.submit.await_args.args[0]
        assert [len(b.transactions) for b in bundles] == [2, 1]

    @pytest.mark.parametrize("percentage", [0, 101, -5])
    async def test_invalid_percentage(self, engine, asset, percentage):
        with pytest.raises(ValueError):
            await engine.sell_all([Keypair()], asset, percentage)


# ── buy_all ────────────────────────────────────────────────────────────


class TestBuyAll:
    async def test_buys_from_every_account(self, engine, rpc, relay, asset):
        keypairs = [Keypair() for _ in range(3)]

        report = await engine.buy_all(keypairs, asset, 10_000_000)

        bundles = relay.submit.await_args.args[0]
        assert bundles[0].accounts == [kp.pubkey() for kp in keypairs]
        assert report.accepted_bundles == 1
        rpc.get_token_balance.assert_not_awaited()

    async def test_non_positive_amount(self, engine, asset):
        with pytest.raises(ValueError):
            await engine.buy_all([Keypair()], asset, 0)


# ── individual / delayed sells ─────────────────────────────────────────


class TestIndividualSell:
    async def test_sends_single_transaction(self, engine, rpc, relay, asset):
        sig = await engine.individual_sell(Keypair(), asset)

        assert sig == "5sig"
        rpc.send_transaction.assert_awaited_once()
        relay.submit.assert_not_awaited()

    async def test_empty_balance_raises(self, engine, rpc, asset):
        rpc.get_token_balance.return_value = 0
        with pytest.raises(InsufficientBalanceError):
            await engine.individual_sell(Keypair(), asset)
        rpc.send_transaction.assert_not_awaited()

    async def test_confirm_waits_for_signature(self, engine, rpc, asset):
        sig = await engine.individual_sell(Keypair(), asset, confirm=True)

        assert sig == "5sig"
        rpc.confirm_transaction.assert_awaited_once_with("5sig")

    async def test_no_confirm_by_default(self, engine, rpc, asset):
        await engine.individual_sell(Keypair(), asset)
        rpc.confirm_transaction.assert_not_awaited()

    async def test_unconfirmed_sell_raises_and_invalidates(self, engine, rpc, asset):
        rpc.confirm_transaction.return_value = False
        with pytest.raises(NetworkError, match="not confirmed"):
            await engine.individual_sell(Keypair(), asset, confirm=True)

        await engine.individual_sell(Keypair(), asset)
        assert rpc.get_account_info.await_count == 2

    async def test_send_failure_invalidates_pool(self, engine, rpc, asset):
        rpc.send_transaction.side_effect = NetworkError("rejected")
        with pytest.raises(NetworkError):
            await engine.individual_sell(Keypair(), asset)

        rpc.send_transaction.side_effect = None
        await engine.individual_sell(Keypair(), asset)
        assert rpc.get_account_info.await_count == 2


class TestDelayedSell:
    async def test_sleeps_within_bounds_and_records_each(self, engine, rpc, asset):
        keypairs = [Keypair() for _ in range(3)]
        rpc.get_token_balance.side_effect = [BALANCE, 0, BALANCE]

        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()) as sleep:
            results = await engine.delayed_sell(keypairs, asset, 1.0, 2.0)

        assert sleep.await_count == 3
        assert all(1.0 <= c.args[0] <= 2.0 for c in sleep.await_args_list)
        assert [r.success for r in results] == [True, False, True]
        assert [r.account for r in results] == [str(kp.pubkey()) for kp in keypairs]
        assert results[0].signature == "5sig"
        assert results[1].error

    async def test_decode_error_aborts(self, engine, rpc, asset):
        rpc.get_account_info.return_value = b"\x00"
        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(DecodeError):
                await engine.delayed_sell([Keypair(), Keypair()], asset, 0, 0)

    async def test_invalid_delays(self, engine, asset):
        with pytest.raises(ValueError):
            await engine.delayed_sell([Keypair()], asset, 5, 1)


    async def test_compile_error_isolated_to_wallet(self, engine, asset):
        keypairs = [Keypair() for _ in range(3)]
        outcomes = iter([ValueError("too many account keys")])

        def _sign(keypair, ixs, blockhash):
            err = next(outcomes, None)
            if err is not None:
                raise err
            return sign_transaction(keypair, ixs, blockhash)

        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()), patch(
            "src.trading.engine.sign_transaction", side_effect=_sign
        ):
            results = await engine.delayed_sell(keypairs, asset, 0, 0)

        assert [r.success for r in results] == [False, True, True]
        assert "too many account keys" in results[0].error

    async def test_confirm_passed_through(self, engine, rpc, asset):
        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()):
            results = await engine.delayed_sell([Keypair()], asset, 0, 0, confirm=True)

        assert results[0].success
        rpc.confirm_transaction.assert_awaited_once_with("5sig")


class TestLifecycle:
    async def test_close_releases_clients(self, engine, rpc, relay):
        await engine.close()
        rpc.close.assert_awaited_once()
        relay.close.assert_awaited_once()


# ── dev_dump ───────────────────────────────────────────────────────────

ATA_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SPL_TRANSFER_TAG = 3


def _token_transfer_amount(tx) -> int:
    keys = tx.message.account_keys
    for ix in tx.message.instructions:
        if keys[ix.program_id_index] == TOKEN_PROGRAM_ID and ix.data[0] == SPL_TRANSFER_TAG:
            return struct.unpack_from("<Q", bytes(ix.data), 1)[0]
    raise AssertionError("no SPL transfer in transaction")


class TestDevDump:
    async def test_transfers_then_sells_from_main(self, engine, rpc, relay, asset):
        holders = [Keypair() for _ in range(3)]
        main = Keypair()
        balances = {
            get_associated_token_address(holders[0].pubkey(), asset): 1_000,
            get_associated_token_address(holders[1].pubkey(), asset): 0,
            get_associated_token_address(holders[2].pubkey(), asset): 500,
            get_associated_token_address(main.pubkey(), asset): 9_000,
        }
        rpc.get_token_balance.side_effect = lambda ata: balances[ata]
        rpc.account_exists.return_value = False

        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()) as sleep:
            report = await engine.dev_dump(holders, main, asset, 50)

        transfer_call, sell_call = relay.submit.await_args_list
        (transfer_bundle,) = transfer_call.args[0]
        assert not transfer_bundle.has_tip
        assert transfer_bundle.accounts == [holders[0].pubkey(), holders[2].pubkey()]
        assert [_token_transfer_amount(tx) for tx in transfer_bundle.transactions] == [500, 250]
        for tx in transfer_bundle.transactions:
            assert ATA_PROGRAM_ID in tx.message.account_keys
            assert get_associated_token_address(main.pubkey(), asset) in tx.message.account_keys

        (sell_bundle,) = sell_call.args[0]
        assert sell_bundle.accounts == [main.pubkey()]
        assert sell_bundle.has_tip

        sleep.assert_awaited_once_with(DUMP_SETTLE_SEC)
        assert [s.account for s in report.transfers.skipped] == [str(holders[1].pubkey())]
        assert report.transfers.accepted_bundles == 1
        assert report.sell.accepted_bundles == 1

    async def test_existing_main_account_not_recreated(self, engine, rpc, relay, asset):
        rpc.account_exists.return_value = True

        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()):
            await engine.dev_dump([Keypair()], Keypair(), asset)

        (transfer_bundle,) = relay.submit.await_args_list[0].args[0]
        assert ATA_PROGRAM_ID not in transfer_bundle.transactions[0].message.account_keys
        assert _token_transfer_amount(transfer_bundle.transactions[0]) == BALANCE

    async def test_main_wallet_in_list_not_transferred(self, engine, relay, asset):
        holder, main = Keypair(), Keypair()

        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()):
            await engine.dev_dump([holder, main], main, asset)

        (transfer_bundle,) = relay.submit.await_args_list[0].args[0]
        assert transfer_bundle.accounts == [holder.pubkey()]

    async def test_nothing_to_transfer_still_sells_main(self, engine, rpc, relay, asset):
        main = Keypair()
        main_ata = get_associated_token_address(main.pubkey(), asset)
        rpc.get_token_balance.side_effect = lambda ata: BALANCE if ata == main_ata else 0

        with patch("src.trading.engine.asyncio.sleep", new=AsyncMock()) as sleep:
            report = await engine.dev_dump([Keypair(), Keypair()], main, asset)

        relay.submit.assert_awaited_once()
        assert relay.submit.await_args.args[0][0].accounts == [main.pubkey()]
        assert report.transfers.results == []
        assert len(report.transfers.skipped) == 2
        sleep.assert_not_awaited()

    async def test_invalid_percentage(self, engine, asset):
        with pytest.raises(ValueError):
            await engine.dev_dump([Keypair()], Keypair(), asset, 0)
