"""Per-account swap instruction lists for both venues.

Sell layout (in order):
  1. compute unit limit
  2. compute unit price
  3. venue swap instruction: disc(8) || amount(u64 LE) || min_out(u64 LE)
  4. close the asset token account (full sells only)
  5. CPMM only: close the WSOL account to unwrap proceeds

Buy layout: compute budget, idempotent ATA create(s), optional SOL wrap,
the venue swap instruction, and a WSOL close on the CPMM venue.

Consolidation transfers (dev dump) use a lighter compute budget, an optional
idempotent ATA create for the receiver, then a plain SPL transfer.
"""

from __future__ import annotations

import struct

from loguru import logger
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price  # type: ignore[import-untyped]
from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)
from spl.token.instructions import transfer as token_transfer
from spl.token.models import CloseAccountParams, SyncNativeParams
from spl.token.models import TransferParams as TokenTransferParams

from src.rpc.client import SolanaRpcClient
from src.trading.config import EngineConfig
from src.trading.exceptions import InsufficientBalanceError
from src.trading.pricing import (
    quote_bonding_curve_buy,
    quote_bonding_curve_sell,
    quote_constant_product,
)
from src.venues.constants import (
    BONDING_CURVE_SEED,
    BONKFUN_BUY_DISCRIMINATOR,
    BONKFUN_PROGRAM_ID,
    BONKFUN_SELL_DISCRIMINATOR,
    GLOBAL_SEED,
    RAYDIUM_CPMM_AUTHORITY,
    RAYDIUM_CPMM_PROGRAM_ID,
    RAYDIUM_SWAP_DISCRIMINATOR,
    SYSTEM_PROGRAM_ID,
    U64_MAX,
    WSOL_MINT,
)
from src.venues.models import (
    BondingCurvePool,
    ConstantProductPool,
    PoolDescriptor,
    SwapDirection,
    SwapQuote,
)
from src.venues.pool_reader import PoolReader

# Plain SPL transfers need far less than a swap
TRANSFER_COMPUTE_UNIT_LIMIT = 100_000
TRANSFER_COMPUTE_UNIT_PRICE_MICRO_LAMPORTS = 50_000


def encode_swap_data(discriminator: bytes, amount: int, minimum_out: int) -> bytes:
    if len(discriminator) != 8:
        raise ValueError(f"Discriminator must be 8 bytes, got {len(discriminator)}")
    for name, value in (("amount", amount), ("minimum_out", minimum_out)):
        if not 0 <= value <= U64_MAX:
            raise ValueError(f"{name} {value} does not fit in u64")
    return discriminator + struct.pack("<QQ", amount, minimum_out)


def compute_budget_instructions(config: EngineConfig) -> list[Instruction]:
    return [
        set_compute_unit_limit(config.compute_unit_limit),
        set_compute_unit_price(config.compute_unit_price_micro_lamports),
    ]


def close_token_account(account: Pubkey, owner: Pubkey) -> Instruction:
    """Close ``account`` and return its rent (and any wrapped SOL) to ``owner``."""
    return close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=account,
            dest=owner,
            owner=owner,
            signers=[],
        )
    )


def consolidation_instructions(
    owner: Pubkey,
    destination_owner: Pubkey,
    asset: Pubkey,
    amount: int,
    *,
    create_destination: bool,
) -> list[Instruction]:
    """Move ``amount`` raw units of ``asset`` from ``owner`` to ``destination_owner``.

    The sender pays for the destination ATA when it has to be created.
    """
    if amount <= 0:
        raise InsufficientBalanceError(f"Nothing to transfer for {owner}")

    destination = get_associated_token_address(destination_owner, asset)
    ixs = [
        set_compute_unit_limit(TRANSFER_COMPUTE_UNIT_LIMIT),
        set_compute_unit_price(TRANSFER_COMPUTE_UNIT_PRICE_MICRO_LAMPORTS),
    ]
    if create_destination:
        ixs.append(create_idempotent_associated_token_account(owner, destination_owner, asset))
    ixs.append(
        token_transfer(
            TokenTransferParams(
                program_id=TOKEN_PROGRAM_ID,
                source=get_associated_token_address(owner, asset),
                dest=destination,
                owner=owner,
                amount=amount,
                signers=[],
            )
        )
    )
    return ixs


def bonding_curve_swap_instruction(
    owner: Pubkey,
    pool: BondingCurvePool,
    token_account: Pubkey,
    quote: SwapQuote,
    direction: SwapDirection,
) -> Instruction:
    bonding_curve, _ = Pubkey.find_program_address(
        [BONDING_CURVE_SEED, bytes(pool.mint)], BONKFUN_PROGRAM_ID
    )
    global_state, _ = Pubkey.find_program_address([GLOBAL_SEED], BONKFUN_PROGRAM_ID)

    discriminator = (
        BONKFUN_SELL_DISCRIMINATOR if direction is SwapDirection.SELL else BONKFUN_BUY_DISCRIMINATOR
    )
    accounts = [
        AccountMeta(pubkey=global_state, is_signer=False, is_writable=False),
        AccountMeta(pubkey=bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=True),
        AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = encode_swap_data(discriminator, quote.input_amount, quote.minimum_output)
    return Instruction(BONKFUN_PROGRAM_ID, data, accounts)


def cpmm_swap_instruction(
    owner: Pubkey,
    pool: ConstantProductPool,
    input_mint: Pubkey,
    output_mint: Pubkey,
    input_account: Pubkey,
    output_account: Pubkey,
    quote: SwapQuote,
) -> Instruction:
    """CPMM swap_base_input."""
    input_vault, output_vault = pool.vaults_for_input(input_mint)
    accounts = [
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        AccountMeta(pubkey=RAYDIUM_CPMM_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.config_id, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=input_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=output_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=input_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=output_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=input_mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=output_mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.observation_id, is_signer=False, is_writable=True),
    ]
    data = encode_swap_data(RAYDIUM_SWAP_DISCRIMINATOR, quote.input_amount, quote.minimum_output)
    return Instruction(RAYDIUM_CPMM_PROGRAM_ID, data, accounts)


class InstructionBuilder:
    """Builds the ordered instruction list for one account's swap."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        pool_reader: PoolReader,
        config: EngineConfig,
    ) -> None:
        self._rpc = rpc
        self._pools = pool_reader
        self._config = config

    async def build_swap(
        self,
        owner: Pubkey,
        asset: Pubkey,
        amount: int,
        direction: SwapDirection,
        slippage_bps: int | None = None,
        *,
        close_asset_account: bool = True,
    ) -> list[Instruction]:
        """Instructions for ``owner`` to swap ``amount`` raw units.

        For sells ``amount`` is asset units; for buys it is lamports.
        Raises InsufficientBalanceError for non-positive amounts and
        PoolNotFoundError when neither venue hosts the asset.
        """
        if amount <= 0:
            raise InsufficientBalanceError(f"Nothing to {direction.value} for {owner}")

        slippage = self._config.slippage_bps if slippage_bps is None else slippage_bps
        pool = await self._pools.read_pool(asset)

        ixs = compute_budget_instructions(self._config)
        if direction is SwapDirection.SELL:
            ixs += await self._sell_instructions(
                owner, asset, pool, amount, slippage, close_asset_account
            )
        else:
            ixs += await self._buy_instructions(owner, asset, pool, amount, slippage)

        logger.debug(
            f"[IXS] {direction.value} {str(asset)[:12]} owner={str(owner)[:12]} "
            f"amount={amount} venue={pool.venue.value} ixs={len(ixs)}"
        )
        return ixs

    async def _sell_instructions(
        self,
        owner: Pubkey,
        asset: Pubkey,
        pool: PoolDescriptor,
        amount: int,
        slippage_bps: int,
        close_asset_account: bool,
    ) -> list[Instruction]:
        token_account = get_associated_token_address(owner, asset)

        if isinstance(pool, BondingCurvePool):
            quote = quote_bonding_curve_sell(pool, amount, slippage_bps)
            ixs = [
                bonding_curve_swap_instruction(
                    owner, pool, token_account, quote, SwapDirection.SELL
                )
            ]
            if close_asset_account:
                ixs.append(close_token_account(token_account, owner))
            return ixs

        if isinstance(pool, ConstantProductPool):
            quote = quote_constant_product(amount, slippage_bps)
            wsol_account = get_associated_token_address(owner, WSOL_MINT)
            wsol_exists = await self._rpc.account_exists(wsol_account)

            ixs = []
            if not wsol_exists:
                # Swap output needs a WSOL account to land in
                ixs.append(create_idempotent_associated_token_account(owner, owner, WSOL_MINT))
            ixs.append(
                cpmm_swap_instruction(
                    owner, pool, asset, WSOL_MINT, token_account, wsol_account, quote
                )
            )
            if close_asset_account:
                ixs.append(close_token_account(token_account, owner))
            ixs.append(close_token_account(wsol_account, owner))
            return ixs

        raise TypeError(f"Unknown pool descriptor: {type(pool).__name__}")

    async def _buy_instructions(
        self,
        owner: Pubkey,
        asset: Pubkey,
        pool: PoolDescriptor,
        lamports: int,
        slippage_bps: int,
    ) -> list[Instruction]:
        token_account = get_associated_token_address(owner, asset)
        create_token_account = create_idempotent_associated_token_account(owner, owner, asset)

        if isinstance(pool, BondingCurvePool):
            quote = quote_bonding_curve_buy(pool, lamports, slippage_bps)
            return [
                create_token_account,
                bonding_curve_swap_instruction(
                    owner, pool, token_account, quote, SwapDirection.BUY
                ),
            ]

        if isinstance(pool, ConstantProductPool):
            quote = quote_constant_product(lamports, slippage_bps)
            wsol_account = get_associated_token_address(owner, WSOL_MINT)
            return [
                create_token_account,
                create_idempotent_associated_token_account(owner, owner, WSOL_MINT),
                transfer(
                    TransferParams(from_pubkey=owner, to_pubkey=wsol_account, lamports=lamports)
                ),
                sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=wsol_account)),
                cpmm_swap_instruction(
                    owner, pool, WSOL_MINT, asset, wsol_account, token_account, quote
                ),
                close_token_account(wsol_account, owner),
            ]

        raise TypeError(f"Unknown pool descriptor: {type(pool).__name__}")
