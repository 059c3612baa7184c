"""Data models for venue state and swap parameters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from solders.pubkey import Pubkey  # type: ignore[import-untyped]


class Venue(str, Enum):
    BONDING_CURVE = "bonding_curve"
    CONSTANT_PRODUCT = "constant_product"


class SwapDirection(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class BondingCurvePool:
    """Decoded launchpad pool account (pre-migration)."""

    address: Pubkey
    mint: Pubkey
    virtual_base_reserve: int
    virtual_asset_reserve: int
    real_base_reserve: int
    real_asset_reserve: int
    total_supply: int
    complete: bool

    venue = Venue.BONDING_CURVE


@dataclass(frozen=True)
class ConstantProductPool:
    """Decoded CPMM pool state (post-migration).

    mint_a/mint_b keep on-chain order; the asset is not necessarily mint_a.
    """

    address: Pubkey
    config_id: Pubkey
    pool_creator: Pubkey
    vault_a: Pubkey
    vault_b: Pubkey
    mint_a: Pubkey
    mint_b: Pubkey
    observation_id: Pubkey

    venue = Venue.CONSTANT_PRODUCT

    def vaults_for_input(self, input_mint: Pubkey) -> tuple[Pubkey, Pubkey]:
        """(input_vault, output_vault) when swapping ``input_mint`` in."""
        if input_mint == self.mint_a:
            return self.vault_a, self.vault_b
        if input_mint == self.mint_b:
            return self.vault_b, self.vault_a
        raise ValueError(f"Mint {input_mint} is not part of pool {self.address}")


PoolDescriptor = BondingCurvePool | ConstantProductPool


@dataclass(frozen=True)
class VenueStatus:
    asset: Pubkey
    migrated: bool
    observed_at: float

    @property
    def venue(self) -> Venue:
        return Venue.CONSTANT_PRODUCT if self.migrated else Venue.BONDING_CURVE


@dataclass(frozen=True)
class AccountHolding:
    account: Pubkey
    asset: Pubkey
    raw_amount: int


@dataclass(frozen=True)
class SwapQuote:
    """Slippage-bounded swap parameters.

    minimum_output = floor(estimated_output * (10000 - slippage_bps) / 10000)
    """

    input_amount: int
    estimated_output: int
    minimum_output: int
    slippage_bps: int
