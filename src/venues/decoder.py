"""Decode raw venue account data into pool descriptors.

Bonding curve pool (>= 49 bytes):
  0:8    discriminator
  8:16   virtual_base_reserve (u64 LE)
  16:24  virtual_asset_reserve (u64 LE)
  24:32  real_base_reserve (u64 LE)
  32:40  real_asset_reserve (u64 LE)
  40:48  total_supply (u64 LE)
  48     complete (u8 bool)

CPMM pool state (680 bytes, only the fields we use):
  8:40    amm config (Pubkey)
  40:72   pool creator
  72:104  vault A
  104:136 vault B
  264:296 mint A
  296:328 mint B
  424:456 observation state

Unlike the discovery-side decoders, a short buffer here is not "no data":
it means the venue schema changed under us, so we raise DecodeError.
"""

import struct

from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.trading.exceptions import DecodeError
from src.venues.constants import (
    BC_COMPLETE_OFFSET,
    BC_VIRTUAL_BASE_OFFSET,
    BONDING_CURVE_MIN_SIZE,
    CPMM_CONFIG_OFFSET,
    CPMM_CREATOR_OFFSET,
    CPMM_MINT_A_OFFSET,
    CPMM_MINT_B_OFFSET,
    CPMM_OBSERVATION_OFFSET,
    CPMM_POOL_MIN_SIZE,
    CPMM_VAULT_A_OFFSET,
    CPMM_VAULT_B_OFFSET,
)
from src.venues.models import BondingCurvePool, ConstantProductPool


def decode_bonding_curve(address: Pubkey, mint: Pubkey, data: bytes) -> BondingCurvePool:
    if len(data) < BONDING_CURVE_MIN_SIZE:
        raise DecodeError(
            f"Bonding curve account {str(address)[:12]} too short: "
            f"{len(data)} < {BONDING_CURVE_MIN_SIZE}"
        )

    (
        virtual_base,
        virtual_asset,
        real_base,
        real_asset,
        total_supply,
    ) = struct.unpack_from("<5Q", data, BC_VIRTUAL_BASE_OFFSET)

    return BondingCurvePool(
        address=address,
        mint=mint,
        virtual_base_reserve=virtual_base,
        virtual_asset_reserve=virtual_asset,
        real_base_reserve=real_base,
        real_asset_reserve=real_asset,
        total_supply=total_supply,
        complete=data[BC_COMPLETE_OFFSET] == 1,
    )


def decode_cpmm_pool(address: Pubkey, data: bytes) -> ConstantProductPool:
    if len(data) < CPMM_POOL_MIN_SIZE:
        raise DecodeError(
            f"CPMM pool {str(address)[:12]} too short: {len(data)} < {CPMM_POOL_MIN_SIZE}"
        )

    def key_at(offset: int) -> Pubkey:
        return Pubkey.from_bytes(data[offset : offset + 32])

    return ConstantProductPool(
        address=address,
        config_id=key_at(CPMM_CONFIG_OFFSET),
        pool_creator=key_at(CPMM_CREATOR_OFFSET),
        vault_a=key_at(CPMM_VAULT_A_OFFSET),
        vault_b=key_at(CPMM_VAULT_B_OFFSET),
        mint_a=key_at(CPMM_MINT_A_OFFSET),
        mint_b=key_at(CPMM_MINT_B_OFFSET),
        observation_id=key_at(CPMM_OBSERVATION_OFFSET),
    )
