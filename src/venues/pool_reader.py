"""Pool reader — fetch and decode the active venue's pool for an asset."""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.rpc.client import SolanaRpcClient
from src.trading.exceptions import PoolNotFoundError
from src.venues.cache import TTLCache
from src.venues.constants import BONKFUN_PROGRAM_ID, POOL_SEED
from src.venues.decoder import decode_bonding_curve, decode_cpmm_pool
from src.venues.models import BondingCurvePool, ConstantProductPool, PoolDescriptor, Venue
from src.venues.resolver import VenueResolver, find_cpmm_pool_accounts

POOL_CACHE_TTL_SEC = 300.0


def derive_bonding_curve_pool(asset: Pubkey) -> Pubkey:
    pda, _bump = Pubkey.find_program_address([POOL_SEED, bytes(asset)], BONKFUN_PROGRAM_ID)
    return pda


class PoolReader:
    """Resolves the venue, then reads that venue's pool account.

    DecodeError from either decoder propagates unchanged.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        resolver: VenueResolver,
        *,
        ttl_sec: float = POOL_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rpc = rpc
        self._resolver = resolver
        self._cache: TTLCache[Pubkey, PoolDescriptor] = TTLCache(ttl_sec, clock=clock)

    @property
    def resolver(self) -> VenueResolver:
        return self._resolver

    def invalidate(self, asset: Pubkey) -> None:
        """Drop cached pool and venue status, e.g. after a failed swap."""
        self._cache.invalidate(asset)
        self._resolver.invalidate(asset)
        logger.info(f"[POOL] Invalidated cached pool for {str(asset)[:12]}")

    async def read_pool(self, asset: Pubkey) -> PoolDescriptor:
        migrated = await self._resolver.resolve_venue(asset)
        venue = Venue.CONSTANT_PRODUCT if migrated else Venue.BONDING_CURVE

        cached = self._cache.get(asset)
        if cached is not None and cached.venue is venue:
            return cached

        if migrated:
            pool: PoolDescriptor = await self._read_cpmm_pool(asset)
        else:
            pool = await self._read_bonding_curve_pool(asset)

        self._cache.set(asset, pool)
        return pool

    async def _read_bonding_curve_pool(self, asset: Pubkey) -> BondingCurvePool:
        address = derive_bonding_curve_pool(asset)
        data = await self._rpc.get_account_info(address)
        if data is None:
            raise PoolNotFoundError(f"No bonding curve pool for {asset}")

        pool = decode_bonding_curve(address, asset, data)
        logger.debug(
            f"[POOL] Bonding curve {str(address)[:12]} for {str(asset)[:12]}: "
            f"vBase={pool.virtual_base_reserve} vAsset={pool.virtual_asset_reserve} "
            f"complete={pool.complete}"
        )
        return pool

    async def _read_cpmm_pool(self, asset: Pubkey) -> ConstantProductPool:
        accounts = await find_cpmm_pool_accounts(self._rpc, asset)
        if not accounts:
            raise PoolNotFoundError(f"No CPMM pool for {asset}")

        address, data = accounts[0]
        pool = decode_cpmm_pool(address, data)
        logger.debug(
            f"[POOL] CPMM pool {str(address)[:12]} for {str(asset)[:12]} "
            f"({len(accounts)} candidate(s))"
        )
        return pool
