"""Venue resolution — has the asset migrated from the bonding curve to the CPMM?

Migration is detected by scanning CPMM pool accounts for the asset mint.
A network failure answers "not migrated" (the older venue) and is not cached,
so the very next call re-checks.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.rpc.client import SolanaRpcClient
from src.trading.exceptions import NetworkError
from src.venues.cache import TTLCache
from src.venues.constants import CPMM_MINT_OFFSETS, CPMM_POOL_SIZE, RAYDIUM_CPMM_PROGRAM_ID
from src.venues.models import VenueStatus

VENUE_CACHE_TTL_SEC = 300.0


async def find_cpmm_pool_accounts(
    rpc: SolanaRpcClient, asset: Pubkey
) -> list[tuple[Pubkey, bytes]]:
    """CPMM pool accounts holding ``asset`` in either mint slot.

    Mint A is tried first; mint B only when A has no match.
    """
    for offset in CPMM_MINT_OFFSETS:
        accounts = await rpc.get_program_accounts(
            RAYDIUM_CPMM_PROGRAM_ID,
            data_size=CPMM_POOL_SIZE,
            memcmp_offset=offset,
            memcmp_bytes=str(asset),
        )
        if accounts:
            return accounts
    return []


class VenueResolver:
    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        ttl_sec: float = VENUE_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rpc = rpc
        self._clock = clock
        self._cache: TTLCache[Pubkey, VenueStatus] = TTLCache(ttl_sec, clock=clock)

    def status(self, asset: Pubkey) -> VenueStatus | None:
        """Cached status if still fresh."""
        return self._cache.get(asset)

    def invalidate(self, asset: Pubkey) -> None:
        self._cache.invalidate(asset)

    async def resolve_venue(self, asset: Pubkey) -> bool:
        """True when the asset trades on the CPMM venue."""
        cached = self._cache.get(asset)
        if cached is not None:
            return cached.migrated

        try:
            accounts = await find_cpmm_pool_accounts(self._rpc, asset)
        except NetworkError as e:
            logger.warning(
                f"[VENUE] Migration check failed for {str(asset)[:12]}, "
                f"assuming bonding curve: {e}"
            )
            return False

        status = VenueStatus(asset=asset, migrated=bool(accounts), observed_at=self._clock())
        self._cache.set(asset, status)
        logger.debug(f"[VENUE] {str(asset)[:12]} venue={status.venue.value}")
        return status.migrated
