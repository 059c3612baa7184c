"""Explicit engine configuration handed to every component."""

from __future__ import annotations

from dataclasses import dataclass, field

from config.settings import Settings
from src.venues.constants import LAMPORTS_PER_SOL

# Static Jito tip accounts
JITO_TIP_ACCOUNTS: tuple[str, ...] = (
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
)


@dataclass(frozen=True)
class EngineConfig:
    bundle_size: int = 5
    tip_lamports: int = 1_000_000  # 0.001 SOL
    slippage_bps: int = 50
    compute_unit_limit: int = 400_000
    compute_unit_price_micro_lamports: int = 100_000
    venue_cache_ttl_sec: float = 300.0
    pool_cache_ttl_sec: float = 300.0
    tip_accounts: tuple[str, ...] = field(default=JITO_TIP_ACCOUNTS)

    def __post_init__(self) -> None:
        if self.bundle_size < 1:
            raise ValueError(f"bundle_size must be >= 1, got {self.bundle_size}")
        if not 0 <= self.slippage_bps < 10_000:
            raise ValueError(f"slippage_bps must be in [0, 10000), got {self.slippage_bps}")
        if self.tip_lamports < 0:
            raise ValueError("tip_lamports must be non-negative")
        if self.tip_lamports > 0 and not self.tip_accounts:
            raise ValueError("tip_accounts is empty but a tip is configured")

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        return cls(
            bundle_size=settings.bundle_size,
            tip_lamports=sol_to_lamports(settings.jito_tip_sol),
            slippage_bps=settings.slippage_bps,
            compute_unit_limit=settings.compute_unit_limit,
            compute_unit_price_micro_lamports=settings.compute_unit_price_micro_lamports,
            venue_cache_ttl_sec=settings.venue_cache_ttl_sec,
            pool_cache_ttl_sec=settings.pool_cache_ttl_sec,
        )


def sol_to_lamports(sol: float) -> int:
    return int(round(sol * LAMPORTS_PER_SOL))
