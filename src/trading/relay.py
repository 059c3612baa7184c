"""Jito block-engine relay — POST /bundles with sendBundle.

Bundles go out one at a time, in order. A failed group is recorded and the
next group is still submitted; nothing is retried here.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import base58
import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from src.trading.bundler import SignedBundle


class RelayResponse(BaseModel):
    """JSON-RPC envelope returned by the block engine."""

    jsonrpc: str | None = None
    id: int | str | None = None
    result: Any = None
    error: Any = None

    model_config = {"extra": "ignore"}


@dataclass
class BundleSubmitResult:
    group_index: int
    success: bool
    bundle_id: str | None = None
    error: str | None = None
    signatures: list[str] = field(default_factory=list)
    response: dict | None = None


def encode_bundle(bundle: SignedBundle) -> list[str]:
    """Base58 transactions in bundle order (swaps first, tip last)."""
    return [base58.b58encode(bytes(tx)).decode("ascii") for tx in bundle.transactions]


class RelaySubmitter:
    """Async HTTP client for the Jito block-engine bundle endpoint."""

    def __init__(self, relay_url: str, *, timeout: float = 10.0) -> None:
        if not relay_url:
            raise ValueError("Relay URL is empty")
        self._bundles_url = relay_url.rstrip("/") + "/bundles"
        self._http = httpx.AsyncClient(
            timeout=timeout, headers={"Content-Type": "application/json"}
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def submit(self, bundles: Sequence[SignedBundle]) -> list[BundleSubmitResult]:
        results: list[BundleSubmitResult] = []
        for index, bundle in enumerate(bundles):
            result = await self._submit_one(index, bundle)
            if result.success:
                logger.info(f"[RELAY] Bundle {index} accepted: {result.bundle_id}")
            else:
                logger.warning(f"[RELAY] Bundle {index} failed: {result.error}")
            results.append(result)
        return results

    async def _submit_one(self, index: int, bundle: SignedBundle) -> BundleSubmitResult:
        signatures = bundle.signatures
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendBundle",
            "params": [encode_bundle(bundle)],
        }

        try:
            resp = await self._http.post(self._bundles_url, json=payload)
        except httpx.HTTPError as e:
            return BundleSubmitResult(
                group_index=index,
                success=False,
                error=f"{type(e).__name__}: {e}",
                signatures=signatures,
            )

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code != 200:
            return BundleSubmitResult(
                group_index=index,
                success=False,
                error=f"HTTP {resp.status_code}",
                signatures=signatures,
                response=body if isinstance(body, dict) else None,
            )

        try:
            parsed = RelayResponse.model_validate(body)
        except ValidationError:
            return BundleSubmitResult(
                group_index=index,
                success=False,
                error="Malformed relay response",
                signatures=signatures,
            )

        if parsed.error is not None or parsed.result is None:
            return BundleSubmitResult(
                group_index=index,
                success=False,
                error=str(parsed.error or "Empty relay result"),
                signatures=signatures,
                response=body,
            )

        return BundleSubmitResult(
            group_index=index,
            success=True,
            bundle_id=str(parsed.result),
            signatures=signatures,
            response=body,
        )
