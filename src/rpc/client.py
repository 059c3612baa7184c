"""Solana JSON-RPC client — the narrow slice of the ledger API the bundler needs.

Every method either returns decoded data or raises NetworkError. Retry and
backoff are deliberately left to callers: the engine retries whole operations,
never individual RPC calls.
"""

from __future__ import annotations

import asyncio
import base64

import httpx
from loguru import logger
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.rpc.rate_limiter import RateLimiter
from src.trading.exceptions import NetworkError

# Confirmation polling
CONFIRM_POLL_INTERVAL = 2.0  # seconds
CONFIRM_TIMEOUT = 60.0  # seconds


class SolanaRpcClient:
    """Async JSON-RPC client over httpx."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 15.0,
        max_rps: float = 10.0,
        commitment: str = "confirmed",
    ) -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")
        self._rpc_url = rpc_url
        self._http = httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = RateLimiter(max_rps)
        self._commitment = commitment

    async def close(self) -> None:
        await self._http.aclose()

    # ─── Transport ───────────────────────────────────────────────────

    async def _post(self, method: str, params: list) -> dict:
        """POST one JSON-RPC request and return the decoded envelope."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        await self._rate_limiter.acquire()
        try:
            resp = await self._http.post(self._rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"[RPC] {method} transport error: {type(e).__name__}: {e}")
            raise NetworkError(f"{method}: {e}") from e

        if resp.status_code != 200:
            logger.warning(f"[RPC] {method} HTTP {resp.status_code}")
            raise NetworkError(f"{method}: HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as e:
            raise NetworkError(f"{method}: invalid JSON response") from e

    async def _call(self, method: str, params: list):
        data = await self._post(method, params)
        if "error" in data:
            error = data["error"]
            code = error.get("code", "?") if isinstance(error, dict) else "?"
            msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.warning(f"[RPC] {method} error {code}: {msg}")
            raise NetworkError(f"{method}: RPC error {code}: {msg}")
        return data.get("result")

    # ─── Accounts ────────────────────────────────────────────────────

    async def get_account_info(self, address: Pubkey) -> bytes | None:
        """Raw account data, or None when the account does not exist."""
        result = await self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        value = (result or {}).get("value")
        if not value:
            return None
        return _decode_account_data(value["data"])

    async def account_exists(self, address: Pubkey) -> bool:
        return await self.get_account_info(address) is not None

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        *,
        data_size: int,
        memcmp_offset: int,
        memcmp_bytes: str,
    ) -> list[tuple[Pubkey, bytes]]:
        """Program-owned accounts filtered by size and a base58 memcmp match."""
        result = await self._call(
            "getProgramAccounts",
            [
                str(program_id),
                {
                    "encoding": "base64",
                    "commitment": self._commitment,
                    "filters": [
                        {"dataSize": data_size},
                        {"memcmp": {"offset": memcmp_offset, "bytes": memcmp_bytes}},
                    ],
                },
            ],
        )
        accounts: list[tuple[Pubkey, bytes]] = []
        for item in result or []:
            pubkey = Pubkey.from_string(item["pubkey"])
            accounts.append((pubkey, _decode_account_data(item["account"]["data"])))
        return accounts

    async def get_token_balance(self, token_account: Pubkey) -> int:
        """Raw SPL token amount. A token account that does not exist holds 0."""
        data = await self._post(
            "getTokenAccountBalance",
            [str(token_account), {"commitment": self._commitment}],
        )
        if "error" in data:
            msg = str(data["error"].get("message", "")) if isinstance(data["error"], dict) else ""
            if "could not find account" in msg.lower() or "invalid param" in msg.lower():
                return 0
            logger.warning(f"[RPC] getTokenAccountBalance error: {data['error']}")
            raise NetworkError(f"getTokenAccountBalance: {data['error']}")

        value = (data.get("result") or {}).get("value") or {}
        return int(value.get("amount", "0"))

    # ─── Transactions ────────────────────────────────────────────────

    async def get_latest_blockhash(self) -> Hash:
        result = await self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        try:
            return Hash.from_string(result["value"]["blockhash"])
        except (KeyError, TypeError) as e:
            raise NetworkError(f"getLatestBlockhash: malformed result {result!r}") from e

    async def send_transaction(
        self, tx: VersionedTransaction, *, skip_preflight: bool = False
    ) -> str:
        """Submit a signed transaction, returning its signature."""
        tx_b64 = base64.b64encode(bytes(tx)).decode("ascii")
        result = await self._call(
            "sendTransaction",
            [
                tx_b64,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": "processed",
                    "maxRetries": 3,
                },
            ],
        )
        if not result:
            raise NetworkError("sendTransaction returned no signature")
        logger.debug(f"[RPC] TX sent: {result}")
        return str(result)

    async def confirm_transaction(
        self,
        signature: str,
        *,
        timeout: float = CONFIRM_TIMEOUT,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
    ) -> bool:
        """Poll getSignatureStatuses until confirmed, failed on-chain, or timed out."""
        elapsed = 0.0
        while elapsed < timeout:
            try:
                result = await self._call(
                    "getSignatureStatuses",
                    [[signature], {"searchTransactionHistory": True}],
                )
                statuses = (result or {}).get("value") or []
                if statuses and statuses[0] is not None:
                    status = statuses[0]
                    if status.get("err"):
                        logger.warning(f"[RPC] TX {signature[:16]} error on-chain: {status['err']}")
                        return False
                    if status.get("confirmationStatus") in ("confirmed", "finalized"):
                        return True
            except NetworkError:
                pass  # keep polling until timeout

            await asyncio.sleep(poll_interval)
            elapsed += poll_interval

        logger.warning(f"[RPC] TX {signature[:16]} confirmation timeout after {timeout}s")
        return False


def _decode_account_data(data) -> bytes:
    """Account data comes back as [base64, "base64"]."""
    b64 = data[0] if isinstance(data, list) else data
    return base64.b64decode(b64)
