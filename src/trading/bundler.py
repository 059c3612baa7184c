"""Bundle construction — group per-account swaps into signed relay bundles.

Every account gets its own VersionedTransaction signed by that account.
All transactions in a group share one blockhash (fetched fresh per group),
and an optional tip transfer to a random Jito tip account is appended last.
Accounts whose transaction cannot be built or is over the packet size limit
are rejected individually; the rest of the group goes ahead.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from loguru import logger
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.instruction import Instruction  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.message import MessageV0  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.rpc.client import SolanaRpcClient
from src.trading.config import EngineConfig
from src.trading.exceptions import BundlerError, NetworkError, SizeExceededError
from src.venues.constants import PACKET_DATA_SIZE

T = TypeVar("T")


@dataclass
class BundleJob:
    """One account's signer and its swap instructions."""

    keypair: Keypair
    instructions: list[Instruction]

    @property
    def account(self) -> Pubkey:
        return self.keypair.pubkey()


@dataclass
class AccountFailure:
    """Per-account error recorded instead of aborting the batch."""

    account: str
    reason: str
    error: str

    @classmethod
    def from_exception(cls, account: Pubkey, exc: Exception) -> AccountFailure:
        return cls(account=str(account), reason=type(exc).__name__, error=str(exc))


@dataclass
class SignedBundle:
    """Signed transactions for one relay request: swaps first, tip last."""

    transactions: list[VersionedTransaction]
    accounts: list[Pubkey]
    blockhash: Hash
    tip_lamports: int = 0
    tip_account: Pubkey | None = None

    @property
    def has_tip(self) -> bool:
        return self.tip_account is not None

    @property
    def signatures(self) -> list[str]:
        return [str(tx.signatures[0]) for tx in self.transactions]


@dataclass
class BundleBuildResult:
    bundles: list[SignedBundle] = field(default_factory=list)
    failures: list[AccountFailure] = field(default_factory=list)


def partition(items: Sequence[T], capacity: int) -> list[list[T]]:
    """Contiguous, order-preserving groups of at most ``capacity`` items."""
    if capacity < 1:
        raise ValueError(f"capacity must be >= 1, got {capacity}")
    return [list(items[i : i + capacity]) for i in range(0, len(items), capacity)]


def sign_transaction(
    keypair: Keypair, instructions: list[Instruction], blockhash: Hash
) -> VersionedTransaction:
    """Compile a v0 message paid by ``keypair`` and sign it.

    Raises SizeExceededError when the serialized transaction is over 1232 bytes.
    """
    msg = MessageV0.try_compile(
        payer=keypair.pubkey(),
        instructions=instructions,
        address_lookup_table_accounts=[],
        recent_blockhash=blockhash,
    )
    tx = VersionedTransaction(msg, [keypair])
    size = len(bytes(tx))
    if size > PACKET_DATA_SIZE:
        raise SizeExceededError(
            f"Transaction for {str(keypair.pubkey())[:12]} is {size} bytes "
            f"(limit {PACKET_DATA_SIZE})"
        )
    return tx


class BundleOrchestrator:
    def __init__(
        self,
        rpc: SolanaRpcClient,
        config: EngineConfig,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._rpc = rpc
        self._config = config
        self._rng = rng or random.Random()

    def pick_tip_account(self) -> Pubkey:
        return Pubkey.from_string(self._rng.choice(self._config.tip_accounts))

    def tip_transaction(
        self, payer: Keypair, lamports: int, blockhash: Hash
    ) -> tuple[VersionedTransaction, Pubkey]:
        tip_account = self.pick_tip_account()
        ix = transfer(
            TransferParams(from_pubkey=payer.pubkey(), to_pubkey=tip_account, lamports=lamports)
        )
        return sign_transaction(payer, [ix], blockhash), tip_account

    async def build_bundles(
        self,
        jobs: Sequence[BundleJob],
        bundle_capacity: int | None = None,
        incentive_lamports: int | None = None,
        *,
        payer: Keypair | None = None,
    ) -> BundleBuildResult:
        """Partition ``jobs`` into signed bundles.

        ``payer`` funds the tip; without one, the first account that made it
        into the group pays. Groups in which every account was rejected are
        dropped.
        """
        capacity = self._config.bundle_size if bundle_capacity is None else bundle_capacity
        tip = self._config.tip_lamports if incentive_lamports is None else incentive_lamports
        if tip < 0:
            raise ValueError("incentive_lamports must be non-negative")

        seen: set[Pubkey] = set()
        for job in jobs:
            if job.account in seen:
                raise ValueError(f"Account {job.account} appears more than once")
            seen.add(job.account)

        result = BundleBuildResult()
        for index, group in enumerate(partition(jobs, capacity)):
            try:
                blockhash = await self._rpc.get_latest_blockhash()
            except NetworkError as e:
                logger.warning(f"[BUNDLE] Group {index}: blockhash fetch failed: {e}")
                result.failures.extend(AccountFailure.from_exception(j.account, e) for j in group)
                continue

            bundle = self._sign_group(index, group, blockhash, tip, payer, result.failures)
            if bundle is not None:
                result.bundles.append(bundle)

        logger.info(
            f"[BUNDLE] Built {len(result.bundles)} bundle(s) from {len(jobs)} account(s), "
            f"{len(result.failures)} rejected"
        )
        return result

    def _sign_group(
        self,
        index: int,
        group: list[BundleJob],
        blockhash: Hash,
        tip_lamports: int,
        payer: Keypair | None,
        failures: list[AccountFailure],
    ) -> SignedBundle | None:
        transactions: list[VersionedTransaction] = []
        accounts: list[Pubkey] = []
        signers: list[Keypair] = []

        for job in group:
            try:
                tx = sign_transaction(job.keypair, job.instructions, blockhash)
            except SizeExceededError as e:
                logger.warning(f"[BUNDLE] Group {index}: {e}")
                failures.append(AccountFailure.from_exception(job.account, e))
                continue
            except Exception as e:
                # solders compile/sign errors (e.g. too many account keys)
                logger.warning(f"[BUNDLE] Group {index}: build failed for {str(job.account)[:12]}: {e}")
                failures.append(AccountFailure.from_exception(job.account, e))
                continue
            transactions.append(tx)
            accounts.append(job.account)
            signers.append(job.keypair)

        if not transactions:
            logger.warning(f"[BUNDLE] Group {index}: every account rejected, dropping group")
            return None

        bundle = SignedBundle(transactions=transactions, accounts=accounts, blockhash=blockhash)
        if tip_lamports > 0:
            tip_payer = payer or signers[0]
            try:
                tip_tx, tip_account = self.tip_transaction(tip_payer, tip_lamports, blockhash)
            except BundlerError as e:
                logger.warning(
                    f"[BUNDLE] Group {index}: tip transaction rejected, dropping group: {e}"
                )
                failures.extend(AccountFailure.from_exception(account, e) for account in accounts)
                return None
            bundle.transactions.append(tip_tx)
            bundle.tip_lamports = tip_lamports
            bundle.tip_account = tip_account

        logger.debug(
            f"[BUNDLE] Group {index}: {len(accounts)} swap tx(s), "
            f"tip={tip_lamports} blockhash={str(blockhash)[:16]}..."
        )
        return bundle
