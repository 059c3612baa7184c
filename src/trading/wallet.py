"""Keypair materialization for the accounts we trade from.

Secret keys arrive as base58 strings from the wallet-management side.
They are turned into Keypairs once and never logged; only public keys are.
"""

from __future__ import annotations

from collections.abc import Iterable

import base58
from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]

SECRET_KEY_LENGTH = 64


def parse_secret_list(raw: str) -> list[str]:
    """Split a comma/newline separated secret list, dropping blanks."""
    parts = raw.replace("\n", ",").split(",")
    return [p.strip() for p in parts if p.strip()]


def load_keypairs(secrets: Iterable[str]) -> list[Keypair]:
    keypairs: list[Keypair] = []
    for index, secret in enumerate(secrets):
        if not secret:
            raise ValueError(f"Wallet private key #{index} is empty")
        # Keypair.from_base58_string panics on malformed input; decode here instead
        try:
            raw = base58.b58decode(secret)
            if len(raw) != SECRET_KEY_LENGTH:
                raise ValueError(f"expected {SECRET_KEY_LENGTH} bytes, got {len(raw)}")
            keypair = Keypair.from_bytes(raw)
        except ValueError as e:
            # Do not echo the secret back in the error
            raise ValueError(f"Wallet private key #{index} is not a valid base58 keypair") from e
        keypairs.append(keypair)

    if len({kp.pubkey() for kp in keypairs}) != len(keypairs):
        raise ValueError("Duplicate wallets in key list")

    for kp in keypairs:
        logger.info(f"[WALLET] Loaded wallet: {kp.pubkey()}")
    return keypairs
