"""
Password hashing: Argon2id (argon2-cffi) with fixed cost parameters.

Digests are self-describing ($argon2id$v=19$m=...,t=...,p=...$salt$hash), so the
parameters can be raised later; needs_rehash() flags digests made under weaker
settings. Legacy bcrypt digests still verify and always need a rehash.
"""

from __future__ import annotations

import asyncio
import logging

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger(__name__)

TIME_COST = 3
MEMORY_COST = 65536  # KiB
PARALLELISM = 4
HASH_LENGTH = 32
SALT_LENGTH = 16

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class SecretHasher:
    def __init__(
        self,
        *,
        time_cost: int = TIME_COST,
        memory_cost: int = MEMORY_COST,
        parallelism: int = PARALLELISM,
        hash_len: int = HASH_LENGTH,
        salt_len: int = SALT_LENGTH,
    ) -> None:
        self._ph = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
            type=Type.ID,
        )
        # Verified against when the account does not exist, so both paths cost one hash
        self._dummy_digest = self._ph.hash("sessionguard-dummy-password")

    def hash(self, plaintext: str) -> str:
        return self._ph.hash(plaintext)

    def verify(self, digest: str | None, plaintext: str) -> bool:
        """True only on a match. Malformed or unknown digests are a mismatch, never an exception."""
        if not digest or plaintext is None:
            return False
        if digest.startswith(_BCRYPT_PREFIXES):
            try:
                return bcrypt.checkpw(plaintext.encode("utf-8")[:72], digest.encode("utf-8"))
            except ValueError:
                return False
        try:
            return self._ph.verify(digest, plaintext)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, digest: str) -> bool:
        if not digest or digest.startswith(_BCRYPT_PREFIXES):
            return True
        try:
            return self._ph.check_needs_rehash(digest)
        except (InvalidHashError, ValueError):
            logger.debug("needs_rehash: unparsable digest")
            return True

    def burn(self, plaintext: str) -> None:
        """Spend one verification on a dummy digest (unknown-account login path)."""
        self.verify(self._dummy_digest, plaintext)

    async def hash_async(self, plaintext: str) -> str:
        return await asyncio.to_thread(self.hash, plaintext)

    async def verify_async(self, digest: str | None, plaintext: str) -> bool:
        return await asyncio.to_thread(self.verify, digest, plaintext)

    async def burn_async(self, plaintext: str) -> None:
        await asyncio.to_thread(self.burn, plaintext)
