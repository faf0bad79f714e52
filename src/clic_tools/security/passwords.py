"""bcrypt password hashing for stored user credentials."""

from __future__ import annotations

from typing import Final

import bcrypt

from clic_tools.constants import BCRYPT_PREFIXES, DEFAULT_PASSWORD_HASH_ROUNDS

MIN_ROUNDS: Final[int] = 4
MAX_ROUNDS: Final[int] = 16
_BCRYPT_MAX_BYTES: Final[int] = 72


def is_bcrypt_hash(value: str | None) -> bool:
    """Return ``True`` when ``value`` already carries a bcrypt prefix."""

    if not value:
        return False
    return value.startswith(BCRYPT_PREFIXES)


class PasswordHasher:
    """Hash and verify passwords with a fixed bcrypt cost factor."""

    def __init__(self, rounds: int = DEFAULT_PASSWORD_HASH_ROUNDS) -> None:
        if isinstance(rounds, bool) or not isinstance(rounds, int):
            raise TypeError("rounds must be an integer")
        if not MIN_ROUNDS <= rounds <= MAX_ROUNDS:
            raise ValueError(f"rounds must be between {MIN_ROUNDS} and {MAX_ROUNDS}")
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> str:
        hashed = bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self._rounds))
        return hashed.decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        if not is_bcrypt_hash(hashed):
            return False
        try:
            return bcrypt.checkpw(_encode(password), hashed.encode("utf-8"))
        except ValueError:
            return False


def _encode(password: str) -> bytes:
    # bcrypt only consumes the first 72 bytes; newer releases reject longer input.
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


__all__ = ["MAX_ROUNDS", "MIN_ROUNDS", "PasswordHasher", "is_bcrypt_hash"]
