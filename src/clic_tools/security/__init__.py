"""Credential helpers."""

from clic_tools.security.passwords import MAX_ROUNDS, MIN_ROUNDS, PasswordHasher, is_bcrypt_hash

__all__ = ["MAX_ROUNDS", "MIN_ROUNDS", "PasswordHasher", "is_bcrypt_hash"]
