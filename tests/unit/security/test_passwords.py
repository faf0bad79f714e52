"""bcrypt password hashing used by the main module's user migrations."""

from __future__ import annotations

import pytest

from clic_tools.security.passwords import MAX_ROUNDS, MIN_ROUNDS, PasswordHasher, is_bcrypt_hash


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(MIN_ROUNDS)


def test_hash_and_verify(hasher: PasswordHasher) -> None:
    hashed = hasher.hash("correct horse")

    assert is_bcrypt_hash(hashed)
    assert hashed.startswith(f"$2b${MIN_ROUNDS:02d}$")
    assert hasher.verify("correct horse", hashed)
    assert not hasher.verify("wrong horse", hashed)


def test_hashes_are_salted(hasher: PasswordHasher) -> None:
    assert hasher.hash("same") != hasher.hash("same")


def test_verify_rejects_plaintext_and_malformed_hashes(hasher: PasswordHasher) -> None:
    assert not hasher.verify("secret", "secret")
    assert not hasher.verify("secret", "$2b$04$tooshort")


def test_long_passwords_hash_on_their_first_72_bytes(hasher: PasswordHasher) -> None:
    prefix = "x" * 72
    hashed = hasher.hash(prefix + "tail")

    assert hasher.verify(prefix + "different tail", hashed)


@pytest.mark.parametrize("rounds", [MIN_ROUNDS - 1, MAX_ROUNDS + 1])
def test_rounds_out_of_range(rounds: int) -> None:
    with pytest.raises(ValueError, match="rounds must be between"):
        PasswordHasher(rounds)


@pytest.mark.parametrize("rounds", [True, "10", 10.0])
def test_rounds_must_be_an_integer(rounds: object) -> None:
    with pytest.raises(TypeError):
        PasswordHasher(rounds)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("$2a$10$abc", True),
        ("$2b$12$abc", True),
        ("$2y$10$abc", True),
        ("$1$md5crypt", False),
        ("plain", False),
        ("", False),
        (None, False),
    ],
)
def test_is_bcrypt_hash(value: str | None, expected: bool) -> None:
    assert is_bcrypt_hash(value) is expected
