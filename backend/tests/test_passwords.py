"""Tests for password hashing."""

from readersync.auth.passwords import hash_password, verify_password


def test_hash_password_returns_bcrypt_hash() -> None:
    """Hashed password is a string and differs from plain."""
    plain = "mySecret123"
    hashed = hash_password(plain)
    assert isinstance(hashed, str)
    assert hashed != plain
    assert hashed.startswith("$2")  # bcrypt


def test_verify_password_correct() -> None:
    hashed = hash_password("mySecret123")
    assert verify_password("mySecret123", hashed) is True


def test_verify_password_wrong() -> None:
    hashed = hash_password("correct")
    assert verify_password("wrong", hashed) is False


def test_verify_password_malformed_hash() -> None:
    """A stored value that is not a bcrypt hash never verifies."""
    assert verify_password("anything", "not-a-hash") is False


def test_long_password_truncated_consistently() -> None:
    """Bcrypt only sees 72 bytes; longer passwords still hash and verify."""
    long_pw = "x" * 100
    hashed = hash_password(long_pw)
    assert verify_password(long_pw, hashed) is True
