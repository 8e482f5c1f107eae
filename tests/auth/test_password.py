"""Tests for password hashing and validation."""

import pytest

from wastewatch.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("Secure123")
        assert verify_password("Secure123", hashed) is True

    def test_wrong_password_rejected(self):
        hashed = hash_password("Correct123")
        assert verify_password("Wrong1234", hashed) is False

    def test_malformed_hash_rejected(self):
        assert verify_password("Secure123", "not-a-hash") is False

    def test_hash_is_argon2id(self):
        assert hash_password("Secure123").startswith("$argon2id$")

    def test_check_needs_rehash(self):
        assert check_needs_rehash(hash_password("Secure123")) is False


class TestPasswordStrength:
    def test_valid_password(self):
        validate_password_strength("binday2024")

    @pytest.mark.parametrize("password", ["", "   ", "short1", "onlyletters", "1234567890", "a1" * 65])
    def test_weak_passwords_rejected(self, password: str):
        with pytest.raises(PasswordStrengthError):
            validate_password_strength(password)

    def test_mismatched_confirmation_rejected(self):
        with pytest.raises(PasswordStrengthError, match="do not match"):
            validate_password_strength("Secure123", "Secure124")

    def test_matching_confirmation_accepted(self):
        validate_password_strength("Secure123", "Secure123")
