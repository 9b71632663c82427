"""Unit tests for cinecriticas.core.security: bcrypt hashing guard, fail-closed verification, JWT claims."""

import unittest
from datetime import UTC, datetime, timedelta

import jwt

from cinecriticas.core.config import Settings
from cinecriticas.core.security import (
    BCRYPT_ROUNDS,
    ExpiredTokenError,
    InvalidTokenError,
    TokenError,
    create_access_token,
    decode_access_token,
    hash_password,
    is_password_hash,
    verify_password,
)
from cinecriticas.schemas.auth import Claims


def _settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "JWT_SECRET": "test-secret",
        "DATABASE_URL": "sqlite://",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _claims(**kwargs: object) -> Claims:
    defaults: dict[str, object] = {
        "id": 2,
        "username": "bob",
        "email": "bob@example.com",
        "role": "user",
    }
    defaults.update(kwargs)
    return Claims(**defaults)


class TestHashPassword(unittest.TestCase):
    """hash_password produces cost-10 bcrypt hashes and never double-hashes."""

    def test_produces_bcrypt_hash_with_cost_10(self) -> None:
        hashed = hash_password("secret1")
        self.assertNotEqual(hashed, "secret1")
        self.assertTrue(hashed.startswith(f"$2b${BCRYPT_ROUNDS:02d}$"))
        self.assertTrue(is_password_hash(hashed))

    def test_salted(self) -> None:
        self.assertNotEqual(hash_password("secret1"), hash_password("secret1"))

    def test_rehashing_a_hash_is_a_no_op(self) -> None:
        hashed = hash_password("secret1")
        self.assertEqual(hash_password(hashed), hashed)
        self.assertTrue(verify_password("secret1", hash_password(hashed)))

    def test_rejects_empty_password(self) -> None:
        with self.assertRaises(ValueError):
            hash_password("")


class TestIsPasswordHash(unittest.TestCase):
    def test_recognises_bcrypt_variants(self) -> None:
        body = "$10$" + "a" * 53
        for prefix in ("$2a", "$2b", "$2y"):
            self.assertTrue(is_password_hash(prefix + body), prefix)

    def test_rejects_other_values(self) -> None:
        for value in (None, "", "secret1", "$2b$10$short", "$2x$10$" + "a" * 53, "$argon2id$v=19$m=65536"):
            self.assertFalse(is_password_hash(value), value)


class TestVerifyPassword(unittest.TestCase):
    """verify_password returns False instead of raising for anything unusable."""

    def setUp(self) -> None:
        self.hashed = hash_password("secret2")

    def test_matching_password(self) -> None:
        self.assertTrue(verify_password("secret2", self.hashed))

    def test_wrong_password(self) -> None:
        self.assertFalse(verify_password("wrongpass", self.hashed))
        self.assertFalse(verify_password("secret2 ", self.hashed))

    def test_malformed_stored_hash_fails_closed(self) -> None:
        for stored in ("not-a-real-hash", "", None, "secret2", "$2b$10$" + "!" * 53):
            self.assertFalse(verify_password("secret2", stored), stored)

    def test_empty_plaintext(self) -> None:
        self.assertFalse(verify_password("", self.hashed))


class TestAccessToken(unittest.TestCase):
    """create_access_token/decode_access_token round-trip the public claims."""

    def setUp(self) -> None:
        self.settings = _settings()

    def test_decoded_claims_match(self) -> None:
        claims = _claims()
        token = create_access_token(claims, self.settings)
        self.assertEqual(decode_access_token(token, self.settings), claims)

    def test_payload_has_24h_expiry_and_no_password(self) -> None:
        token = create_access_token(_claims(), self.settings)
        payload = jwt.decode(token, "test-secret", algorithms=["HS256"])
        self.assertEqual(payload["sub"], "2")
        self.assertEqual(payload["username"], "bob")
        self.assertEqual(payload["role"], "user")
        self.assertEqual(payload["exp"] - payload["iat"], 24 * 60 * 60)
        self.assertNotIn("password_hash", payload)

    def test_expired_token(self) -> None:
        now = datetime.now(UTC)
        token = jwt.encode(
            {
                "sub": "2",
                **_claims().model_dump(),
                "iat": now - timedelta(hours=25),
                "exp": now - timedelta(hours=1),
            },
            "test-secret",
            algorithm="HS256",
        )
        with self.assertRaises(ExpiredTokenError):
            decode_access_token(token, self.settings)

    def test_wrong_secret_is_invalid(self) -> None:
        token = create_access_token(_claims(), _settings(JWT_SECRET="other-secret"))
        with self.assertRaises(InvalidTokenError):
            decode_access_token(token, self.settings)

    def test_garbage_is_invalid(self) -> None:
        for token in ("", "not.a.jwt", "abc"):
            with self.assertRaises(InvalidTokenError):
                decode_access_token(token, self.settings)

    def test_missing_identity_claims_is_invalid(self) -> None:
        now = datetime.now(UTC)
        token = jwt.encode(
            {"sub": "2", "id": 2, "iat": now, "exp": now + timedelta(hours=1)},
            "test-secret",
            algorithm="HS256",
        )
        with self.assertRaises(InvalidTokenError):
            decode_access_token(token, self.settings)

    def test_errors_share_a_base_class(self) -> None:
        self.assertTrue(issubclass(ExpiredTokenError, TokenError))
        self.assertTrue(issubclass(InvalidTokenError, TokenError))
