from __future__ import annotations

import os
import unittest
from unittest.mock import patch
from uuid import uuid4

from jose import jwt

from gtiq.errors import ApiError
from gtiq.models import Company, User
from gtiq.security import (
    ACCESS_TOKEN_TYPE,
    IMPERSONATION_TOKEN_TYPE,
    create_access_token,
    decode_token,
    ensure_attempt_allowed,
    hash_password,
    parse_subject,
    register_attempt_failure,
    register_attempt_success,
    verify_kiosk_pin,
    verify_password,
)
from gtiq.settings import get_cors_origins, get_settings

TEST_ENV = {
    "JWT_SECRET": "security-test-secret-0123456789abcdef",
    "JWT_ISSUER": "gtiq-test",
    "JWT_AUDIENCE": "gtiq-test-api",
    "ACCESS_TOKEN_MINUTES": "15",
}


class SecurityFeatureTests(unittest.TestCase):
    def setUp(self) -> None:
        env_patcher = patch.dict(os.environ, TEST_ENV, clear=False)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)
        get_settings.cache_clear()
        self.addCleanup(get_settings.cache_clear)
        self.user = User(id=uuid4(), email="ana@example.com", is_active=True, is_superadmin=False)

    def test_settings_are_read_from_environment(self) -> None:
        settings = get_settings()
        self.assertEqual(settings.jwt_issuer, "gtiq-test")
        self.assertEqual(settings.access_token_minutes, 15)
        self.assertEqual(settings.attendance_timezone, "Europe/Madrid")

    def test_cors_origins_are_split_and_trimmed(self) -> None:
        with patch.dict(os.environ, {"CORS_ALLOW_ORIGINS": " https://a.example , ,https://b.example"}):
            get_settings.cache_clear()
            self.assertEqual(get_cors_origins(), ["https://a.example", "https://b.example"])

    def test_access_token_roundtrip_carries_subject_and_claims(self) -> None:
        token, expires_in, claims = create_access_token(self.user)

        payload = decode_token(token, expected_type=ACCESS_TOKEN_TYPE)
        self.assertEqual(expires_in, 15 * 60)
        self.assertEqual(parse_subject(payload), self.user.id)
        self.assertEqual(payload["email"], "ana@example.com")
        self.assertEqual(payload["iss"], "gtiq-test")
        self.assertEqual(payload["jti"], claims["jti"])

    def test_token_type_mismatch_is_rejected(self) -> None:
        token, _expires_in, _claims = create_access_token(self.user)
        with self.assertRaises(ApiError) as ctx:
            decode_token(token, expected_type=IMPERSONATION_TOKEN_TYPE)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        _token, _expires_in, claims = create_access_token(self.user)
        forged = jwt.encode(claims, "another-secret-entirely-0123456789", algorithm="HS256")
        with self.assertRaises(ApiError) as ctx:
            decode_token(forged, expected_type=ACCESS_TOKEN_TYPE)
        self.assertEqual(ctx.exception.status_code, 401)

    def test_token_for_other_audience_is_rejected(self) -> None:
        _token, _expires_in, claims = create_access_token(self.user)
        claims["aud"] = "someone-else"
        foreign = jwt.encode(claims, TEST_ENV["JWT_SECRET"], algorithm="HS256")
        with self.assertRaises(ApiError):
            decode_token(foreign, expected_type=ACCESS_TOKEN_TYPE)

    def test_password_hash_verification(self) -> None:
        password_hash = hash_password("StrongPass123!")
        self.assertTrue(verify_password("StrongPass123!", password_hash))
        self.assertFalse(verify_password("wrong", password_hash))
        self.assertFalse(verify_password("StrongPass123!", None))
        self.assertFalse(verify_password("StrongPass123!", "not-a-hash"))

    def test_kiosk_pin_verification(self) -> None:
        company = Company(id=uuid4(), name="Acme", kiosk_pin_hash=hash_password("4821"))
        self.assertTrue(verify_kiosk_pin(company, "4821"))
        self.assertFalse(verify_kiosk_pin(company, "0000"))
        self.assertFalse(verify_kiosk_pin(company, None))
        self.assertFalse(verify_kiosk_pin(Company(id=uuid4(), name="No pin"), "4821"))

    def test_attempt_limiter_blocks_after_repeated_failures(self) -> None:
        key = f"test:{uuid4()}"
        for _ in range(10):
            ensure_attempt_allowed(key)
            register_attempt_failure(key)

        with self.assertRaises(ApiError) as ctx:
            ensure_attempt_allowed(key)
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(ctx.exception.code, "TOO_MANY_ATTEMPTS")

        register_attempt_success(key)
        ensure_attempt_allowed(key)


if __name__ == "__main__":
    unittest.main()
