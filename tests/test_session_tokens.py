"""
tests/test_session_tokens.py — Signing Secret & Session Tokens
===============================================================

``check_jwt_secret`` is what keeps the API from starting with a guessable
signing key; it is tested directly so the already-imported ``deps``
module (and the routers bound to it) stay untouched.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from precinct.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    MIN_SECRET_LENGTH,
    check_jwt_secret,
    create_token,
    decode_token,
)


class TestSigningSecret:
    @pytest.mark.parametrize("value", [None, "", "   \n"])
    def test_missing(self, value):
        with pytest.raises(RuntimeError, match="not set"):
            check_jwt_secret(value)

    @pytest.mark.parametrize("value", ["change-me", "CHANGEME", "precinct-dev-secret-change-me"])
    def test_placeholders(self, value):
        with pytest.raises(RuntimeError, match="placeholder"):
            check_jwt_secret(value)

    def test_one_short_of_minimum(self):
        with pytest.raises(RuntimeError, match=f"{MIN_SECRET_LENGTH - 1} characters"):
            check_jwt_secret(secrets.token_hex(MIN_SECRET_LENGTH)[: MIN_SECRET_LENGTH - 1])

    def test_repetitive(self):
        with pytest.raises(RuntimeError, match="repetitive"):
            check_jwt_secret("ab" * 40)

    def test_generated_secret_accepted_and_trimmed(self):
        value = secrets.token_urlsafe(48)
        assert check_jwt_secret(f"  {value}\n") == value

    def test_configured_secret_passed_the_check(self):
        assert check_jwt_secret(JWT_SECRET) == JWT_SECRET


class TestSessionTokens:
    def test_round_trip_carries_snowflake(self):
        snowflake = 284_729_418_775_035_904
        token = create_token(snowflake, "chief")
        assert decode_token(token) == snowflake
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        assert claims["username"] == "chief"
        assert claims["exp"] - datetime.now(UTC).timestamp() > timedelta(days=6).total_seconds()

    def test_foreign_signature_rejected(self):
        forged = jwt.encode({"sub": "1"}, secrets.token_urlsafe(48), algorithm=JWT_ALGORITHM)
        with pytest.raises(InvalidTokenError):
            decode_token(forged)

    def test_expired_rejected(self):
        stale = jwt.encode(
            {"sub": "1", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            JWT_SECRET, algorithm=JWT_ALGORITHM,
        )
        with pytest.raises(ExpiredSignatureError):
            decode_token(stale)

    @pytest.mark.parametrize("claims", [{"username": "x"}, {"sub": "not-a-number"}])
    def test_unusable_subject_rejected(self, claims):
        token = jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)
        with pytest.raises(InvalidTokenError):
            decode_token(token)
