"""Tests for JWT identity tokens."""

from __future__ import annotations

import time

import jwt as pyjwt
import pytest

from signoff.auth.jwt import (
    TokenExpiredError,
    TokenInvalidError,
    actor_from_token,
    create_token,
    jwt_secret,
    verify_token,
)
from signoff.models.actor import ViewAsOverride


class TestJWT:
    """Test JWT token creation and validation."""

    def test_create_token_basic(self) -> None:
        token = create_token("user-123", project_role="contributor")
        assert isinstance(token, str)
        assert len(token) > 0

    def test_verify_token_valid(self) -> None:
        token = create_token(
            "user-123",
            project_role="customer_pm",
            org_role="org_member",
            session_id="sess-1",
            exp_minutes=1,
        )
        payload = verify_token(token, jwt_secret())

        assert payload["sub"] == "user-123"
        assert payload["role"] == "customer_pm"
        assert payload["org_role"] == "org_member"
        assert payload["sid"] == "sess-1"
        assert "exp" in payload

    def test_verify_token_custom_expiry(self) -> None:
        token = create_token("user-789", exp_minutes=120)
        payload = verify_token(token, jwt_secret())

        assert payload["sub"] == "user-789"
        assert payload["exp"] > int(time.time()) + 3600

    def test_verify_token_expired(self) -> None:
        token = create_token("user-123", exp_minutes=-1)

        with pytest.raises(TokenExpiredError):
            verify_token(token, jwt_secret())

    def test_verify_token_invalid_signature(self) -> None:
        token = create_token("user-123")

        with pytest.raises(TokenInvalidError):
            verify_token(token, "a-completely-different-secret-value")

    def test_verify_token_malformed(self) -> None:
        with pytest.raises(TokenInvalidError):
            verify_token("not.a.valid.jwt", jwt_secret())

    def test_secret_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIGNOFF_JWT_SECRET", "rotated-secret-for-tests-0123456789")
        token = create_token("user-1")

        assert verify_token(token, "rotated-secret-for-tests-0123456789")["sub"] == "user-1"
        with pytest.raises(TokenInvalidError):
            verify_token(token, "a-completely-different-secret-value")


class TestActorFromToken:
    """Test building actors from verified tokens."""

    def test_roles_and_session(self) -> None:
        token = create_token(
            "user-1", project_role="supplier_pm", org_role="org_admin", session_id="sess-9"
        )
        actor = actor_from_token(token, jwt_secret())

        assert actor.id == "user-1"
        assert actor.session_id == "sess-9"
        assert actor.project_role == "supplier_pm"
        assert actor.org_role == "org_admin"
        assert actor.view_as is None

    def test_view_as_attached(self) -> None:
        token = create_token("user-1", project_role="supplier_pm", session_id="sess-9")
        override = ViewAsOverride(role="viewer", session_id="sess-9")
        actor = actor_from_token(token, jwt_secret(), view_as=override)

        assert actor.view_as == override

    def test_deprecated_role_is_kept_as_stored(self) -> None:
        token = create_token("user-1", project_role="admin")
        assert actor_from_token(token, jwt_secret()).project_role == "admin"

    def test_missing_subject(self) -> None:
        token = pyjwt.encode(
            {"role": "viewer", "exp": int(time.time()) + 60}, jwt_secret(), algorithm="HS256"
        )
        with pytest.raises(TokenInvalidError):
            actor_from_token(token, jwt_secret())

    def test_expired(self) -> None:
        token = create_token("user-1", exp_minutes=-1)
        with pytest.raises(TokenExpiredError):
            actor_from_token(token, jwt_secret())
