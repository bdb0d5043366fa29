"""Tests for the OAuth2 token manager."""

from __future__ import annotations

import json
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from exactfetch.auth.oauth2 import Credential, OAuth2TokenManager, extract_authorization_code
from exactfetch.auth.store import TokenStore
from exactfetch.errors import (
    AuthExpired,
    InvalidAuthorizationCode,
    TransportError,
    Unauthenticated,
)


def _mock_response(payload: object, status_code: int = 200) -> MagicMock:
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = payload
    return mock_response


def _mock_client(*responses: MagicMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post.side_effect = list(responses)
    mock_client.is_closed = False
    return mock_client


# ---------------------------------------------------------------------------
# Credential tests
# ---------------------------------------------------------------------------


class TestCredential:
    def test_from_token_response(self) -> None:
        data = {
            "access_token": "abc123",
            "refresh_token": "ref456",
            "token_type": "bearer",
            "expires_in": "600",
        }
        credential = Credential.from_token_response(data, issued_at=1000.0)
        assert credential.access_token == "abc123"
        assert credential.refresh_token == "ref456"
        assert credential.expires_at == 1570.0
        assert credential.current_division is None

    def test_refresh_keeps_previous_refresh_token_and_division(self) -> None:
        previous = Credential("old", "old_ref", expires_at=0.0, current_division=42)
        credential = Credential.from_token_response(
            {"access_token": "new"}, issued_at=2000.0, previous=previous,
        )
        assert credential.refresh_token == "old_ref"
        assert credential.current_division == 42

    def test_is_expired_at_boundary(self) -> None:
        credential = Credential("abc", "ref", expires_at=100.0)
        assert credential.is_expired(now=100.0)
        assert credential.is_expired(now=101.0)
        assert not credential.is_expired(now=99.9)

    def test_round_trip(self) -> None:
        original = Credential("abc", "ref", expires_at=1234.5, current_division=7)
        restored = Credential.from_dict(original.to_dict())
        assert restored == original


class TestExtractAuthorizationCode:
    def test_bare_code(self) -> None:
        assert extract_authorization_code("  stampNL001.abc  ") == "stampNL001.abc"

    def test_redirect_url(self) -> None:
        url = "https://www.example.com/oauth2/callback?code=stampNL001.88oS%21IAAA&state=x"
        assert extract_authorization_code(url) == "stampNL001.88oS!IAAA"

    def test_redirect_url_without_code(self) -> None:
        with pytest.raises(InvalidAuthorizationCode):
            extract_authorization_code("https://www.example.com/callback?error=denied")


# ---------------------------------------------------------------------------
# OAuth2TokenManager tests
# ---------------------------------------------------------------------------


class TestOAuth2TokenManager:
    def _make_manager(self, token_dir: Path) -> OAuth2TokenManager:
        return OAuth2TokenManager(
            base_url="https://example.com/api",
            client_id="test_client",
            client_secret="test_secret",
            redirect_uri="https://myapp.com/callback",
            store=TokenStore(token_dir / "tokens.json"),
        )

    def _seed(self, token_dir: Path, expires_at: float) -> None:
        (token_dir / "tokens.json").write_text(json.dumps({
            "access_token": "stored_access",
            "refresh_token": "stored_refresh",
            "expires_at": expires_at,
        }))

    def test_starts_unauthenticated(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        assert not mgr.is_authenticated
        assert mgr.credential is None

    def test_loads_stored_credential(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() + 300)
        mgr = self._make_manager(tmp_path)
        assert mgr.is_authenticated
        assert mgr.credential is not None
        assert mgr.credential.refresh_token == "stored_refresh"

    def test_get_authorization_url(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        url = mgr.get_authorization_url()
        assert url.startswith("https://example.com/api/oauth2/auth?")
        assert "client_id=test_client" in url
        assert "redirect_uri=https%3A%2F%2Fmyapp.com%2Fcallback" in url
        assert "response_type=code" in url

    @pytest.mark.asyncio
    async def test_exchange_code(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        mock_client = _mock_client(_mock_response({
            "access_token": "code_access",
            "refresh_token": "code_refresh",
            "expires_in": "600",
        }))
        mgr._http_client = mock_client

        before = time.time()
        credential = await mgr.exchange_authorization_code("auth_code_123")
        assert credential.access_token == "code_access"
        assert credential.refresh_token == "code_refresh"
        assert before + 570 <= credential.expires_at <= time.time() + 570

        call_kwargs = mock_client.post.call_args
        assert call_kwargs[0][0] == "https://example.com/api/oauth2/token"
        post_data = call_kwargs[1]["data"]
        assert post_data["grant_type"] == "authorization_code"
        assert post_data["code"] == "auth_code_123"
        assert post_data["redirect_uri"] == "https://myapp.com/callback"

        # Persisted before returning
        data = json.loads((tmp_path / "tokens.json").read_text())
        assert data["access_token"] == "code_access"
        assert data["refresh_token"] == "code_refresh"

    @pytest.mark.asyncio
    async def test_exchange_code_rejected(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        mgr._http_client = _mock_client(_mock_response(
            {"error": "invalid_grant", "error_description": "code expired"}, status_code=400,
        ))

        with pytest.raises(InvalidAuthorizationCode, match="invalid_grant"):
            await mgr.exchange_authorization_code("bad_code")
        assert not mgr.is_authenticated
        assert not (tmp_path / "tokens.json").exists()

    @pytest.mark.asyncio
    async def test_exchange_code_unreadable_body(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        response = MagicMock()
        response.status_code = 500
        response.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)
        mgr._http_client = _mock_client(response)

        with pytest.raises(InvalidAuthorizationCode, match="HTTP 500"):
            await mgr.exchange_authorization_code("code")

    @pytest.mark.asyncio
    async def test_ensure_valid_token_without_credential(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        with pytest.raises(Unauthenticated):
            await mgr.ensure_valid_token()

    @pytest.mark.asyncio
    async def test_ensure_valid_token_valid_makes_no_request(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() + 300)
        mgr = self._make_manager(tmp_path)
        mock_client = _mock_client()
        mgr._http_client = mock_client

        for _ in range(3):
            credential = await mgr.ensure_valid_token()
            assert credential.access_token == "stored_access"
        mock_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_triggers_exactly_one_refresh(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() - 100)
        mgr = self._make_manager(tmp_path)
        mock_client = _mock_client(_mock_response({
            "access_token": "refreshed_token",
            "refresh_token": "new_ref",
            "expires_in": "600",
        }))
        mgr._http_client = mock_client

        for _ in range(3):
            credential = await mgr.ensure_valid_token()
            assert credential.access_token == "refreshed_token"
        assert mock_client.post.call_count == 1

        post_data = mock_client.post.call_args[1]["data"]
        assert post_data["grant_type"] == "refresh_token"
        assert post_data["refresh_token"] == "stored_refresh"

        data = json.loads((tmp_path / "tokens.json").read_text())
        assert data["access_token"] == "refreshed_token"
        assert data["refresh_token"] == "new_ref"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, tmp_path: Path) -> None:
        import asyncio

        self._seed(tmp_path, time.time() - 100)
        mgr = self._make_manager(tmp_path)
        mock_client = _mock_client(_mock_response({
            "access_token": "refreshed_token",
            "refresh_token": "new_ref",
        }))
        mgr._http_client = mock_client

        results = await asyncio.gather(*(mgr.ensure_valid_token() for _ in range(5)))
        assert {c.access_token for c in results} == {"refreshed_token"}
        assert mock_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_refresh_rejected_raises_auth_expired(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() - 100)
        mgr = self._make_manager(tmp_path)
        mgr._http_client = _mock_client(_mock_response({"error": "invalid_grant"}, status_code=400))

        with pytest.raises(AuthExpired) as exc_info:
            await mgr.ensure_valid_token()
        assert exc_info.value.requires_reauthentication

    @pytest.mark.asyncio
    async def test_refresh_transport_failure(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() - 100)
        mgr = self._make_manager(tmp_path)
        mock_client = AsyncMock()
        mock_client.is_closed = False
        mock_client.post.side_effect = httpx.ConnectError("connection refused")
        mgr._http_client = mock_client

        with pytest.raises(TransportError):
            await mgr.ensure_valid_token()
        # The stored credential is untouched; a later attempt can still refresh.
        assert mgr.credential is not None
        assert mgr.credential.refresh_token == "stored_refresh"

    def test_set_current_division_persists(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() + 300)
        mgr = self._make_manager(tmp_path)
        mgr.set_current_division(123)

        data = json.loads((tmp_path / "tokens.json").read_text())
        assert data["current_division"] == 123

    def test_set_current_division_requires_credential(self, tmp_path: Path) -> None:
        mgr = self._make_manager(tmp_path)
        with pytest.raises(Unauthenticated):
            mgr.set_current_division(123)

    def test_logout_is_idempotent(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() + 300)
        mgr = self._make_manager(tmp_path)

        mgr.logout()
        mgr.logout()
        assert not mgr.is_authenticated
        assert not (tmp_path / "tokens.json").exists()

    @pytest.mark.asyncio
    async def test_logout_then_ensure_raises(self, tmp_path: Path) -> None:
        self._seed(tmp_path, time.time() + 300)
        mgr = self._make_manager(tmp_path)
        mgr.logout()
        with pytest.raises(Unauthenticated):
            await mgr.ensure_valid_token()
