"""Tests for OAuth token refresh."""

from urllib.parse import parse_qs

import httpx
import pytest

from codex_switcher.exceptions import TokenExchangeError
from codex_switcher.services.oauth import REFRESH_SCOPE, refresh_access_token


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestRefreshAccessToken:
    """Tests for refresh_access_token."""

    @pytest.mark.asyncio
    async def test_posts_form_and_parses_token_set(self, switcher_settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "access_token": "new-at",
                    "refresh_token": "new-rt",
                    "id_token": "new-id",
                    "expires_in": 3600,
                    "token_type": "Bearer",
                },
            )

        async with _client(handler) as client:
            tokens = await refresh_access_token("rt-1", switcher_settings, client)

        assert tokens.access_token == "new-at"
        assert tokens.refresh_token == "new-rt"
        assert tokens.expires_in == 3600

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == switcher_settings.token_url
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["rt-1"]
        assert form["client_id"] == [switcher_settings.client_id]
        assert form["scope"] == [REFRESH_SCOPE]

    @pytest.mark.asyncio
    async def test_rejected_refresh_token_is_not_retried(self, switcher_settings) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, json={"error": "invalid_grant"})

        async with _client(handler) as client:
            with pytest.raises(TokenExchangeError) as exc_info:
                await refresh_access_token("rt-1", switcher_settings, client)

        assert calls == 1
        assert exc_info.value.upstream_status == 400
        assert "invalid_grant" in exc_info.value.response_text

    @pytest.mark.asyncio
    async def test_missing_access_token(self, switcher_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"refresh_token": "rt-2"})

        async with _client(handler) as client:
            with pytest.raises(TokenExchangeError):
                await refresh_access_token("rt-1", switcher_settings, client)

    @pytest.mark.asyncio
    async def test_invalid_json(self, switcher_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        async with _client(handler) as client:
            with pytest.raises(TokenExchangeError):
                await refresh_access_token("rt-1", switcher_settings, client)
