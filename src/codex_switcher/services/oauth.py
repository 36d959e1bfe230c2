"""OAuth token refresh against the OpenAI auth server.

The refresh endpoint is treated as an opaque collaborator: send a refresh
token, get a new token set back or fail. Only non-current accounts are
ever refreshed from here; the Codex CLI owns refresh for the active one.
"""

from typing import Any

import httpx
from pydantic import BaseModel
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from codex_switcher.config.settings import SwitcherSettings
from codex_switcher.exceptions import TokenExchangeError


logger = get_logger(__name__)

MAX_REFRESH_ATTEMPTS = 3
REFRESH_SCOPE = "openid profile email offline_access"


class TokenResponse(BaseModel):
    """Token set returned by the OAuth token endpoint."""

    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None


class _RetryableRefreshError(Exception):
    """Transport failure or 5xx; worth another attempt."""


def _error_text(response: httpx.Response) -> str:
    text = response.text
    return text[:500] if len(text) > 500 else text


async def _post_refresh(
    client: httpx.AsyncClient, refresh_token: str, settings: SwitcherSettings
) -> dict[str, Any]:
    try:
        response = await client.post(
            settings.token_url,
            headers={
                "Accept": "application/json",
                "User-Agent": settings.user_agent,
            },
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": settings.client_id,
                "scope": REFRESH_SCOPE,
            },
            timeout=settings.http_timeout_seconds,
        )
    except httpx.HTTPError as e:
        raise _RetryableRefreshError(str(e)) from e

    if response.status_code >= 500:
        raise _RetryableRefreshError(
            f"token endpoint returned {response.status_code}: {_error_text(response)}"
        )

    if response.status_code != 200:
        error_text = _error_text(response)
        logger.error(
            "oauth_token_refresh_failed", status=response.status_code, error=error_text
        )
        raise TokenExchangeError(
            f"token_refresh failed: {error_text}",
            status_code=response.status_code,
            response_text=error_text,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise TokenExchangeError("token_refresh returned invalid JSON") from e

    if not isinstance(data, dict):
        raise TokenExchangeError("token_refresh returned an unexpected payload")
    return data


async def refresh_access_token(
    refresh_token: str,
    settings: SwitcherSettings,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    """Exchange a refresh token for a new token set.

    Retries transport errors and 5xx responses with exponential backoff.

    Args:
        refresh_token: Refresh token of the account
        settings: Endpoint, client id and timeout configuration
        client: Optional shared client (a temporary one is used otherwise)

    Returns:
        New token set

    Raises:
        TokenExchangeError: If the endpoint rejects the token or stays unavailable
    """

    async def _attempt(http: httpx.AsyncClient) -> dict[str, Any]:
        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=1, max=10),
            stop=stop_after_attempt(MAX_REFRESH_ATTEMPTS),
            retry=retry_if_exception_type(_RetryableRefreshError),
            reraise=True,
        ):
            with attempt:
                result = await _post_refresh(http, refresh_token, settings)
        return result

    try:
        if client is not None:
            data = await _attempt(client)
        else:
            async with httpx.AsyncClient() as http:
                data = await _attempt(http)
    except _RetryableRefreshError as e:
        logger.error("oauth_token_refresh_exhausted", error=str(e))
        raise TokenExchangeError(f"token_refresh failed: {e}") from e

    if not data.get("access_token"):
        raise TokenExchangeError("token_refresh response missing access_token")

    logger.info("oauth_token_refreshed", has_refresh_token=bool(data.get("refresh_token")))
    return TokenResponse.model_validate(data)
