"""Codex quota/usage client.

Fetches rate-limit windows for one account's token set. When the token is
rejected and refreshing is allowed for that account, refreshes once and
retries.
"""

from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import BaseModel
from structlog import get_logger

from codex_switcher.config.settings import SwitcherSettings
from codex_switcher.exceptions import (
    NetworkError,
    SwitcherError,
    TokenExchangeError,
    TokenInvalidError,
)
from codex_switcher.services import oauth
from codex_switcher.services.oauth import TokenResponse


logger = get_logger(__name__)

UNKNOWN_RESET = "Unknown"
AUTH_FAILURE_STATUSES = (401, 403)
REFRESHED_TOKENS_KEY = "refreshed_tokens"


class UsageDisplay(BaseModel):
    """Quota numbers for one account, ready for display."""

    plan_type: str = "unknown"
    five_hour_used: int = 0
    five_hour_left: int = 100
    five_hour_reset: str = UNKNOWN_RESET
    five_hour_reset_at: int | None = None
    weekly_used: int = 0
    weekly_left: int = 100
    weekly_reset: str = UNKNOWN_RESET
    weekly_reset_at: int | None = None
    credits_balance: float | None = None
    has_credits: bool = False
    is_valid_for_cli: bool = True


def _parse_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _parse_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def format_duration(seconds: int) -> str:
    """Human description of the time left until a window resets."""
    hours, remainder = divmod(max(seconds, 0), 3600)
    minutes = remainder // 60

    if hours > 24:
        return f"resets in {hours // 24}d"
    if hours > 0:
        return f"resets in {hours}h {minutes}m"
    if minutes > 0:
        return f"resets in {minutes}m"
    return "resets soon"


def _parse_window(window: Any, now: datetime) -> tuple[int, str, int | None]:
    if not isinstance(window, dict):
        return 0, UNKNOWN_RESET, None

    used = _parse_int(window.get("used_percent")) or 0
    now_ts = int(now.timestamp())

    reset_at = _parse_int(window.get("reset_at")) or 0
    if reset_at > 0:
        return used, format_duration(reset_at - now_ts), reset_at

    reset_after = _parse_int(window.get("reset_after_seconds"))
    if reset_after is None:
        reset_after = _parse_int(window.get("reset_after_sec"))
    if reset_after and reset_after > 0:
        return used, format_duration(reset_after), now_ts + reset_after

    return used, UNKNOWN_RESET, None


def parse_usage_response(data: dict[str, Any], now: datetime | None = None) -> UsageDisplay:
    """Turn a usage API payload into a UsageDisplay."""
    now = now or datetime.now(UTC)

    rate_limit = data.get("rate_limit")
    if not isinstance(rate_limit, dict):
        rate_limit = {}

    five_used, five_reset, five_reset_at = _parse_window(
        rate_limit.get("primary_window"), now
    )
    weekly_used, weekly_reset, weekly_reset_at = _parse_window(
        rate_limit.get("secondary_window"), now
    )

    credits = data.get("credits")
    if not isinstance(credits, dict):
        credits = {}

    plan_type = data.get("plan_type")
    return UsageDisplay(
        plan_type=plan_type if isinstance(plan_type, str) and plan_type else "unknown",
        five_hour_used=five_used,
        five_hour_left=100 - five_used,
        five_hour_reset=five_reset,
        five_hour_reset_at=five_reset_at,
        weekly_used=weekly_used,
        weekly_left=100 - weekly_used,
        weekly_reset=weekly_reset,
        weekly_reset_at=weekly_reset_at,
        credits_balance=_parse_number(credits.get("balance")),
        has_credits=credits.get("has_credits") is True or credits.get("unlimited") is True,
        is_valid_for_cli=True,
    )


async def _get_usage(
    client: httpx.AsyncClient,
    settings: SwitcherSettings,
    access_token: str,
    account_id: str | None,
) -> httpx.Response:
    headers = {
        "Authorization": f"Bearer {access_token}",
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if account_id:
        headers["ChatGPT-Account-Id"] = account_id

    try:
        return await client.get(
            settings.usage_url, headers=headers, timeout=settings.http_timeout_seconds
        )
    except httpx.HTTPError as e:
        raise NetworkError(f"Usage request failed: {e}") from e


def _parse_http_response(response: httpx.Response) -> UsageDisplay:
    if response.status_code in AUTH_FAILURE_STATUSES:
        raise TokenInvalidError()

    if response.status_code >= 400:
        raise NetworkError(
            f"Usage request returned {response.status_code}",
            details={"status_code": response.status_code},
        )

    try:
        data = response.json()
    except ValueError as e:
        raise NetworkError("Usage response is not valid JSON") from e

    if not isinstance(data, dict):
        raise NetworkError("Usage response has an unexpected shape")

    return parse_usage_response(data)


def refreshed_tokens_from(error: SwitcherError) -> TokenResponse | None:
    """Token set a failed fetch obtained before failing, if any."""
    data = error.details.get(REFRESHED_TOKENS_KEY)
    if not isinstance(data, dict):
        return None
    return TokenResponse.model_validate(data)


async def _fetch(
    client: httpx.AsyncClient,
    settings: SwitcherSettings,
    access_token: str,
    account_id: str | None,
    refresh_token: str | None,
    allow_refresh: bool,
) -> tuple[UsageDisplay, TokenResponse | None]:
    response = await _get_usage(client, settings, access_token, account_id)

    if response.status_code in AUTH_FAILURE_STATUSES and allow_refresh and refresh_token:
        try:
            new_tokens = await oauth.refresh_access_token(refresh_token, settings, client)
        except TokenExchangeError as e:
            logger.warning("usage_token_refresh_failed", error=str(e))
        else:
            try:
                response = await _get_usage(
                    client, settings, new_tokens.access_token, account_id
                )
                return _parse_http_response(response), new_tokens
            except SwitcherError as e:
                # The old refresh token is spent once the provider rotated it
                e.details[REFRESHED_TOKENS_KEY] = new_tokens.model_dump()
                raise

    return _parse_http_response(response), None


async def fetch_usage(
    access_token: str,
    account_id: str | None,
    refresh_token: str | None,
    *,
    allow_refresh: bool,
    settings: SwitcherSettings,
    client: httpx.AsyncClient | None = None,
) -> tuple[UsageDisplay, TokenResponse | None]:
    """Fetch quota for one token set.

    Args:
        access_token: Bearer token
        account_id: ChatGPT account id header value, if known
        refresh_token: Used for a single refresh-and-retry on 401/403
        allow_refresh: Whether local refresh is permitted for this account
        settings: Endpoint and timeout configuration
        client: Optional shared client

    Returns:
        The parsed usage and, if a refresh happened, the new token set

    Raises:
        TokenInvalidError: If the token is still rejected
        NetworkError: On transport errors or unexpected responses

        An error raised after a successful refresh carries the new token set;
        see ``refreshed_tokens_from``.
    """
    if client is not None:
        return await _fetch(
            client, settings, access_token, account_id, refresh_token, allow_refresh
        )

    async with httpx.AsyncClient() as http:
        return await _fetch(
            http, settings, access_token, account_id, refresh_token, allow_refresh
        )
