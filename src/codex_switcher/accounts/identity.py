"""Identity extraction and matching for Codex credential blobs.

A credential blob is the JSON document the Codex CLI keeps in auth.json::

    {
        "tokens": {"access_token": ..., "refresh_token": ..., "id_token": ...,
                   "account_id": ..., "expires_at": ...},
        "last_refresh": "2025-01-01T00:00:00Z"
    }

Everything here is pure and never raises on malformed input; unknown or
unparseable values come back as None.
"""

import base64
import binascii
import re
from datetime import UTC, datetime
from typing import Any

import orjson

from codex_switcher.accounts.constants import (
    AUTH_CLAIM_NAMESPACE,
    EPOCH_MILLIS_THRESHOLD,
    PROFILE_CLAIM_NAMESPACE,
)

# RFC 3339 allows nanosecond fractions; datetime only keeps microseconds
_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _tokens(blob: Any) -> dict[str, Any]:
    if not isinstance(blob, dict):
        return {}
    tokens = blob.get("tokens")
    return tokens if isinstance(tokens, dict) else {}


def _nested_then_root(blob: Any, key: str) -> str | None:
    value = _clean(_tokens(blob).get(key))
    if value is not None:
        return value
    if isinstance(blob, dict):
        return _clean(blob.get(key))
    return None


def _b64_decode(segment: str) -> bytes | None:
    """Decode base64url, falling back to standard base64; padding is optional.

    Characters outside the alphabet make an attempt fail.
    """
    padded = segment + "=" * (-len(segment) % 4)
    for altchars in (b"-_", None):
        try:
            return base64.b64decode(padded, altchars=altchars, validate=True)
        except (binascii.Error, ValueError):
            continue
    return None


def decode_jwt_claims(token: str | None) -> dict[str, Any] | None:
    """Decode the claims segment of a JWT without verifying it.

    Args:
        token: Compact JWT (header.payload.signature)

    Returns:
        Claims dict, or None if the token is malformed
    """
    if not isinstance(token, str):
        return None

    parts = token.split(".")
    if len(parts) != 3:
        return None

    raw = _b64_decode(parts[1])
    if raw is None:
        return None

    try:
        text = raw.decode("utf-8")
        claims = orjson.loads(text)
    except (UnicodeDecodeError, orjson.JSONDecodeError):
        return None

    return claims if isinstance(claims, dict) else None


def extract_refresh_token(blob: Any) -> str | None:
    """Refresh token from tokens.refresh_token, then root refresh_token."""
    return _nested_then_root(blob, "refresh_token")


def extract_account_id(blob: Any) -> str | None:
    """Provider account id from tokens.account_id, then root account_id."""
    return _nested_then_root(blob, "account_id")


def extract_subject_id(blob: Any) -> str | None:
    """User id claim from the access token, falling back to `sub`.

    Both the flat `<namespace>/user_id` claim and the nested namespace object
    are read, flat first.
    """
    claims = decode_jwt_claims(_tokens(blob).get("access_token"))
    if claims is None:
        return None

    user_id = _clean(claims.get(f"{AUTH_CLAIM_NAMESPACE}/user_id"))
    if user_id:
        return user_id

    auth_claim = claims.get(AUTH_CLAIM_NAMESPACE)
    if isinstance(auth_claim, dict):
        for key in ("user_id", "chatgpt_user_id"):
            user_id = _clean(auth_claim.get(key))
            if user_id:
                return user_id

    return _clean(claims.get("sub"))


def _email_from_claims(claims: dict[str, Any] | None) -> str | None:
    if claims is None:
        return None
    email = _clean(claims.get("email"))
    if email:
        return email
    profile = claims.get(PROFILE_CLAIM_NAMESPACE)
    if isinstance(profile, dict):
        return _clean(profile.get("email"))
    return None


def extract_email(blob: Any) -> str | None:
    """Email from the id token claims, falling back to the access token."""
    tokens = _tokens(blob)
    for key in ("id_token", "access_token"):
        email = _email_from_claims(decode_jwt_claims(tokens.get(key)))
        if email:
            return email
    return None


def extract_last_refresh(blob: Any) -> datetime | None:
    """Parse root last_refresh as RFC 3339 or an epoch (seconds or ms)."""
    if not isinstance(blob, dict):
        return None

    raw = blob.get("last_refresh")
    if isinstance(raw, bool):
        return None

    if isinstance(raw, str):
        try:
            text = _FRACTION_PATTERN.sub(r"\1", raw.strip()).replace("Z", "+00:00")
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return None
        return parsed.astimezone(UTC)

    if isinstance(raw, int):
        seconds = raw // 1000 if raw > EPOCH_MILLIS_THRESHOLD else raw
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    return None


def identities_match(local: Any, external: Any) -> bool:
    """Decide whether two blobs belong to the same external identity.

    Account ids win when both sides have one. Otherwise subject ids are
    compared. Anything less is treated as a mismatch.
    """
    local_account = extract_account_id(local)
    external_account = extract_account_id(external)
    if local_account is not None and external_account is not None:
        return local_account == external_account

    local_subject = extract_subject_id(local)
    external_subject = extract_subject_id(external)
    if local_subject is not None and external_subject is not None:
        return local_subject == external_subject

    return False
