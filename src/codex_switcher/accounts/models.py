"""Account data model for the credential store.

Dataclasses mirror the persisted accounts.json layout and provide
to_dict/from_dict for orjson serialization.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import shortuuid
from structlog import get_logger

from codex_switcher.accounts.constants import (
    DEFAULT_FIVE_HOUR_LABEL,
    DEFAULT_PRIMARY_IDE,
    DEFAULT_REFRESH_INTERVAL_MINUTES,
    DEFAULT_WEEKLY_LABEL,
)


logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def generate_account_id() -> str:
    """Generate a short URL-safe account id (22 characters)."""
    return shortuuid.uuid()


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class QuotaSnapshot:
    """Last successful quota reading for an account. Replaced whole, never patched."""

    five_hour_left: float
    five_hour_reset: str
    weekly_left: float
    weekly_reset: str
    plan_type: str
    five_hour_label: str = DEFAULT_FIVE_HOUR_LABEL
    weekly_label: str = DEFAULT_WEEKLY_LABEL
    is_valid_for_cli: bool = True
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "five_hour_left": self.five_hour_left,
            "five_hour_reset": self.five_hour_reset,
            "five_hour_label": self.five_hour_label,
            "weekly_left": self.weekly_left,
            "weekly_reset": self.weekly_reset,
            "weekly_label": self.weekly_label,
            "plan_type": self.plan_type,
            "is_valid_for_cli": self.is_valid_for_cli,
            "updated_at": _format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuotaSnapshot":
        return cls(
            five_hour_left=float(data["five_hour_left"]),
            five_hour_reset=data["five_hour_reset"],
            five_hour_label=data.get("five_hour_label", DEFAULT_FIVE_HOUR_LABEL),
            weekly_left=float(data["weekly_left"]),
            weekly_reset=data["weekly_reset"],
            weekly_label=data.get("weekly_label", DEFAULT_WEEKLY_LABEL),
            plan_type=data["plan_type"],
            is_valid_for_cli=data.get("is_valid_for_cli", True),
            updated_at=_parse_datetime(data["updated_at"]) or utc_now(),
        )


@dataclass
class StoreSettings:
    """User preferences persisted alongside the accounts."""

    auto_reload_ide: bool = False
    primary_ide: str = DEFAULT_PRIMARY_IDE
    use_pkill_restart: bool = False
    background_refresh: bool = False
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES

    def effective_interval_minutes(self) -> int:
        """Refresh interval with 0 (or negative) mapped to the default."""
        if self.refresh_interval_minutes <= 0:
            return DEFAULT_REFRESH_INTERVAL_MINUTES
        return self.refresh_interval_minutes

    def to_dict(self) -> dict[str, Any]:
        return {
            "auto_reload_ide": self.auto_reload_ide,
            "primary_ide": self.primary_ide,
            "use_pkill_restart": self.use_pkill_restart,
            "background_refresh": self.background_refresh,
            "refresh_interval_minutes": self.refresh_interval_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StoreSettings":
        data = data or {}
        return cls(
            auto_reload_ide=bool(data.get("auto_reload_ide", False)),
            primary_ide=data.get("primary_ide", DEFAULT_PRIMARY_IDE),
            use_pkill_restart=bool(data.get("use_pkill_restart", False)),
            background_refresh=bool(data.get("background_refresh", False)),
            refresh_interval_minutes=int(
                data.get("refresh_interval_minutes", DEFAULT_REFRESH_INTERVAL_MINUTES)
            ),
        )


@dataclass
class Account:
    """A stored Codex account.

    ``auth_json`` is the source of truth for tokens. ``refresh_token`` is a
    cached copy of the value inside it, kept for fast access and as a
    fallback when the blob loses its token field.
    """

    name: str
    auth_json: dict[str, Any]
    id: str = field(default_factory=generate_account_id)
    refresh_token: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    last_used: datetime | None = None
    notes: str | None = None
    cached_quota: QuotaSnapshot | None = None

    def mark_used(self) -> None:
        """Record that this account was switched to."""
        self.last_used = utc_now()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "auth_json": self.auth_json,
            "refresh_token": self.refresh_token,
            "created_at": _format_datetime(self.created_at),
            "last_used": _format_datetime(self.last_used),
            "notes": self.notes,
            "cached_quota": self.cached_quota.to_dict() if self.cached_quota else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Account":
        """Create from dictionary loaded from JSON."""
        quota_data = data.get("cached_quota")
        cached_quota = None
        if quota_data:
            try:
                cached_quota = QuotaSnapshot.from_dict(quota_data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "invalid_cached_quota_dropped", account_id=data.get("id"), error=str(e)
                )

        auth_json = data["auth_json"]
        if not isinstance(auth_json, dict):
            raise ValueError("auth_json must be an object")

        return cls(
            id=data["id"],
            name=data["name"],
            auth_json=auth_json,
            refresh_token=data.get("refresh_token"),
            created_at=_parse_datetime(data["created_at"]) or utc_now(),
            last_used=_parse_datetime(data.get("last_used")),
            notes=data.get("notes"),
            cached_quota=cached_quota,
        )
