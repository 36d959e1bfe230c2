"""Consolidated exception hierarchy for codex-switcher.

All exceptions use proper exception chaining with the `from` keyword.
Error types use StrEnum for type safety and autocompletion.
"""

from enum import StrEnum
from typing import Any

from starlette import status


class ErrorType(StrEnum):
    """Error type codes attached to every switcher error."""

    INVALID_REQUEST = "invalid_request_error"
    AUTHENTICATION = "authentication_error"
    PERMISSION = "permission_error"
    NOT_FOUND = "not_found_error"
    CONFLICT = "conflict_error"
    LOCKED = "locked_error"
    EXPIRED = "expired_error"
    IO = "io_error"
    NETWORK = "network_error"
    INTERNAL = "internal_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class SwitcherError(Exception):
    """Base exception for all codex-switcher errors.

    Carries a status code and structured details so callers (CLI, front ends)
    can render a typed outcome instead of a traceback.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}


# ============================================================================
# Lookup & Validation
# ============================================================================


class NotFoundError(SwitcherError):
    """Not found error (404)."""

    def __init__(
        self, message: str = "Resource not found", *, details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
        )


class AccountNotFoundError(NotFoundError):
    """Unknown account id."""

    def __init__(self, account_id: str) -> None:
        super().__init__(
            f"Account {account_id} not found", details={"account_id": account_id}
        )
        self.account_id = account_id


class AuthFileNotFoundError(NotFoundError):
    """The external credential file does not exist (never logged in)."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Codex auth file not found: {path}. Log in with the Codex CLI first.",
            details={"path": path},
        )
        self.path = path


class ValidationError(SwitcherError):
    """Validation error (400)."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.INVALID_REQUEST,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class MissingRefreshTokenError(ValidationError):
    """One or more accounts lack a refresh token and cannot be renewed."""

    def __init__(self, account_names: list[str]) -> None:
        names = ", ".join(account_names)
        super().__init__(
            "The following accounts have no refresh_token and cannot be renewed; "
            f"log in again before importing: {names}",
            details={"accounts": list(account_names)},
        )
        self.account_names = list(account_names)


class IdentityMismatchError(SwitcherError):
    """External credentials belong to a different identity than the record."""

    def __init__(
        self,
        message: str = "Credential identity does not match the stored account",
        *,
        account_id: str | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.CONFLICT,
            status_code=status.HTTP_409_CONFLICT,
            details={"account_id": account_id} if account_id else None,
        )


class BusyError(SwitcherError):
    """A refresh lock could not be acquired in time (423)."""

    def __init__(self, account_id: str) -> None:
        super().__init__(
            "account is being refreshed, retry",
            error_type=ErrorType.LOCKED,
            status_code=status.HTTP_423_LOCKED,
            details={"account_id": account_id},
        )


class StoreLockedError(SwitcherError):
    """Another process holds the accounts file lock (423)."""

    def __init__(self, path: str) -> None:
        super().__init__(
            "accounts file is locked by another codex-switcher process, retry",
            error_type=ErrorType.LOCKED,
            status_code=status.HTTP_423_LOCKED,
            details={"path": path},
        )


# ============================================================================
# File System Errors
# ============================================================================


class ExternalIOError(SwitcherError):
    """A credential or store file could not be read or written."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.IO,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"path": path} if path else None,
        )
        self.path = path


class AuthFileParseError(ExternalIOError):
    """The external credential file is not a JSON object."""

    pass


# ============================================================================
# Network Collaborator Errors
# ============================================================================


class NetworkError(SwitcherError):
    """Transport failure or unexpected response from a remote collaborator."""

    def __init__(
        self,
        message: str = "Network request failed",
        *,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.NETWORK,
            status_code=status_code,
            details=details,
        )


class AuthenticationError(SwitcherError):
    """Authentication error (401)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(
            message,
            error_type=ErrorType.AUTHENTICATION,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class TokenInvalidError(AuthenticationError):
    """Access token rejected and no usable refresh path remained."""

    def __init__(
        self,
        message: str = "Authorization is no longer valid; delete the account and log in again",
    ) -> None:
        super().__init__(message)


class TokenExchangeError(NetworkError):
    """OAuth token refresh failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code or status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"status_code": status_code} if status_code else None,
        )
        self.upstream_status = status_code
        self.response_text = response_text


# ============================================================================
# Quarantine Ticket Errors
# ============================================================================


class TicketError(SwitcherError):
    """Base for one-time confirmation ticket failures (403)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            error_type=ErrorType.PERMISSION,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class TicketMissingError(TicketError):
    """No ticket was issued."""

    def __init__(self) -> None:
        super().__init__("No confirmation ticket issued; request a new one")


class TicketExpiredError(TicketError):
    """Ticket TTL elapsed."""

    def __init__(self) -> None:
        super().__init__("Confirmation ticket expired; request a new one")


class TicketInvalidError(TicketError):
    """Presented ticket does not match the issued one."""

    def __init__(self) -> None:
        super().__init__("Confirmation ticket is invalid")


__all__ = [
    "AccountNotFoundError",
    "AuthFileNotFoundError",
    "AuthFileParseError",
    "AuthenticationError",
    "BusyError",
    "ErrorType",
    "ExternalIOError",
    "IdentityMismatchError",
    "MissingRefreshTokenError",
    "NetworkError",
    "NotFoundError",
    "StoreLockedError",
    "SwitcherError",
    "TicketError",
    "TicketExpiredError",
    "TicketInvalidError",
    "TicketMissingError",
    "TokenExchangeError",
    "TokenInvalidError",
    "ValidationError",
]
