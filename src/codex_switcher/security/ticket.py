"""One-time confirmation ticket for the quarantine fix.

The front end must request a ticket and present it back unchanged before
the privileged quarantine removal runs. A ticket is single use and expires
after a short TTL.
"""

import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from codex_switcher.exceptions import (
    TicketExpiredError,
    TicketInvalidError,
    TicketMissingError,
)


logger = get_logger(__name__)

DEFAULT_TICKET_TTL_SECONDS = 120


@dataclass
class _Ticket:
    value: str
    expires_at: datetime


class QuarantineTicketIssuer:
    """Holds at most one outstanding ticket."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TICKET_TTL_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._ticket: _Ticket | None = None

    def issue(self) -> str:
        """Create a new ticket, replacing any outstanding one."""
        value = str(uuid.uuid4())
        self._ticket = _Ticket(value=value, expires_at=self._clock() + self.ttl)
        logger.info("quarantine_ticket_issued", ttl_seconds=int(self.ttl.total_seconds()))
        return value

    def consume(self, value: str) -> None:
        """Validate and burn the outstanding ticket.

        The slot is cleared whatever the outcome.

        Raises:
            TicketMissingError: If no ticket was issued
            TicketExpiredError: If the ticket's TTL elapsed
            TicketInvalidError: If the value does not match
        """
        ticket, self._ticket = self._ticket, None

        if ticket is None:
            raise TicketMissingError()
        if ticket.expires_at < self._clock():
            logger.warning("quarantine_ticket_expired")
            raise TicketExpiredError()
        if not secrets.compare_digest(ticket.value.encode(), value.strip().encode()):
            logger.warning("quarantine_ticket_mismatch")
            raise TicketInvalidError()

        logger.info("quarantine_ticket_consumed")
