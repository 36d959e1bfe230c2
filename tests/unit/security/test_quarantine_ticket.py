"""Tests for the quarantine fix confirmation ticket."""

from datetime import UTC, datetime, timedelta

import pytest

from codex_switcher.exceptions import (
    TicketExpiredError,
    TicketInvalidError,
    TicketMissingError,
)
from codex_switcher.security import QuarantineTicketIssuer


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.mark.unit
class TestQuarantineTicketIssuer:
    """Tests for issue/consume."""

    def test_consume_once(self) -> None:
        issuer = QuarantineTicketIssuer()
        ticket = issuer.issue()

        issuer.consume(ticket)

        with pytest.raises(TicketMissingError):
            issuer.consume(ticket)

    def test_consume_without_issue(self) -> None:
        with pytest.raises(TicketMissingError) as exc_info:
            QuarantineTicketIssuer().consume("anything")
        assert exc_info.value.status_code == 403

    def test_expired_ticket(self) -> None:
        clock = FakeClock()
        issuer = QuarantineTicketIssuer(ttl_seconds=120, clock=clock)
        ticket = issuer.issue()

        clock.now += timedelta(seconds=121)

        with pytest.raises(TicketExpiredError):
            issuer.consume(ticket)

    def test_ticket_within_ttl(self) -> None:
        clock = FakeClock()
        issuer = QuarantineTicketIssuer(ttl_seconds=120, clock=clock)
        ticket = issuer.issue()

        clock.now += timedelta(seconds=119)
        issuer.consume(ticket)

    def test_mismatch_burns_ticket(self) -> None:
        issuer = QuarantineTicketIssuer()
        ticket = issuer.issue()

        with pytest.raises(TicketInvalidError):
            issuer.consume("not-the-ticket")
        with pytest.raises(TicketMissingError):
            issuer.consume(ticket)

    def test_non_ascii_value_is_a_mismatch(self) -> None:
        issuer = QuarantineTicketIssuer()
        issuer.issue()

        with pytest.raises(TicketInvalidError):
            issuer.consume("t\u00e9st-\u2603")

    def test_reissue_replaces_previous(self) -> None:
        issuer = QuarantineTicketIssuer()
        old = issuer.issue()
        new = issuer.issue()

        assert old != new
        with pytest.raises(TicketInvalidError):
            issuer.consume(old)

    def test_surrounding_whitespace_ignored(self) -> None:
        issuer = QuarantineTicketIssuer()
        ticket = issuer.issue()
        issuer.consume(f"  {ticket}\n")
