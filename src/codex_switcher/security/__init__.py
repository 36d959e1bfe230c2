"""Local security guards."""

from .ticket import QuarantineTicketIssuer


__all__ = ["QuarantineTicketIssuer"]
