"""Exceptions raised by relay operations.

Protocol operations catch ``RelayError`` at their boundary and report it to
the originating connection; anything else is a bug and propagates to the
socket handler.
"""


class RelayError(Exception):
    """Base class for expected relay operation failures."""


class InvalidPayloadError(RelayError):
    """An inbound event payload is missing fields or has the wrong shape."""


class DeliveryError(RelayError):
    """The transport could not accept an outbound event or subscription."""

    def __init__(self, connection_id: str, reason: str = "connection is not open") -> None:
        super().__init__(f"Cannot deliver to {connection_id}: {reason}")
        self.connection_id = connection_id
