"""Transport error taxonomy."""


class TransportError(Exception):
    """Connect, subscribe or publish failed at the broker level."""


class NotConnectedError(TransportError):
    """Raised before any transport call when the session is not connected."""


class PublishError(TransportError):
    """The broker client refused or failed to queue an outbound message."""
