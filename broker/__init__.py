from .connection import ConnectionManager, ConnectionStatus, encode_message
from .errors import NotConnectedError, PublishError, TransportError
from .events import MessageHandler

__all__ = [
    "ConnectionManager",
    "ConnectionStatus",
    "encode_message",
    "MessageHandler",
    "NotConnectedError",
    "PublishError",
    "TransportError",
]
