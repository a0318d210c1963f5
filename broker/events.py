"""Typed broker events and the message handler interface."""

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Union, runtime_checkable


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class ConnectFailed:
    reason: str


@dataclass(frozen=True)
class Offline:
    reason: str


@dataclass(frozen=True)
class Message:
    topic: str
    payload: bytes

    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


BrokerEvent = Union[Connected, ConnectFailed, Offline, Message]


@runtime_checkable
class MessageHandler(Protocol):
    async def handle(self, topic: str, payload: str) -> None: ...


class CallableHandler:
    """Adapts a plain or async function `fn(topic, payload)` to MessageHandler."""

    def __init__(self, fn: Callable[[str, str], Union[None, Awaitable[None]]]):
        self._fn = fn

    async def handle(self, topic: str, payload: str) -> None:
        result = self._fn(topic, payload)
        if inspect.isawaitable(result):
            await result


def as_handler(handler: Union[MessageHandler, Callable]) -> MessageHandler:
    if isinstance(handler, MessageHandler):
        return handler
    if callable(handler):
        return CallableHandler(handler)
    raise TypeError(f"not a message handler: {handler!r}")
