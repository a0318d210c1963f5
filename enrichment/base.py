"""Collaborator contracts consumed by the pipeline orchestrator."""

from typing import Protocol

from processor.schemas import MailMessage, Priority


class CollaboratorError(Exception):
    """A text-generation or mailbox call failed. Always recovered with a fallback."""


class InvalidResponseError(CollaboratorError):
    """The provider answered, but not with something usable."""


class TextGenerator(Protocol):
    async def generate_quote(self, values: dict[str, float]) -> str: ...

    async def summarize_messages(self, messages: list[MailMessage]) -> str: ...

    async def classify_priority(self, values: dict[str, float], messages: list[MailMessage]) -> Priority: ...


class Mailbox(Protocol):
    def is_enabled(self) -> bool: ...

    async def fetch_unread(self, max_count: int) -> list[MailMessage]: ...


def parse_priority(text: str) -> Priority:
    word = text.strip().strip(".\"'").lower()
    try:
        return Priority(word)
    except ValueError:
        raise InvalidResponseError(f"unexpected priority answer: {text!r}") from None
