from .base import CollaboratorError, InvalidResponseError, Mailbox, TextGenerator

__all__ = ["CollaboratorError", "InvalidResponseError", "Mailbox", "TextGenerator"]
