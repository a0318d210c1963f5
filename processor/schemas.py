"""Canonical schemas: single source of truth for data shapes across the pipeline."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

QUOTE_FALLBACK = "The present moment is a gift, regardless of the weather outside or in."
QUOTE_ERROR = "Unable to generate a quote right now."
EMAIL_DISABLED = "Email summaries disabled."
EMAIL_ERROR = "Email unavailable."
EMAIL_NONE = "No new emails to summarize."


def email_unsummarized(count: int) -> str:
    return f"{count} new email(s). Unable to summarize."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SensorKind(str, Enum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESSURE = "pressure"


class Priority(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    URGENT = "urgent"


class FallbackReason(str, Enum):
    COLLABORATOR_ERROR = "collaborator_error"
    INVALID_RESPONSE = "invalid_response"
    DISABLED = "disabled"
    FETCH_ERROR = "fetch_error"
    NO_MESSAGES = "no_messages"
    PIPELINE_ERROR = "pipeline_error"


class Reading(BaseModel):
    """One timestamped sensor observation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    kind: str
    value: float
    observed_at: datetime = Field(default_factory=utcnow)
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v: Any) -> str:
        v = str(v.value if isinstance(v, SensorKind) else v).strip().lower()
        if not v:
            raise ValueError("sensor kind must not be empty")
        return v

    @field_validator("observed_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class MailMessage:
    id: str
    subject: str
    snippet: str
    sender: str = "Unknown Sender"
    date: str | None = None


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """A step's value plus the reason it is a fallback, if it is one."""

    value: T
    fallback: FallbackReason | None = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback is not None


@dataclass(frozen=True)
class PipelineResult:
    quote: Outcome[str]
    email_summary: Outcome[str]
    priority: Outcome[Priority]
