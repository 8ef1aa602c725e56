"""
Pydantic models for the logrelay pipeline.

This module defines the canonical log event shared by every component,
the helpers that construct and validate it, and the response envelopes
used by the HTTP API.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

DEFAULT_SOURCE = "default"

_EVENT_FIELDS = ("level", "message", "source", "timestamp", "metadata")

_LEVEL_ALIASES = {
    "warning": "warn",
    "err": "error",
    "critical": "error",
    "fatal": "error",
}


class LogLevel(str, Enum):
    """Severity of a log event, ordered debug < info < warn < error."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def parse(cls, value: Union[str, "LogLevel"]) -> "LogLevel":
        """
        Normalise a level name into a LogLevel.

        Args:
            value: Level name in any case, or a LogLevel

        Returns:
            LogLevel: The matching level

        Raises:
            ValueError: If the name is not a known level
        """
        if isinstance(value, LogLevel):
            return value
        name = str(value).strip().lower()
        return cls(_LEVEL_ALIASES.get(name, name))

    def __lt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {LogLevel.DEBUG: 0, LogLevel.INFO: 1, LogLevel.WARN: 2, LogLevel.ERROR: 3}


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class LogEvent(BaseModel):
    """Model representing one immutable, fully-populated log event."""

    model_config = ConfigDict(frozen=True)

    level: LogLevel = Field(..., description="Severity (debug, info, warn, error)")
    message: str = Field(..., min_length=1, description="The log message")
    source: str = Field(..., min_length=1, description="Producing process, service or component")
    timestamp: datetime = Field(..., description="Instant the event was created")
    metadata: Dict[str, JsonValue] = Field(default_factory=dict, description="Open key/value context")

    @field_validator("level", mode="before")
    @classmethod
    def _normalise_level(cls, value):
        if isinstance(value, str):
            try:
                return LogLevel.parse(value)
            except ValueError:
                return value
        return value

    @field_validator("message")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_record(self) -> Dict[str, Any]:
        """Serialise the event into a JSON-compatible dict."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LogEvent":
        """Rebuild an event from a dict produced by ``to_record``."""
        return cls.model_validate(record)


class LogSubmission(BaseModel):
    """
    Model for incoming log submissions from producers.

    Every field is optional so that missing values surface as a logrelay
    ValidationError (HTTP 400) instead of a framework-level 422. Unknown
    top-level fields are kept and folded into the event metadata.
    """

    model_config = ConfigDict(extra="allow")

    level: Optional[Any] = Field(default=None, description="Log level")
    message: Optional[Any] = Field(default=None, description="The log message")
    source: Optional[Any] = Field(default=None, description="Producing service")
    timestamp: Optional[Any] = Field(default=None, description="ISO-8601 creation time")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Optional metadata")


class ApiResponse(BaseModel):
    """Envelope returned by every JSON endpoint."""

    success: bool = Field(..., description="Whether the request succeeded")
    data: Optional[Any] = Field(default=None, description="Payload on success")
    error: Optional[str] = Field(default=None, description="Error description on failure")


class HealthResponse(BaseModel):
    """Model for health check responses."""

    status: str = Field(..., description="Health status of the service")
    service: str = Field(..., description="Name of the service")
    timestamp: str = Field(..., description="ISO format timestamp of the health check")
    connected_clients: int = Field(..., description="Number of connected WebSocket clients")
    sources: List[str] = Field(..., description="Sources with stored logs")


def validate_event(payload: Union[LogEvent, LogSubmission, Mapping[str, Any]],
                   default_source: str = DEFAULT_SOURCE) -> LogEvent:
    """
    Validate a raw payload and turn it into a LogEvent.

    A missing source falls back to ``default_source`` and a missing timestamp
    is stamped with the current time. Extra top-level keys are merged under
    the explicit metadata.

    Args:
        payload: A LogEvent, a LogSubmission or a plain mapping
        default_source: Source used when the payload carries none

    Returns:
        LogEvent: The validated event

    Raises:
        ValidationError: If level is missing or unknown, or message is empty
    """
    if isinstance(payload, LogEvent):
        return payload
    if isinstance(payload, LogSubmission):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        raise ValidationError("log event must be a JSON object")

    level = payload.get("level")
    message = payload.get("message")
    if level is None or (isinstance(level, str) and not level.strip()):
        raise ValidationError("level is required")
    try:
        level = LogLevel.parse(level)
    except ValueError:
        allowed = ", ".join(lvl.value for lvl in LogLevel)
        raise ValidationError(f"invalid level {level!r}; expected one of: {allowed}")
    if message is None or not isinstance(message, str) or not message.strip():
        raise ValidationError("message is required and must be a non-empty string")

    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise ValidationError("metadata must be an object")
    extras = {k: v for k, v in payload.items() if k not in _EVENT_FIELDS and v is not None}
    if extras:
        metadata = {**extras, **metadata}

    source = payload.get("source")
    if source is None or (isinstance(source, str) and not source.strip()):
        source = default_source

    try:
        return LogEvent(
            level=level,
            message=message,
            source=str(source),
            timestamp=payload.get("timestamp") or utcnow(),
            metadata=dict(metadata),
        )
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(problems) from e


def create_event(level: Union[str, LogLevel], message: str, source: Optional[str] = None,
                 metadata: Optional[Mapping[str, Any]] = None,
                 timestamp: Optional[datetime] = None,
                 default_source: str = DEFAULT_SOURCE) -> LogEvent:
    """
    Construct a new LogEvent, stamping the current time when none is given.

    Raises:
        ValidationError: If the resulting event is invalid
    """
    return validate_event(
        {
            "level": level,
            "message": message,
            "source": source,
            "timestamp": timestamp,
            "metadata": dict(metadata) if metadata else {},
        },
        default_source=default_source,
    )
