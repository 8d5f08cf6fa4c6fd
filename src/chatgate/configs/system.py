from datetime import timedelta

from pydantic import BaseModel, Field


class ProviderLimitsConfig(BaseModel):
    """Per-minute quotas enforced by the rate window.

    A value of zero (or less) disables that dimension.
    """

    requests_per_minute: int = Field(
        default=50, description="Maximum provider requests per trailing minute"
    )
    input_tokens_per_minute: int = Field(
        default=50_000, description="Maximum input tokens per trailing minute"
    )
    output_tokens_per_minute: int = Field(
        default=10_000, description="Maximum output tokens per trailing minute"
    )


class SchedulerConfig(BaseModel):
    """Request scheduler settings."""

    max_concurrency: int = Field(
        default=2,
        ge=1,
        description="Maximum number of provider calls executing at once",
    )
    max_retries: int = Field(
        default=4,
        ge=0,
        description="Retries allowed for a retryable failure before giving up",
    )
    base_retry_delay: timedelta = Field(
        default=timedelta(seconds=1),
        description="First backoff delay; doubles on every further attempt",
    )
    max_retry_delay: timedelta = Field(
        default=timedelta(seconds=60),
        description="Upper bound on a computed (non-hinted) backoff delay",
    )
    default_priority: int = Field(
        default=5, description="Priority used when a caller does not set one"
    )


class DebounceConfig(BaseModel):
    """Inbound burst coalescing."""

    quiet_period: timedelta = Field(
        default=timedelta(milliseconds=1500),
        description="Silence required before a conversation's buffer is flushed",
    )


class SuppressionConfig(BaseModel):
    """Duplicate, echo and backlog suppression windows."""

    message_id_ttl: timedelta = Field(
        default=timedelta(seconds=60),
        description="How long a delivery id is remembered",
    )
    content_ttl: timedelta = Field(
        default=timedelta(seconds=10),
        description="How long normalized text is remembered per conversation",
    )
    global_outbound_ttl: timedelta = Field(
        default=timedelta(minutes=5),
        description="Lifetime of an outbound fingerprint in the global ledger",
    )
    conversation_outbound_ttl: timedelta = Field(
        default=timedelta(minutes=5),
        description="Lifetime of an outbound fingerprint per conversation",
    )
    startup_grace: timedelta = Field(
        default=timedelta(seconds=10),
        description="All inbound events are dropped this long after start",
    )
    stale_before_resolve: timedelta = Field(
        default=timedelta(minutes=2),
        description="Staleness ceiling for events whose conversation is unresolved",
    )
    stale_after_resolve: timedelta = Field(
        default=timedelta(minutes=10),
        description="Staleness ceiling for events in a resolved conversation",
    )


class ResponseLimitConfig(BaseModel):
    """Per-conversation response circuit breaker."""

    window: timedelta = Field(
        default=timedelta(seconds=30), description="Fixed window length"
    )
    max_per_window: int = Field(
        default=5, ge=1, description="Responses allowed within one window"
    )


class TypingConfig(BaseModel):
    """Typing indicator behaviour."""

    enabled: bool = Field(
        default=False, description="Toggle typing indicators on the transport"
    )
    max_duration: timedelta = Field(
        default=timedelta(seconds=30),
        description="Auto-stop an indicator left running this long",
    )


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=True, description="Emit JSON lines instead of plain text"
    )


class TracingConfig(BaseModel):
    """OpenTelemetry export settings."""

    enabled: bool = Field(default=False, description="Enable OTLP export")
    endpoint: str = Field(default="", description="OTLP HTTP traces endpoint")
    username: str = Field(default="", description="Basic-auth user for the collector")
    password: str = Field(default="", description="Basic-auth password")
    service_name: str = Field(default="chatgate", description="service.name resource")
    sample_rate: float = Field(
        default=1.0, ge=0.0, le=1.0, description="Root span sampling ratio"
    )
