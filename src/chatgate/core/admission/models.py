"""Domain models for inbound admission."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Verdict(str, Enum):
    """Outcome of classifying one inbound event."""

    ADMIT = "admit"
    DUPLICATE_DELIVERY = "duplicate_delivery"
    SELF_ECHO = "self_echo"
    STALE_BACKLOG = "stale_backlog"
    STARTUP_GRACE = "startup_grace"


class InboundMessageEvent(BaseModel):
    """One message as delivered by the chat transport."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Delivery id; may repeat across transport paths")
    conversation_key: str = Field(description="Transport-level conversation key")
    text: str = Field(default="", description="Message body, possibly empty")
    is_self_originated: bool = Field(
        default=False, description="Transport flagged the message as sent by us"
    )
    received_at: datetime = Field(
        default_factory=_utcnow, description="When the transport handed it over"
    )
    origin_timestamp: datetime | None = Field(
        default=None, description="When the sender wrote it, if the transport knows"
    )


class AdmissionDecision(BaseModel):
    """Suppressor verdict for one event."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    conversation_key: str = Field(
        description="Resolved conversation (transport key when unresolved)"
    )
    reason: str | None = Field(
        default=None, description="Short machine-readable rejection detail"
    )

    @property
    def admitted(self) -> bool:
        return self.verdict is Verdict.ADMIT


class WorkUnit(BaseModel):
    """A debounced burst handed to business logic as one piece of work."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    conversation_key: str
    text: str = Field(description="Non-empty texts of the burst, newline-joined")
    message_ids: tuple[str, ...] = Field(description="Every id in arrival order")
    event: InboundMessageEvent = Field(description="Last event of the burst")

    @property
    def count(self) -> int:
        return len(self.message_ids)
