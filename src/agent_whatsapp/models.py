"""Data models for the agent WhatsApp session client."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Session lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    ERROR = "error"


class SessionState(BaseModel):
    """Process-wide session state record."""

    status: SessionStatus = SessionStatus.DISCONNECTED
    address: Optional[str] = None
    messages_sent: int = 0
    last_error: Optional[str] = None


class OutboundMessage(BaseModel):
    """Retry queue entry."""

    destination: str = Field(alias="to")
    body: str
    retry_count: int = 0

    model_config = ConfigDict(populate_by_name=True)


class DeliveryResult(BaseModel):
    """Outcome of a successful send."""

    id: str
    destination: str = Field(alias="to")
    body: str
    timestamp: datetime = Field(default_factory=_utcnow)
    status: Literal["sent", "delivered", "read", "failed"] = "sent"
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class BulkRecipient(BaseModel):
    """One recipient of a bulk send."""

    destination: str = Field(alias="to")
    body: str

    model_config = ConfigDict(populate_by_name=True)


class BulkFailure(BaseModel):
    """Per-recipient failure reported by a bulk send."""

    destination: str = Field(alias="to")
    error: str

    model_config = ConfigDict(populate_by_name=True)


class DeliveryFailure(BaseModel):
    """A queued message that was dropped without being delivered."""

    message: OutboundMessage
    error: str
    failed_at: datetime = Field(default_factory=_utcnow)


class LaunchOptions(BaseModel):
    """Browser automation options handed to the transport."""

    headless: bool = True
    args: List[str] = []
    executable_path: Optional[str] = Field(default=None, alias="executablePath")

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict:
        """Serialize for the bridge, omitting an unset executable path."""
        return self.model_dump(by_alias=True, exclude_none=True)
