"""
Conversation Models

Dialogue state, stored messages, the tagged union of structured replies
(whether they came from the direct command matcher or the model), and
the request/response envelopes of the engine.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from ledger_assistant.models.actions import ActionKind


class Phase(str, Enum):
    """
    Stored phases. Idle is the absence of a context record;
    Execute is an effect, never a stored phase.
    """
    COLLECTING = "collecting"
    PREVIEW = "preview"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ResponseType(str, Enum):
    MESSAGE = "message"
    PREVIEW = "preview"
    SUCCESS = "success"
    ERROR = "error"


class ConversationContext(BaseModel):
    """
    Per-conversation record of an action in progress.

    Exists only while an action awaits more input or confirmation.
    """

    conversation_id: str
    user_id: str
    phase: Phase
    pending_action: ActionKind
    collected_data: dict[str, Any] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)
    idempotency_key: Optional[UUID] = Field(
        default=None,
        description="Minted on entering preview; travels into the ledger commit"
    )
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def is_stale(self, ttl_minutes: int, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return (now - self.updated_at).total_seconds() > ttl_minutes * 60


class Message(BaseModel):
    """A stored chat message. Immutable once written."""

    id: UUID = Field(default_factory=uuid4)
    conversation_id: str
    user_id: str
    role: MessageRole
    content: str
    type: ResponseType = ResponseType.MESSAGE
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(frozen=True)


# =============================================================================
# PARSED REPLIES - the tagged union the phase router consumes
# =============================================================================

class ReplySource(str, Enum):
    DIRECT = "direct"
    MODEL = "model"


class _Reply(BaseModel):
    response: str = ""
    source: ReplySource = ReplySource.MODEL


class CollectingReply(_Reply):
    mode: Literal["collecting"] = "collecting"
    action: ActionKind
    collected: dict[str, Any] = Field(default_factory=dict)
    missing: list[str] = Field(default_factory=list)


class PreviewReply(_Reply):
    mode: Literal["preview"] = "preview"
    action: ActionKind
    preview_data: dict[str, Any] = Field(default_factory=dict)


class ExecuteReply(_Reply):
    mode: Literal["execute"] = "execute"
    action: ActionKind
    data: dict[str, Any] = Field(default_factory=dict)


class ConversationReply(_Reply):
    mode: Literal["conversation"] = "conversation"


ParsedReply = Annotated[
    Union[CollectingReply, PreviewReply, ExecuteReply, ConversationReply],
    Field(discriminator="mode"),
]


# =============================================================================
# ENGINE ENVELOPES
# =============================================================================

class EngineRequest(BaseModel):
    """Inbound request from the UI or an API caller."""

    message: str = Field(..., max_length=10000)
    conversation_id: str = Field(..., min_length=1)
    user_id: str = ""
    model: Optional[str] = None


class EngineResponse(BaseModel):
    """What the caller renders."""

    type: ResponseType
    response: str
    action: Optional[ActionKind] = None
    data: Optional[Any] = None

    @classmethod
    def message(cls, text: str) -> "EngineResponse":
        return cls(type=ResponseType.MESSAGE, response=text)

    @classmethod
    def error(cls, text: str) -> "EngineResponse":
        return cls(type=ResponseType.ERROR, response=text)
