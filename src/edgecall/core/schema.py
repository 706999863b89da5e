"""
Schema definitions for engine <-> orchestrator <-> tool messages.

These data models serve as the contract between the inference engine, the conversation loop, and
individual device tools.  We keep them separate from runtime logic so they can be imported anywhere
without side-effects.
"""

import json
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

DEFAULT_MEDIA_TYPE = "application/octet-stream"


class Role(str, Enum):
    """Author of a message in the conversation history."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Why the inference engine stopped generating."""

    STOP = "stop"
    TOOL_CALL = "tool_call"
    LENGTH_LIMIT = "length"
    ENGINE_ERROR = "error"


class ToolCall(BaseModel):
    """A call that the model wants the orchestrator to execute.

    ``arguments`` is kept exactly as the model produced it: either a mapping or a string holding
    encoded JSON.  The dispatcher normalizes it.
    """

    name: str = Field("", description="Registered tool name")
    arguments: Any = Field(default_factory=dict, description="Mapping or JSON-encoded string")

    def arguments_text(self) -> str:
        """Arguments as presented by the model, rendered as text for display."""
        if isinstance(self.arguments, str):
            return self.arguments
        try:
            return json.dumps(self.arguments)
        except (TypeError, ValueError):
            return str(self.arguments)


class ToolResult(BaseModel):
    """Outcome of a single tool execution: success payload or failure message."""

    model_config = ConfigDict(ser_json_bytes="base64")

    success: bool
    data: Any = None
    media: Optional[bytes] = None
    media_type: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _media_travels_with_type(self) -> "ToolResult":
        if self.media_type is not None and self.media is None:
            raise ValueError("media_type given without a media payload")
        if self.media is not None and self.media_type is None:
            self.media_type = DEFAULT_MEDIA_TYPE
        return self

    @classmethod
    def ok(
        cls, data: Any = None, media: Optional[bytes] = None, media_type: Optional[str] = None
    ) -> "ToolResult":
        """Build a successful result."""
        return cls(success=True, data=data, media=media, media_type=media_type)

    @classmethod
    def fail(cls, message: str) -> "ToolResult":
        """Build a failed result carrying a single diagnostic line."""
        return cls(success=False, error=message)

    def to_wire(self) -> Dict[str, Any]:
        """Render the shape surfaced back to the model as tool-role content."""
        if not self.success:
            return {"success": False, "error": self.error or "unknown error"}
        wire: Dict[str, Any] = {"success": True, "data": self.data}
        if self.media is not None:
            wire["hasMedia"] = True
            wire["mediaType"] = self.media_type or DEFAULT_MEDIA_TYPE
        return wire

    def to_content(self) -> str:
        """JSON text of :meth:`to_wire`."""
        return json.dumps(self.to_wire(), default=str)


class Message(BaseModel):
    """A single message in the conversation history."""

    model_config = ConfigDict(ser_json_bytes="base64")

    role: Role
    content: str = ""
    tool_call: Optional[ToolCall] = None  # assistant messages that triggered a call
    tool_name: Optional[str] = None  # tool-role messages only
    correlation_id: Optional[str] = None
    media: Optional[bytes] = None
    media_type: Optional[str] = None


class InferenceOutcome(BaseModel):
    """Result from a single inference call."""

    text: str = ""
    tool_call: Optional[ToolCall] = None
    finish_reason: FinishReason = FinishReason.STOP


class ToolCallRecord(BaseModel):
    """Record of a single tool call made during a chat turn (for display / logging)."""

    name: str
    arguments: str
    result: ToolResult


class ChatResponse(BaseModel):
    """Final outcome of one user turn."""

    text: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)

    @property
    def used_tools(self) -> bool:
        """Whether any tool ran during this turn."""
        return bool(self.tool_calls)
