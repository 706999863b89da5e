"""
Pydantic models for edgecall API requests and responses.
This module defines the request and response schemas used by the edgecall API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
    field_validator,
)

from edgecall.core.schema import ToolCallRecord


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str
    history_size: int = 0
    is_processing: bool = False


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., description="User message for the assistant")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class ToolCallInfo(BaseModel):
    """One tool call made while answering, for display."""

    name: str
    arguments: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    media_type: Optional[str] = None
    has_media: bool = False

    @classmethod
    def from_record(cls, record: ToolCallRecord) -> "ToolCallInfo":
        """Flatten a :class:`ToolCallRecord`."""
        result = record.result
        return cls(
            name=record.name,
            arguments=record.arguments,
            success=result.success,
            data=result.data,
            error=result.error,
            media_type=result.media_type,
            has_media=result.media is not None,
        )


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    used_tools: bool = False
    tool_calls: List[ToolCallInfo] = Field(default_factory=list)


class ToolDefinitionsResponse(BaseModel):
    """Function-calling definitions of the tools available right now."""

    tools: List[Dict[str, Any]]


class AbortResponse(BaseModel):
    """Whether a running turn was cancelled."""

    session_id: str
    aborted: bool
