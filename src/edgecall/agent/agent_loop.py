"""Main orchestration loop for edgecall: the bounded model -> tool -> model conversation."""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import (
    ClassVar,
    List,
    Optional,
    Tuple,
)

from edgecall.agent.engine_interface import (
    EngineNotReadyError,
    InferenceEngine,
    InferenceError,
)
from edgecall.agent.tool_executor import ToolDispatcher
from edgecall.config import settings
from edgecall.core.schema import (
    ChatResponse,
    FinishReason,
    InferenceOutcome,
    Message,
    Role,
    ToolCall,
    ToolCallRecord,
)
from edgecall.tools import ToolCatalog
from edgecall.tools.tool_call_parser import parse_response

logger = logging.getLogger(__name__)


class ChatState(str, Enum):
    """Where a :class:`ToolChat` is within a user turn."""

    IDLE = "idle"
    AWAITING_INFERENCE = "awaiting_inference"
    DISPATCHING = "dispatching"
    DONE = "done"


class ConversationBusyError(RuntimeError):
    """Raised when a conversation is asked to do something while a turn is in flight."""


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class ToolChat:
    """
    Multi-round conversation with an inference engine, running the tool-calling loop.

    Flow for one user turn:

    1. Append the user message to history.
    2. Rebuild the system prompt from the tools available *now* and call the engine.
    3. If the outcome carries a call (natively or embedded in its text), dispatch it, append the
       assistant call and the tool result to history, and go back to 2.
    4. Otherwise append the final assistant message and return.

    At most ``max_rounds`` tools run per turn.  When the model asks for one more, that call is
    dropped and the turn ends with a "maximum rounds" reply.

    The history has a single writer (this object); nothing is removed except by
    :meth:`clear_history`.
    """

    SYSTEM_PROMPT: ClassVar[str] = (
        "You are an AI assistant running locally on a device.\n"
        "You can interact with the device hardware through tools."
    )
    RULES: ClassVar[str] = (
        "Rules:\n"
        "- For sensitive operations (sending SMS, etc.), confirm with the user first.\n"
        "- Describe media content (photos, videos) after receiving tool results.\n"
        "- Be concise and helpful."
    )
    NO_RESPONSE: ClassVar[str] = "(no response)"

    def __init__(
        self,
        engine: InferenceEngine,
        catalog: ToolCatalog,
        dispatcher: Optional[ToolDispatcher] = None,
        max_rounds: Optional[int] = None,
        parse_text_calls: bool = True,
        tag: Optional[str] = None,
    ) -> None:
        self.engine = engine
        self.catalog = catalog
        self.dispatcher = dispatcher or ToolDispatcher(catalog)
        self.max_rounds = settings.MAX_TOOL_ROUNDS if max_rounds is None else max_rounds
        if self.max_rounds < 0:
            raise ValueError("max_rounds must be >= 0")
        self.parse_text_calls = parse_text_calls
        self.tag = tag or settings.TOOL_CALL_TAG
        self._history: List[Message] = []
        self._state = ChatState.IDLE

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> ChatState:
        """Current position in the turn state machine."""
        return self._state

    @property
    def in_flight(self) -> bool:
        """Whether a turn is between its first inference call and its final reply."""
        return self._state in (ChatState.AWAITING_INFERENCE, ChatState.DISPATCHING)

    @property
    def history(self) -> Tuple[Message, ...]:
        """Read-only view of the conversation so far."""
        return tuple(self._history)

    @property
    def history_size(self) -> int:
        """Number of messages in history."""
        return len(self._history)

    def clear_history(self) -> None:
        """Forget the conversation.  Cancel any in-flight turn first."""
        if self.in_flight:
            raise ConversationBusyError("cannot clear history while a turn is in flight")
        self._history.clear()
        self._state = ChatState.IDLE

    def build_system_prompt(self) -> str:
        """Static instructions plus the listing of currently available tools."""
        parts = [self.SYSTEM_PROMPT]
        tool_block = self.catalog.to_prompt_block(self.engine.call_hint)
        if tool_block:
            parts.append(tool_block)
        parts.append(self.RULES)
        return "\n\n".join(parts)

    def max_rounds_message(self) -> str:
        """Reply used when the model still wants a tool after the round budget is spent."""
        return f"Reached maximum tool call rounds ({self.max_rounds})."

    async def chat(self, user_message: str) -> ChatResponse:
        """
        Run one user turn to completion.

        Parameters
        ----------
        user_message:
            The user's input text.

        Returns
        -------
        ChatResponse
            Final text plus a record of every tool call made during the turn.

        Raises
        ------
        InferenceError
            If the engine is not ready or fails to generate.  No further rounds are attempted.
        ConversationBusyError
            If another turn is still in flight.
        """
        if self.in_flight:
            raise ConversationBusyError("a turn is already in flight")

        self._history.append(Message(role=Role.USER, content=user_message))
        records: List[ToolCallRecord] = []
        rounds = 0
        try:
            while True:
                self._state = ChatState.AWAITING_INFERENCE
                text, call = self._interpret(await self._infer(rounds))

                if call is None:
                    return self._finish(text, records)
                if rounds >= self.max_rounds:
                    logger.warning(
                        "Dropping call to '%s': maximum tool rounds (%d) reached",
                        call.name,
                        self.max_rounds,
                    )
                    return self._finish(self.max_rounds_message(), records)

                self._state = ChatState.DISPATCHING
                records.append(await self._run_tool(text, call))
                rounds += 1
        finally:
            if self._state is not ChatState.DONE:
                # Error or cancellation: history only ever holds matched call/result pairs.
                self._state = ChatState.IDLE

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _build_messages(self) -> List[Message]:
        return [Message(role=Role.SYSTEM, content=self.build_system_prompt()), *self._history]

    async def _infer(self, rounds: int) -> InferenceOutcome:
        if not self.engine.is_ready:
            raise EngineNotReadyError("inference engine is not ready")

        messages = self._build_messages()
        tool_definitions = self.catalog.to_tool_definitions() or None
        logger.debug(
            "Round %d: %d messages, %d tools",
            rounds,
            len(messages),
            len(tool_definitions or []),
        )
        try:
            outcome = await self.engine.complete(messages, tool_definitions)
        except InferenceError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Inference engine failed")
            raise InferenceError(f"inference failed: {exc}") from exc

        if outcome.finish_reason is FinishReason.ENGINE_ERROR:
            raise InferenceError(outcome.text or "inference engine reported an error")
        return outcome

    def _interpret(self, outcome: InferenceOutcome) -> Tuple[str, Optional[ToolCall]]:
        if outcome.tool_call is not None or not self.parse_text_calls:
            return outcome.text, outcome.tool_call
        parsed = parse_response(outcome.text, tag=self.tag)
        return parsed.text, parsed.tool_call

    async def _run_tool(self, text: str, call: ToolCall) -> ToolCallRecord:
        tool_name = call.name.strip() or "unknown"
        correlation_id = uuid.uuid4().hex[:8]
        logger.info("Model requested tool '%s' (call %s)", tool_name, correlation_id)

        result = await self.dispatcher.dispatch(call)
        if not result.success:
            logger.warning("Tool '%s' failed: %s", tool_name, result.error)

        # Appended together so a cancelled dispatch never leaves an unmatched call behind.
        self._history.append(
            Message(
                role=Role.ASSISTANT,
                content=text,
                tool_call=call,
                correlation_id=correlation_id,
            )
        )
        self._history.append(
            Message(
                role=Role.TOOL,
                content=result.to_content(),
                tool_name=tool_name,
                correlation_id=correlation_id,
                media=result.media,
                media_type=result.media_type,
            )
        )
        return ToolCallRecord(name=tool_name, arguments=call.arguments_text(), result=result)

    def _finish(self, text: str, records: List[ToolCallRecord]) -> ChatResponse:
        final_text = text
        if not final_text.strip():
            final_text = f"Done. Used {len(records)} tool(s)." if records else self.NO_RESPONSE
        self._history.append(Message(role=Role.ASSISTANT, content=final_text))
        self._state = ChatState.DONE
        logger.debug("Turn finished after %d tool call(s)", len(records))
        return ChatResponse(text=final_text, tool_calls=records)
