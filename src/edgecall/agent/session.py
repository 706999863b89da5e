"""Chat sessions: one :class:`ToolChat` plus the task running its current turn."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

from edgecall.agent.agent_loop import (
    ConversationBusyError,
    ToolChat,
)
from edgecall.agent.engine_interface import InferenceError
from edgecall.core.schema import ChatResponse

logger = logging.getLogger(__name__)


class TurnAbortedError(RuntimeError):
    """The turn was cancelled through :meth:`ChatSession.abort`."""


class ChatSession:
    """
    Runs user turns of one conversation and lets callers abort them.

    Only one turn runs at a time.  :meth:`abort` is safe to call when nothing is in flight.
    """

    def __init__(self, chat: ToolChat, session_id: Optional[str] = None) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self._chat = chat
        self._task: Optional[asyncio.Task[ChatResponse]] = None
        self.last_error: Optional[str] = None

    @property
    def chat(self) -> ToolChat:
        """The conversation driven by this session."""
        return self._chat

    @property
    def is_processing(self) -> bool:
        """Whether a turn is currently running."""
        return self._task is not None and not self._task.done()

    async def send_message(self, message: str) -> Optional[ChatResponse]:
        """
        Run one turn for *message*.

        Returns ``None`` for blank input.

        Raises
        ------
        ConversationBusyError
            If a turn is already running.
        TurnAbortedError
            If :meth:`abort` cancelled this turn.
        InferenceError
            If the engine failed; the text is also kept in :attr:`last_error`.
        """
        trimmed = message.strip()
        if not trimmed:
            return None
        if self.is_processing:
            raise ConversationBusyError("Already processing a message")

        self.last_error = None
        task = asyncio.create_task(self._chat.chat(trimmed))
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            # our caller went away: take the turn down with it
            task.cancel()
            raise

        if task.cancelled():
            raise TurnAbortedError("turn was aborted")
        try:
            return task.result()
        except InferenceError as exc:
            self.last_error = str(exc) or "Inference failed"
            raise

    async def abort(self) -> bool:
        """Cancel the running turn, if any, and wait until it has unwound."""
        task = self._task
        if task is None or task.done():
            return False
        logger.info("Aborting turn in session %s", self.session_id)
        task.cancel()
        await asyncio.wait({task})
        return True

    async def clear_history(self) -> None:
        """Abort any running turn, then forget the conversation."""
        await self.abort()
        self._chat.clear_history()
        self.last_error = None

    async def replace_chat(self, chat: ToolChat) -> None:
        """Swap in a new conversation (e.g. after the engine changed).  History starts empty."""
        await self.abort()
        self._chat = chat
        self.last_error = None
