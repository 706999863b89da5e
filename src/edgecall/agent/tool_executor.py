"""Dispatches tool calls against a :class:`~edgecall.tools.ToolCatalog` and wraps every error."""

import asyncio
import functools
import inspect
import json
import logging
import threading
from typing import (
    Any,
    Dict,
    Mapping,
    Optional,
)

from edgecall.config import settings
from edgecall.core.schema import (
    ToolCall,
    ToolResult,
)
from edgecall.tools import (
    DeviceTool,
    ToolCatalog,
)

logger = logging.getLogger(__name__)

_EMPTY_ARGUMENTS = ("", "{}")


class InvalidArgumentsError(ValueError):
    """Raised when call arguments can't be normalized to a mapping."""


def normalize_arguments(raw: Any) -> Dict[str, Any]:
    """
    Turn the ``arguments`` of a call request into a mapping.

    Parameters
    ----------
    raw:
        A mapping (used as-is), a string holding a JSON object, or ``None``.  Blank strings and
        ``"{}"`` normalize to an empty mapping.

    Returns
    -------
    Dict[str, Any]
        The normalized arguments.

    Raises
    ------
    InvalidArgumentsError
        If *raw* is neither, or the string doesn't decode to a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if text in _EMPTY_ARGUMENTS:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidArgumentsError(f"not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise InvalidArgumentsError("JSON arguments must be an object")
        return parsed
    raise InvalidArgumentsError(f"unsupported arguments type {type(raw).__name__}")


def _discard_late_result(name: str, future: "asyncio.Future[Any]") -> None:
    """Done-callback for abandoned coroutine executions: the caller already got its answer."""
    if future.cancelled():
        return
    _log_late(name, future.exception())


def _log_late(name: str, exc: Optional[BaseException]) -> None:
    if exc is not None:
        logger.warning("Abandoned tool '%s' raised after timeout: %s", name, exc)
    else:
        logger.warning("Abandoned tool '%s' finished after timeout; result ignored", name)


def _settle(
    name: str, future: "asyncio.Future[Any]", value: Any, exc: Optional[BaseException]
) -> None:
    """Hand a worker thread's outcome to *future*, unless the dispatcher already gave up on it."""
    if future.done():
        _log_late(name, exc)
    elif exc is not None:
        future.set_exception(exc)
    else:
        future.set_result(value)


class ToolDispatcher:
    """Resolves, validates and executes one call request at a time.

    :meth:`dispatch` never raises for tool-level problems: every failure comes back as a
    :meth:`ToolResult.fail` with a one-line message.  Each call is attempted exactly once.

    Blocking tool bodies run on a daemon thread of their own, coroutine bodies as tasks.  When the
    timeout fires the execution is abandoned rather than awaited; whatever it produces later is
    logged and dropped.  A hung body only ever holds its own thread.
    """

    def __init__(self, catalog: ToolCatalog, timeout_ms: Optional[int] = None) -> None:
        self.catalog = catalog
        self.timeout_ms = settings.TOOL_TIMEOUT_MS if timeout_ms is None else timeout_ms
        self._pending: Dict["asyncio.Future[Any]", str] = {}

    async def dispatch(
        self, request: ToolCall | Mapping[str, Any], timeout_ms: Optional[int] = None
    ) -> ToolResult:
        """
        Execute *request* and return its single, terminal result.

        Parameters
        ----------
        request:
            ``{"name": ..., "arguments": ...}`` as a :class:`ToolCall` or plain mapping.
        timeout_ms:
            Overrides the dispatcher's timeout for this call.
        """
        if isinstance(request, ToolCall):
            raw_name: Any = request.name
            raw_arguments: Any = request.arguments
        else:
            raw_name = request.get("name")
            raw_arguments = request.get("arguments")

        name = raw_name.strip() if isinstance(raw_name, str) else ""
        if not name:
            return ToolResult.fail("missing or empty tool name")

        device_tool = self.catalog.find(name)
        if device_tool is None:
            return ToolResult.fail(f"unknown tool: {name}")

        if not self._is_available(device_tool):
            return ToolResult.fail(f"tool '{name}' is not currently available")

        try:
            arguments = normalize_arguments(raw_arguments)
        except InvalidArgumentsError as exc:
            logger.debug("Rejected arguments for tool '%s': %s", name, exc)
            return ToolResult.fail(f"invalid arguments for tool '{name}'")

        budget_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        logger.debug("Executing tool '%s' with args=%s (timeout %dms)", name, arguments, budget_ms)
        return await self._execute(name, device_tool, arguments, budget_ms)

    @staticmethod
    def _is_available(device_tool: DeviceTool) -> bool:
        try:
            return bool(device_tool.is_available())
        except Exception:  # pylint: disable=broad-except
            logger.exception("Availability check for tool '%s' raised", device_tool.name)
            return False

    async def _execute(
        self, name: str, device_tool: DeviceTool, arguments: Dict[str, Any], budget_ms: int
    ) -> ToolResult:
        future: "asyncio.Future[Any]"
        try:
            if inspect.iscoroutinefunction(device_tool.execute):
                future = asyncio.ensure_future(device_tool.execute(arguments))
            else:
                future = self._start_thread(name, device_tool, arguments)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Tool '%s' could not be started", name)
            return ToolResult.fail(f"tool '{name}' failed: {_describe(exc)}")

        self._pending[future] = name
        future.add_done_callback(self._forget)
        try:
            done, _ = await asyncio.wait({future}, timeout=budget_ms / 1000)
        except asyncio.CancelledError:
            self._abandon(name, future)
            raise

        if not done:
            self._abandon(name, future)
            logger.warning("Tool '%s' timed out after %dms", name, budget_ms)
            return ToolResult.fail(f"tool '{name}' timed out after {budget_ms}ms")

        if future.cancelled():
            return ToolResult.fail(f"tool '{name}' failed: execution was cancelled")
        exc = future.exception()
        if exc is not None:
            logger.warning("Unhandled error in tool '%s': %s", name, exc, exc_info=exc)
            return ToolResult.fail(f"tool '{name}' failed: {_describe(exc)}")

        result = future.result()
        if not isinstance(result, ToolResult):
            return ToolResult.fail(
                f"tool '{name}' failed: returned {type(result).__name__} instead of a ToolResult"
            )
        logger.debug("Tool '%s' finished (success=%s)", name, result.success)
        return result

    @staticmethod
    def _start_thread(
        name: str, device_tool: DeviceTool, arguments: Dict[str, Any]
    ) -> "asyncio.Future[Any]":
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def run() -> None:
            value: Any = None
            error: Optional[BaseException] = None
            try:
                value = device_tool.execute(arguments)
            except Exception as exc:  # pylint: disable=broad-except
                error = exc
            try:
                loop.call_soon_threadsafe(_settle, name, future, value, error)
            except RuntimeError:
                # loop already closed: nobody is left to report to
                _log_late(name, error)

        threading.Thread(target=run, name=f"edgecall-tool-{name}", daemon=True).start()
        return future

    def _forget(self, future: "asyncio.Future[Any]") -> None:
        self._pending.pop(future, None)

    @staticmethod
    def _abandon(name: str, future: "asyncio.Future[Any]") -> None:
        # Threads can't be interrupted; cancelling only detaches us from the result.
        if isinstance(future, asyncio.Task):
            future.add_done_callback(functools.partial(_discard_late_result, name))
        future.cancel()

    def close(self) -> None:
        """Abandon every execution still in flight; their threads finish on their own."""
        for future, name in list(self._pending.items()):
            if not future.get_loop().is_closed():
                self._abandon(name, future)
        self._pending.clear()


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
