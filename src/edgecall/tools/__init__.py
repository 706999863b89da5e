"""
Tool catalog for edgecall.

This module defines the :class:`DeviceTool` contract, a thread-safe :class:`ToolCatalog` keyed by
tool name, and a decorator that turns plain functions into tools:

    @tool("my_tool")
    def my_tool_function(arg1: str, arg2: int = 3) -> dict:
        '''Do something useful.'''
        return {"ok": True}

Availability is never cached: every lookup that filters on availability re-evaluates
:meth:`DeviceTool.is_available`, so a tool can flip between two calls of the same conversation.
"""

import copy
import inspect
import json
import logging
import threading
import types
import typing
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Set,
    get_type_hints,
)

from edgecall.core.schema import ToolResult

logger = logging.getLogger(__name__)

_JSON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
}


class DeviceTool(ABC):
    """A named capability that a model can invoke through function calling.

    Subclasses set :attr:`name`, :attr:`description` and :attr:`parameters_schema` and implement
    :meth:`execute`, either as a plain (possibly blocking) method or as a coroutine.
    """

    name: str = ""
    description: str = ""
    parameters_schema: Optional[Dict[str, Any]] = None

    def is_available(self) -> bool:
        """Whether the tool is usable right now (hardware present, permission granted, ...)."""
        return True

    def get_parameters_schema(self) -> Dict[str, Any]:
        """A private copy of the JSON schema for the arguments (an empty object when unset)."""
        if self.parameters_schema is None:
            return {"type": "object", "properties": {}}
        return copy.deepcopy(self.parameters_schema)

    @abstractmethod
    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        """Run the tool with already-normalized *arguments*."""


class ToolArgumentError(ValueError):
    """Raised by a function tool when the model's arguments don't fit its signature."""


class FunctionTool(DeviceTool):
    """Adapter that exposes a plain function as a :class:`DeviceTool`."""

    def __init__(
        self,
        fn: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        available: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.fn = fn
        self.name = name or fn.__name__
        summary, param_help = _parse_docstring(inspect.getdoc(fn) or "")
        self.description = description if description is not None else summary
        self.parameters_schema = _schema_from_signature(fn, param_help)
        self._available = available

    def is_available(self) -> bool:
        return True if self._available is None else bool(self._available())

    def _bind(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        schema = self.get_parameters_schema()
        properties = schema.get("properties", {})
        unexpected = sorted(set(arguments) - set(properties))
        if unexpected:
            raise ToolArgumentError(f"unexpected argument(s): {', '.join(unexpected)}")
        for required in schema.get("required", []):
            if required not in arguments:
                raise ToolArgumentError(f"missing required argument '{required}'")
        return dict(arguments)

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        return _as_result(self.fn(**self._bind(arguments)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class AsyncFunctionTool(FunctionTool):
    """:class:`FunctionTool` for coroutine functions."""

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:  # type: ignore[override]
        return _as_result(await self.fn(**self._bind(arguments)))


def _as_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    return ToolResult.ok(data=value)


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------
def _json_type(annotation: Any) -> Optional[str]:
    """Map a Python annotation onto a JSON-Schema type name (``None`` if unknown)."""
    origin = typing.get_origin(annotation)
    if origin is not None:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if origin in (typing.Union, types.UnionType):
            return _json_type(args[0]) if len(args) == 1 else None
        return _JSON_TYPES.get(origin)
    return _JSON_TYPES.get(annotation)


def _parse_docstring(doc: str) -> tuple[str, Dict[str, str]]:
    """Split a docstring into its summary paragraph and per-argument help.

    Understands Google style (``Args:`` with ``name: help``) and numpy style
    (``Parameters`` / ``----------`` with ``name:`` followed by an indented help line).
    """
    if not doc:
        return "", {}
    summary = doc.split("\n\n", 1)[0].replace("\n", " ").strip()
    param_help: Dict[str, str] = {}
    in_params = False
    numpy_style = False
    param_indent: Optional[int] = None
    current: Optional[str] = None
    for line in doc.splitlines():
        stripped = line.strip()
        indent = len(line) - len(line.lstrip())
        if stripped in ("Args:", "Arguments:", "Parameters", "Parameters:"):
            in_params, numpy_style = True, stripped == "Parameters"
            param_indent, current = None, None
            continue
        if not in_params or not stripped or set(stripped) == {"-"}:
            continue
        if param_indent is None:
            param_indent = indent
        if indent < param_indent or (indent == param_indent and ":" not in stripped):
            # next section (Returns:, Raises:, ...)
            in_params, current = False, None
            continue
        if indent == param_indent:
            key, _, rest = stripped.partition(":")
            current = key.strip().split(" ")[0].lstrip("*")
            # numpy puts the type after the colon, google the help text
            param_help[current] = "" if numpy_style else rest.strip()
        elif current is not None:
            param_help[current] = (param_help[current] + " " + stripped).strip()
    return summary, param_help


def _schema_from_signature(fn: Callable[..., Any], param_help: Mapping[str, str]) -> Dict[str, Any]:
    """Build a JSON-Schema ``object`` describing *fn*'s keyword arguments."""
    sig = inspect.signature(fn)
    try:
        type_hints = get_type_hints(fn)
    except (NameError, TypeError):
        type_hints = {}
    properties: Dict[str, Dict[str, Any]] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        prop: Dict[str, Any] = {}
        json_type = _json_type(type_hints.get(param_name))
        if json_type:
            prop["type"] = json_type
        if param_help.get(param_name):
            prop["description"] = param_help[param_name]
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
        properties[param_name] = prop
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class ToolCatalog:
    """Name-keyed set of tools shared by every conversation.

    Writes (``register`` / ``unregister``) are serialized by a lock; readers take a snapshot under
    the same lock, so nobody iterates a half-updated mapping.
    """

    PROMPT_HEADER = "You have access to the following device tools."
    PROMPT_CALL_HINT = 'To call a tool, output a JSON block: {"name":"<tool>","arguments":{...}}'

    def __init__(self) -> None:
        self._tools: Dict[str, DeviceTool] = {}
        self._lock = threading.Lock()

    def register(self, device_tool: DeviceTool) -> None:
        """Add *device_tool*, replacing any tool already registered under the same name."""
        if not device_tool.name or not device_tool.name.strip():
            raise ValueError("tool name must be a non-empty string")
        with self._lock:
            replaced = device_tool.name in self._tools
            self._tools[device_tool.name] = device_tool
        logger.debug("%s tool '%s'", "Replaced" if replaced else "Registered", device_tool.name)

    def unregister(self, name: str) -> None:
        """Remove a tool by name; unknown names are ignored."""
        with self._lock:
            removed = self._tools.pop(name, None)
        if removed is not None:
            logger.debug("Unregistered tool '%s'", name)

    def find(self, name: str) -> Optional[DeviceTool]:
        """Look up a tool by name regardless of availability."""
        with self._lock:
            return self._tools.get(name)

    def registered_names(self) -> Set[str]:
        """Names of every registered tool."""
        with self._lock:
            return set(self._tools)

    def _snapshot(self) -> List[DeviceTool]:
        with self._lock:
            return list(self._tools.values())

    def available_tools(self) -> List[DeviceTool]:
        """Registered tools whose availability predicate holds right now, in registration order."""
        return [t for t in self._snapshot() if t.is_available()]

    def to_tool_definitions(self) -> List[Dict[str, Any]]:
        """Function-calling definitions for every currently available tool.

        Output format per element::

            {"type": "function",
             "function": {"name": "camera_snap", "description": "...", "parameters": {...}}}
        """
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.get_parameters_schema(),
                },
            }
            for t in self.available_tools()
        ]

    def to_prompt_block(self, call_hint: Optional[str] = None) -> str:
        """Plain-text tool listing for models without structured function calling.

        *call_hint* replaces :attr:`PROMPT_CALL_HINT` when the engine wants calls written its own
        way.  Returns ``""`` when no tool is available so callers can omit the section entirely.
        """
        available = self.available_tools()
        if not available:
            return ""
        lines = [self.PROMPT_HEADER, call_hint or self.PROMPT_CALL_HINT, ""]
        for t in available:
            lines.append(f"### {t.name}")
            lines.append(t.description)
            lines.append(f"Parameters: {json.dumps(t.get_parameters_schema())}")
            lines.append("")
        return "\n".join(lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools


default_catalog = ToolCatalog()
"""Catalog holding the built-in tools."""


def tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    available: Optional[Callable[[], bool]] = None,
    catalog: Optional[ToolCatalog] = None,
) -> Callable:
    """
    Register a function as a tool.

    The function is registered as a decorator, so it can be used like this:
        @tool("my_tool")
        def my_tool_function(arg1: str):
            '''What the tool does (shown to the model).'''
            return result

    Parameters
    ----------
    name: str
        Tool name shown to the model.  Defaults to the function name.
    description: str
        Text shown to the model.  Defaults to the docstring summary.
    available: Callable[[], bool]
        Availability predicate, re-evaluated on every lookup.
    catalog: ToolCatalog
        Where to register the tool.  Defaults to :data:`default_catalog`.
    Returns
    -------
    Callable
        A decorator that registers the function and returns it unchanged.
    """
    target = catalog if catalog is not None else default_catalog

    def wrapper(fn: Callable) -> Callable:
        cls = AsyncFunctionTool if inspect.iscoroutinefunction(fn) else FunctionTool
        target.register(cls(fn, name=name, description=description, available=available))
        return fn

    return wrapper


from edgecall.tools import builtin  # noqa: E402,F401  pylint: disable=wrong-import-position
