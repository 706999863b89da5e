"""
Inference engine interface for edgecall.

This module is the only place that *directly* calls an LLM.  Everything else (conversation loop,
tools, dispatcher) stays model-agnostic: an engine takes the message history plus the tool
definitions and returns a single :class:`~edgecall.core.schema.InferenceOutcome`.

We support three back-ends out of the box:

1. **stub** - scripted replies, for tests and offline runs.
2. **chatml** - a text-generation endpoint (Hugging Face TGI, llama.cpp server) prompted in ChatML;
   tool calls are extracted from the generated text.
3. **openai** - any OpenAI-compatible chat completions API with native function calling.

Additional providers can be added by subclassing :class:`InferenceEngine` and registering via
:func:`register_engine`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from collections import deque
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Type,
)

import httpx

from edgecall.config import settings
from edgecall.core.schema import (
    FinishReason,
    InferenceOutcome,
    Message,
    Role,
    ToolCall,
)
from edgecall.tools.tool_call_parser import parse_response

logger = logging.getLogger(__name__)


class InferenceError(RuntimeError):
    """The engine could not produce an outcome for this turn."""


class EngineNotReadyError(InferenceError):
    """The engine is not loaded / configured yet."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_ENGINE_REGISTRY: dict[str, Type["InferenceEngine"]] = {}


def register_engine(name: str) -> Callable:
    """Decorator to register an engine class under *name*."""

    def wrapper(cls: Type["InferenceEngine"]) -> Type["InferenceEngine"]:
        _ENGINE_REGISTRY[name] = cls
        return cls

    return wrapper


def load_engine(name: str | None = None) -> "InferenceEngine":
    """
    Factory that returns an instantiated engine.

    Fallback order:
    1. *name* arg
    2. ``settings.ENGINE`` env option
    3. default: ``"stub"``
    """

    target = name or getattr(settings, "ENGINE", "stub")
    cls = _ENGINE_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Engine '{target}' is not registered.")
    return cls()


def available_engines() -> List[str]:
    """Names accepted by :func:`load_engine`."""
    return sorted(_ENGINE_REGISTRY)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class InferenceEngine(ABC):
    """Abstract engine that turns message history -> text and/or one tool call."""

    @property
    def is_ready(self) -> bool:
        """Whether the engine can generate right now."""
        return True

    @property
    def call_hint(self) -> Optional[str]:
        """How to write a tool call in plain text; ``None`` keeps the catalog default."""
        return None

    @abstractmethod
    async def complete(
        self,
        messages: Sequence[Message],
        tool_definitions: Optional[List[Dict[str, Any]]] = None,
    ) -> InferenceOutcome:
        """Run inference over *messages* (system first) and return one outcome."""

    async def aclose(self) -> None:
        """Release network clients or model handles."""


# ---------------------------------------------------------------------------
# Concrete engines
# ---------------------------------------------------------------------------
@register_engine("stub")
class StubInferenceEngine(InferenceEngine):
    """Engine that replays queued outcomes, then a fixed reply.

    Every context it receives is kept in :attr:`received` so tests can inspect what the model saw.
    """

    DEFAULT_TEXT = (
        "I'm a stub inference engine. Connect a real LLM to enable intelligent responses."
    )

    def __init__(self, responses: Iterable[InferenceOutcome] = (), ready: bool = True) -> None:
        self.responses: Deque[InferenceOutcome] = deque(responses)
        self.next_response = InferenceOutcome(text=self.DEFAULT_TEXT)
        self.ready = ready
        self.received: List[List[Message]] = []
        self.received_tools: List[Optional[List[Dict[str, Any]]]] = []

    @property
    def is_ready(self) -> bool:
        return self.ready

    async def complete(
        self,
        messages: Sequence[Message],
        tool_definitions: Optional[List[Dict[str, Any]]] = None,
    ) -> InferenceOutcome:
        self.received.append(list(messages))
        self.received_tools.append(tool_definitions)
        if self.responses:
            return self.responses.popleft()
        return self.next_response


@register_engine("chatml")
class ChatMLEngine(InferenceEngine):
    """Text-generation endpoint prompted in ChatML; tool calls are parsed from its output."""

    CALL_EXAMPLE = '{"name": "tool_name", "arguments": {"arg": "value"}}'

    def __init__(
        self,
        endpoint: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        tag: Optional[str] = None,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> None:
        self.endpoint = endpoint or settings.TGI_ENDPOINT
        self.tag = tag or settings.TOOL_CALL_TAG
        self.max_new_tokens = max_new_tokens or settings.MAX_NEW_TOKENS
        self.temperature = settings.TEMPERATURE if temperature is None else temperature
        self._client = client or httpx.AsyncClient(timeout=None)

    @property
    def call_hint(self) -> str:
        return (
            f"To use a tool, output a JSON block wrapped in <{self.tag}> tags:\n"
            f"<{self.tag}>\n{self.CALL_EXAMPLE}\n</{self.tag}>"
        )

    def build_prompt(
        self, messages: Sequence[Message], tool_definitions: Optional[List[Dict[str, Any]]]
    ) -> str:
        """
        Format *messages* as ChatML and leave the assistant turn open::

            <|im_start|>system
            ...
            <|im_end|>
            <|im_start|>user
            ...
            <|im_end|>
            <|im_start|>assistant
        """
        parts: List[str] = []
        for msg in messages:
            parts.append(f"<|im_start|>{msg.role.value}\n")
            if msg.role is Role.SYSTEM and tool_definitions:
                parts.append(msg.content)
                parts.append("\n\nYou have access to the following tools:\n")
                parts.append(json.dumps(tool_definitions))
                if self.call_hint not in msg.content:
                    parts.append(f"\n\n{self.call_hint}")
            elif msg.role is Role.TOOL:
                parts.append(f"[{msg.tool_name or 'tool'}] {msg.content}")
            elif msg.role is Role.ASSISTANT and msg.tool_call is not None:
                call = {"name": msg.tool_call.name, "arguments": msg.tool_call.arguments}
                text = f"{msg.content}\n" if msg.content else ""
                parts.append(f"{text}<{self.tag}>\n{json.dumps(call)}\n</{self.tag}>")
            else:
                parts.append(msg.content)
            parts.append("\n<|im_end|>\n")
        parts.append("<|im_start|>assistant\n")
        return "".join(parts)

    async def complete(
        self,
        messages: Sequence[Message],
        tool_definitions: Optional[List[Dict[str, Any]]] = None,
    ) -> InferenceOutcome:
        prompt = self.build_prompt(messages, tool_definitions)
        payload = {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": self.max_new_tokens,
                "temperature": self.temperature,
                "stop": ["<|im_end|>"],
            },
        }
        try:
            resp = await self._client.post(self.endpoint, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            logger.error("Text-generation request error: %s", str(e))
            raise InferenceError(f"Error calling text-generation endpoint: {e}") from e
        except ValueError as e:
            raise InferenceError(f"Endpoint returned invalid JSON: {e}") from e

        if isinstance(body, list):
            body = body[0] if body else {}
        generated = str(body.get("generated_text", "")).replace("<|im_end|>", "").strip()
        logger.debug("ChatML engine response: %s", generated)

        parsed = parse_response(generated, tag=self.tag)
        if parsed.tool_call is not None:
            return InferenceOutcome(
                text=parsed.text, tool_call=parsed.tool_call, finish_reason=FinishReason.TOOL_CALL
            )
        details = body.get("details") or {}
        if details.get("finish_reason") == "length":
            return InferenceOutcome(text=generated, finish_reason=FinishReason.LENGTH_LIMIT)
        return InferenceOutcome(text=generated, finish_reason=FinishReason.STOP)

    async def aclose(self) -> None:
        await self._client.aclose()


@register_engine("openai")
class OpenAIEngine(InferenceEngine):
    """OpenAI-compatible chat completions with native function calling."""

    def __init__(self, client: Any = None, model: Optional[str] = None) -> None:
        self.model = model or settings.OPENAI_MODEL
        self._client = client

    @property
    def is_ready(self) -> bool:
        return self._client is not None or bool(settings.OPENAI_API_KEY)

    def _get_client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL
            )
        return self._client

    @staticmethod
    def to_openai_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """Convert history to the chat-completions message format."""
        out: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role is Role.ASSISTANT and msg.tool_call is not None:
                out.append(
                    {
                        "role": "assistant",
                        "content": msg.content or None,
                        "tool_calls": [
                            {
                                "id": msg.correlation_id or "call_0",
                                "type": "function",
                                "function": {
                                    "name": msg.tool_call.name,
                                    "arguments": msg.tool_call.arguments_text(),
                                },
                            }
                        ],
                    }
                )
            elif msg.role is Role.TOOL:
                out.append(
                    {
                        "role": "tool",
                        "tool_call_id": msg.correlation_id or "call_0",
                        "content": msg.content,
                    }
                )
            else:
                out.append({"role": msg.role.value, "content": msg.content})
        return out

    async def complete(
        self,
        messages: Sequence[Message],
        tool_definitions: Optional[List[Dict[str, Any]]] = None,
    ) -> InferenceOutcome:
        if not self.is_ready:
            raise EngineNotReadyError("OpenAI engine has no API key configured")
        client = self._get_client()
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": self.to_openai_messages(messages),
            "temperature": settings.TEMPERATURE,
        }
        if tool_definitions:
            request["tools"] = tool_definitions
        try:
            resp = await client.chat.completions.create(**request)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("OpenAI engine error: %s", str(e))
            raise InferenceError(f"Error calling OpenAI: {e}") from e

        choice = resp.choices[0]
        text = choice.message.content or ""
        logger.debug("OpenAI engine response: %s", text)
        if choice.message.tool_calls:
            fn = choice.message.tool_calls[0].function
            return InferenceOutcome(
                text=text,
                tool_call=ToolCall(name=fn.name, arguments=fn.arguments),
                finish_reason=FinishReason.TOOL_CALL,
            )
        if choice.finish_reason == "length":
            return InferenceOutcome(text=text, finish_reason=FinishReason.LENGTH_LIMIT)
        return InferenceOutcome(text=text, finish_reason=FinishReason.STOP)

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
