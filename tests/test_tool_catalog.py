"""Tests for the tool catalog, function tools and the tool-result wire shape."""

import threading
from typing import (
    Any,
    Dict,
    Optional,
)

import pytest
from pydantic import ValidationError

from edgecall.core.schema import ToolResult
from edgecall.tools import (
    AsyncFunctionTool,
    DeviceTool,
    FunctionTool,
    ToolCatalog,
    default_catalog,
    tool,
)


class NamedTool(DeviceTool):
    def __init__(self, name: str, description: str = "", available: bool = True) -> None:
        self.name = name
        self.description = description
        self.available = available

    def is_available(self) -> bool:
        return self.available

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        return ToolResult.ok(data=self.description)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------
def test_find_returns_registered_tool() -> None:
    catalog = ToolCatalog()
    location = NamedTool("location_get")
    catalog.register(location)
    assert catalog.find("location_get") is location
    assert catalog.find("nope") is None


def test_register_same_name_replaces_without_growing() -> None:
    catalog = ToolCatalog()
    first, second = NamedTool("sms_send", "v1"), NamedTool("sms_send", "v2")
    catalog.register(first)
    catalog.register(second)
    assert catalog.find("sms_send") is second
    assert len(catalog) == 1
    assert catalog.registered_names() == {"sms_send"}


def test_replacement_keeps_position() -> None:
    catalog = ToolCatalog()
    for name in ("a", "b", "c"):
        catalog.register(NamedTool(name))
    catalog.register(NamedTool("a", "new"))
    assert [t.name for t in catalog.available_tools()] == ["a", "b", "c"]


def test_unregister_is_noop_for_unknown() -> None:
    catalog = ToolCatalog()
    catalog.register(NamedTool("printer"))
    catalog.unregister("scanner")
    catalog.unregister("printer")
    assert "printer" not in catalog
    assert len(catalog) == 0


def test_register_rejects_blank_name() -> None:
    with pytest.raises(ValueError):
        ToolCatalog().register(NamedTool("  "))


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------
def test_available_tools_reevaluated_every_call() -> None:
    catalog = ToolCatalog()
    camera = NamedTool("camera_snap")
    catalog.register(camera)
    assert catalog.available_tools() == [camera]

    camera.available = False
    assert catalog.available_tools() == []
    assert catalog.find("camera_snap") is camera  # still registered

    camera.available = True
    assert catalog.available_tools() == [camera]


def test_tool_definitions_shape_and_order() -> None:
    catalog = ToolCatalog()
    catalog.register(NamedTool("first", "one"))
    catalog.register(NamedTool("hidden", "off", available=False))
    catalog.register(NamedTool("second", "two"))

    definitions = catalog.to_tool_definitions()

    assert [d["function"]["name"] for d in definitions] == ["first", "second"]
    assert definitions[0] == {
        "type": "function",
        "function": {
            "name": "first",
            "description": "one",
            "parameters": {"type": "object", "properties": {}},
        },
    }


def test_definitions_do_not_share_schemas() -> None:
    catalog = ToolCatalog()
    catalog.register(NamedTool("first"))
    catalog.register(NamedTool("second"))

    first, second = catalog.to_tool_definitions()
    first["function"]["parameters"]["properties"]["injected"] = {"type": "string"}

    assert second["function"]["parameters"] == {"type": "object", "properties": {}}
    assert catalog.to_tool_definitions()[0]["function"]["parameters"]["properties"] == {}
    assert DeviceTool.parameters_schema is None


def test_empty_catalog_renders_nothing() -> None:
    catalog = ToolCatalog()
    catalog.register(NamedTool("off", available=False))
    assert catalog.to_tool_definitions() == []
    assert catalog.to_prompt_block() == ""


def test_prompt_block_lists_available_tools() -> None:
    catalog = ToolCatalog()
    catalog.register(NamedTool("barcode_scan", "Scan a barcode."))
    catalog.register(NamedTool("nfc_read", "Read a card.", available=False))

    block = catalog.to_prompt_block()

    assert "### barcode_scan" in block
    assert "Scan a barcode." in block
    assert "nfc_read" not in block
    assert '"arguments"' in block


def test_prompt_block_uses_the_given_call_hint() -> None:
    catalog = ToolCatalog()
    catalog.register(NamedTool("barcode_scan", "Scan a barcode."))

    block = catalog.to_prompt_block("Wrap calls in <call> tags.")

    assert "Wrap calls in <call> tags." in block
    assert ToolCatalog.PROMPT_CALL_HINT not in block


def test_concurrent_register_and_read() -> None:
    catalog = ToolCatalog()
    errors: list = []

    def writer() -> None:
        for i in range(500):
            catalog.register(NamedTool(f"tool_{i % 20}", str(i)))
            catalog.unregister(f"tool_{(i + 7) % 20}")

    def reader() -> None:
        try:
            for _ in range(500):
                for definition in catalog.to_tool_definitions():
                    assert definition["function"]["name"].startswith("tool_")
        except Exception as exc:  # pylint: disable=broad-except
            errors.append(exc)

    threads = [threading.Thread(target=writer)]
    threads += [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []


# ---------------------------------------------------------------------------
# Function tools
# ---------------------------------------------------------------------------
def test_decorator_builds_schema_from_signature() -> None:
    catalog = ToolCatalog()

    @tool("sms_send", catalog=catalog)
    def send_sms(to: str, body: str, retries: int = 1, urgent: Optional[bool] = None) -> dict:
        """Send a text message.

        Args:
            to: Phone number in E.164 format.
            body: Message text.
                Keep it short.
            retries: How many times to retry.

        Returns:
            Delivery receipt.
        """
        return {"to": to}

    registered = catalog.find("sms_send")
    assert isinstance(registered, FunctionTool)
    assert registered.description == "Send a text message."
    assert registered.parameters_schema == {
        "type": "object",
        "properties": {
            "to": {"type": "string", "description": "Phone number in E.164 format."},
            "body": {"type": "string", "description": "Message text. Keep it short."},
            "retries": {"type": "integer", "description": "How many times to retry."},
            "urgent": {"type": "boolean"},
        },
        "required": ["to", "body"],
    }


def test_numpy_docstring_help() -> None:
    def locate(desired_accuracy: str = "balanced") -> dict:
        """
        Get the current device location.

        Parameters
        ----------
        desired_accuracy: str
            'coarse', 'balanced' or 'precise'.

        Returns
        -------
        dict
        """
        return {}

    schema = FunctionTool(locate).parameters_schema
    assert schema["properties"]["desired_accuracy"] == {
        "type": "string",
        "description": "'coarse', 'balanced' or 'precise'.",
    }
    assert "required" not in schema


def test_decorator_availability_predicate_and_async() -> None:
    catalog = ToolCatalog()
    enabled = {"value": False}

    @tool(catalog=catalog, available=lambda: enabled["value"], description="Print a receipt.")
    async def print_receipt(text: str) -> str:
        return text

    registered = catalog.find("print_receipt")
    assert isinstance(registered, AsyncFunctionTool)
    assert registered.description == "Print a receipt."
    assert catalog.available_tools() == []
    enabled["value"] = True
    assert catalog.available_tools() == [registered]


def test_function_tool_wraps_plain_values() -> None:
    echo = default_catalog.find("echo")
    assert echo is not None
    assert echo.execute({"text": "hi"}) == ToolResult.ok(data="hi")


def test_default_catalog_has_builtins() -> None:
    assert {"echo", "device_info", "clock"} <= default_catalog.registered_names()


# ---------------------------------------------------------------------------
# Tool results
# ---------------------------------------------------------------------------
def test_result_wire_shapes() -> None:
    assert ToolResult.ok(data={"lat": 1.0}).to_wire() == {"success": True, "data": {"lat": 1.0}}
    assert ToolResult.fail("boom").to_wire() == {"success": False, "error": "boom"}
    photo = ToolResult.ok(data={"w": 640}, media=b"\x00\x01", media_type="image/jpeg")
    assert photo.to_wire() == {
        "success": True,
        "data": {"w": 640},
        "hasMedia": True,
        "mediaType": "image/jpeg",
    }


def test_media_and_type_travel_together() -> None:
    assert ToolResult.ok(media=b"\x00").media_type == "application/octet-stream"
    with pytest.raises(ValidationError):
        ToolResult.ok(media_type="image/png")
