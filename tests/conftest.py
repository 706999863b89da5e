"""Shared fixtures: a private catalog with well-behaved, unavailable and crashing tools."""

import threading
from typing import (
    Any,
    Dict,
)

import pytest

from edgecall.agent.tool_executor import ToolDispatcher
from edgecall.core.schema import ToolResult
from edgecall.tools import (
    DeviceTool,
    ToolCatalog,
)


class MirrorTool(DeviceTool):
    """Returns whatever was passed as "input"."""

    name = "mirror"
    description = "Returns the input back."
    parameters_schema = {"type": "object", "properties": {"input": {"type": "string"}}}

    def __init__(self) -> None:
        self.calls = 0

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        self.calls += 1
        return ToolResult.ok(data=arguments.get("input", "empty"))


class SwitchableTool(DeviceTool):
    """Tool whose availability is an externally toggled flag."""

    name = "camera_snap"
    description = "Take a photo."
    parameters_schema = {"type": "object", "properties": {"facing": {"type": "string"}}}

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def is_available(self) -> bool:
        return self.enabled

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        return ToolResult.ok(
            data={"facing": arguments.get("facing", "back")},
            media=b"\xff\xd8\xff",
            media_type="image/jpeg",
        )


class UnavailableTool(DeviceTool):
    """Registered but never usable."""

    name = "broken"
    description = "Always unavailable."

    def is_available(self) -> bool:
        return False

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        return ToolResult.fail("unreachable")


class CrashingTool(DeviceTool):
    """Always raises."""

    name = "crasher"
    description = "Always throws."

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        raise RuntimeError("simulated crash")


class BlockingTool(DeviceTool):
    """Blocks its worker thread until :attr:`release` is set."""

    name = "sensor_wait"
    description = "Waits on a sensor that never answers."

    def __init__(self) -> None:
        self.release = threading.Event()

    def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        self.release.wait(timeout=5)
        return ToolResult.ok(data="late")


@pytest.fixture
def mirror() -> MirrorTool:
    return MirrorTool()


@pytest.fixture
def camera() -> SwitchableTool:
    return SwitchableTool()


@pytest.fixture
def catalog(mirror: MirrorTool, camera: SwitchableTool) -> ToolCatalog:
    tools = ToolCatalog()
    tools.register(mirror)
    tools.register(camera)
    tools.register(UnavailableTool())
    tools.register(CrashingTool())
    return tools


@pytest.fixture
def blocking_tool() -> Any:
    blocker = BlockingTool()
    yield blocker
    blocker.release.set()


@pytest.fixture
def dispatcher(catalog: ToolCatalog) -> Any:
    tool_dispatcher = ToolDispatcher(catalog, timeout_ms=2_000)
    yield tool_dispatcher
    tool_dispatcher.close()
