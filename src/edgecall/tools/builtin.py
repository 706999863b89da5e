"""Built-in tools registered on :data:`edgecall.tools.default_catalog`."""

import datetime as dt
import platform
from typing import (
    Any,
    Dict,
)

from edgecall.tools import tool


@tool("echo")
def echo_tool(text: str) -> str:
    """Echo the input text back to the caller.

    Args:
        text: Text to send back unchanged.
    """
    return text


@tool("device_info")
def device_info_tool() -> Dict[str, Any]:
    """Describe the host device: operating system, machine type and Python runtime."""
    return {
        "system": platform.system(),
        "release": platform.release(),
        "machine": platform.machine(),
        "python": platform.python_version(),
    }


@tool("clock")
def clock_tool(utc: bool = False) -> Dict[str, str]:
    """Return the current date and time.

    Args:
        utc: Report UTC instead of the device's local time zone.
    """
    now = dt.datetime.now(dt.timezone.utc) if utc else dt.datetime.now().astimezone()
    return {"iso": now.isoformat(timespec="seconds"), "timezone": now.tzname() or ""}
