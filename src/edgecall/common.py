"""Common utility functions for the project."""

import os
import sys
from enum import Enum
from typing import Any


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color, or plain when stdout is not a terminal or NO_COLOR is set.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    if os.environ.get("NO_COLOR") or not sys.stdout.isatty():
        print(text, *args, **kwargs)
        return
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def shorten(text: str, limit: int = 120) -> str:
    """Collapse whitespace and cut *text* to *limit* characters for one-line display."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."
