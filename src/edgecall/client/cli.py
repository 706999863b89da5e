"""CLI client for the edgecall API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from edgecall.common import (
    AnsiColors,
    colored_print,
    shorten,
)
from edgecall.config import settings

logger = logging.getLogger(__name__)

_COMMANDS = {"/clear": "clear history", "/tools": "list available tools", "/exit": "quit"}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        return input().strip(), True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(
    method: str, endpoint: str, data: Dict[str, Any] | None = None, max_retries: int = 5
) -> Dict[str, Any]:
    """Call the API and return the decoded JSON body, retrying while the server starts up."""
    api_url = f"http://localhost:{settings.API_PORT}{endpoint}"

    for attempt in range(max_retries):
        try:
            # no client timeout: a turn may wait on several slow tools
            with httpx.Client(timeout=None) as client:
                response = client.request(method, api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError as e:
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                time.sleep(retry_delay)
                continue
            return {"error": f"Error connecting to API: {e}"}
        except httpx.HTTPStatusError as e:
            logger.error("API request error: %s", str(e))
            try:
                detail = e.response.json().get("detail", str(e))
            except ValueError:
                detail = str(e)
            return {"error": f"API error: {detail}"}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            return {"error": f"Error connecting to API: {e}"}

    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def _print_tools() -> None:
    response = call_api("GET", "/tools")
    if "error" in response:
        colored_print(response["error"], AnsiColors.RED)
        return
    tools = response.get("tools", [])
    if not tools:
        colored_print("No tools are available right now.", AnsiColors.YELLOW)
    for definition in tools:
        fn = definition.get("function", {})
        colored_print(f"- {fn.get('name')}: {shorten(fn.get('description', ''))}", AnsiColors.CYAN)


def _print_reply(response: Dict[str, Any]) -> None:
    for call in response.get("tool_calls", []):
        status = "ok" if call.get("success") else f"error: {call.get('error')}"
        colored_print(
            f"[{call.get('name')}] {shorten(call.get('arguments', ''))} -> {status}",
            AnsiColors.GREEN if call.get("success") else AnsiColors.RED,
        )
        if call.get("has_media"):
            colored_print(f"    (media: {call.get('media_type')})", AnsiColors.CYAN)
    colored_print(response.get("reply", "No response from API"), AnsiColors.YELLOW)


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    session_response = call_api("POST", "/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print(session_response.get("error", "Failed to create a session"), AnsiColors.RED)
        return

    commands = ", ".join(f"{c} ({h})" for c, h in _COMMANDS.items())
    colored_print(f"\nedgecall shell - commands: {commands}", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok or user_msg.lower() in {"/exit", "exit", "quit"}:
            break
        if not user_msg:
            continue
        if user_msg == "/tools":
            _print_tools()
            continue
        if user_msg == "/clear":
            call_api("DELETE", f"/sessions/{session_id}/history")
            colored_print("History cleared.", AnsiColors.YELLOW)
            continue

        response = call_api("POST", "/chat", {"message": user_msg, "session_id": session_id})
        if "error" in response:
            colored_print(response["error"], AnsiColors.RED)
            continue
        _print_reply(response)


if __name__ == "__main__":
    run_cli()
