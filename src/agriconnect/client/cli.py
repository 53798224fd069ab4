"""Terminal chat client for the AgriConnect assistant API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    List,
    Tuple,
    cast,
)

import httpx

from agriconnect.common import (
    AnsiColors,
    colored_print,
)
from agriconnect.config import settings

logger = logging.getLogger(__name__)


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
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(
    endpoint: str,
    data: Dict[str, Any],
    token: str | None = None,
    base_url: str | None = None,
    max_retries: int = 5,
) -> Dict[str, Any]:
    """
    POST *data* to the API and return the decoded body.

    Connection errors are retried with exponential backoff (the API may still be starting).  Error
    responses are returned as ``{"error": ...}``.
    """
    api_url = f"{base_url or f'http://localhost:{settings.API_PORT}'}{endpoint}"
    headers = {"Authorization": f"Bearer {token}"} if token else {}

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=settings.RUN_TIMEOUT + 5) as client:
                response = client.post(api_url, json=data, headers=headers)
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
            logger.error("API request error: %s", str(e))
            return {"error": f"Error connecting to API: {str(e)}"}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            return {"error": f"Error connecting to API: {str(e)}"}

        try:
            body = cast(Dict[str, Any], response.json())
        except ValueError:
            body = {"error": response.text or f"HTTP {response.status_code}"}
        if response.is_error and "error" not in body:
            body = {"error": str(body.get("detail", f"HTTP {response.status_code}"))}
        return body

    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def run_cli(token: str | None = None, base_url: str | None = None) -> None:
    """Run the CLI client.  The conversation is kept here and resent on every turn."""
    history: List[Dict[str, str]] = []

    colored_print("\n🌾 AgriConnect assistant - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN)
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        history.append({"role": "user", "content": user_msg})
        response = call_api("/chat", {"messages": history}, token=token, base_url=base_url)

        if "error" in response:
            history.pop()  # let the user retry the same question
            colored_print(f"⚠️ {response['error']}", AnsiColors.RED)
            continue

        reply = response.get("message", "")
        history.append({"role": "assistant", "content": reply})
        navigation = response.get("navigation")
        if navigation:
            target = navigation.get("route") or ""
            if navigation.get("section"):
                target += f"#{navigation['section']}"
            colored_print(f"[navigate] {target}", AnsiColors.CYAN)
        colored_print(reply, AnsiColors.YELLOW)


if __name__ == "__main__":
    run_cli()
