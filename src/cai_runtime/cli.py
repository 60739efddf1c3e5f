"""cai-runtime CLI.

Usage:
    cai-runtime whoami                                  # Show the authenticated user
    cai-runtime new-chat <character_id>                 # Start a chat with a character
    cai-runtime send <character_id> <chat_id> <message> # Send a message, print the reply
    cai-runtime history <chat_id> --pages 2             # Print chat history

The session token is read from --token or the CAI_TOKEN environment variable.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
import httpx

from .client import CaiClient
from .config import ClientSettings
from .errors import CaiError

T = TypeVar("T")

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

format_option = click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)


def truncate(text: str | None, max_len: int = 60) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    text = text.replace("\n", " ")
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def turn_text(turn: dict[str, Any]) -> str:
    """Text of a turn's primary candidate."""
    candidates = turn.get("candidates") or []
    primary = turn.get("primary_candidate_id")
    for candidate in candidates:
        if candidate.get("candidate_id") == primary:
            return candidate.get("raw_content", "")
    return candidates[0].get("raw_content", "") if candidates else ""


def run_with_client(
    ctx: click.Context,
    action: Callable[[CaiClient], Awaitable[T]],
    *,
    connect: bool = True,
) -> T:
    """Authenticate a fresh client, run ``action`` and close the client.

    Runtime and HTTP errors are printed and exit with status 1.
    """
    token = ctx.obj["token"]
    if not token:
        raise click.UsageError("A session token is required (--token or CAI_TOKEN)")

    async def run() -> T:
        async with CaiClient(ctx.obj["settings"]) as client:
            await client.authenticate(token, connect=connect)
            return await action(client)

    try:
        return asyncio.run(run())
    except CaiError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        click.echo(f"Error: server returned {status} for {e.request.url}", err=True)
        sys.exit(1)
    except httpx.HTTPError as e:
        click.echo(f"Error: cannot reach the service: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--token", envvar="CAI_TOKEN", help="Session token (or set CAI_TOKEN)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, token: str | None, verbose: bool) -> None:
    """cai-runtime - talk to the chat service from the command line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        settings = ClientSettings.from_env()
    except CaiError as e:
        raise click.UsageError(str(e)) from e

    ctx.ensure_object(dict)
    ctx.obj["token"] = token
    ctx.obj["settings"] = settings


@main.command()
@format_option
@click.pass_context
def whoami(ctx: click.Context, output_format: str) -> None:
    """Show the authenticated user."""

    async def action(client: CaiClient) -> dict[str, Any]:
        user = client.current_user()
        return {"user_id": user.user_id, "username": user.username}

    info = run_with_client(ctx, action, connect=False)

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(info, indent=2))
        return
    click.echo(f"User:    {info['username']}")
    click.echo(f"User ID: {info['user_id']}")


@main.command("new-chat")
@click.argument("character_id")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the greeting")
@format_option
@click.pass_context
def new_chat(
    ctx: click.Context, character_id: str, timeout: float | None, output_format: str
) -> None:
    """Start a new chat with CHARACTER_ID.

    Examples:

        cai-runtime new-chat 8_1NyR8w1dOXmI1uWaieQcd147hecbdIK7CeEAIrdJw
    """

    async def action(client: CaiClient) -> dict[str, Any]:
        return await client.chat.create_conversation(character_id, timeout=timeout)

    response = run_with_client(ctx, action)

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(response, indent=2))
        return
    turn = response.get("turn") or {}
    chat_id = (turn.get("turn_key") or {}).get("chat_id") or response.get("request_id")
    click.echo(f"Chat ID:  {chat_id}")
    click.echo(f"Greeting: {turn_text(turn)}")


@main.command()
@click.argument("character_id")
@click.argument("chat_id")
@click.argument("message")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the reply")
@format_option
@click.pass_context
def send(
    ctx: click.Context,
    character_id: str,
    chat_id: str,
    message: str,
    timeout: float | None,
    output_format: str,
) -> None:
    """Send MESSAGE to CHARACTER_ID in CHAT_ID and print the reply."""

    async def action(client: CaiClient) -> dict[str, Any]:
        return await client.chat.send_message(message, character_id, chat_id, timeout=timeout)

    response = run_with_client(ctx, action)

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(response, indent=2))
        return
    click.echo(turn_text(response.get("turn") or {}))


@main.command()
@click.argument("chat_id")
@click.option("--pages", type=int, default=1, show_default=True, help="Pages of 50 turns")
@format_option
@click.pass_context
def history(ctx: click.Context, chat_id: str, pages: int, output_format: str) -> None:
    """Print the turns of CHAT_ID, newest first."""

    async def action(client: CaiClient) -> list[dict[str, Any]]:
        return [turn async for turn in client.chat.iter_messages(chat_id, max_pages=pages)]

    turns = run_with_client(ctx, action, connect=False)

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(turns, indent=2))
        return
    if not turns:
        click.echo("No messages found.")
        return
    for turn in turns:
        author = (turn.get("author") or {}).get("name", "?")
        click.echo(f"{author:<20} {truncate(turn_text(turn))}")


if __name__ == "__main__":
    main()
