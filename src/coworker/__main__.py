"""Run a single prompt through a worker from the command line.

Usage:
    python -m coworker "explain this repository"
    python -m coworker --mode cli --cwd ~/project --model sonnet "fix the tests"

Streams tokens to stdout and progress to stderr, then tears the worker down.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid
from dataclasses import replace

from rich.console import Console
from rich.markup import escape

from coworker import __version__
from coworker.config import load_config
from coworker.config.schema import IntegrationMode
from coworker.logging import get_logger, setup_logging
from coworker.observers import EventKind, QueueObserver, WorkerEvent
from coworker.permissions import PermissionManager
from coworker.registry import SessionRegistry

log = get_logger()

console = Console()
err_console = Console(stderr=True)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coworker",
        description="Send one prompt to an AI-assistant worker and stream the reply.",
    )
    parser.add_argument("prompt", help="Prompt text to send")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in IntegrationMode],
        help="Integration mode (default: from config)",
    )
    parser.add_argument("--cwd", help="Working directory for cli/sdk modes (default: current directory)")
    parser.add_argument("--model", help="Model name override")
    parser.add_argument(
        "--verbose", "-v", type=int, default=None, metavar="N",
        help="Log verbosity 0-4 (error, warning, info, verbose, trace)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def render_event(event: WorkerEvent) -> None:
    """Print one worker event."""
    if event.kind is EventKind.STREAM_TOKEN:
        console.print(event.payload, end="", markup=False, highlight=False, soft_wrap=True)
    elif event.kind is EventKind.PROGRESS:
        payload = event.payload or {}
        style = "red" if payload.get("is_error") else "dim"
        err_console.print(f"[{style}]» {escape(str(payload.get('message', '')))}[/{style}]", highlight=False)
        for todo in payload.get("todos") or []:
            mark = "x" if todo.get("status") == "completed" else " "
            err_console.print(f"[dim]  {escape(f'[{mark}]')} {escape(str(todo.get('content', '')))}[/dim]", highlight=False)
    elif event.kind is EventKind.ERROR:
        err_console.print(f"[bold red]error:[/bold red] {escape(str(event.payload))}", highlight=False)
    elif event.kind is EventKind.CONFIRM_REQUEST:
        payload = event.payload or {}
        err_console.print(
            f"[yellow]approval needed:[/yellow] {escape(str(payload.get('description', payload.get('tool'))))} (denied)",
            highlight=False,
        )


async def run(args: argparse.Namespace) -> int:
    config = load_config(session_root=args.cwd)
    agent = config.agent
    if args.mode:
        agent = replace(agent, mode=IntegrationMode(args.mode))
    if args.model:
        agent = replace(agent, model=args.model)
    config = replace(config, agent=agent)

    setup_logging(replace(config.logging, verbose=args.verbose) if args.verbose is not None else config.logging)

    permissions = PermissionManager.from_config(config.permissions)
    permissions.authorize_folder(args.cwd or os.getcwd(), primary=True)

    registry = SessionRegistry(config, permissions=permissions)
    session_id = f"cli-{uuid.uuid4().hex[:8]}"
    observer = QueueObserver()
    registry.register_observer(session_id, observer)

    worker = registry.get_or_create_worker(session_id)
    if worker is None:
        err_console.print("[bold red]error:[/bold red] could not create a worker (check credentials and mode)")
        return 2

    async def pump() -> bool:
        failed = False
        while True:
            event = await observer.queue.get()
            render_event(event)
            if event.kind is EventKind.ERROR:
                failed = True
            elif event.kind is EventKind.CONFIRM_REQUEST:
                worker.handle_confirm_response(event.payload["id"], False)
            elif event.kind is EventKind.COMPLETE:
                return failed

    try:
        pump_task = asyncio.create_task(pump())
        await worker.process_user_message(args.prompt)
        failed = await pump_task
        console.print()
        return 1 if failed else 0
    finally:
        await registry.destroy_all()


def main(argv: list[str] | None = None) -> None:
    args = create_parser().parse_args(argv)
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        log.info("Interrupted")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
