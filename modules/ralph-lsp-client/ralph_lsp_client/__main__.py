"""Run the Ralph LSP client from a terminal.

Usage:
    python -m ralph_lsp_client \
        --workspace /path/to/project \
        --extension-dir /path/to/extension \
        --settings ~/.config/ralph-lsp/settings.yaml \
        --mode development

Stops the server on SIGINT/SIGTERM.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .manager import ClientManager
from .settings import load_settings


class ConsoleHost:
    """Host that reports to stderr instead of editor UI."""

    def __init__(self, workspace_folders, settings, extension_dir):
        self.workspace_folders = workspace_folders
        self.settings = settings
        self.extension_dir = extension_dir

    async def show_error_message(self, message: str, *actions: str) -> str | None:
        print(f"[ralph-lsp] {message}", file=sys.stderr, flush=True)
        return None

    async def open_settings(self, key: str) -> None:
        print(f"[ralph-lsp] set {key} in your settings file", file=sys.stderr, flush=True)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Ralph LSP client")
    parser.add_argument(
        "--workspace",
        action="append",
        default=[],
        help="Workspace folder (repeatable, first match wins)",
    )
    parser.add_argument(
        "--extension-dir",
        default=str(Path.cwd()),
        help="Directory holding ralph-lsp.jar",
    )
    parser.add_argument(
        "--settings",
        action="append",
        default=[],
        help="YAML settings file (repeatable, later files win)",
    )
    parser.add_argument("--mode", choices=["packaged", "development", "configured"])
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


async def run(args) -> int:
    """Run the client until signalled. Returns 1 if it never started."""
    settings = load_settings(*args.settings)
    if args.mode:
        settings = settings.with_overrides({"launch": {"mode": args.mode}})
    host = ConsoleHost([Path(w) for w in args.workspace] or [Path.cwd()], settings, args.extension_dir)
    manager = ClientManager(host)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    await manager.activate()
    if not await manager.wait_started():
        return 1
    try:
        await stop.wait()
    finally:
        await manager.deactivate()
    return 0


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
