"""Client lifecycle - one Ralph LSP connection per activation."""

import asyncio
import logging
from enum import Enum
from pathlib import Path

from .client import CLIENT_ID, CLIENT_NAME, DEFAULT_DOCUMENT_SELECTOR, LanguageClient, workspace_folder
from .launch import LaunchMode, artifact_exists, artifact_path, server_options
from .workspace import ROOT_MARKERS, resolve_workspace_root

logger = logging.getLogger(__name__)

OPEN_SETTINGS_ACTION = "Open Settings"
JAR_SETTING = "ralph-lsp.server.jar"


class ClientState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ClientManager:
    """Owns the single language client of an activation.

    The host supplies ``workspace_folders``, ``settings``, ``extension_dir``
    and the ``show_error_message``/``open_settings`` coroutines. Nothing else
    touches the client; all interaction goes through activate/deactivate.
    """

    def __init__(self, host, config: dict | None = None):
        config = config or {}
        self._host = host
        self._timeout = config.get("timeout_seconds", 30.0)
        self._document_selector = config.get("document_selector", DEFAULT_DOCUMENT_SELECTOR)
        self._state = ClientState.STOPPED
        self._client: LanguageClient | None = None
        self._start_task: asyncio.Task | None = None
        self._workspace_root: Path | None = None

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def workspace_root(self) -> Path | None:
        return self._workspace_root

    async def activate(self) -> None:
        """Start the client without waiting for the server to be ready.

        A missing server jar shows one prompt and leaves the manager stopped.
        """
        if self._client is not None:
            raise RuntimeError(f"{CLIENT_NAME} client is already active")

        logger.info("Activating Ralph LSP client")
        settings = self._host.settings
        mode = LaunchMode(settings.get("launch.mode", LaunchMode.PACKAGED.value))
        jar = settings.get("server.jar")
        home = settings.get("server.home")
        extension_dir = Path(self._host.extension_dir)

        # Configured mode without server.jar counts as a missing jar
        jar_path = None
        if jar or mode is not LaunchMode.CONFIGURED:
            jar_path = artifact_path(mode, extension_dir, jar)
        if jar_path is None or not artifact_exists(jar_path):
            await self._report_missing_artifact(jar_path)
            self._state = ClientState.STOPPED
            return

        markers = settings.get("workspace.markers", list(ROOT_MARKERS))
        self._workspace_root = resolve_workspace_root(self._host.workspace_folders, markers)
        if self._workspace_root is None:
            logger.info("No Ralph project root found, starting without a workspace folder")
        else:
            logger.info("Ralph project root: %s", self._workspace_root)

        client_options = {
            "document_selector": self._document_selector,
            "workspace_folder": workspace_folder(self._workspace_root) if self._workspace_root else None,
        }
        self._client = LanguageClient(
            CLIENT_ID,
            CLIENT_NAME,
            server_options(mode, extension_dir, jar=jar, home=home),
            client_options,
            timeout=self._timeout,
        )

        self._state = ClientState.STARTING
        self._start_task = asyncio.create_task(self._client.start())
        self._start_task.add_done_callback(self._on_started)

    def _on_started(self, task: asyncio.Task):
        self._start_task = None
        if task.cancelled():
            self._client = None
            self._state = ClientState.STOPPED
            return
        error = task.exception()
        if error is not None:
            # Reported once here; the host sees the failure through the log
            logger.error("Failed to start %s", CLIENT_NAME, exc_info=error)
            self._client = None
            self._state = ClientState.STOPPED
            return
        self._state = ClientState.RUNNING
        logger.info("%s client running", CLIENT_NAME)

    async def _report_missing_artifact(self, jar_path: Path | None):
        if jar_path is None:
            message = f"{CLIENT_NAME} server jar is not configured. Set {JAR_SETTING}."
        else:
            message = f"{CLIENT_NAME} server not found at {jar_path}"
        logger.warning(message)

        choice = await self._host.show_error_message(message, OPEN_SETTINGS_ACTION)
        if choice == OPEN_SETTINGS_ACTION:
            await self._host.open_settings(JAR_SETTING)

    async def wait_started(self) -> bool:
        """Wait for a pending start to settle. True if the client is running."""
        if self._start_task is not None:
            await asyncio.wait([self._start_task])
        return self._state is ClientState.RUNNING

    async def deactivate(self) -> None:
        """Stop the client, if any. Safe to call repeatedly."""
        # Let a pending start settle before tearing down
        await self.wait_started()

        client = self._client
        if client is None:
            return None

        self._state = ClientState.STOPPING
        try:
            await client.stop()
        finally:
            self._client = None
            self._workspace_root = None
            self._state = ClientState.STOPPED
