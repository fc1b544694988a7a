"""Language client connection to a ralph-lsp server process.

Uses structured concurrency pattern for subprocess cleanup to prevent
"Event loop is closed" errors. See: https://github.com/python/cpython/issues/114177

The key insight: always await process.wait() (or communicate()) to ensure the
event loop registers process termination before returning.
"""

import asyncio
import contextlib
import fnmatch
import json
import logging
import os
from pathlib import Path, PurePath
from typing import Any
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

CLIENT_ID = "ralph-lsp"
CLIENT_NAME = "Ralph LSP"
WORKSPACE_FOLDER_NAME = "ralph-lsp-home"

# Ralph sources, plus the ralph.json build config
DEFAULT_DOCUMENT_SELECTOR = (
    {"pattern": "**/*.ral"},
    {"language": "json", "pattern": "**/ralph.json"},
)


class LspError(Exception):
    """Error response returned by the language server."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


def workspace_folder(root: Path) -> dict:
    """Workspace folder entry for a resolved project root."""
    return {"uri": root.as_uri(), "name": WORKSPACE_FOLDER_NAME, "index": 0}


def _glob_match(path: str | Path, pattern: str) -> bool:
    posix = PurePath(path).as_posix()
    if fnmatch.fnmatchcase(posix, pattern):
        return True
    # "**/x" also matches a bare relative "x"
    return pattern.startswith("**/") and fnmatch.fnmatchcase(posix, pattern[3:])


class LanguageClient:
    """Client side of one connection to a language server subprocess.

    The id/name pair, server options and client options are fixed at
    construction. A client is started at most once.
    """

    def __init__(
        self,
        id: str,
        name: str,
        server_options: dict[str, Any],
        client_options: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ):
        client_options = client_options or {}
        self.id = id
        self.name = name
        self._command = [server_options["command"], *server_options.get("args", [])]
        self._document_selector = tuple(
            dict(f) for f in client_options.get("document_selector", DEFAULT_DOCUMENT_SELECTOR)
        )
        self._workspace_folder = client_options.get("workspace_folder")
        self._timeout = timeout
        self._process: asyncio.subprocess.Process | None = None
        self._request_id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def document_selector(self) -> tuple[dict, ...]:
        return self._document_selector

    @property
    def workspace_folder(self) -> dict | None:
        return self._workspace_folder

    @property
    def root_path(self) -> Path | None:
        if not self._workspace_folder:
            return None
        return Path(unquote(urlparse(self._workspace_folder["uri"]).path))

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def matches(self, path: str | Path, language_id: str | None = None) -> bool:
        """Check whether a document is routed through this client."""
        for doc_filter in self._document_selector:
            language = doc_filter.get("language")
            pattern = doc_filter.get("pattern")
            if not language and not pattern:
                continue
            if language and language_id is not None and language != language_id:
                continue
            if pattern and not _glob_match(path, pattern):
                continue
            return True
        return False

    async def start(self) -> None:
        """Spawn the server and complete the initialize handshake."""
        if self._process is not None:
            raise RuntimeError(f"{self.name} client is already started")

        logger.info("Starting %s: %s", self.name, " ".join(self._command))
        self._process = await asyncio.create_subprocess_exec(
            *self._command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.root_path,
        )
        self._reader_task = asyncio.create_task(self._read_messages())
        self._stderr_task = asyncio.create_task(self._read_stderr())

        try:
            await self._initialize()
        except BaseException:
            await self._terminate()
            raise

    async def _initialize(self):
        """Send initialize request, then the initialized notification."""
        folders = None
        if self._workspace_folder:
            folders = [{"uri": self._workspace_folder["uri"], "name": self._workspace_folder["name"]}]

        result = await self.request(
            "initialize",
            {
                "processId": os.getpid(),
                "clientInfo": {"name": self.name},
                "rootUri": self._workspace_folder["uri"] if self._workspace_folder else None,
                "workspaceFolders": folders,
                "capabilities": {
                    "textDocument": {
                        "synchronization": {"didSave": True},
                        "publishDiagnostics": {"relatedInformation": True},
                    },
                    "workspace": {"workspaceFolders": True},
                },
            },
        )
        await self.notify("initialized", {})
        return result

    async def request(self, method: str, params: Any = None) -> Any:
        """Send a request and wait for response."""
        if self._reader_task is not None and self._reader_task.done():
            raise ConnectionError(f"{self.name} server output is closed")
        self._request_id += 1
        request_id = self._request_id

        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._send(message)
            return await asyncio.wait_for(future, timeout=self._timeout)
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any = None):
        """Send a notification (no response expected)."""
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._send(message)

    async def did_open(self, path: str | Path, text: str, language_id: str = "ralph") -> bool:
        """Open a document on the server if the document selector covers it."""
        if not self.matches(path, language_id):
            return False
        await self.notify(
            "textDocument/didOpen",
            {
                "textDocument": {
                    "uri": Path(path).absolute().as_uri(),
                    "languageId": language_id,
                    "version": 1,
                    "text": text,
                }
            },
        )
        return True

    async def _send(self, message: dict):
        """Send a JSON-RPC message to the server."""
        if self._process is None or self._process.stdin is None:
            raise ConnectionError(f"{self.name} client is not running")
        content = json.dumps(message).encode()
        header = f"Content-Length: {len(content)}\r\n\r\n".encode()
        self._process.stdin.write(header + content)
        await self._process.stdin.drain()

    async def _read_messages(self):
        """Background task to read messages from the server."""
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        while True:
            try:
                message = await self._read_message(stdout)
                if not isinstance(message, dict):
                    logger.warning("Ignoring non-object message from %s", self.name)
                    continue
                await self._dispatch(message)

            except asyncio.CancelledError:
                raise
            except (EOFError, asyncio.IncompleteReadError, ConnectionError):
                break
            except (ValueError, KeyError) as e:
                logger.warning("Ignoring malformed message from %s: %s", self.name, e)

        # Server closed its output: nothing pending will ever be answered
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(f"{self.name} server exited"))

    async def _read_message(self, stdout) -> Any:
        """Read one framed message. Raises EOFError when the server output ends."""
        content_length = None
        while True:
            line = await stdout.readline()
            if not line:
                raise EOFError
            if not line.strip():
                # Blank line ends the headers
                if content_length is not None:
                    break
                continue
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                content_length = int(value.strip())
        return json.loads(await stdout.readexactly(content_length))

    async def _dispatch(self, message: dict):
        if "method" in message:
            method = message["method"]
            if method == "window/logMessage":
                logger.info("[%s] %s", self.id, message.get("params", {}).get("message", ""))
            if "id" in message:
                # Server-to-client requests get an empty result
                await self._send({"jsonrpc": "2.0", "id": message["id"], "result": None})
            return

        future = self._pending.get(message.get("id"))
        if future is None or future.done():
            return
        if "error" in message:
            error = message["error"]
            future.set_exception(LspError(error.get("message", "Unknown error"), error.get("code")))
        else:
            future.set_result(message.get("result"))

    async def _read_stderr(self):
        """Forward server stderr to the log."""
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                # Line over the stream limit; the reader has already discarded it
                logger.debug("[%s stderr] <over-long line dropped>", self.id)
                continue
            if not line:
                break
            logger.debug("[%s stderr] %s", self.id, line.decode(errors="replace").rstrip())

    async def stop(self) -> None:
        """Gracefully shut the server down. Does nothing if never started.

        Always awaits process completion so the event loop registers process
        termination before returning (CPython #114177).
        """
        process = self._process
        if process is None:
            return

        try:
            if process.returncode is None:
                await self.request("shutdown")
                await self.notify("exit")
        except (LspError, ConnectionError, OSError, asyncio.TimeoutError) as e:
            logger.warning("%s did not shut down cleanly: %s", self.name, e)
        finally:
            await self._terminate()
            logger.info("%s stopped", self.name)

    async def _terminate(self):
        """Cancel readers, kill the process if needed and wait for it to exit."""
        process = self._process
        if process is None:
            return
        try:
            for task in (self._reader_task, self._stderr_task):
                if task:
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
                    except Exception as e:
                        logger.warning("%s reader task failed: %s", self.name, e)
            self._reader_task = None
            self._stderr_task = None

            if process.stdin:
                process.stdin.close()

            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()

            try:
                await asyncio.wait_for(process.communicate(), timeout=5.0)
            except (asyncio.TimeoutError, OSError, ValueError):
                # Fallback: ensure we still wait for process exit
                await process.wait()
        finally:
            self._process = None
