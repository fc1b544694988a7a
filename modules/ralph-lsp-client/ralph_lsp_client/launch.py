"""Server invocation for ralph-lsp.jar.

Three launch modes share one argument layout:

    packaged     java -jar <extension_dir>/ralph-lsp.jar
    development  java -jar -DRALPH_LSP_LOG_HOME=<extension_dir>/../.. <extension_dir>/ralph-lsp.jar
    configured   java -jar [-DRALPH_LSP_LOG_HOME=<server.home>] <server.jar>

The log home property always comes before the jar path.
"""

import os
from enum import Enum
from pathlib import Path

SERVER_COMMAND = "java"
ARCHIVE_FLAG = "-jar"
JAR_NAME = "ralph-lsp.jar"
LOG_HOME_PROPERTY = "RALPH_LSP_LOG_HOME"


class LaunchMode(str, Enum):
    PACKAGED = "packaged"
    DEVELOPMENT = "development"
    CONFIGURED = "configured"


def artifact_path(mode: LaunchMode, extension_dir: str | Path, jar: str | None = None) -> Path:
    """Return the jar the given mode launches.

    Relative configured paths are taken relative to the extension directory.
    """
    extension_dir = Path(extension_dir)
    if mode is LaunchMode.CONFIGURED:
        if not jar:
            raise ValueError("configured launch mode requires server.jar")
        return extension_dir / Path(jar).expanduser()
    return extension_dir / JAR_NAME


def log_home(extension_dir: str | Path) -> str:
    """Development log directory: two levels above the extension directory."""
    return os.path.normpath(os.path.join(os.fspath(extension_dir), "..", ".."))


def build_args(
    mode: LaunchMode,
    extension_dir: str | Path,
    jar: str | None = None,
    home: str | None = None,
) -> list[str]:
    """Build the java arguments for launching the server."""
    jar_path = str(artifact_path(mode, extension_dir, jar))

    if mode is LaunchMode.PACKAGED:
        return [ARCHIVE_FLAG, jar_path]

    if mode is LaunchMode.DEVELOPMENT:
        return [ARCHIVE_FLAG, f"-D{LOG_HOME_PROPERTY}={log_home(extension_dir)}", jar_path]

    # Configured: an unset home omits the property instead of passing an empty value
    if home:
        return [ARCHIVE_FLAG, f"-D{LOG_HOME_PROPERTY}={Path(home).expanduser()}", jar_path]
    return [ARCHIVE_FLAG, jar_path]


def server_options(
    mode: LaunchMode,
    extension_dir: str | Path,
    jar: str | None = None,
    home: str | None = None,
) -> dict:
    """Process invocation for the language client."""
    return {
        "command": SERVER_COMMAND,
        "args": build_args(mode, extension_dir, jar=jar, home=home),
    }


def artifact_exists(path: str | Path) -> bool:
    """Check the server jar is present on disk."""
    return Path(path).is_file()
