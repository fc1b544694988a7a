"""Workspace root detection for Ralph projects."""

from collections.abc import Iterable, Sequence
from pathlib import Path

# Any of these directly inside a directory makes it a Ralph project root
ROOT_MARKERS = ("alephium.config.ts", "contracts", ".ralph-lsp")


def find_root_dir(start_dir: str | Path, markers: Sequence[str] = ROOT_MARKERS) -> Path | None:
    """Find the nearest directory, starting at start_dir, that contains a marker.

    Returns None once the filesystem root has been checked without a match.
    """
    current = Path(start_dir).absolute()
    while True:
        for marker in markers:
            if (current / marker).exists():
                return current
        if current.parent == current:
            return None
        current = current.parent


def resolve_workspace_root(
    folders: Iterable[str | Path] | None,
    markers: Sequence[str] = ROOT_MARKERS,
) -> Path | None:
    """Resolve the project root across workspace folders.

    Folders are tried in declaration order and the first match wins. None means
    the client runs without a workspace folder (global scope).
    """
    for folder in folders or ():
        root = find_root_dir(folder, markers)
        if root is not None:
            return root
    return None
