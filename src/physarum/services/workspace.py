"""Read-only access to the files of the open workspace.

``LocalWorkspace`` is the host collaborator the assembler and the snapshot
builder read through. Paths handed in by the chat surface are relative to
the first workspace root; anything resolving outside every root is refused.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..domain.chat_models import DirectoryNode
from ..domain.errors import WorkspaceIOError


LOG = logging.getLogger("physarum.workspace")

EXCLUDED_NAMES = frozenset(
    {
        "node_modules",
        "dist",
        "build",
        "out",
        "__pycache__",
        "venv",
        ".git",
        ".vscode",
    }
)

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp"})

_MENTION_RE = re.compile(r"(?<!\S)@(\S+)")


@dataclass(frozen=True)
class DirEntry:
    name: str
    is_dir: bool
    size: int = 0


class WorkspaceReader(Protocol):
    def read_file(self, path: str) -> bytes: ...

    def list_directory(self, path: str | Path) -> List[DirEntry]: ...


def is_excluded(name: str) -> bool:
    return name.startswith(".") or name in EXCLUDED_NAMES


def is_image_path(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS


def sort_entries(entries: Iterable[DirEntry]) -> List[DirEntry]:
    """Folders first, then by name."""
    return sorted(entries, key=lambda e: (not e.is_dir, e.name))


def _is_relative_to(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


class LocalWorkspace:
    def __init__(self, roots: Sequence[Path | str]) -> None:
        self.roots: Tuple[Path, ...] = tuple(Path(r).resolve() for r in roots)

    @property
    def primary_root(self) -> Optional[Path]:
        return self.roots[0] if self.roots else None

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            root = self.primary_root
            if root is None:
                raise WorkspaceIOError(str(path), "No workspace folder open")
            candidate = root / candidate
        resolved = candidate.resolve()
        if not any(_is_relative_to(resolved, root) for root in self.roots):
            raise WorkspaceIOError(str(path), "Path is outside the workspace")
        return resolved

    def is_file(self, path: str) -> bool:
        try:
            return self.resolve(path).is_file()
        except WorkspaceIOError:
            return False

    def read_file(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            LOG.warning("workspace_read_failed", extra={"path": str(path), "err": str(exc)})
            raise WorkspaceIOError(str(path), exc.strerror or str(exc)) from exc

    def list_directory(self, path: str | Path) -> List[DirEntry]:
        target = self.resolve(path)
        entries: List[DirEntry] = []
        try:
            with os.scandir(target) as it:
                for e in it:
                    try:
                        is_dir = e.is_dir(follow_symlinks=False)
                        size = 0 if is_dir else e.stat(follow_symlinks=False).st_size
                    except OSError:
                        continue
                    entries.append(DirEntry(name=e.name, is_dir=is_dir, size=size))
        except OSError as exc:
            LOG.warning("workspace_list_failed", extra={"path": str(path), "err": str(exc)})
            raise WorkspaceIOError(str(path), exc.strerror or str(exc)) from exc
        return entries

    def file_tree(self, max_file_bytes: int = 1024 * 1024) -> List[DirectoryNode]:
        """Selectable tree for the file picker, one folder node per root."""
        nodes: List[DirectoryNode] = []
        for root in self.roots:
            nodes.append(
                DirectoryNode(
                    name=root.name or str(root),
                    kind="folder",
                    path=str(root),
                    children=self._picker_children(root, root, max_file_bytes),
                )
            )
        return nodes

    def _picker_children(self, directory: Path, root: Path, max_file_bytes: int) -> List[DirectoryNode]:
        try:
            entries = self.list_directory(directory)
        except WorkspaceIOError:
            return []
        out: List[DirectoryNode] = []
        for entry in sort_entries(e for e in entries if not is_excluded(e.name)):
            full = directory / entry.name
            rel = full.relative_to(root).as_posix()
            if entry.is_dir:
                out.append(
                    DirectoryNode(
                        name=entry.name,
                        kind="folder",
                        path=rel,
                        children=self._picker_children(full, root, max_file_bytes),
                    )
                )
            elif entry.size < max_file_bytes:
                kind = "image" if is_image_path(entry.name) else "file"
                out.append(DirectoryNode(name=entry.name, kind=kind, path=rel))
        return out


def extract_mentions(query: str, accept: Optional[Callable[[str], bool]] = None) -> Tuple[List[str], str]:
    """Split ``@path`` mentions out of a query.

    Returns the mentioned paths in order of appearance and the query with
    those mentions removed. With ``accept``, only mentions it approves are
    taken; the rest stay in the text untouched.
    """
    paths: List[str] = []

    def _take(match: "re.Match[str]") -> str:
        candidate = match.group(1)
        if accept is not None and not accept(candidate):
            return match.group(0)
        paths.append(candidate)
        return ""

    remaining = _MENTION_RE.sub(_take, query or "")
    if not paths:
        return [], query
    remaining = re.sub(r"[ \t]{2,}", " ", remaining).strip()
    return paths, remaining
