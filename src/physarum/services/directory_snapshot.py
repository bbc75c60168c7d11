from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from ..domain.chat_models import DirectoryNode
from ..domain.errors import WorkspaceIOError
from .workspace import WorkspaceReader, is_excluded, is_image_path, sort_entries


LOG = logging.getLogger("physarum.workspace")

DEPTH_LIMIT_LABEL = "...(depth limit reached)"
NO_WORKSPACE_TEXT = "No workspace folders open."


class DirectorySnapshotBuilder:
    """Fresh, depth-bounded view of the workspace folders.

    Depth counts listing levels: the contents of a root are at depth 1, so
    with ``max_depth=1`` every folder directly under a root carries a single
    depth-limit leaf instead of its contents.
    """

    def __init__(self, reader: WorkspaceReader) -> None:
        self._reader = reader

    def build(self, root_paths: Sequence[Path | str], max_depth: int = 3) -> List[DirectoryNode]:
        nodes: List[DirectoryNode] = []
        for raw in root_paths:
            root = Path(raw)
            nodes.append(
                DirectoryNode(
                    name=root.name or str(root),
                    kind="folder",
                    path=str(root),
                    children=self._walk(root, root, 1, max_depth),
                )
            )
        return nodes

    def _walk(self, directory: Path, root: Path, depth: int, max_depth: int) -> List[DirectoryNode]:
        if depth > max_depth:
            return [DirectoryNode(name=DEPTH_LIMIT_LABEL, kind="depth_limit")]
        try:
            entries = self._reader.list_directory(directory)
        except WorkspaceIOError as exc:
            LOG.warning("snapshot_directory_unreadable", extra={"path": str(directory), "err": exc.message})
            return [DirectoryNode(name=f"Error reading directory: {exc.message}", kind="error")]

        out: List[DirectoryNode] = []
        for entry in sort_entries(e for e in entries if not is_excluded(e.name)):
            full = directory / entry.name
            rel = full.relative_to(root).as_posix()
            if entry.is_dir:
                children = self._walk(full, root, depth + 1, max_depth)
                out.append(DirectoryNode(name=entry.name, kind="folder", path=rel, children=children))
            else:
                kind = "image" if is_image_path(entry.name) else "file"
                out.append(DirectoryNode(name=entry.name, kind=kind, path=rel))
        return out


def render_tree(nodes: Sequence[DirectoryNode]) -> str:
    if not nodes:
        return NO_WORKSPACE_TEXT
    lines: List[str] = ["DIRECTORY STRUCTURE:"]
    for root in nodes:
        lines.append(root.name)
        _render_children(root.children, "", lines)
    return "\n".join(lines)


def _render_children(children: Sequence[DirectoryNode], indent: str, lines: List[str]) -> None:
    for i, node in enumerate(children):
        last = i == len(children) - 1
        connector = "└── " if last else "├── "
        label = f"{node.name}/" if node.is_folder else node.name
        lines.append(f"{indent}{connector}{label}")
        if node.is_folder:
            _render_children(node.children, indent + ("    " if last else "│   "), lines)
