"""Turns a raw query plus the user's workspace selection into one prompt.

Sections are emitted in a fixed order so identical inputs always produce
identical prompts:

1. directory structure (when the structure predicate says so)
2. ``SELECTED FILES``
3. ``SELECTED IMAGES``
4. ``FILE CONTENTS`` with one fenced block per file
5. ``USER QUERY`` followed by the query text

When several images are selected a disclosure line is placed ahead of all
sections, since only the first image travels with the request. A query with
no selection and no code-intent keyword is returned untouched.
"""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..domain.chat_models import Attachment, SelectionSet
from ..domain.errors import WorkspaceIOError
from .workspace import WorkspaceReader


LOG = logging.getLogger("physarum.context")

StructurePredicate = Callable[[str, SelectionSet], bool]
SnapshotProvider = Callable[[], str]

CODE_INTENT_KEYWORDS: Tuple[str, ...] = (
    "code",
    "project",
    "structure",
    "directory",
    "folder",
    "file",
    "function",
    "class",
    "module",
    "import",
    "repository",
)

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
}
DEFAULT_IMAGE_MIME = "image/png"

QUERY_MARKER = "USER QUERY:"

GUIDANCE = (
    "Please address the user's query with reference to the provided file(s) and directory structure. "
    "When referring to code or content from these files, please specify which file you're referring to. "
    "Consider the directory structure when providing context about file organization. "
    "If the files don't contain information relevant to the query, please state that and provide the best answer you can."
)


def should_include_structure(query: str, selection: SelectionSet) -> bool:
    if not selection.is_empty():
        return True
    haystack = (query or "").lower()
    return any(term in haystack for term in CODE_INTENT_KEYWORDS)


def mime_type_for(path: str) -> str:
    return MIME_TYPES.get(os.path.splitext(path)[1].lower(), DEFAULT_IMAGE_MIME)


def encode_image(path: str, data: bytes) -> Attachment:
    return Attachment(
        path=path,
        mime_type=mime_type_for(path),
        encoded_data=base64.b64encode(data).decode("ascii"),
    )


@dataclass
class AssembledPrompt:
    prompt: str
    attachment: Optional[Attachment] = None
    included_structure: bool = False
    omitted_images: int = 0

    @property
    def image_data_url(self) -> Optional[str]:
        return self.attachment.data_url if self.attachment else None


class ContextAssembler:
    def __init__(
        self,
        reader: WorkspaceReader,
        snapshot_provider: SnapshotProvider,
        predicate: StructurePredicate = should_include_structure,
        max_file_chars: int = 100_000,
    ) -> None:
        self._reader = reader
        self._snapshot = snapshot_provider
        self._predicate = predicate
        self._max_file_chars = max_file_chars

    def assemble(self, query: str, selection: Optional[SelectionSet] = None) -> AssembledPrompt:
        selection = selection or SelectionSet()
        include_structure = bool(self._predicate(query, selection))
        if not include_structure and selection.is_empty():
            return AssembledPrompt(prompt=query)

        attachment, image_notes = self._encode_images(selection.images)
        omitted = max(0, len(selection.images) - 1) if attachment else 0

        parts: List[str] = []
        if omitted:
            parts.append(self._disclosure(attachment, omitted))
        if include_structure:
            parts.append(self._snapshot())
        if selection.files:
            lines = ["SELECTED FILES:"]
            lines.extend(f"- {path}" for path in selection.files)
            parts.append("\n".join(lines))
        if selection.images:
            lines = ["SELECTED IMAGES:"]
            lines.extend(f"- {path}{image_notes.get(path, '')}" for path in selection.images)
            parts.append("\n".join(lines))
        if selection.files:
            blocks = ["FILE CONTENTS:"]
            blocks.extend(self._file_block(path) for path in selection.files)
            parts.append("\n\n".join(blocks))
        parts.append(f"{QUERY_MARKER} {query}")
        parts.append(GUIDANCE)

        prompt = "\n\n".join(parts)
        LOG.info(
            "context_assembled",
            extra={
                "files": len(selection.files),
                "images": len(selection.images),
                "structure": include_structure,
                "chars": len(prompt),
            },
        )
        return AssembledPrompt(
            prompt=prompt,
            attachment=attachment,
            included_structure=include_structure,
            omitted_images=omitted,
        )

    def _read_text(self, path: str) -> str:
        try:
            raw = self._reader.read_file(path)
        except WorkspaceIOError as exc:
            LOG.warning("context_file_unreadable", extra={"path": path, "err": exc.message})
            return f"[Error reading file: {exc.message}]"
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        if self._max_file_chars and len(text) > self._max_file_chars:
            text = text[: self._max_file_chars] + "\n\n[truncated]"
        return text

    def _file_block(self, path: str) -> str:
        lang = os.path.splitext(path)[1].lower().lstrip(".")
        content = self._read_text(path)
        return f"FILE: {path}\nCONTENT:\n```{lang}\n{content}\n```"

    def _encode_images(self, paths: List[str]) -> Tuple[Optional[Attachment], dict]:
        attachment: Optional[Attachment] = None
        notes = {}
        for path in paths:
            try:
                data = self._reader.read_file(path)
            except WorkspaceIOError as exc:
                LOG.warning("context_image_unreadable", extra={"path": path, "err": exc.message})
                notes[path] = f" (unreadable: {exc.message})"
                continue
            if attachment is None:
                attachment = encode_image(path, data)
                notes[path] = " (attached)"
        return attachment, notes

    @staticmethod
    def _disclosure(attachment: Optional[Attachment], omitted: int) -> str:
        noun = "image" if omitted == 1 else "images"
        sent = attachment.path if attachment else "none"
        return (
            f"NOTE: Only one image can be sent per request. Sending {sent}; "
            f"{omitted} additional {noun} omitted from direct transmission and listed by path only."
        )
