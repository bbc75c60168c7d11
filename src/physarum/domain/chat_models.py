from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


Role = Literal["user", "assistant"]
EntryStatus = Literal["pending", "complete"]
NodeKind = Literal["folder", "file", "image", "depth_limit", "error"]


class Attachment(BaseModel):
    kind: Literal["image"] = "image"
    path: str
    mime_type: str
    encoded_data: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.encoded_data}"


class ConversationEntry(BaseModel):
    id: str
    role: Role
    text: str = ""
    status: EntryStatus
    created_at: str
    attachment: Optional[Attachment] = None
    # assistant entries: id of the user entry they answer
    reply_to: Optional[str] = None


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        trimmed = (value or "").strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        ordered.append(trimmed)
    return ordered


class SelectionSet(BaseModel):
    files: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)

    @field_validator("files", "images")
    @classmethod
    def _distinct_in_order(cls, values: List[str]) -> List[str]:
        return _dedupe(values)

    def is_empty(self) -> bool:
        return not self.files and not self.images

    def merged(self, files: List[str], images: List[str]) -> "SelectionSet":
        return SelectionSet(files=[*self.files, *files], images=[*self.images, *images])


class DirectoryNode(BaseModel):
    name: str
    kind: NodeKind
    path: Optional[str] = None
    children: List["DirectoryNode"] = Field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.kind == "folder"


DirectoryNode.model_rebuild()


class EntryAppended(BaseModel):
    type: Literal["entry_appended"] = "entry_appended"
    entry: ConversationEntry


class EntryUpdated(BaseModel):
    type: Literal["entry_updated"] = "entry_updated"
    entry_id: str
    text: str
    status: EntryStatus
    attachment: Optional[Attachment] = None


SessionEvent = Union[EntryAppended, EntryUpdated]


class ChatMessageCreate(BaseModel):
    text: str = Field(min_length=1)
    files: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)


class WorkspaceStructure(BaseModel):
    depth: int
    text: str
