from __future__ import annotations

from typing import List

from fastapi import APIRouter, Query

from ...domain.chat_models import DirectoryNode, WorkspaceStructure
from ...services.chat_service import get_chat_service

router = APIRouter(prefix="/workspace", tags=["workspace"])


@router.get("/tree", response_model=List[DirectoryNode])
def workspace_tree() -> List[DirectoryNode]:
    return get_chat_service().file_tree()


@router.get("/structure", response_model=WorkspaceStructure)
def workspace_structure(depth: int = Query(3, ge=1, le=10)) -> WorkspaceStructure:
    service = get_chat_service()
    return WorkspaceStructure(depth=depth, text=service.structure_text(depth))
