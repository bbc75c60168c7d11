from __future__ import annotations

import asyncio
import json
from typing import List, Optional, Set

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ...domain.chat_models import ChatMessageCreate, ConversationEntry, EntryAppended, SelectionSet, SessionEvent
from ...domain.errors import InvalidStateError, format_user_error
from ...services.chat_service import get_chat_service


router = APIRouter(prefix="/chat", tags=["chat"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatSettingsUpdate(BaseModel):
    provider: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None


class ChatSettingsView(BaseModel):
    provider: str
    model: str
    base_url: str
    has_api_key: bool


def _settings_view() -> ChatSettingsView:
    cfg = get_chat_service().config
    return ChatSettingsView(
        provider=cfg.provider,
        model=cfg.model,
        base_url=cfg.resolved_base_url,
        has_api_key=bool(cfg.api_key),
    )


@router.get("/entries", response_model=List[ConversationEntry])
def list_entries() -> List[ConversationEntry]:
    return get_chat_service().snapshot()


@router.get("/settings", response_model=ChatSettingsView)
def get_settings() -> ChatSettingsView:
    return _settings_view()


@router.put("/settings", response_model=ChatSettingsView)
def update_settings(req: ChatSettingsUpdate) -> ChatSettingsView:
    service = get_chat_service()
    cfg = service.config.with_overrides(
        provider=(req.provider or "").strip().lower() or None,
        model=(req.model or "").strip() or None,
        base_url=(req.base_url or "").strip() or None,
        api_key=req.api_key or None,
    )
    try:
        service.reconfigure(cfg)
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _settings_view()


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@router.post("/messages", response_class=StreamingResponse)
async def post_message(msg: ChatMessageCreate) -> StreamingResponse:
    service = get_chat_service()
    selection = SelectionSet(files=msg.files, images=msg.images)
    try:
        pending = service.begin(msg.text, selection)
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Optional[SessionEvent]]" = asyncio.Queue()
    # ids of the entries this request opened; everything else on the bus is ignored
    owned: Set[str] = {pending.user_entry_id}

    def _forward(event: SessionEvent) -> None:
        if isinstance(event, EntryAppended):
            if event.entry.id not in owned and event.entry.reply_to not in owned:
                return
            owned.add(event.entry.id)
        elif event.entry_id not in owned:
            return
        loop.call_soon_threadsafe(queue.put_nowait, event)

    user_entry = service.store.get(pending.user_entry_id)
    if user_entry is not None:
        queue.put_nowait(EntryAppended(entry=user_entry))
    unsubscribe = service.events.subscribe(_forward)
    task = asyncio.create_task(service.complete(pending))
    task.add_done_callback(lambda _t: loop.call_soon_threadsafe(queue.put_nowait, None))

    async def event_stream():
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _sse(event.model_dump(mode="json"))
            if not task.cancelled() and task.exception() is not None:
                yield _sse({"type": "error", "text": format_user_error(task.exception())})
        finally:
            unsubscribe()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=_SSE_HEADERS)
