"""Simulated streaming of a complete model response into the session.

The remote model only ever hands back the whole reply. The synchronizer
replays it into the open assistant entry in fixed-size slices with a short
pause between them, publishing an ``EntryUpdated`` after every slice. Each
event carries the cumulative text, so a renderer can overwrite instead of
append and stays correct when an event is missed or seen twice.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterator, Optional

from ..core.state_machine import CycleTracker
from ..domain.chat_models import ConversationEntry, EntryUpdated
from ..domain.errors import format_user_error
from ..infrastructure.events import EventBus
from ..infrastructure.session_store import SessionStore
from ..observability.metrics import GENERATION_FAILURES, GENERATION_LATENCY, STREAM_CHUNKS
from .llm_client import Generator


LOG = logging.getLogger("physarum.stream")

DEFAULT_CHUNK_SIZE = 5
DEFAULT_CHUNK_DELAY = 0.03


def iter_chunks(text: str, size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(text), size):
        yield text[start : start + size]


class ResponseSynchronizer:
    def __init__(
        self,
        store: SessionStore,
        generator: Generator,
        events: Optional[EventBus] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay: float = DEFAULT_CHUNK_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._generator = generator
        self._events = events
        self._chunk_size = chunk_size
        self._delay = delay
        self._sleep = sleep
        self.last_cycle: Optional[CycleTracker] = None

    def _emit(self, entry: ConversationEntry, final: bool = False) -> None:
        if self._events is None:
            return
        self._events.publish(
            EntryUpdated(
                entry_id=entry.id,
                text=entry.text,
                status=entry.status,
                attachment=entry.attachment if final else None,
            )
        )

    def resolve_with_error(self, entry_id: str, exc: BaseException) -> ConversationEntry:
        self._store.overwrite_text(entry_id, format_user_error(exc))
        entry = self._store.mark_complete(entry_id)
        self._emit(entry, final=True)
        return entry

    async def _generate(self, prompt: str, image_data_url: Optional[str]) -> str:
        if image_data_url:
            return await asyncio.to_thread(self._generator.generate_with_image, prompt, image_data_url)
        return await asyncio.to_thread(self._generator.generate, prompt)

    async def run(self, entry_id: str, prompt: str, image_data_url: Optional[str] = None) -> ConversationEntry:
        """Drive one cycle for ``entry_id`` and return the resolved entry.

        Any failure of the generation call is folded into the entry as
        ``Error: ...`` text; the entry always ends up complete.
        """
        cycle = CycleTracker(entry_id)
        self.last_cycle = cycle
        cycle.advance("awaiting_generation")
        mode = "image" if image_data_url else "text"
        started = time.perf_counter()
        try:
            response_text = await self._generate(prompt, image_data_url)
        except Exception as exc:
            GENERATION_FAILURES.labels(mode=mode).inc()
            LOG.warning("generation_failed", extra={"entry_id": entry_id, "mode": mode, "err": str(exc)})
            cycle.advance("resolved")
            return self.resolve_with_error(entry_id, exc)
        finally:
            GENERATION_LATENCY.labels(mode=mode).observe(time.perf_counter() - started)

        cycle.advance("streaming")
        response_text = response_text or ""
        LOG.debug("stream_started", extra={"entry_id": entry_id, "chars": len(response_text)})
        chunks = list(iter_chunks(response_text, self._chunk_size))
        for index, chunk in enumerate(chunks):
            entry = self._store.apply_chunk(entry_id, chunk)
            self._emit(entry)
            STREAM_CHUNKS.inc()
            if self._delay and index < len(chunks) - 1:
                await self._sleep(self._delay)

        entry = self._store.mark_complete(entry_id)
        cycle.advance("resolved")
        self._emit(entry, final=True)
        LOG.info("stream_completed", extra={"entry_id": entry_id, "chunks": len(chunks)})
        return entry
