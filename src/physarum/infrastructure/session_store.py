from __future__ import annotations

import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol

from ..domain.chat_models import Attachment, ConversationEntry, EntryAppended
from ..domain.errors import InvalidStateError, UnknownEntryError
from .events import EventBus


LOG = logging.getLogger("physarum.session")


class SessionStore(Protocol):
    def append_user(self, text: str) -> str: ...

    def append_pending_assistant(self, attachment: Optional[Attachment] = None) -> str: ...

    def apply_chunk(self, entry_id: str, delta: str) -> ConversationEntry: ...

    def overwrite_text(self, entry_id: str, text: str) -> ConversationEntry: ...

    def mark_complete(self, entry_id: str) -> ConversationEntry: ...

    def get(self, entry_id: str) -> Optional[ConversationEntry]: ...

    def snapshot(self) -> List[ConversationEntry]: ...

    @property
    def cycle_open(self) -> bool: ...


@dataclass
class _Entry:
    id: str
    role: str
    text: str
    status: str
    created_at: str
    attachment: Optional[Attachment] = None
    reply_to: Optional[str] = None


class InMemorySessionStore:
    """Ordered conversation of a single interactive session.

    Entries are only ever appended. The text, status and attachment of the
    open assistant entry are the only fields mutated after creation. A cycle
    opens with ``append_user`` (or ``append_pending_assistant`` on its own)
    and closes when the assistant entry is marked complete; no second user
    entry is accepted in between. An assistant entry opened while a user
    entry is waiting records that entry's id in ``reply_to``.

    Events are published after the store lock is released.
    """

    def __init__(self, events: Optional[EventBus] = None) -> None:
        self._entries: List[_Entry] = []
        self._by_id: Dict[str, _Entry] = {}
        self._open_assistant: Optional[str] = None
        self._awaiting_user: Optional[str] = None
        self._seq = itertools.count(1)
        self._prefix = uuid.uuid4().hex[:8]
        self._events = events
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def _next_id(self) -> str:
        return f"{self._prefix}-{next(self._seq):06d}"

    def _entry_model(self, entry: _Entry) -> ConversationEntry:
        attachment = entry.attachment.model_copy() if entry.attachment else None
        return ConversationEntry(
            id=entry.id,
            role=entry.role,
            text=entry.text,
            status=entry.status,
            created_at=entry.created_at,
            attachment=attachment,
            reply_to=entry.reply_to,
        )

    def _append(self, entry: _Entry) -> EntryAppended:
        self._entries.append(entry)
        self._by_id[entry.id] = entry
        return EntryAppended(entry=self._entry_model(entry))

    def _publish(self, event: EntryAppended) -> None:
        if self._events is not None:
            self._events.publish(event)

    def _open_entry(self, entry_id: str) -> _Entry:
        if entry_id != self._open_assistant or entry_id not in self._by_id:
            LOG.error("chunk_targets_stale_entry", extra={"entry_id": entry_id, "open": self._open_assistant})
            raise UnknownEntryError(entry_id)
        return self._by_id[entry_id]

    @property
    def cycle_open(self) -> bool:
        with self._lock:
            return self._awaiting_user is not None or self._open_assistant is not None

    def append_user(self, text: str) -> str:
        with self._lock:
            if self._open_assistant is not None or self._awaiting_user is not None:
                LOG.error(
                    "append_user_while_cycle_open",
                    extra={"open": self._open_assistant, "awaiting": self._awaiting_user},
                )
                raise InvalidStateError("A previous query is still awaiting its response")
            entry = _Entry(
                id=self._next_id(),
                role="user",
                text=text,
                status="complete",
                created_at=self._now_iso(),
            )
            self._awaiting_user = entry.id
            event = self._append(entry)
        self._publish(event)
        return entry.id

    def append_pending_assistant(self, attachment: Optional[Attachment] = None) -> str:
        with self._lock:
            if self._open_assistant is not None:
                LOG.error("append_assistant_while_pending", extra={"open": self._open_assistant})
                raise InvalidStateError("An assistant entry is already pending")
            entry = _Entry(
                id=self._next_id(),
                role="assistant",
                text="",
                status="pending",
                created_at=self._now_iso(),
                attachment=attachment,
                reply_to=self._awaiting_user,
            )
            self._open_assistant = entry.id
            self._awaiting_user = None
            event = self._append(entry)
        self._publish(event)
        return entry.id

    def apply_chunk(self, entry_id: str, delta: str) -> ConversationEntry:
        with self._lock:
            entry = self._open_entry(entry_id)
            entry.text += delta
            return self._entry_model(entry)

    def overwrite_text(self, entry_id: str, text: str) -> ConversationEntry:
        with self._lock:
            entry = self._open_entry(entry_id)
            entry.text = text
            return self._entry_model(entry)

    def mark_complete(self, entry_id: str) -> ConversationEntry:
        with self._lock:
            entry = self._by_id.get(entry_id)
            if entry is None:
                LOG.error("complete_unknown_entry", extra={"entry_id": entry_id})
                raise UnknownEntryError(entry_id)
            if entry.status == "complete":
                LOG.debug("duplicate_completion_ignored", extra={"entry_id": entry_id})
                return self._entry_model(entry)
            entry.status = "complete"
            self._open_assistant = None
            return self._entry_model(entry)

    def get(self, entry_id: str) -> Optional[ConversationEntry]:
        with self._lock:
            entry = self._by_id.get(entry_id)
            return self._entry_model(entry) if entry else None

    def snapshot(self) -> List[ConversationEntry]:
        with self._lock:
            return [self._entry_model(e) for e in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
