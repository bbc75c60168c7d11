from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Optional, Tuple

from ..config import AppSettings, GeneratorConfig, load_settings
from ..domain.chat_models import ConversationEntry, DirectoryNode, SelectionSet
from ..domain.errors import InvalidStateError
from ..infrastructure.events import EventBus
from ..infrastructure.session_store import InMemorySessionStore, SessionStore
from .context_assembler import ContextAssembler, StructurePredicate, should_include_structure
from .directory_snapshot import DirectorySnapshotBuilder, render_tree
from .llm_client import DeferredGenerator, Generator
from .streaming import ResponseSynchronizer
from .workspace import LocalWorkspace, extract_mentions, is_image_path


LOG = logging.getLogger("physarum.session")


@dataclass(frozen=True)
class PendingQuery:
    user_entry_id: str
    prompt_query: str
    selection: SelectionSet


class ChatService:
    """Entry point for one interactive session.

    Accepts a query plus selection, records the user entry, assembles the
    prompt and lets the synchronizer resolve the assistant entry. One cycle
    runs at a time; a send while a cycle is open fails with
    ``InvalidStateError`` before anything is recorded.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: Optional[SessionStore] = None,
        generator: Optional[Generator] = None,
        events: Optional[EventBus] = None,
        workspace: Optional[LocalWorkspace] = None,
        predicate: StructurePredicate = should_include_structure,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.events = events if events is not None else EventBus()
        self.store: SessionStore = store if store is not None else InMemorySessionStore(self.events)
        self.workspace = workspace if workspace is not None else LocalWorkspace(settings.workspace_roots)
        self.snapshot_builder = DirectorySnapshotBuilder(self.workspace)
        self.assembler = ContextAssembler(
            self.workspace,
            self.structure_text,
            predicate=predicate,
            max_file_chars=settings.max_prompt_file_chars,
        )
        self._sleep = sleep
        self._generator: Generator = generator or DeferredGenerator(settings.generator)
        self.synchronizer = self._build_synchronizer()

    def _build_synchronizer(self) -> ResponseSynchronizer:
        return ResponseSynchronizer(
            self.store,
            self._generator,
            events=self.events,
            chunk_size=self.settings.chunk_size,
            delay=self.settings.chunk_delay,
            sleep=self._sleep,
        )

    @property
    def config(self) -> GeneratorConfig:
        return self.settings.generator

    def reconfigure(self, config: GeneratorConfig, generator: Optional[Generator] = None) -> GeneratorConfig:
        if self.store.cycle_open:
            raise InvalidStateError("Cannot reconfigure while a response is pending")
        self.settings = replace(self.settings, generator=config)
        self._generator = generator or DeferredGenerator(config)
        self.synchronizer = self._build_synchronizer()
        LOG.info("generator_reconfigured", extra={"provider": config.provider, "model": config.model})
        return config

    def directory_nodes(self, depth: Optional[int] = None) -> List[DirectoryNode]:
        return self.snapshot_builder.build(self.workspace.roots, depth or self.settings.max_depth)

    def structure_text(self, depth: Optional[int] = None) -> str:
        return render_tree(self.directory_nodes(depth))

    def file_tree(self) -> List[DirectoryNode]:
        return self.workspace.file_tree(self.settings.max_file_bytes)

    def snapshot(self) -> List[ConversationEntry]:
        return self.store.snapshot()

    def resolve_mentions(self, query: str, selection: SelectionSet) -> Tuple[str, SelectionSet]:
        paths, remaining = extract_mentions(query, accept=self.workspace.is_file)
        if not paths:
            return query, selection
        files = [p for p in paths if not is_image_path(p)]
        images = [p for p in paths if is_image_path(p)]
        return remaining or query, selection.merged(files, images)

    def begin(self, query: str, selection: Optional[SelectionSet] = None) -> PendingQuery:
        """Record the user entry for ``query`` and open the cycle.

        Runs synchronously so a caller learns about an overlapping send
        (``InvalidStateError``) before it commits to streaming anything.
        """
        selection = selection or SelectionSet()
        prompt_query, selection = self.resolve_mentions(query, selection)
        user_entry_id = self.store.append_user(query)
        return PendingQuery(user_entry_id=user_entry_id, prompt_query=prompt_query, selection=selection)

    async def complete(self, pending: PendingQuery) -> ConversationEntry:
        try:
            assembled = await asyncio.to_thread(self.assembler.assemble, pending.prompt_query, pending.selection)
        except Exception as exc:
            LOG.exception("context_assembly_failed", extra={"entry_id": pending.user_entry_id})
            entry_id = self.store.append_pending_assistant()
            return self.synchronizer.resolve_with_error(entry_id, exc)
        entry_id = self.store.append_pending_assistant(assembled.attachment)
        return await self.synchronizer.run(entry_id, assembled.prompt, assembled.image_data_url)

    async def send(self, query: str, selection: Optional[SelectionSet] = None) -> ConversationEntry:
        return await self.complete(self.begin(query, selection))


_service: ChatService | None = None


def get_chat_service() -> ChatService:
    global _service
    if _service is None:
        _service = ChatService(load_settings())
    return _service


def set_chat_service(service: Optional[ChatService]) -> None:
    global _service
    _service = service


def reset_chat_service() -> None:
    set_chat_service(None)
