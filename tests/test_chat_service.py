import asyncio

import pytest

from src.physarum.config import AppSettings, GeneratorConfig
from src.physarum.domain.chat_models import EntryAppended, EntryUpdated, SelectionSet
from src.physarum.domain.errors import InvalidStateError
from src.physarum.services import chat_service as cs


@pytest.fixture
def make_service(workspace_dir, stub_generator):
    def _make(text="Sure thing.", error=None):
        gen = stub_generator(text=text, error=error)
        settings = AppSettings(workspace_roots=(workspace_dir,), chunk_delay=0.0)
        return cs.ChatService(settings, generator=gen), gen

    return _make


def test_send_records_user_and_resolved_assistant(make_service):
    service, gen = make_service("Hello back")
    entry = asyncio.run(service.send("hello there"))
    entries = service.snapshot()
    assert [e.role for e in entries] == ["user", "assistant"]
    assert entries[0].text == "hello there"
    assert entry.id == entries[1].id
    assert entry.text == "Hello back"
    assert entry.status == "complete"
    assert gen.calls == [("text", "hello there", None)]


def test_send_with_files_builds_context_prompt(make_service):
    service, gen = make_service()
    asyncio.run(service.send("summarize", SelectionSet(files=["a.txt"])))
    prompt = gen.calls[0][1]
    assert "SELECTED FILES:\n- a.txt" in prompt
    assert "USER QUERY: summarize" in prompt


def test_send_with_images_attaches_first(make_service):
    service, gen = make_service("two pictures")
    entry = asyncio.run(service.send("compare", SelectionSet(images=["img1.png", "img2.jpg"])))
    assert entry.attachment.path == "img1.png"
    mode, prompt, data_url = gen.calls[0]
    assert mode == "image"
    assert data_url == entry.attachment.data_url
    assert "1 additional image" in prompt


def test_events_are_ordered_and_keyed_by_id(make_service):
    service, _ = make_service("0123456789AB")
    seen = []
    service.events.subscribe(seen.append)
    entry = asyncio.run(service.send("hi"))
    assert isinstance(seen[0], EntryAppended) and seen[0].entry.role == "user"
    assert isinstance(seen[1], EntryAppended) and seen[1].entry.status == "pending"
    updates = [e for e in seen if isinstance(e, EntryUpdated)]
    assert [u.text for u in updates] == ["01234", "0123456789", "0123456789AB", "0123456789AB"]
    assert {u.entry_id for u in updates} == {entry.id}
    assert updates[-1].status == "complete"


def test_generation_failure_leaves_session_continuable(make_service, stub_generator):
    from src.physarum.domain.errors import GenerationError

    service, gen = make_service(error=GenerationError("API Error: Unauthorized"))
    entry = asyncio.run(service.send("first"))
    assert entry.status == "complete"
    assert entry.text.startswith("Error:")
    gen.error = None
    gen.text = "recovered"
    second = asyncio.run(service.send("second"))
    assert second.text == "recovered"


def test_missing_api_key_surfaces_as_error_entry(workspace_dir):
    settings = AppSettings(workspace_roots=(workspace_dir,), chunk_delay=0.0, generator=GeneratorConfig(api_key=None))
    service = cs.ChatService(settings)
    entry = asyncio.run(service.send("hello"))
    assert entry.status == "complete"
    assert entry.text.startswith("Error:")


def test_send_rejected_while_cycle_open(make_service):
    service, _ = make_service()
    service.store.append_user("dangling")
    with pytest.raises(InvalidStateError):
        asyncio.run(service.send("next"))


def test_assembly_crash_still_resolves(make_service, monkeypatch):
    service, _ = make_service()

    def explode(*_a, **_k):
        raise RuntimeError("assembler bug")

    monkeypatch.setattr(service.assembler, "assemble", explode)
    entry = asyncio.run(service.send("hi"))
    assert entry.status == "complete"
    assert entry.text == "Error: assembler bug"
    assert not service.store.cycle_open


def test_mentions_merge_into_selection(make_service):
    service, gen = make_service()
    asyncio.run(service.send("explain @a.txt please, cc me@example.com"))
    prompt = gen.calls[0][1]
    assert "SELECTED FILES:\n- a.txt" in prompt
    assert "USER QUERY: explain please, cc me@example.com" in prompt
    assert service.snapshot()[0].text == "explain @a.txt please, cc me@example.com"


def test_unknown_mentions_are_left_in_text(make_service):
    service, gen = make_service()
    asyncio.run(service.send("hey @someone"))
    assert gen.calls[0][1] == "hey @someone"


def test_reconfigure_swaps_generator(make_service, stub_generator):
    service, _ = make_service()
    replacement = stub_generator(text="from new model")
    cfg = service.config.with_overrides(model="other/model")
    service.reconfigure(cfg, generator=replacement)
    assert service.config.model == "other/model"
    entry = asyncio.run(service.send("hi"))
    assert entry.text == "from new model"


def test_reconfigure_rejected_mid_cycle(make_service):
    service, _ = make_service()
    service.store.append_user("q")
    with pytest.raises(InvalidStateError):
        service.reconfigure(GeneratorConfig(model="x"))


def test_structure_text_and_file_tree(make_service, workspace_dir):
    service, _ = make_service()
    text = service.structure_text(depth=1)
    assert text.startswith("DIRECTORY STRUCTURE:\n" + workspace_dir.name)
    assert "src/" in text
    assert "...(depth limit reached)" in text
    tree = service.file_tree()
    assert tree[0].children[0].name == "src"


def test_get_chat_service_singleton(monkeypatch, workspace_dir):
    monkeypatch.setenv("PHYSARUM_WORKSPACE_ROOTS", str(workspace_dir))
    first = cs.get_chat_service()
    assert cs.get_chat_service() is first
    assert first.workspace.roots == (workspace_dir.resolve(),)
    cs.reset_chat_service()
    assert cs.get_chat_service() is not first


def test_begin_records_user_entry_synchronously(make_service):
    service, gen = make_service("done")
    pending = service.begin("look at @a.txt")
    assert service.store.cycle_open
    assert service.snapshot()[0].id == pending.user_entry_id
    assert pending.selection.files == ["a.txt"]
    with pytest.raises(InvalidStateError):
        service.begin("too soon")
    assert len(service.snapshot()) == 1

    entry = asyncio.run(service.complete(pending))
    assert entry.reply_to == pending.user_entry_id
    assert not service.store.cycle_open
