import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep tests away from real credentials, redis and the shared service."""
    from src.physarum.infrastructure import events
    from src.physarum.services import chat_service

    for key in ("PHYSARUM_API_KEY", "OPENROUTER_API_KEY", "REDIS_URL", "PHYSARUM_WORKSPACE_ROOTS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(events, "_mirror", None)
    chat_service.reset_chat_service()
    yield
    chat_service.reset_chat_service()
    if events._mirror is not None:
        events._mirror.stop()


class StubGenerator:
    """Records prompts and returns a canned reply (or raises)."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate(self, prompt):
        self.calls.append(("text", prompt, None))
        if self.error:
            raise self.error
        return self.text

    def generate_with_image(self, prompt, image_data_url):
        self.calls.append(("image", prompt, image_data_url))
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def stub_generator():
    return StubGenerator


@pytest.fixture
def workspace_dir(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("print('hi')\n")
    (tmp_path / "a.txt").write_text("X")
    (tmp_path / "img1.png").write_bytes(b"\x89PNG\r\n\x1a\nfake")
    (tmp_path / "img2.jpg").write_bytes(b"\xff\xd8\xff\xe0fake")
    (tmp_path / ".hidden").write_text("secret")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("module.exports = 1")
    return tmp_path
