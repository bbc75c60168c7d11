import asyncio

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from src.physarum.api.main import app
from src.physarum.domain.errors import GenerationError
from src.physarum.infrastructure.session_store import InMemorySessionStore
from src.physarum.observability.metrics import sanitize_path
from src.physarum.services.streaming import ResponseSynchronizer


client = TestClient(app)


def test_metrics_endpoint_exposes_histogram():
    r = client.get("/health")
    assert r.status_code == 200

    m = client.get("/metrics")
    assert m.status_code == 200
    body = m.text

    assert "# HELP physarum_request_latency_seconds" in body
    assert "# TYPE physarum_request_latency_seconds histogram" in body
    assert "physarum_generation_latency_seconds" in body


def test_sanitize_path():
    assert sanitize_path("") == "/"
    assert sanitize_path("/chat/messages?x=1") == "/chat"


def test_generation_failure_counter(stub_generator):
    before = REGISTRY.get_sample_value("physarum_generation_failures_total", {"mode": "text"}) or 0.0
    store = InMemorySessionStore()
    sync = ResponseSynchronizer(store, stub_generator(error=GenerationError("down")), delay=0.0)
    store.append_user("q")
    entry_id = store.append_pending_assistant()
    asyncio.run(sync.run(entry_id, "p"))
    after = REGISTRY.get_sample_value("physarum_generation_failures_total", {"mode": "text"})
    assert after == before + 1
