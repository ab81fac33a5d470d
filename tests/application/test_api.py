"""Tests for the generation API and WebSocket surface."""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from contextforge.application.api.api_server import create_app
from contextforge.domain.context.content_store import InMemoryContentStore
from contextforge.domain.generation.record_store import InMemoryGenerationRecordStore
from contextforge.domain.models.content import SYSTEM_PROMPT_KIND, ContentItem, Zone
from contextforge.domain.models.generation import ProviderKind
from contextforge.infrastructure.config.settings import Settings
from tests.fakes import ScriptedProvider


@pytest.fixture
def api_content_store() -> InMemoryContentStore:
    store = InMemoryContentStore()
    store.items["s1"].append(
        ContentItem(session_id="s1", content="Be brief.", zone=Zone.PERMANENT, position=0, kind=SYSTEM_PROMPT_KIND)
    )
    return store


@pytest.fixture
def claude_provider() -> ScriptedProvider:
    return ScriptedProvider(["Hello", " there"], name="claude")


@pytest.fixture
def held_provider() -> ScriptedProvider:
    """Never finishes on its own; used to end generations by cancelling them"""
    return ScriptedProvider(["partial"], hold_after=1, name="openrouter")


@pytest.fixture
def client(api_content_store, claude_provider, held_provider):
    settings = Settings(_env_file=None, flush_interval_ms=1, log_format="console")
    app = create_app(
        settings=settings,
        content_store=api_content_store,
        record_store=InMemoryGenerationRecordStore(),
        providers={ProviderKind.CLAUDE: claude_provider, ProviderKind.OPENROUTER: held_provider}
    )
    with TestClient(app) as test_client:
        yield test_client


def wait_for_status(client: TestClient, generation_id: str, status: str, attempts: int = 100) -> dict:
    for _ in range(attempts):
        body = client.get(f"/generations/{generation_id}").json()
        if body["status"] == status:
            return body
        # The worker runs on the app's event loop in another thread
        time.sleep(0.01)
    raise AssertionError(f"generation never reached {status}")


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["active_generations"] == 0

    def test_providers_health(self, client: TestClient) -> None:
        body = client.get("/providers/health").json()

        assert body["claude"]["ok"] is True


class TestGenerations:
    def test_start_and_complete(self, client: TestClient, claude_provider: ScriptedProvider) -> None:
        response = client.post("/sessions/s1/generations", json={"input": "Hi"})

        assert response.status_code == 201
        generation_id = response.json()["generation_id"]

        record = wait_for_status(client, generation_id, "complete")
        assert record["text"] == "Hello there"
        assert claude_provider.calls[0].system_instruction == "Be brief."

        latest = client.get("/sessions/s1/generations/latest").json()
        assert latest["id"] == generation_id

    def test_blank_input_is_conflict(self, client: TestClient) -> None:
        response = client.post("/sessions/s1/generations", json={"input": "  "})

        assert response.status_code == 409

    def test_unavailable_provider(self, client: TestClient) -> None:
        response = client.post("/sessions/s1/generations", json={"input": "Hi", "provider": "ollama"})

        assert response.status_code == 400

    def test_unknown_generation_is_404(self, client: TestClient) -> None:
        assert client.get("/generations/nope").status_code == 404
        assert client.post("/generations/nope/cancel").status_code == 404
        assert client.get("/sessions/empty/generations/latest").status_code == 404

    def test_cancel_after_complete_reports_false(self, client: TestClient) -> None:
        generation_id = client.post("/sessions/s1/generations", json={"input": "Hi"}).json()["generation_id"]
        wait_for_status(client, generation_id, "complete")

        body = client.post(f"/generations/{generation_id}/cancel").json()

        assert body == {"cancel_requested": False}


class TestSaveGeneration:
    def test_saves_to_end_of_working_zone(
        self, client: TestClient, api_content_store: InMemoryContentStore
    ) -> None:
        first = client.post("/sessions/s1/generations", json={"input": "Hi"}).json()["generation_id"]
        second = client.post("/sessions/s1/generations", json={"input": "Again"}).json()["generation_id"]
        wait_for_status(client, first, "complete")
        wait_for_status(client, second, "complete")

        saved = client.post(f"/generations/{first}/save")
        again = client.post(f"/generations/{second}/save")

        assert saved.status_code == 201
        body = saved.json()
        assert body["content"] == "Hello there"
        assert body["zone"] == Zone.WORKING.value
        assert body["kind"] == "generation"
        assert body["position"] == 0.0
        assert again.json()["position"] == 1.0

        working = [item for item in api_content_store.items["s1"] if item.zone == Zone.WORKING]
        assert [item.id for item in working] == [body["id"], again.json()["id"]]

    def test_unfinished_generation_is_conflict(
        self, client: TestClient, api_content_store: InMemoryContentStore
    ) -> None:
        generation_id = client.post(
            "/sessions/s1/generations", json={"input": "Hi", "provider": "openrouter"}
        ).json()["generation_id"]

        assert client.post(f"/generations/{generation_id}/save").status_code == 409

        client.post(f"/generations/{generation_id}/cancel")
        wait_for_status(client, generation_id, "cancelled")

        assert client.post(f"/generations/{generation_id}/save").status_code == 409
        assert all(item.zone != Zone.WORKING for item in api_content_store.items["s1"])

    def test_unknown_generation_is_404(self, client: TestClient) -> None:
        assert client.post("/generations/nope/save").status_code == 404


class TestSaveBlankGeneration:
    @pytest.fixture
    def claude_provider(self) -> ScriptedProvider:
        return ScriptedProvider(["  "], name="claude")

    def test_blank_text_is_conflict(self, client: TestClient, api_content_store: InMemoryContentStore) -> None:
        generation_id = client.post("/sessions/s1/generations", json={"input": "Hi"}).json()["generation_id"]
        wait_for_status(client, generation_id, "complete")

        response = client.post(f"/generations/{generation_id}/save")

        assert response.status_code == 409
        assert len(api_content_store.items["s1"]) == 1


class TestGenerationWebSocket:
    def test_streams_snapshots_until_terminal(self, client: TestClient) -> None:
        generation_id = client.post("/sessions/s1/generations", json={"input": "Hi"}).json()["generation_id"]

        events = []
        with client.websocket_connect(f"/ws/generations/{generation_id}") as websocket:
            assert websocket.receive_json()["type"] == "connection"
            while True:
                event = websocket.receive_json()
                events.append(event)
                if event["payload"]["status"] != "streaming":
                    break

        assert events[-1]["type"] == "generation_snapshot"
        assert events[-1]["payload"]["status"] == "complete"
        assert events[-1]["payload"]["text"] == "Hello there"

    def test_unknown_generation_closes(self, client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/generations/nope") as websocket:
                websocket.receive_json()

        assert exc_info.value.code == 1008
