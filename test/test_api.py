"""
Тесты HTTP API: сессии, монологи, поиск, прием событий.
"""
import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from app.core.config import reset_settings
from app.main import app
from app.models.error_log import ErrorLog
from app.models.monolog import Monolog
from app.routers import events, monologs
from app.services.monolog_aggregator import MonologAggregator


@pytest_asyncio.fixture
async def client(db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def redis_mock():
    redis = AsyncMock()
    redis.xadd.return_value = "1700000000000-0"
    app.dependency_overrides[events.get_redis] = lambda: redis
    return redis


async def create_user_monolog(client, refs, session_ref, content="Привет"):
    response = await client.post("/monologs", json={
        "session_ref": session_ref,
        "role": "user",
        "first_message_id": "msg-1",
        "content": content,
        "participant_id": refs["user"],
        "provider_id": refs["human_input"],
        "mode_id": refs["build"],
    })
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.database
class TestHealthAndSessions:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_upsert_and_get_session(self, client):
        response = await client.post("/sessions", json={"session_id": "ses_api", "title": "API"})
        assert response.status_code == 200
        body = response.json()
        assert body["session_id"] == "ses_api"

        again = await client.post("/sessions", json={"session_id": "ses_api"})
        assert again.json()["id"] == body["id"]

        response = await client.get("/sessions/ses_api")
        assert response.status_code == 200
        assert response.json()["title"] == "API"

    @pytest.mark.asyncio
    async def test_unknown_session_404(self, client):
        response = await client.get("/sessions/missing")
        assert response.status_code == 404


@pytest.mark.database
class TestMonologEndpoints:
    @pytest.mark.asyncio
    async def test_monolog_lifecycle(self, client, refs, session_ref):
        monolog_id = await create_user_monolog(client, refs, session_ref, content="A")

        response = await client.get("/monologs/open", params={"session_ref": session_ref, "role": "user"})
        assert response.json()["id"] == monolog_id

        response = await client.post(f"/monologs/{monolog_id}/append", json={"text": "B", "message_id": "msg-2"})
        assert response.json() == {"success": True}

        response = await client.post(f"/monologs/{monolog_id}/close", json={"last_message_id": "msg-2"})
        assert response.json() == {"success": True}
        response = await client.post(f"/monologs/{monolog_id}/close", json={"last_message_id": "msg-2"})
        assert response.json() == {"success": False}

        response = await client.put(f"/monologs/{monolog_id}/content", json={"text": "C"})
        assert response.json() == {"success": False}

        response = await client.get(f"/monologs/{monolog_id}")
        body = response.json()
        assert body["content"] == "A\n\nB"
        assert body["last_message_id"] == "msg-2"
        assert body["completed_at"] is not None

        response = await client.get("/monologs/open", params={"session_ref": session_ref, "role": "user"})
        assert response.json() is None

    @pytest.mark.asyncio
    async def test_create_assistant_without_parent_422(self, client, refs, session_ref):
        response = await client.post("/monologs", json={
            "session_ref": session_ref,
            "role": "assistant",
            "first_message_id": "msg-1",
            "participant_id": refs["model"],
            "provider_id": refs["anthropic"],
            "mode_id": refs["build"],
        })
        assert response.status_code == 422
        assert await Monolog.all().count() == 0

    @pytest.mark.asyncio
    async def test_unknown_monolog_404(self, client):
        response = await client.get("/monologs/999")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_search_by_vector(self, client, refs, session_ref):
        monolog_id = await create_user_monolog(client, refs, session_ref)
        await client.post(f"/monologs/{monolog_id}/close", json={"last_message_id": "msg-1"})
        await Monolog.filter(id=monolog_id).update(embedding="[1.0,0.0]")

        response = await client.post("/monologs/search", json={"query_vector": [1.0, 0.0], "limit": 5})

        assert response.status_code == 200
        hits = response.json()
        assert len(hits) == 1
        assert hits[0]["monolog"]["id"] == monolog_id
        assert hits[0]["similarity"] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_search_by_text_uses_embedder(self, client, refs, session_ref):
        embedder = AsyncMock()
        embedder.embed.return_value = [1.0, 0.0]
        app.dependency_overrides[monologs.get_embedding_service] = lambda: embedder

        response = await client.post("/monologs/search", json={"query": "pgvector"})

        assert response.status_code == 200
        assert response.json() == []
        embedder.embed.assert_awaited_once_with("pgvector")

    @pytest.mark.asyncio
    async def test_search_by_text_without_provider_503(self, client):
        response = await client.post("/monologs/search", json={"query": "pgvector"})
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_search_requires_query(self, client):
        response = await client.post("/monologs/search", json={"limit": 3})
        assert response.status_code == 422


@pytest.mark.database
class TestEventEndpoint:
    @pytest.mark.asyncio
    async def test_event_queued(self, client, redis_mock):
        payload = {"type": "session.idle", "session_id": "ses_1"}

        response = await client.post("/events", json=payload)

        assert response.status_code == 202
        assert response.json()["status"] == "queued"
        key, fields = redis_mock.xadd.await_args.args
        assert key == "monolog:ses_1:stream"
        assert '"session.idle"' in fields["event"]

    @pytest.mark.asyncio
    async def test_malformed_event_quarantined(self, client, redis_mock):
        response = await client.post("/events", json={"type": "message.turn", "session_id": "ses_1"})

        assert response.status_code == 422
        redis_mock.xadd.assert_not_called()
        entry = await ErrorLog.first()
        assert entry.reason.startswith("invalid event")
        assert "message.turn" in entry.payload

    @pytest.mark.asyncio
    async def test_inline_ingest(self, client, redis_mock, monkeypatch):
        monkeypatch.setenv("EVENT_INGEST_INLINE", "true")
        reset_settings()
        aggregator = MonologAggregator()
        app.dependency_overrides[events.get_aggregator] = lambda: aggregator

        response = await client.post("/events", json={
            "type": "message.turn",
            "session_id": "ses_inline",
            "turn": {"role": "user", "message_id": "msg-1", "text": "Привет"},
        })

        assert response.status_code == 202
        assert response.json() == {"status": "processed"}
        redis_mock.xadd.assert_not_called()
        assert await Monolog.all().count() == 1
