"""
Тесты фонового конвейера эмбеддингов и клиента провайдера.
"""
import asyncio
import httpx
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from openai import APIConnectionError, APITimeoutError, OpenAIError
from tortoise.exceptions import DBConnectionError

from app import run_embedding_worker

from app.core.config import Settings
from app.models.monolog import Monolog, Role
from app.repositories.monolog_repository import MonologRepository
from app.services.embedding_service import (
    EmbeddingError,
    EmbeddingProviderUnavailable,
    OpenAIEmbeddingService,
)
from app.workers.embedding.pipeline import EmbeddingPipeline

OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def make_settings(**overrides) -> Settings:
    values = {"embedding_batch_size": 2, "embedding_interval": 0.01, "embedding_dimensions": 3}
    values.update(overrides)
    return Settings(**values)


async def closed_monologs(session_ref, refs, count):
    repo = MonologRepository()
    ids = []
    for i in range(count):
        monolog_id = await repo.create_monolog(
            session_ref=session_ref,
            parent_id=None,
            role=Role.USER,
            first_message_id=f"msg-{i}",
            content=f"монолог {i}",
            participant_id=refs["user"],
            provider_id=refs["human_input"],
            mode_id=refs["build"],
        )
        await repo.close(monolog_id, last_message_id=f"msg-{i}")
        ids.append(monolog_id)
    return ids


@pytest.mark.database
class TestEmbeddingPipeline:
    @pytest.mark.asyncio
    async def test_batch_limit(self, session_ref, refs):
        """Сценарий: 5 монологов, пакет 2 -> за проход обрабатываются ровно 2"""
        ids = await closed_monologs(session_ref, refs, 5)
        service = AsyncMock()
        service.embed.return_value = [0.1, 0.2, 0.3]
        pipeline = EmbeddingPipeline(embedding_service=service, settings=make_settings())

        result = await pipeline.run_once()

        assert result.attempted == 2
        assert result.embedded == 2
        embedded = await Monolog.filter(embedding__isnull=False).values_list("id", flat=True)
        assert sorted(embedded) == ids[:2]

    @pytest.mark.asyncio
    async def test_item_failure_continues_batch(self, session_ref, refs):
        """Сценарий: ошибка на первом монологе не мешает обработать второй"""
        ids = await closed_monologs(session_ref, refs, 5)
        service = AsyncMock()
        service.embed.side_effect = [EmbeddingError("bad input"), [0.1, 0.2, 0.3]]
        pipeline = EmbeddingPipeline(embedding_service=service, settings=make_settings())

        result = await pipeline.run_once()

        assert service.embed.await_count == 2
        assert (result.attempted, result.embedded, result.failed) == (2, 1, 1)
        assert (await Monolog.get(id=ids[0])).embedding is None
        assert (await Monolog.get(id=ids[1])).embedding is not None

    @pytest.mark.asyncio
    async def test_provider_unavailable_ends_tick(self, session_ref, refs):
        await closed_monologs(session_ref, refs, 3)
        service = AsyncMock()
        service.embed.side_effect = EmbeddingProviderUnavailable("timeout")
        pipeline = EmbeddingPipeline(embedding_service=service, settings=make_settings(embedding_batch_size=3))

        result = await pipeline.run_once()

        assert service.embed.await_count == 1
        assert result.provider_unavailable is True
        assert await Monolog.filter(embedding__isnull=False).count() == 0

    @pytest.mark.asyncio
    async def test_disabled_does_nothing(self, session_ref, refs):
        await closed_monologs(session_ref, refs, 1)
        service = AsyncMock()
        pipeline = EmbeddingPipeline(embedding_service=service, settings=make_settings(embedding_enabled=False))

        result = await pipeline.run_once()

        assert result.attempted == 0
        service.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_monologs_are_skipped(self, session_ref, refs):
        repo = MonologRepository()
        await repo.create_monolog(
            session_ref=session_ref,
            parent_id=None,
            role=Role.USER,
            first_message_id="msg-open",
            content="еще говорю",
            participant_id=refs["user"],
            provider_id=refs["human_input"],
            mode_id=refs["build"],
        )
        service = AsyncMock()
        pipeline = EmbeddingPipeline(embedding_service=service, settings=make_settings())

        result = await pipeline.run_once()

        assert result.attempted == 0
        service.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_stops_between_ticks(self, session_ref, refs):
        """Тест: stop() завершает цикл после текущего прохода"""
        await closed_monologs(session_ref, refs, 3)
        service = AsyncMock()
        service.embed.return_value = [0.1, 0.2, 0.3]
        pipeline = EmbeddingPipeline(embedding_service=service, settings=make_settings())

        task = asyncio.create_task(pipeline.run())
        for _ in range(100):
            if await Monolog.filter(embedding__isnull=True).count() == 0:
                break
            await asyncio.sleep(0.01)
        pipeline.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert await Monolog.filter(embedding__isnull=True).count() == 0


class TestPipelineResilience:
    @pytest.mark.database
    @pytest.mark.asyncio
    async def test_missing_api_key_is_provider_unavailable(self, session_ref, refs):
        """Тест: без OPENAI_API_KEY проход не падает, монологи ждут следующего тика"""
        await closed_monologs(session_ref, refs, 1)
        pipeline = EmbeddingPipeline(settings=make_settings())

        result = await pipeline.run_once()

        assert result.provider_unavailable is True
        assert result.attempted == 0
        assert await Monolog.filter(embedding__isnull=False).count() == 0

    @pytest.mark.asyncio
    async def test_run_survives_failed_tick(self):
        """Тест: ошибка одного прохода логируется, цикл продолжает работать"""
        pipeline = EmbeddingPipeline(embedding_service=AsyncMock(), settings=make_settings())
        calls = []

        async def flaky_tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            pipeline.stop()

        pipeline.run_once = flaky_tick
        await asyncio.wait_for(pipeline.run(), timeout=1.0)

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_run_propagates_db_errors(self):
        pipeline = EmbeddingPipeline(embedding_service=AsyncMock(), settings=make_settings())
        pipeline.run_once = AsyncMock(side_effect=DBConnectionError("down"))

        with pytest.raises(DBConnectionError):
            await asyncio.wait_for(pipeline.run(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_worker_fails_fast_without_api_key(self, monkeypatch):
        """Тест: процесс конвейера без ключа падает до подключения к БД"""
        init_db = AsyncMock()
        monkeypatch.setattr(run_embedding_worker, "init_db", init_db)

        with pytest.raises(ValueError):
            await run_embedding_worker.run()
        init_db.assert_not_called()


def mock_client(embedding=None, error=None):
    client = MagicMock()
    if error is not None:
        client.embeddings.create = AsyncMock(side_effect=error)
    else:
        client.embeddings.create = AsyncMock(
            return_value=SimpleNamespace(data=[SimpleNamespace(embedding=embedding)])
        )
    return client


class TestOpenAIEmbeddingService:
    @pytest.mark.asyncio
    async def test_embed(self):
        client = mock_client([0.1, 0.2, 0.3])
        service = OpenAIEmbeddingService(client=client, model="text-embedding-3-small", dimensions=3)

        assert await service.embed("Привет") == [0.1, 0.2, 0.3]
        client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input="Привет")

    @pytest.mark.asyncio
    async def test_wrong_dimensions(self):
        service = OpenAIEmbeddingService(client=mock_client([0.1, 0.2]), dimensions=3)
        with pytest.raises(EmbeddingError):
            await service.embed("текст")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        APIConnectionError(request=OPENAI_REQUEST),
        APITimeoutError(request=OPENAI_REQUEST),
    ])
    async def test_transport_errors(self, error):
        service = OpenAIEmbeddingService(client=mock_client(error=error), dimensions=3)
        with pytest.raises(EmbeddingProviderUnavailable):
            await service.embed("текст")

    @pytest.mark.asyncio
    async def test_provider_error(self):
        service = OpenAIEmbeddingService(client=mock_client(error=OpenAIError("invalid model")), dimensions=3)
        with pytest.raises(EmbeddingError) as exc_info:
            await service.embed("текст")
        assert not isinstance(exc_info.value, EmbeddingProviderUnavailable)

    @pytest.mark.asyncio
    async def test_empty_text(self):
        client = mock_client([0.1, 0.2, 0.3])
        service = OpenAIEmbeddingService(client=client, dimensions=3)
        with pytest.raises(EmbeddingError):
            await service.embed("   ")
        client.embeddings.create.assert_not_called()

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            OpenAIEmbeddingService()

    @pytest.mark.requires_api_key
    @pytest.mark.skip(reason="Требует OPENAI_API_KEY и сетевой доступ")
    @pytest.mark.asyncio
    async def test_real_provider(self):
        service = OpenAIEmbeddingService()
        vector = await service.embed("Как настроить pgvector?")
        assert len(vector) == service.dimensions
