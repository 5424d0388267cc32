"""
Фоновый конвейер эмбеддингов.

Периодически находит закрытые монологи без эмбеддинга, получает вектор у
провайдера и записывает его. Работает только с колонкой embedding закрытых
монологов, поэтому не пересекается с агрегатором.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from tortoise.exceptions import DBConnectionError

from app.core.config import Settings, get_settings
from app.repositories.monolog_repository import MonologRepository
from app.services.embedding_service import (
    EmbeddingError,
    EmbeddingProviderUnavailable,
    OpenAIEmbeddingService,
)

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    attempted: int = 0
    embedded: int = 0
    failed: int = 0
    provider_unavailable: bool = False


class EmbeddingPipeline:
    def __init__(
        self,
        embedding_service: Optional[OpenAIEmbeddingService] = None,
        monologs: Optional[MonologRepository] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._embedding_service = embedding_service
        self.monologs = monologs or MonologRepository()
        self._stop = asyncio.Event()

    @property
    def embedding_service(self) -> OpenAIEmbeddingService:
        if self._embedding_service is None:
            self._embedding_service = OpenAIEmbeddingService()
        return self._embedding_service

    async def run_once(self) -> TickResult:
        """
        Один проход: пакет монологов без эмбеддинга обрабатывается по очереди.

        Ошибка отдельного монолога не прерывает пакет; недоступность
        провайдера завершает проход, остаток ждет следующего тика.
        """
        result = TickResult()
        if not self.settings.embedding_enabled:
            return result

        pending = await self.monologs.list_missing_embedding(self.settings.embedding_batch_size)
        if not pending:
            return result

        try:
            embedding_service = self.embedding_service
        except ValueError as e:
            # Провайдер не настроен: ждем следующего тика, как при недоступности
            result.provider_unavailable = True
            logger.error(f"Провайдер эмбеддингов не настроен: {e}")
            return result

        logger.info(f"Найдено {len(pending)} монологов без эмбеддинга")
        for monolog in pending:
            result.attempted += 1
            try:
                vector = await embedding_service.embed(monolog.content)
            except EmbeddingProviderUnavailable as e:
                result.failed += 1
                result.provider_unavailable = True
                logger.error(f"Провайдер эмбеддингов недоступен, проход прерван: {e}")
                break
            except EmbeddingError as e:
                result.failed += 1
                logger.error(f"Не удалось получить эмбеддинг монолога {monolog.id}: {e}")
                continue

            try:
                stored = await self.monologs.set_embedding(monolog.id, vector)
            except ValueError as e:
                result.failed += 1
                logger.error(f"Некорректный эмбеддинг монолога {monolog.id}: {e}")
                continue

            if stored:
                result.embedded += 1
                logger.debug(f"Эмбеддинг монолога {monolog.id} сохранен")
            else:
                logger.warning(f"Эмбеддинг монолога {monolog.id} уже записан, пропускаем")

        logger.info(f"Проход завершен: {result.embedded}/{result.attempted} эмбеддингов сохранено")
        return result

    async def run(self) -> None:
        """
        Цикл с фиксированным интервалом до вызова stop().

        Сбой прохода логируется, и цикл продолжается; наружу выходит только
        потеря соединения с БД.
        """
        logger.info(
            f"Конвейер эмбеддингов запущен: интервал {self.settings.embedding_interval}s, "
            f"пакет {self.settings.embedding_batch_size}"
        )
        while not self._stop.is_set():
            try:
                await self.run_once()
            except DBConnectionError:
                raise
            except Exception as e:
                logger.exception(f"Проход конвейера эмбеддингов завершился ошибкой: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.settings.embedding_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Конвейер эмбеддингов остановлен")

    def stop(self) -> None:
        self._stop.set()
