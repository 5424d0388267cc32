import logging
from typing import List, Optional

from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, OpenAIError

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Не удалось получить эмбеддинг для конкретного текста"""


class EmbeddingProviderUnavailable(EmbeddingError):
    """Провайдер недоступен (сеть или таймаут) - продолжать пакет бессмысленно"""


class OpenAIEmbeddingService:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        settings = get_settings()
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions

        if client is None:
            if not settings.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for embeddings")
            client_kwargs = {
                "api_key": settings.openai_api_key,
                "timeout": settings.embedding_timeout,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = AsyncOpenAI(**client_kwargs)
        self.client = client

    async def embed(self, text: str) -> List[float]:
        """
        Получает эмбеддинг текста.

        Raises:
            EmbeddingProviderUnavailable: ошибка соединения или таймаут
            EmbeddingError: любая другая ошибка провайдера или неверная размерность
        """
        if not text or not text.strip():
            raise EmbeddingError("cannot embed empty text")

        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
        except (APIConnectionError, APITimeoutError) as e:
            raise EmbeddingProviderUnavailable(f"embedding provider unavailable: {e}") from e
        except OpenAIError as e:
            raise EmbeddingError(f"embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingError("embedding provider returned no data")

        vector = list(response.data[0].embedding)
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"expected {self.dimensions} dimensions, got {len(vector)}"
            )
        return vector
