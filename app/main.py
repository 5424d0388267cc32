from fastapi import FastAPI
from contextlib import asynccontextmanager
import asyncio
import logging
from app.core.config import get_settings
from app.core.db import init_db, close_db
from app.core.logging_config import setup_logging
from app.routers import events, monologs, sessions
from app.services.redis_client import close_redis_client
from app.services.embedding_service import OpenAIEmbeddingService
from app.workers.embedding.pipeline import EmbeddingPipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings = get_settings()
    setup_logging(settings.log_level)

    pipeline = None
    pipeline_task = None
    if settings.embedding_pipeline_in_api:
        # Без OPENAI_API_KEY API не стартует, а не теряет конвейер молча
        pipeline = EmbeddingPipeline(embedding_service=OpenAIEmbeddingService())

    await init_db()

    if pipeline is not None:
        pipeline_task = asyncio.create_task(pipeline.run())
        logger.info("Конвейер эмбеддингов запущен в процессе API")

    yield

    # Shutdown: новые проходы не начинаются, текущий дорабатывает
    if pipeline is not None:
        pipeline.stop()
        await pipeline_task
    await close_redis_client()
    await close_db()


app = FastAPI(
    title="Monolog Memory API",
    description="Сборка монологов из событий рантайма ассистента и семантический поиск по ним",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
app.include_router(monologs.router, prefix="/monologs", tags=["monologs"])
app.include_router(events.router, prefix="/events", tags=["events"])


@app.get("/health")
async def health():
    return {"status": "ok"}

__all__ = ["app"]
