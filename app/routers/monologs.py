from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
import logging

from app.core.config import get_settings
from app.models.monolog import Role
from app.repositories.monolog_repository import MonologRepository, MonologValidationError
from app.schemas.monolog import (
    ContentUpdate,
    MonologClose,
    MonologCreate,
    MonologCreated,
    MonologOut,
    OperationResult,
    SearchHit,
    SearchRequest,
)
from app.services.embedding_service import EmbeddingError, OpenAIEmbeddingService

logger = logging.getLogger(__name__)

router = APIRouter()

async def get_monolog_repository() -> MonologRepository:
    return MonologRepository()

async def get_embedding_service() -> Optional[OpenAIEmbeddingService]:
    if not get_settings().openai_api_key:
        return None
    return OpenAIEmbeddingService()

@router.get("/open", response_model=Optional[MonologOut])
async def get_open_monolog(session_ref: int, role: Role, repo: MonologRepository = Depends(get_monolog_repository)):
    return await repo.get_open_monolog(session_ref, role)

@router.get("/{monolog_id}", response_model=MonologOut)
async def get_monolog(monolog_id: int, repo: MonologRepository = Depends(get_monolog_repository)):
    monolog = await repo.get(monolog_id)
    if monolog is None:
        raise HTTPException(status_code=404, detail=f"Monolog {monolog_id} not found")
    return monolog

@router.post("", response_model=MonologCreated, status_code=201)
async def create_monolog(payload: MonologCreate, repo: MonologRepository = Depends(get_monolog_repository)):
    try:
        monolog_id = await repo.create_monolog(**payload.model_dump())
    except MonologValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return MonologCreated(id=monolog_id)

@router.post("/{monolog_id}/append", response_model=OperationResult)
async def append_content(monolog_id: int, payload: ContentUpdate, repo: MonologRepository = Depends(get_monolog_repository)):
    success = await repo.append_content(monolog_id, payload.text, payload.message_id)
    return OperationResult(success=success)

@router.put("/{monolog_id}/content", response_model=OperationResult)
async def replace_content(monolog_id: int, payload: ContentUpdate, repo: MonologRepository = Depends(get_monolog_repository)):
    success = await repo.replace_content(monolog_id, payload.text, payload.message_id)
    return OperationResult(success=success)

@router.post("/{monolog_id}/close", response_model=OperationResult)
async def close_monolog(monolog_id: int, payload: MonologClose, repo: MonologRepository = Depends(get_monolog_repository)):
    success = await repo.close(monolog_id, **payload.model_dump())
    return OperationResult(success=success)

@router.post("/search", response_model=List[SearchHit])
async def search_monologs(
    payload: SearchRequest,
    repo: MonologRepository = Depends(get_monolog_repository),
    embedder: Optional[OpenAIEmbeddingService] = Depends(get_embedding_service),
):
    query_vector = payload.query_vector
    if not query_vector:
        if embedder is None:
            raise HTTPException(status_code=503, detail="Embedding provider is not configured")
        try:
            query_vector = await embedder.embed(payload.query)
        except EmbeddingError as e:
            logger.error(f"Не удалось построить эмбеддинг запроса: {e}")
            raise HTTPException(status_code=503, detail="Embedding provider error")

    try:
        results = await repo.search(
            query_vector,
            session_ref=payload.session_ref,
            limit=payload.limit,
            min_similarity=payload.min_similarity,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return [
        SearchHit(monolog=MonologOut.model_validate(monolog), similarity=similarity)
        for monolog, similarity in results
    ]
