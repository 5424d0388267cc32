from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
import json
import logging

from app.core.config import get_settings
from app.schemas.events import parse_event
from app.services.event_stream import publish_event
from app.services.monolog_aggregator import MonologAggregator
from app.services.quarantine import ErrorLogQuarantineSink, QuarantineSink
from app.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)

router = APIRouter()

_aggregator = None

async def get_aggregator() -> MonologAggregator:
    """Один агрегатор на процесс: блокировки сессий должны быть общими"""
    global _aggregator
    if _aggregator is None:
        _aggregator = MonologAggregator()
    return _aggregator

async def get_quarantine() -> QuarantineSink:
    return ErrorLogQuarantineSink()

async def get_redis():
    return await get_redis_client()

@router.post("", status_code=202)
async def ingest_event(
    request: Request,
    quarantine: QuarantineSink = Depends(get_quarantine),
    aggregator: MonologAggregator = Depends(get_aggregator),
    redis=Depends(get_redis),
):
    """
    Принимает событие рантайма.

    По умолчанию событие ставится в stream сессии и применяется ingest-воркером;
    при EVENT_INGEST_INLINE=true применяется сразу в процессе API.
    """
    body = await request.body()
    try:
        event = parse_event(body)
    except ValidationError as e:
        await quarantine.put(body, f"invalid event: {e}")
        raise HTTPException(status_code=422, detail=json.loads(e.json(include_url=False)))

    if get_settings().event_ingest_inline:
        await aggregator.handle(event)
        return {"status": "processed"}

    entry_id = await publish_event(redis, event)
    logger.info(f"[{event.session_id}] событие {event.type} принято: {entry_id}")
    return {"status": "queued", "entry_id": entry_id}
