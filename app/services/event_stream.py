"""
Потоки событий по сессиям в Redis.

Каждая сессия пишет в свой stream `monolog:{session_id}:stream`; один
консьюмер на сессию читает его по порядку.
"""
import logging
from typing import Optional

from app.schemas.events import RuntimeEvent, dump_event

logger = logging.getLogger(__name__)

STREAM_PREFIX = "monolog:"
STREAM_SUFFIX = ":stream"
STREAM_PATTERN = f"{STREAM_PREFIX}*{STREAM_SUFFIX}"
LOCK_PREFIX = "monolog-lock:"

# Проверка и удаление атомарны: запись, добавленная между ними, не потеряется
DELETE_IF_EMPTY_SCRIPT = """
if redis.call('XLEN', KEYS[1]) == 0 then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def stream_key(session_id: str) -> str:
    return f"{STREAM_PREFIX}{session_id}{STREAM_SUFFIX}"


def session_id_from_key(key: str) -> Optional[str]:
    """'monolog:ses_1:stream' -> 'ses_1'"""
    if not (key.startswith(STREAM_PREFIX) and key.endswith(STREAM_SUFFIX)):
        return None
    session_id = key[len(STREAM_PREFIX):-len(STREAM_SUFFIX)]
    return session_id or None


def lock_key(session_id: str) -> str:
    return f"{LOCK_PREFIX}{session_id}"


async def publish_event(redis, event: RuntimeEvent) -> str:
    """Добавляет событие в stream его сессии, возвращает ID записи"""
    entry_id = await redis.xadd(stream_key(event.session_id), {"event": dump_event(event)})
    logger.debug(f"[{event.session_id}] событие {event.type} поставлено в очередь: {entry_id}")
    return entry_id


async def delete_stream_if_empty(redis, session_id: str) -> bool:
    """Удаляет пустой stream сессии, чтобы воркер перестал его подхватывать"""
    deleted = await redis.eval(DELETE_IF_EMPTY_SCRIPT, 1, stream_key(session_id))
    return bool(deleted)
