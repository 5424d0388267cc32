"""
Карантин для событий, которые не удалось применить.
"""
import json
import logging
from typing import Any, Optional

from app.models.error_log import ErrorLog

logger = logging.getLogger(__name__)


def _payload_to_text(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        return payload
    if hasattr(payload, "model_dump_json"):
        return payload.model_dump_json()
    return json.dumps(payload, ensure_ascii=False, default=str)


class QuarantineSink:
    async def put(self, payload: Any, reason: str) -> None:
        raise NotImplementedError


class ErrorLogQuarantineSink(QuarantineSink):
    """Сохраняет отклоненные payload в таблицу error_logs"""

    async def put(self, payload: Any, reason: str) -> None:
        entry = await ErrorLog.create(reason=reason, payload=_payload_to_text(payload))
        logger.warning(f"Событие отправлено в карантин (error_log={entry.id}): {reason}")
