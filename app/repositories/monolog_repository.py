from app.models.monolog import Monolog, Role
from app.models.reference import Participant, Provider, Mode
from app.models.session import Session
from app.services.similarity import rank_by_cosine, validate_search_args, as_query_array
from tortoise import connections
from tortoise.expressions import F
from typing import Optional, List, Tuple, Sequence, Union
from datetime import datetime, timezone
from decimal import Decimal
import logging
import json
import math

logger = logging.getLogger(__name__)

CONTENT_SEPARATOR = "\n\n"
APPEND_ATTEMPTS = 3


class MonologValidationError(ValueError):
    """Нарушены инварианты монолога (родитель, ссылки на справочники)"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_vector(vector: Sequence[float]) -> str:
    values = [float(x) for x in vector]
    if not values:
        raise ValueError("embedding vector is empty")
    if not all(math.isfinite(x) for x in values):
        raise ValueError("embedding vector contains non-finite values")
    # Компактный JSON совпадает с текстовым форматом pgvector: [0.1,0.2,...]
    return json.dumps(values, separators=(',', ':'))


class MonologRepository:
    async def create_monolog(
        self,
        session_ref: int,
        parent_id: Optional[int],
        role: Union[Role, str],
        first_message_id: str,
        content: str,
        participant_id: int,
        provider_id: int,
        mode_id: int,
        started_at: Optional[datetime] = None,
    ) -> int:
        """
        Создает открытый монолог.

        Raises:
            MonologValidationError: ассистентский монолог без родителя, родитель
                из другой сессии или неизвестные ссылки
        """
        try:
            role = Role(role)
        except ValueError:
            raise MonologValidationError(f"unknown role: {role!r}")

        if not first_message_id:
            raise MonologValidationError("first_message_id is required")
        if role is Role.ASSISTANT and parent_id is None:
            raise MonologValidationError("assistant monolog requires a parent monolog")

        if not await Session.exists(id=session_ref):
            raise MonologValidationError(f"unknown session_ref {session_ref}")
        if parent_id is not None and not await Monolog.exists(id=parent_id, session_id=session_ref):
            raise MonologValidationError(f"parent monolog {parent_id} not found in session {session_ref}")

        references = (
            (Participant, participant_id, "participant"),
            (Provider, provider_id, "provider"),
            (Mode, mode_id, "mode"),
        )
        for model, ref_id, name in references:
            if ref_id is None or not await model.exists(id=ref_id):
                raise MonologValidationError(f"unknown {name} {ref_id}")

        monolog = await Monolog.create(
            session_id=session_ref,
            parent_monolog_id=parent_id,
            role=role,
            first_message_id=first_message_id,
            current_message_id=first_message_id,
            content=content or "",
            participant_id=participant_id,
            provider_id=provider_id,
            mode_id=mode_id,
            started_at=started_at or _utcnow(),
        )
        logger.debug(f"Создан монолог {monolog.id} ({role.value}) в сессии {session_ref}, parent={parent_id}")
        return monolog.id

    async def get(self, monolog_id: int) -> Optional[Monolog]:
        return await Monolog.filter(id=monolog_id).first()

    async def get_open_monolog(self, session_ref: int, role: Union[Role, str]) -> Optional[Monolog]:
        return await Monolog.filter(
            session_id=session_ref, role=Role(role), completed_at__isnull=True
        ).order_by("-started_at", "-id").first()

    async def get_last_closed_monolog(self, session_ref: int, role: Union[Role, str]) -> Optional[Monolog]:
        """Последний закрытый монолог роли в сессии (кандидат в родители)"""
        return await Monolog.filter(
            session_id=session_ref, role=Role(role), completed_at__isnull=False
        ).order_by("-completed_at", "-id").first()

    async def list_open_monologs(self, session_ref: int) -> List[Monolog]:
        return await Monolog.filter(session_id=session_ref, completed_at__isnull=True).order_by("started_at", "id")

    async def append_content(self, monolog_id: int, text: str, message_id: Optional[str] = None) -> bool:
        """
        Дописывает текст в открытый монолог через пустую строку.

        Обновление условное: запись меняется, только если она все еще открыта
        и содержимое не изменилось с момента чтения.

        Returns:
            bool: False, если монолог не найден или уже закрыт
        """
        for _ in range(APPEND_ATTEMPTS):
            monolog = await Monolog.filter(id=monolog_id, completed_at__isnull=True).first()
            if not monolog:
                return False

            new_content = f"{monolog.content}{CONTENT_SEPARATOR}{text}" if monolog.content else text
            changes = {"content": new_content, "updated_at": _utcnow()}
            if message_id:
                changes["current_message_id"] = message_id

            updated = await Monolog.filter(
                id=monolog_id, completed_at__isnull=True, content=monolog.content
            ).update(**changes)
            if updated:
                return True

        logger.warning(f"Не удалось дописать монолог {monolog_id}: содержимое меняется конкурентно")
        return False

    async def replace_content(self, monolog_id: int, text: str, message_id: Optional[str] = None) -> bool:
        """Заменяет содержимое открытого монолога; False, если он закрыт или не найден"""
        changes = {"content": text, "updated_at": _utcnow()}
        if message_id:
            changes["current_message_id"] = message_id
        updated = await Monolog.filter(id=monolog_id, completed_at__isnull=True).update(**changes)
        return updated > 0

    async def record_usage(
        self,
        monolog_id: int,
        tokens_input: Optional[int] = None,
        tokens_output: Optional[int] = None,
        cost: Optional[Union[Decimal, float]] = None,
    ) -> bool:
        """
        Запоминает последние метрики открытого монолога (последнее значение побеждает).
        В колонки tokens_input/tokens_output/cost они переносятся при закрытии.
        """
        updated = await Monolog.filter(id=monolog_id, completed_at__isnull=True).update(
            pending_tokens_input=tokens_input,
            pending_tokens_output=tokens_output,
            pending_cost=Decimal(str(cost)) if cost is not None else None,
            updated_at=_utcnow(),
        )
        return updated > 0

    async def close(
        self,
        monolog_id: int,
        last_message_id: str,
        final_content: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        is_aborted: bool = False,
        tokens_input: Optional[int] = None,
        tokens_output: Optional[int] = None,
        cost: Optional[Union[Decimal, float]] = None,
    ) -> bool:
        """
        Закрывает монолог. Повторное закрытие ничего не меняет.

        Args:
            monolog_id: ID монолога
            last_message_id: Реплика, закрывшая монолог
            final_content: Переданное значение (в том числе пустое) перезаписывает содержимое
            completed_at: Время закрытия (по умолчанию сейчас)
            is_aborted: Закрыт по прерыванию сессии
            tokens_input, tokens_output, cost: Метрики; без них переносятся
                накопленные через record_usage

        Returns:
            bool: True, если монолог был открыт и закрыт этим вызовом
        """
        if not last_message_id:
            raise MonologValidationError("last_message_id is required to close a monolog")

        now = _utcnow()
        changes = {
            "last_message_id": last_message_id,
            "completed_at": completed_at or now,
            "is_aborted": is_aborted,
            "updated_at": now,
        }
        if final_content is not None:
            changes["content"] = final_content
        changes["tokens_input"] = tokens_input if tokens_input is not None else F("pending_tokens_input")
        changes["tokens_output"] = tokens_output if tokens_output is not None else F("pending_tokens_output")
        changes["cost"] = Decimal(str(cost)) if cost is not None else F("pending_cost")

        updated = await Monolog.filter(id=monolog_id, completed_at__isnull=True).update(**changes)
        if updated:
            logger.debug(f"Монолог {monolog_id} закрыт (aborted={is_aborted})")
        return updated > 0

    async def list_missing_embedding(self, limit: int) -> List[Monolog]:
        """Закрытые непустые монологи без эмбеддинга, старые первыми"""
        return await Monolog.filter(
            completed_at__isnull=False, embedding__isnull=True
        ).exclude(content="").order_by("completed_at", "id").limit(limit)

    async def set_embedding(self, monolog_id: int, vector: Sequence[float]) -> bool:
        """Однократная запись эмбеддинга закрытого монолога"""
        embedding_json = _serialize_vector(vector)
        updated = await Monolog.filter(
            id=monolog_id, completed_at__isnull=False, embedding__isnull=True
        ).update(embedding=embedding_json)
        return updated > 0

    async def search(
        self,
        query_vector: Sequence[float],
        session_ref: Optional[int] = None,
        limit: int = 10,
        min_similarity: float = 0.5,
    ) -> List[Tuple[Monolog, float]]:
        """
        Поиск закрытых монологов по косинусному сходству.

        В PostgreSQL используется pgvector, в остальных БД ранжирование
        выполняется в памяти.

        Returns:
            List[Tuple[Monolog, float]]: Пары (монолог, similarity) по убыванию сходства
        """
        validate_search_args(limit, min_similarity)
        conn = connections.get("default")
        if conn.capabilities.dialect == "postgres":
            return await self._search_pgvector(query_vector, session_ref, limit, min_similarity)

        queryset = Monolog.filter(completed_at__isnull=False, embedding__isnull=False)
        if session_ref is not None:
            queryset = queryset.filter(session_id=session_ref)
        candidates = [(monolog, monolog.embedding_vector) for monolog in await queryset]
        return rank_by_cosine(query_vector, candidates, limit=limit, min_similarity=min_similarity)

    async def _search_pgvector(
        self,
        query_vector: Sequence[float],
        session_ref: Optional[int],
        limit: int,
        min_similarity: float,
    ) -> List[Tuple[Monolog, float]]:
        query = as_query_array(query_vector)
        embedding_json = json.dumps(query.tolist(), separators=(',', ':'))

        conn = connections.get("default")
        sql_query = """
        SELECT id, (embedding <=> $1::vector) AS distance
        FROM monologs
        WHERE completed_at IS NOT NULL
          AND embedding IS NOT NULL
          AND ($2::int IS NULL OR session_id = $2::int)
          AND 1 - (embedding <=> $1::vector) >= $3
        ORDER BY embedding <=> $1::vector, id
        LIMIT $4
        """
        rows = await conn.execute_query_dict(sql_query, [embedding_json, session_ref, min_similarity, limit])
        if not rows:
            return []

        by_id = {m.id: m for m in await Monolog.filter(id__in=[row["id"] for row in rows])}
        return [
            (by_id[row["id"]], 1.0 - float(row["distance"]))
            for row in rows
            if row["id"] in by_id
        ]
