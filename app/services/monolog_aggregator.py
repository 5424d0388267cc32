"""
Агрегатор монологов.

Превращает упорядоченный поток событий рантайма по сессии в вызовы хранилища:
создать, дописать, заменить, закрыть. Состояние "открытый монолог" хранится в
БД (completed_at IS NULL), как и последние метрики открытого ответа; в памяти
процесса живут только блокировки сессий.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.core.config import get_settings
from app.models.monolog import Monolog, Role
from app.repositories.monolog_repository import MonologRepository, MonologValidationError
from app.repositories.reference_repository import ReferenceRepository
from app.repositories.session_repository import SessionRepository
from app.schemas.events import (
    AssistantTurn,
    MessageTurn,
    RuntimeEvent,
    SessionAborted,
    SessionIdle,
    SessionUpserted,
    Usage,
    UserTurn,
    parse_event,
)
from app.services.quarantine import ErrorLogQuarantineSink, QuarantineSink

logger = logging.getLogger(__name__)


class MonologAggregator:
    def __init__(
        self,
        monologs: Optional[MonologRepository] = None,
        sessions: Optional[SessionRepository] = None,
        references: Optional[ReferenceRepository] = None,
        quarantine: Optional[QuarantineSink] = None,
    ):
        self.monologs = monologs or MonologRepository()
        self.sessions = sessions or SessionRepository()
        self.references = references or ReferenceRepository()
        self.quarantine = quarantine or ErrorLogQuarantineSink()

        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def handle_payload(self, payload: Any) -> bool:
        """
        Разбирает сырое событие и применяет его.

        Returns:
            bool: False, если payload не прошел валидацию и ушел в карантин
        """
        try:
            event = parse_event(payload)
        except ValidationError as e:
            await self.quarantine.put(payload, f"invalid event: {e}")
            return False
        await self.handle(event)
        return True

    async def handle(self, event: RuntimeEvent) -> None:
        """
        Применяет событие. События одной сессии выполняются строго по очереди.

        Нарушения инвариантов отправляют событие в карантин; ошибки БД
        пробрасываются наружу.
        """
        async with self._lock_for(event.session_id):
            try:
                await self._dispatch(event)
            except MonologValidationError as e:
                logger.warning(f"[{event.session_id}] событие {event.type} отклонено: {e}")
                await self.quarantine.put(event, str(e))

    async def _dispatch(self, event: RuntimeEvent) -> None:
        if isinstance(event, SessionUpserted):
            await self.sessions.create_session(
                event.session_id,
                title=event.title,
                directory=event.directory,
                created_at=event.created_at,
            )
        elif isinstance(event, MessageTurn):
            session_ref = await self._ensure_session(event.session_id)
            if isinstance(event.turn, UserTurn):
                await self._on_user_turn(session_ref, event.turn)
            else:
                await self._on_assistant_turn(session_ref, event.turn)
        elif isinstance(event, SessionIdle):
            await self._close_all(event.session_id, is_aborted=False)
        elif isinstance(event, SessionAborted):
            await self._close_all(event.session_id, is_aborted=True)

    async def _ensure_session(self, session_id: str) -> int:
        session_ref = await self.sessions.get_session_ref(session_id)
        if session_ref is None:
            logger.info(f"[{session_id}] реплика для неизвестной сессии, создаем сессию")
            session_ref = await self.sessions.create_session(session_id)
        return session_ref

    async def _on_user_turn(self, session_ref: int, turn: UserTurn) -> None:
        user_open = await self.monologs.get_open_monolog(session_ref, Role.USER)

        # Ссылки разрешаются до закрытия, чтобы отклоненная реплика не меняла состояние
        if user_open is None:
            settings = get_settings()
            participant_id = await self.references.resolve_participant(
                turn.participant or settings.default_user_participant
            )
            provider_id = await self._provider_id(turn.provider or settings.default_user_provider)
            mode_id = await self._mode_id(None)

        assistant_open = await self.monologs.get_open_monolog(session_ref, Role.ASSISTANT)
        if assistant_open:
            await self._close(assistant_open)

        if user_open:
            if not await self.monologs.append_content(user_open.id, turn.text, turn.message_id):
                logger.warning(f"Монолог {user_open.id} закрыт до дописывания реплики {turn.message_id}")
            return

        parent = await self.monologs.get_last_closed_monolog(session_ref, Role.ASSISTANT)
        await self.monologs.create_monolog(
            session_ref=session_ref,
            parent_id=parent.id if parent else None,
            role=Role.USER,
            first_message_id=turn.message_id,
            content=turn.text,
            participant_id=participant_id,
            provider_id=provider_id,
            mode_id=mode_id,
            started_at=turn.timestamp,
        )

    async def _on_assistant_turn(self, session_ref: int, turn: AssistantTurn) -> None:
        user_open = await self.monologs.get_open_monolog(session_ref, Role.USER)
        if user_open is None:
            assistant_open = await self.monologs.get_open_monolog(session_ref, Role.ASSISTANT)
            if assistant_open:
                await self.monologs.replace_content(assistant_open.id, turn.text, turn.message_id)
                await self._remember_usage(assistant_open.id, turn.usage)
                return

        # Ссылки разрешаются до закрытия, чтобы отклоненная реплика не меняла состояние
        participant_id = await self.references.resolve_participant(turn.model_id)
        provider_id = await self._provider_id(turn.provider_id)
        mode_id = await self._mode_id(turn.mode)

        if user_open:
            await self._close(user_open)
            parent_id = user_open.id
        else:
            parent = await self.monologs.get_last_closed_monolog(session_ref, Role.USER)
            parent_id = parent.id if parent else None
            logger.warning(
                f"Ответ ассистента {turn.message_id} без открытого монолога в сессии {session_ref}, "
                f"родитель: {parent_id}"
            )

        monolog_id = await self.monologs.create_monolog(
            session_ref=session_ref,
            parent_id=parent_id,
            role=Role.ASSISTANT,
            first_message_id=turn.message_id,
            content=turn.text,
            participant_id=participant_id,
            provider_id=provider_id,
            mode_id=mode_id,
            started_at=turn.timestamp,
        )
        await self._remember_usage(monolog_id, turn.usage)

    async def _close_all(self, session_id: str, is_aborted: bool) -> None:
        session_ref = await self.sessions.get_session_ref(session_id)
        if session_ref is None:
            logger.debug(f"[{session_id}] нечего закрывать: сессия неизвестна")
            return
        for monolog in await self.monologs.list_open_monologs(session_ref):
            await self._close(monolog, is_aborted=is_aborted)

    async def _close(self, monolog: Monolog, is_aborted: bool = False) -> bool:
        closed = await self.monologs.close(
            monolog.id,
            last_message_id=monolog.current_message_id or monolog.first_message_id,
            is_aborted=is_aborted,
        )
        if closed:
            logger.info(f"Монолог {monolog.id} ({monolog.role.value}) закрыт, aborted={is_aborted}")
        return closed

    async def _remember_usage(self, monolog_id: int, usage: Optional[Usage]) -> None:
        if usage is not None:
            await self.monologs.record_usage(
                monolog_id,
                tokens_input=usage.tokens_input,
                tokens_output=usage.tokens_output,
                cost=usage.cost,
            )

    async def _provider_id(self, provider_name: str) -> int:
        provider_id = await self.references.get_provider_id(provider_name)
        if provider_id is None:
            raise MonologValidationError(f"unknown provider {provider_name!r}")
        return provider_id

    async def _mode_id(self, mode: Optional[str]) -> int:
        mode_id = await self.references.get_mode_id(mode)
        if mode_id is None:
            raise MonologValidationError(f"unknown mode {mode!r}")
        return mode_id
