"""
События рантайма ассистента.

Набор событий закрыт: неизвестный `type` (или `role` у реплики) не проходит
валидацию и уходит в карантин.
"""
from pydantic import BaseModel, Field, TypeAdapter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Usage(BaseModel):
    tokens_input: Optional[int] = Field(default=None, ge=0)
    tokens_output: Optional[int] = Field(default=None, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)


class UserTurn(BaseModel):
    role: Literal["user"] = "user"
    message_id: str = Field(min_length=1, max_length=100)
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)
    participant: Optional[str] = None
    provider: Optional[str] = None


class AssistantTurn(BaseModel):
    role: Literal["assistant"] = "assistant"
    message_id: str = Field(min_length=1, max_length=100)
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)
    model_id: str = Field(min_length=1, description="Идентификатор модели = участник")
    provider_id: str = Field(min_length=1)
    mode: Optional[str] = None
    usage: Optional[Usage] = None


Turn = Annotated[Union[UserTurn, AssistantTurn], Field(discriminator="role")]


class SessionUpserted(BaseModel):
    type: Literal["session.created", "session.updated"]
    session_id: str = Field(min_length=1, max_length=100)
    title: Optional[str] = Field(default=None, max_length=500)
    directory: Optional[str] = Field(default=None, max_length=1000)
    created_at: Optional[datetime] = None


class MessageTurn(BaseModel):
    type: Literal["message.turn"]
    session_id: str = Field(min_length=1, max_length=100)
    turn: Turn


class SessionIdle(BaseModel):
    type: Literal["session.idle"]
    session_id: str = Field(min_length=1, max_length=100)


class SessionAborted(BaseModel):
    type: Literal["session.aborted"]
    session_id: str = Field(min_length=1, max_length=100)


RuntimeEvent = Annotated[
    Union[SessionUpserted, MessageTurn, SessionIdle, SessionAborted],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(RuntimeEvent)


def parse_event(payload: Union[dict, str, bytes]) -> RuntimeEvent:
    """Разбирает событие из dict или JSON; при ошибке - pydantic.ValidationError"""
    if isinstance(payload, (str, bytes)):
        return _event_adapter.validate_json(payload)
    return _event_adapter.validate_python(payload)


def dump_event(event: RuntimeEvent) -> str:
    return _event_adapter.dump_json(event).decode()
