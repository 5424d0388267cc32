from tortoise import fields, models
from typing import List, Optional
from enum import Enum
import json


class Role(str, Enum):
    """Роль в разговоре"""
    USER = "user"              # Тот, кто спрашивает
    ASSISTANT = "assistant"    # Тот, кто отвечает


class Monolog(models.Model):
    """
    Монолог - непрерывная речь одного участника, пока не заговорит другой.
    Основная единица хранения разговора с поддержкой векторного поиска.
    """
    id = fields.IntField(pk=True)
    session = fields.ForeignKeyField("models.Session", related_name="monologs", on_delete=fields.CASCADE)

    # Ассистентский монолог всегда отвечает на пользовательский
    parent_monolog = fields.ForeignKeyField(
        "models.Monolog", related_name="children", null=True, on_delete=fields.RESTRICT
    )
    role = fields.CharEnumField(Role, description="Роль в разговоре")

    first_message_id = fields.CharField(max_length=100, description="Реплика, открывшая монолог")
    last_message_id = fields.CharField(max_length=100, null=True, description="Реплика, закрывшая монолог")
    current_message_id = fields.CharField(max_length=100, null=True, description="Последняя учтенная реплика")

    content = fields.TextField(default="")
    embedding = fields.TextField(null=True)  # pgvector(1536) - реальный тип vector(1536) в БД

    # Классификация: кто / через какой канал / в каком режиме
    participant = fields.ForeignKeyField("models.Participant", related_name="monologs", on_delete=fields.RESTRICT)
    provider = fields.ForeignKeyField("models.Provider", related_name="monologs", on_delete=fields.RESTRICT)
    mode = fields.ForeignKeyField("models.Mode", related_name="monologs", on_delete=fields.RESTRICT)

    # Метрики использования (только для ответов ассистента)
    tokens_input = fields.IntField(null=True)
    tokens_output = fields.IntField(null=True)
    cost = fields.DecimalField(max_digits=18, decimal_places=8, null=True, description="Стоимость в USD")

    # Последние метрики открытого ответа, переносятся в поля выше при закрытии
    pending_tokens_input = fields.IntField(null=True)
    pending_tokens_output = fields.IntField(null=True)
    pending_cost = fields.DecimalField(max_digits=18, decimal_places=8, null=True)

    started_at = fields.DatetimeField()
    completed_at = fields.DatetimeField(null=True, description="NULL - монолог открыт")
    is_aborted = fields.BooleanField(default=False)

    # Системные поля
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    children: fields.ReverseRelation["Monolog"]

    class Meta:
        table = "monologs"
        indexes = [
            models.Index(fields=["session_id", "role"], name="idx_monolog_session_role"),
            models.Index(fields=["parent_monolog_id"], name="idx_monolog_parent"),
            models.Index(fields=["completed_at"], name="idx_monolog_completed_at"),
        ]

    def __str__(self):
        state = "closed" if self.completed_at else "open"
        return f"Monolog(id={self.id}, role={self.role.value}, {state})"

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    @property
    def embedding_vector(self) -> Optional[List[float]]:
        """Эмбеддинг как список чисел (в БД хранится текстом '[0.1,0.2,...]')"""
        if self.embedding is None:
            return None
        return [float(x) for x in json.loads(self.embedding)]
