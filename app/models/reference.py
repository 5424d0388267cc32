from tortoise import fields, models
from enum import Enum


class ParticipantType(str, Enum):
    """Тип участника разговора"""
    HUMAN = "human"          # Человек
    AI_MODEL = "ai_model"    # Модель (Claude, GPT, Gemini)
    SCRIPT = "script"        # Скрипт или CI
    SYSTEM = "system"        # Системные сообщения


class ModeName(str, Enum):
    """Режим работы ассистента"""
    BUILD = "Build"    # Может менять файлы и запускать команды
    PLAN = "Plan"      # Только советует и планирует


class Participant(models.Model):
    """Участник: кто говорит"""
    id = fields.IntField(pk=True)
    label = fields.CharField(max_length=200, description="Человекочитаемое имя")
    identifier = fields.CharField(max_length=200, unique=True, description="Технический идентификатор")
    participant_type = fields.CharEnumField(ParticipantType, default=ParticipantType.HUMAN)

    class Meta:
        table = "participants"


class Provider(models.Model):
    """Провайдер: откуда пришло сообщение"""
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=100, unique=True)
    description = fields.CharField(max_length=500, null=True)

    class Meta:
        table = "providers"


class Mode(models.Model):
    """Режим: Build или Plan"""
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=50, unique=True)
    description = fields.CharField(max_length=500, null=True)

    class Meta:
        table = "modes"
