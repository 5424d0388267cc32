"""
Репозиторий справочных данных: участники, провайдеры, режимы.
"""
import logging
from typing import Optional

from tortoise.exceptions import IntegrityError

from app.models.reference import Participant, ParticipantType, Provider, Mode, ModeName

logger = logging.getLogger(__name__)


# Исходные данные справочников
PROVIDERS = [
    ("HumanInput", "Direct typing to terminal"),
    ("VoiceAssistant", "ContinuousListener - voice input"),
    ("HumanCombination", "Combination of keyboard and voice"),
    ("Anthropic", "Claude models via Anthropic API"),
    ("OpenAI", "GPT models via OpenAI API"),
    ("GitHubCopilot", "GitHub Copilot (routes to various models)"),
    ("Google", "Gemini models via Google AI"),
    ("AzureOpenAI", "Azure OpenAI Service"),
    ("xAI", "Grok models via xAI"),
]

MODES = [
    (1, ModeName.BUILD, "AI can modify files, run commands (full access)"),
    (2, ModeName.PLAN, "AI only suggests and plans (read-only)"),
]

# ID провайдеров в рантайме -> имена в БД
PROVIDER_ALIASES = {
    "github-copilot": "GitHubCopilot",
    "anthropic": "Anthropic",
    "openai": "OpenAI",
    "google": "Google",
    "azure-openai": "AzureOpenAI",
    "xai": "xAI",
    "humaninput": "HumanInput",
    "voiceassistant": "VoiceAssistant",
}


def normalize_provider_name(provider_name: str) -> str:
    """'github-copilot' -> 'GitHubCopilot'; неизвестные имена возвращаются как есть"""
    return PROVIDER_ALIASES.get(provider_name.strip().lower(), provider_name.strip())


def participant_type_for(identifier: str) -> ParticipantType:
    """'user-*' - человек, всё остальное - модель"""
    if identifier.lower().startswith("user-"):
        return ParticipantType.HUMAN
    return ParticipantType.AI_MODEL


class ReferenceRepository:
    async def seed(self) -> None:
        """Заполняет справочники провайдеров и режимов (идемпотентно)"""
        for name, description in PROVIDERS:
            await Provider.get_or_create(name=name, defaults={"description": description})
        for mode_id, name, description in MODES:
            await Mode.get_or_create(id=mode_id, defaults={"name": name.value, "description": description})
        logger.info(f"Справочники заполнены: {len(PROVIDERS)} провайдеров, {len(MODES)} режима")

    async def resolve_participant(self, identifier: str) -> int:
        """
        Возвращает ID участника по идентификатору (без учета регистра),
        создавая его при первом появлении.
        """
        identifier = identifier.strip()
        if not identifier:
            raise ValueError("participant identifier is required")

        participant = await Participant.filter(identifier__iexact=identifier).first()
        if participant:
            return participant.id

        try:
            participant = await Participant.create(
                identifier=identifier,
                label=identifier,
                participant_type=participant_type_for(identifier),
            )
            logger.info(f"Создан участник {identifier} (id={participant.id})")
        except IntegrityError:
            # Параллельно создан другим консьюмером
            participant = await Participant.get(identifier=identifier)
        return participant.id

    async def get_provider_id(self, provider_name: str) -> Optional[int]:
        """ID провайдера по имени из рантайма или None, если провайдер неизвестен"""
        name = normalize_provider_name(provider_name)
        provider = await Provider.filter(name__iexact=name).first()
        return provider.id if provider else None

    async def get_mode_id(self, mode: Optional[str]) -> Optional[int]:
        """ID режима по имени; без режима - Build"""
        name = (mode or ModeName.BUILD.value).strip()
        found = await Mode.filter(name__iexact=name).first()
        return found.id if found else None
