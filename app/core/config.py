from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Параметры базы данных
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="monologs")
    db_user: str = Field(default="user")
    db_password: str = Field(default="password")

    # Redis: потоки событий по сессиям и блокировки консьюмеров
    redis_url: str = Field(default="redis://localhost:6379/0")

    # OpenAI (эмбеддинги)
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)

    # Фоновый конвейер эмбеддингов
    embedding_enabled: bool = Field(default=True)
    embedding_interval: float = Field(default=30.0, gt=0)
    embedding_batch_size: int = Field(default=10, gt=0)
    embedding_timeout: float = Field(default=30.0, gt=0)
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int = Field(default=1536, gt=0)
    embedding_pipeline_in_api: bool = Field(default=False)

    # Приём событий рантайма
    event_ingest_inline: bool = Field(default=False)
    ingest_max_active_sessions: int = Field(default=50, gt=0)
    ingest_session_idle_timeout: float = Field(default=60.0, gt=0)
    ingest_check_interval: float = Field(default=0.3, gt=0)

    # Справочные значения для пользовательских реплик
    default_user_participant: str = Field(default="user-default")
    default_user_provider: str = Field(default="HumanInput")

    log_level: str = Field(default="INFO")

    @property
    def postgres_dsn(self) -> str:
        """Конструирует DSN для PostgreSQL из отдельных параметров"""
        return f"postgres://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"


settings = None

def get_settings() -> Settings:
    """Получить настройки приложения с ленивой инициализацией"""
    global settings
    if settings is None:
        settings = Settings()
    return settings

def reset_settings():
    """Сбросить кэшированные настройки (для тестирования)"""
    global settings
    settings = None
