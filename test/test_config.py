"""
Тесты настроек приложения.
"""
from app.core.config import Settings, get_settings, reset_settings


class TestSettings:
    def test_values_from_environment(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
        monkeypatch.setenv("DB_HOST", "db")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("DB_NAME", "memory")
        monkeypatch.setenv("DB_USER", "svc")
        monkeypatch.setenv("DB_PASSWORD", "secret")

        settings = Settings()

        assert settings.redis_url == "redis://cache:6380/2"
        assert settings.postgres_dsn == "postgres://svc:secret@db:6543/memory"

    def test_redis_configured_by_url_only(self):
        """Тест: Redis настраивается одним REDIS_URL, без отдельных host/port"""
        settings = Settings()
        assert not hasattr(settings, "redis_host")
        assert not hasattr(settings, "redis_port")

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("EMBEDDING_BATCH_SIZE", "3")
        reset_settings()

        assert get_settings() is not first
        assert get_settings().embedding_batch_size == 3
