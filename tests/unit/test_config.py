"""Unit tests for configuration and settings."""
from rentease.config import Settings, get_settings, reset_settings_cache


class TestSettings:
    """Test configuration management."""

    def test_get_settings_returns_same_instance(self):
        """Test that get_settings returns cached instance."""
        assert get_settings() is get_settings()

    def test_reset_settings_cache(self):
        """Test that cache can be reset."""
        settings1 = get_settings()
        reset_settings_cache()
        settings2 = get_settings()

        assert settings1 is not settings2

    def test_test_environment_overrides(self):
        """The test suite disables rate limits and outbound email."""
        settings = get_settings()

        assert settings.rate_limiting_enabled is False
        assert settings.smtp_host == ""
        assert settings.database_url.startswith("sqlite")

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "UPLOAD_DIR", "LOG_DIR", "RATE_LIMITING_ENABLED", "SMTP_HOST", "ENVIRONMENT"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.jwt_algorithm == "HS256"
        assert settings.access_token_expire_minutes == 60 * 24 * 7
        assert settings.email_token_expire_hours == 24
        assert settings.max_pictures == 10
        assert settings.default_rate_limit == "60/minute"
        assert settings.is_production is False

    def test_service_ports_configuration(self):
        """Test service port configuration."""
        settings = get_settings()

        assert settings.users_service_port == 8001
        assert settings.properties_service_port == 8002
        assert settings.bookings_service_port == 8003

    def test_production_flag(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "Production")
        assert Settings(_env_file=None).is_production is True

    def test_cors_origins_configuration(self):
        """Test CORS origins configuration."""
        settings = get_settings()

        assert isinstance(settings.cors_origins, list)
        assert len(settings.cors_origins) > 0
