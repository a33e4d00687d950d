import pytest
from pydantic import ValidationError

from communityhub.config import AppEnv, SameSite, Settings, get_settings, reset_settings_cache
from conftest import make_settings


class TestSettingsValidation:
    def test_defaults(self):
        settings = make_settings()
        assert settings.app_env is AppEnv.DEV
        assert settings.access_token_ttl_seconds == 900
        assert settings.refresh_token_ttl_seconds == 30 * 24 * 3600
        assert settings.otp_ttl_seconds == 600
        assert settings.cookie_samesite is SameSite.LAX
        assert settings.reset_requires_ticket is True
        assert not settings.is_production

    def test_secrets_must_differ(self):
        with pytest.raises(ValidationError, match="must differ"):
            make_settings(
                access_token_secret="same-secret-value-for-both-tokens-0123456789",
                refresh_token_secret="same-secret-value-for-both-tokens-0123456789",
            )

    def test_samesite_none_requires_secure(self):
        with pytest.raises(ValidationError, match="COOKIE_SECURE"):
            make_settings(cookie_samesite="none", cookie_secure=False)
        assert make_settings(cookie_samesite="NONE", cookie_secure=True).cookie_samesite is SameSite.NONE

    def test_refresh_ttl_must_exceed_access_ttl(self):
        with pytest.raises(ValidationError):
            make_settings(access_token_ttl_seconds=600, refresh_token_ttl_seconds=600)

    @pytest.mark.parametrize("field", ["otp_ttl_seconds", "store_timeout_seconds", "hash_timeout_seconds"])
    def test_non_positive_values_rejected(self, field):
        with pytest.raises(ValidationError):
            make_settings(**{field: 0})

    def test_cors_origins_from_comma_string(self):
        settings = make_settings(cors_allow_origins="https://a.example, https://b.example,")
        assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]

    def test_production_flag(self):
        assert make_settings(app_env="prod").is_production


class TestSecrets:
    def test_generated_secrets_are_persisted(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SECRETS_DIR", str(tmp_path))
        first = Settings(access_token_secret=None, refresh_token_secret=None)
        second = Settings(access_token_secret=None, refresh_token_secret=None)
        assert first.access_token_secret == second.access_token_secret
        assert first.refresh_token_secret == second.refresh_token_secret
        assert first.access_token_secret != first.refresh_token_secret
        assert (tmp_path / ".access_token_secret").read_text() == first.access_token_secret

    def test_short_persisted_secret_is_replaced(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SECRETS_DIR", str(tmp_path))
        (tmp_path / ".access_token_secret").write_text("short")
        settings = Settings(access_token_secret=None, refresh_token_secret=None)
        assert len(settings.access_token_secret) >= 32


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "prod")
        monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "120")
        monkeypatch.setenv("COOKIE_TRANSPORT", "false")
        monkeypatch.setenv("RESET_REQUIRES_TICKET", "0")
        settings = Settings.from_env()
        assert settings.is_production
        assert settings.access_token_ttl_seconds == 120
        assert settings.cookie_transport is False
        assert settings.reset_requires_ticket is False

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first
        monkeypatch.setenv("OTP_TTL_SECONDS", "300")
        reset_settings_cache()
        assert get_settings().otp_ttl_seconds == 300
