from datetime import timedelta

import pytest

from core import config as config_module
from core.security import create_access_token, decode_access_token


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()


def test_non_local_debug_mode_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("JWT_SECRET", "real-secret")

    with pytest.raises(ValueError, match="debug=true"):
        config_module.get_settings()


def test_non_local_default_secrets_are_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)

    with pytest.raises(ValueError, match="default JWT secret"):
        config_module.get_settings()


def test_local_allows_dev_defaults(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)

    settings = config_module.get_settings()
    assert settings.app_env == "local"
    assert settings.max_follow_ups == 4
    assert settings.follow_up_interval_days == 7


def test_follow_up_cadence_must_be_positive(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("MAX_FOLLOW_UPS", "0")

    with pytest.raises(ValueError, match="max_follow_ups"):
        config_module.get_settings()


def test_access_token_round_trip(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    token = create_access_token({"sub": "u1", "organization_id": "org-1"})

    payload = decode_access_token(token)

    assert payload["organization_id"] == "org-1"


def test_expired_or_tampered_token_is_rejected(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    expired = create_access_token({"sub": "u1"}, expires_delta=timedelta(seconds=-5))

    assert decode_access_token(expired) is None
    assert decode_access_token("not-a-jwt") is None
