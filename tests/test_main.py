"""Tests for the API server entry point"""

import pytest

from safetransit import main
from safetransit.config import Settings, settings
from safetransit.exceptions import ConfigurationError


@pytest.fixture
def configured():
    app_settings = Settings()
    app_settings.security.jwt_secret = "jwt-secret-for-tests"
    app_settings.security.session_secret = "session-secret-for-tests"
    app_settings.security.anonymization_salt = "salt-for-tests"
    app_settings.security.encryption_key = "0123456789abcdef0123456789abcdef"
    return app_settings


@pytest.fixture
def served(monkeypatch):
    """Capture uvicorn.run calls instead of serving"""
    calls = []
    monkeypatch.setattr(main, "setup_logging", lambda: None)
    monkeypatch.setattr(main.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))
    return calls


def test_placeholder_secrets_default():
    """Test that shipped defaults are all reported"""
    assert main.placeholder_secrets(Settings()) == [
        "SECURITY_JWT_SECRET",
        "SECURITY_SESSION_SECRET",
        "SECURITY_ANONYMIZATION_SALT",
        "SECURITY_ENCRYPTION_KEY",
    ]


def test_placeholder_secrets_configured(configured):
    assert main.placeholder_secrets(configured) == []


def test_placeholders_warn_outside_production():
    app_settings = Settings(environment="staging")

    assert len(main.check_configuration(app_settings)) == 4


def test_placeholders_rejected_in_production():
    with pytest.raises(ConfigurationError) as exc_info:
        main.check_configuration(Settings(environment="production"))

    assert "SECURITY_JWT_SECRET" in exc_info.value.details["settings"]


def test_production_with_real_secrets(configured):
    configured.environment = "production"

    assert main.check_configuration(configured) == []


def test_run_uses_settings(served):
    assert main.run_api_server([]) == 0

    (target,), options = served[0]
    assert target == main.APP_FACTORY
    assert options["factory"] is True
    assert options["host"] == settings.api.host
    assert options["port"] == settings.api.port


def test_command_line_overrides(served):
    assert main.run_api_server(["--host", "127.0.0.1", "--port", "9000", "--workers", "3"]) == 0

    _, options = served[0]
    assert (options["host"], options["port"], options["workers"]) == ("127.0.0.1", 9000, 3)
    assert options["reload"] is settings.debug


def test_reload_runs_single_worker(served):
    main.run_api_server(["--reload", "--workers", "8"])

    _, options = served[0]
    assert options["reload"] is True
    assert options["workers"] == 1


def test_check_config_does_not_serve(served):
    assert main.run_api_server(["--check-config"]) == 0
    assert served == []


def test_refuses_to_start_with_placeholders_in_production(served, monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")

    assert main.run_api_server([]) == 1
    assert served == []
