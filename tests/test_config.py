"""Tests for configuration loading and validation."""

import pytest

from voice_gateway.config import (
    AppConfig,
    DedupeConfig,
    ModelConfig,
    SecurityConfig,
    ServerConfig,
    SpeechConfig,
    StartupError,
    StoreConfig,
    WebhookConfig,
    _validate_config,
    require_credentials,
)


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        config = AppConfig()
        _validate_config(config)  # should not raise

    def test_invalid_temperature_too_high(self):
        config = AppConfig(model=ModelConfig(llm_temperature=3.0))
        with pytest.raises(ValueError, match="LLM_TEMPERATURE"):
            _validate_config(config)

    def test_invalid_temperature_negative(self):
        config = AppConfig(model=ModelConfig(llm_temperature=-0.5))
        with pytest.raises(ValueError, match="LLM_TEMPERATURE"):
            _validate_config(config)

    def test_invalid_model_timeout(self):
        config = AppConfig(model=ModelConfig(llm_timeout_sec=0))
        with pytest.raises(ValueError, match="LLM_TIMEOUT_SECONDS"):
            _validate_config(config)

    def test_invalid_webhook_timeout(self):
        config = AppConfig(webhooks=WebhookConfig(timeout_sec=-1))
        with pytest.raises(ValueError, match="WEBHOOK_TIMEOUT_SECONDS"):
            _validate_config(config)

    def test_invalid_port(self):
        config = AppConfig(server=ServerConfig(port=70000))
        with pytest.raises(ValueError, match="PORT"):
            _validate_config(config)

    def test_invalid_sample_rate(self):
        config = AppConfig(speech=SpeechConfig(sample_rate_hertz=4000))
        with pytest.raises(ValueError, match="STT_SAMPLE_RATE"):
            _validate_config(config)

    def test_invalid_store_backend(self):
        config = AppConfig(store=StoreConfig(backend="redis"))
        with pytest.raises(ValueError, match="STORE_BACKEND"):
            _validate_config(config)

    def test_negative_dedupe_window(self):
        config = AppConfig(dedupe=DedupeConfig(booking_announce_window_sec=-1))
        with pytest.raises(ValueError, match="BOOKING_ANNOUNCE_WINDOW_SECONDS"):
            _validate_config(config)

    def test_safe_int_parsing(self):
        from voice_gateway.config import _safe_int

        assert _safe_int("NONEXISTENT_VAR_12345", "42") == 42

    def test_safe_int_rejects_garbage(self, monkeypatch):
        from voice_gateway.config import _safe_int

        monkeypatch.setenv("VOICE_GATEWAY_TEST_INT", "eighty")
        with pytest.raises(ValueError, match="VOICE_GATEWAY_TEST_INT"):
            _safe_int("VOICE_GATEWAY_TEST_INT", "80")

    def test_safe_float_parsing(self):
        from voice_gateway.config import _safe_float

        assert _safe_float("NONEXISTENT_VAR_12345", "3.14") == pytest.approx(3.14)

    def test_safe_bool_parsing(self, monkeypatch):
        from voice_gateway.config import _safe_bool

        monkeypatch.setenv("VOICE_GATEWAY_TEST_FLAG", "off")
        assert _safe_bool("VOICE_GATEWAY_TEST_FLAG", "true") is False
        assert _safe_bool("NONEXISTENT_VAR_12345", "yes") is True

    def test_split_csv(self, monkeypatch):
        from voice_gateway.config import _split_csv

        monkeypatch.setenv("VOICE_GATEWAY_TEST_ORIGINS", "https://a.test, https://b.test,")
        assert _split_csv("VOICE_GATEWAY_TEST_ORIGINS", "*") == ("https://a.test", "https://b.test")


class TestRequireCredentials:
    def test_all_present(self):
        config = AppConfig(
            security=SecurityConfig(booking_webhook_secret="a", supervisor_secret="b"),
            model=ModelConfig(project_id="proj"),
            store=StoreConfig(backend="firestore"),
        )
        require_credentials(config)  # should not raise

    def test_lists_every_missing_secret(self):
        config = AppConfig(
            security=SecurityConfig(booking_webhook_secret="", supervisor_secret=""),
            store=StoreConfig(backend="memory"),
        )
        with pytest.raises(StartupError) as excinfo:
            require_credentials(config)
        assert "BOOKING_WEBHOOK_SECRET" in str(excinfo.value)
        assert "SUPERVISOR_SECRET" in str(excinfo.value)
        assert "GOOGLE_PROJECT_ID" not in str(excinfo.value)

    def test_firestore_needs_project(self):
        config = AppConfig(
            security=SecurityConfig(booking_webhook_secret="a", supervisor_secret="b"),
            model=ModelConfig(project_id=""),
            store=StoreConfig(backend="firestore"),
        )
        with pytest.raises(StartupError, match="GOOGLE_PROJECT_ID"):
            require_credentials(config)

    def test_build_services_fails_fast(self):
        from voice_gateway.server.bootstrap import build_services

        config = AppConfig(
            security=SecurityConfig(booking_webhook_secret="", supervisor_secret=""),
            store=StoreConfig(backend="memory"),
        )
        with pytest.raises(StartupError, match="Missing required configuration"):
            build_services(config)
