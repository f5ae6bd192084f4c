"""Tests for configuration.py: ApplicationConfiguration."""

import pydantic
import pytest

import configuration

ALL_CONFIGURATION_ENVIRONMENT_VARIABLE_NAMES: list[str] = [
    "MFKEY_FUNCTION_APPLICATION_HOST",
    "MFKEY_FUNCTION_APPLICATION_PORT",
    "MFKEY_FUNCTION_LOG_LEVEL",
    "MFKEY_FUNCTION_CORS_ALLOWED_HEADERS",
    "MFKEY_FUNCTION_CORS_ALLOWED_METHODS",
    "MFKEY_FUNCTION_CORS_MAX_AGE_SECONDS",
    "MFKEY_FUNCTION_KEY_RECOVERY_BACKEND",
    "MFKEY_FUNCTION_KEY_RECOVERY_MAXIMUM_CONCURRENCY",
    "MFKEY_FUNCTION_MAXIMUM_REQUEST_PAYLOAD_BYTES",
    "MFKEY_FUNCTION_TIMEOUT_FOR_REQUESTS_IN_SECONDS",
]


def _clear_all_configuration_environment_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every MFKEY_FUNCTION_* variable so the test reads only defaults."""
    for variable_name in ALL_CONFIGURATION_ENVIRONMENT_VARIABLE_NAMES:
        monkeypatch.delenv(variable_name, raising=False)


class TestApplicationConfigurationDefaults:
    def test_default_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _clear_all_configuration_environment_variables(monkeypatch)
        application_configuration = configuration.ApplicationConfiguration()

        assert application_configuration.application_host == "127.0.0.1"
        assert application_configuration.application_port == 8080
        assert application_configuration.log_level == "INFO"

        assert application_configuration.cors_allowed_headers == ["Authorization", "Content-Type"]
        assert application_configuration.cors_allowed_methods == ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
        assert application_configuration.cors_max_age_seconds == 3600

        assert application_configuration.key_recovery_backend == ""
        assert application_configuration.key_recovery_maximum_concurrency == 1

        assert application_configuration.maximum_request_payload_bytes == 1_048_576
        assert application_configuration.timeout_for_requests_in_seconds == 60.0


class TestApplicationConfigurationEnvironmentOverrides:
    def test_scalar_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _clear_all_configuration_environment_variables(monkeypatch)
        monkeypatch.setenv("MFKEY_FUNCTION_APPLICATION_PORT", "9090")
        monkeypatch.setenv("MFKEY_FUNCTION_KEY_RECOVERY_BACKEND", "crapto1_bindings:Crapto1Backend")
        monkeypatch.setenv("MFKEY_FUNCTION_KEY_RECOVERY_MAXIMUM_CONCURRENCY", "4")
        monkeypatch.setenv("MFKEY_FUNCTION_TIMEOUT_FOR_REQUESTS_IN_SECONDS", "2.5")

        application_configuration = configuration.ApplicationConfiguration()

        assert application_configuration.application_port == 9090
        assert application_configuration.key_recovery_backend == "crapto1_bindings:Crapto1Backend"
        assert application_configuration.key_recovery_maximum_concurrency == 4
        assert application_configuration.timeout_for_requests_in_seconds == 2.5

    def test_list_overrides_are_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _clear_all_configuration_environment_variables(monkeypatch)
        monkeypatch.setenv("MFKEY_FUNCTION_CORS_ALLOWED_HEADERS", '["Content-Type","X-Requested-With"]')

        application_configuration = configuration.ApplicationConfiguration()

        assert application_configuration.cors_allowed_headers == ["Content-Type", "X-Requested-With"]


class TestApplicationConfigurationValidation:
    @pytest.mark.parametrize(
        ("variable_name", "value"),
        [
            ("MFKEY_FUNCTION_APPLICATION_PORT", "0"),
            ("MFKEY_FUNCTION_APPLICATION_PORT", "65536"),
            ("MFKEY_FUNCTION_CORS_MAX_AGE_SECONDS", "-1"),
            ("MFKEY_FUNCTION_KEY_RECOVERY_MAXIMUM_CONCURRENCY", "0"),
            ("MFKEY_FUNCTION_MAXIMUM_REQUEST_PAYLOAD_BYTES", "0"),
            ("MFKEY_FUNCTION_TIMEOUT_FOR_REQUESTS_IN_SECONDS", "0"),
        ],
    )
    def test_out_of_range_values_rejected(
        self,
        monkeypatch: pytest.MonkeyPatch,
        variable_name: str,
        value: str,
    ) -> None:
        _clear_all_configuration_environment_variables(monkeypatch)
        monkeypatch.setenv(variable_name, value)

        with pytest.raises(pydantic.ValidationError):
            configuration.ApplicationConfiguration()
