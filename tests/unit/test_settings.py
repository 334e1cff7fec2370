"""
Unit tests for application settings.

Tests verify defaults, environment overrides and the OTP policy built
from them.
"""

import pytest
from pydantic import ValidationError

from src.config.settings import Settings
from src.domain.ports import OtpPurpose


class TestDefaults:
    """Tests for default values."""

    def test_otp_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.otp_length == 6
        assert settings.otp_max_attempts == 5
        assert settings.otp_rate_limit == 5
        assert settings.otp_rate_window_minutes == 60

    def test_policy_from_defaults(self) -> None:
        policy = Settings(_env_file=None).otp_policy()

        assert policy.code_length == 6
        assert policy.ttl_minutes == {
            OtpPurpose.EMAIL_VERIFICATION: 5,
            OtpPurpose.PASSWORD_RESET: 10,
            OtpPurpose.EMAIL_CHANGE: 5,
        }
        assert policy.hash_rounds == 10


class TestEnvironment:
    """Tests for environment variable loading."""

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OTP_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("OTP_TTL_PASSWORD_RESET_MINUTES", "15")

        settings = Settings(_env_file=None)

        assert settings.otp_max_attempts == 3
        assert settings.otp_policy().ttl_minutes[OtpPurpose.PASSWORD_RESET] == 15

    def test_case_insensitive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("database_url", "postgresql://u:p@db:5432/jobs")
        assert Settings(_env_file=None).database_url == "postgresql://u:p@db:5432/jobs"

    @pytest.mark.parametrize(("name", "value"), [("OTP_LENGTH", "3"), ("BCRYPT_COST", "2")])
    def test_out_of_range_rejected(self, monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
        monkeypatch.setenv(name, value)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
