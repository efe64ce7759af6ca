"""Tests for application settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from backend.config import Settings

if TYPE_CHECKING:
    from pathlib import Path


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.debug is False
        assert settings.allow_anonymous_sync is False
        assert settings.github_token is None
        assert settings.sync_error_message_cap == 10

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_example")
        monkeypatch.setenv("GITHUB_MAX_FILE_SIZE", "2048")
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.github_token == "ghp_example"
        assert settings.github_max_file_size == 2048

    def test_settings_from_fixture(self, test_settings: Settings, tmp_path: Path) -> None:
        assert test_settings.debug is True
        assert str(tmp_path) in test_settings.database_url


class TestRuntimeSecurity:
    def test_debug_skips_checks(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()  # type: ignore[call-arg]

    def test_production_rejects_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        with pytest.raises(ValueError, match="SECRET_KEY") as exc_info:
            settings.validate_runtime_security()
        assert "ADMIN_PASSWORD" in str(exc_info.value)

    def test_production_rejects_anonymous_sync(self) -> None:
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None,
            secret_key="x" * 40,
            admin_password="a-strong-admin-password",
            allow_anonymous_sync=True,
        )
        with pytest.raises(ValueError, match="ALLOW_ANONYMOUS_SYNC"):
            settings.validate_runtime_security()

    def test_production_accepts_strong_values(self) -> None:
        Settings(  # type: ignore[call-arg]
            _env_file=None,
            secret_key="x" * 40,
            admin_password="a-strong-admin-password",
        ).validate_runtime_security()
