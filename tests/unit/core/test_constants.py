"""Tests for environment settings."""

from __future__ import annotations

import pytest

from pydantic import ValidationError

from core.constants import DEFAULT_SESSION_IDLE_TIMEOUT, MAX_MESSAGE_LENGTH, Settings, get_settings


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("SESSION_IDLE_TIMEOUT", "MAX_MESSAGE_LENGTH", "OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)  # type: ignore[call-arg]

        assert settings.session_idle_timeout == DEFAULT_SESSION_IDLE_TIMEOUT
        assert settings.max_message_length == MAX_MESSAGE_LENGTH
        assert settings.openai_api_key is None

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CANCEL_GRACE_PERIOD", "1.5")
        monkeypatch.setenv("WS_MESSAGE_RATE_LIMIT", "5")

        settings = get_settings()

        assert settings.cancel_grace_period == 1.5
        assert settings.ws_message_rate_limit == 5
        assert get_settings() is settings

    @pytest.mark.parametrize(
        "field",
        ["session_idle_timeout", "reaper_interval", "cancel_grace_period", "subscriber_callback_timeout"],
    )
    def test_durations_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})  # type: ignore[arg-type]

    def test_sizes_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, subscriber_queue_size=0)  # type: ignore[call-arg]

    def test_short_api_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, openai_api_key="short")  # type: ignore[call-arg]
