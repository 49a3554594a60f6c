"""
Tests for environment-based settings.
"""
import pytest
from pydantic import ValidationError

from fx_platform.config import Settings


class TestSettings:
    @pytest.mark.unit
    def test_log_level_is_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"

    @pytest.mark.unit
    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    @pytest.mark.unit
    @pytest.mark.parametrize("field", ["quote_unavailable_rate", "execution_failure_rate"])
    def test_failure_rates_are_probabilities(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 1.5})

    @pytest.mark.unit
    def test_remote_exchange_flag(self, test_settings: Settings) -> None:
        assert test_settings.uses_remote_exchange is False
        assert Settings(exchange_base_url="http://venue:8000").uses_remote_exchange is True

    @pytest.mark.unit
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PAYMENT_EVENTS_TOPIC", "fx-events")
        monkeypatch.setenv("OUTBOX_POLL_INTERVAL_SECONDS", "2.5")

        settings = Settings()

        assert settings.payment_events_topic == "fx-events"
        assert settings.outbox_poll_interval_seconds == 2.5

    @pytest.mark.unit
    def test_allowed_origins_list(self) -> None:
        settings = Settings(allowed_origins="http://a.test, http://b.test")

        assert settings.get_allowed_origins_list() == ["http://a.test", "http://b.test"]
