"""
Tests for settings and the enrolment value types.
"""
from dataclasses import fields
from datetime import datetime, timedelta, timezone

import pytest

from dps_enrol.config import Settings
from dps_enrol.core import EnrolmentInstance
from dps_enrol.core.enrolment import enrolment_window, is_open

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _settings(**overrides: object) -> Settings:
    return Settings(
        pxpay_user_id="TestAccount",
        pxpay_key="secret",
        database_url="sqlite+aiosqlite:///:memory:",
        **overrides,
    )


class TestSettings:
    """Test suite for Settings."""

    @pytest.mark.unit
    def test_callback_urls(self) -> None:
        settings = _settings(site_url="https://lms.example.com/")
        assert settings.success_url == "https://lms.example.com/enrol/dps/confirm"
        assert settings.fail_url == "https://lms.example.com/enrol/dps/fail"

    @pytest.mark.unit
    def test_default_currency_is_uppercased(self) -> None:
        settings = _settings(default_currency="aud")
        assert settings.default_currency == "AUD"

    @pytest.mark.unit
    def test_unrecognised_default_currency(self) -> None:
        with pytest.raises(ValueError, match="Unrecognised currency"):
            _settings(default_currency="XYZ")

    @pytest.mark.unit
    def test_unused_environment_switches_are_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEBUG", "true")

        settings = _settings()

        assert "debug" not in Settings.model_fields
        assert not hasattr(settings, "is_production")


class TestEnrolmentInstance:
    """Test suite for enrolment eligibility and access windows."""

    @pytest.mark.unit
    def test_instance_carries_only_what_the_engine_reads(self) -> None:
        assert [field.name for field in fields(EnrolmentInstance)] == [
            "id",
            "course_id",
            "cost",
            "currency",
            "enabled",
            "enrol_period",
            "enrol_start",
            "enrol_end",
        ]

    @pytest.mark.unit
    def test_is_open_respects_window(self) -> None:
        instance = EnrolmentInstance(
            id=7,
            course_id=101,
            enrol_start=NOW - timedelta(days=1),
            enrol_end=NOW + timedelta(days=1),
        )
        assert is_open(instance, NOW)
        assert not is_open(instance, NOW + timedelta(days=2))
        assert not is_open(instance, NOW - timedelta(days=2))

    @pytest.mark.unit
    def test_disabled_instance_is_closed(self) -> None:
        assert not is_open(EnrolmentInstance(id=7, course_id=101, enabled=False), NOW)

    @pytest.mark.unit
    def test_enrolment_window(self) -> None:
        assert enrolment_window(0, NOW) == (None, None)
        assert enrolment_window(3600, NOW) == (NOW, NOW + timedelta(hours=1))
