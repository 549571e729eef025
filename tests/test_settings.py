"""
Tests for wizard settings.
"""

import os
import sys
from datetime import date

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config.settings import WizardSettings, get_settings


class TestWizardSettings:
    """Tests for WizardSettings loading and validation."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("WIZARD_LOG_LEVEL", raising=False)
        settings = WizardSettings(_env_file=None)
        assert settings.session_ttl_minutes == 20
        assert settings.session_cookie_name == "wizard_session"
        assert settings.partner_marital_statuses == ["married", "commonlaw"]
        assert "email" in settings.email_verification_method_ids
        assert settings.log_level == "INFO"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("WIZARD_SESSION_TTL_MINUTES", "5")
        monkeypatch.setenv("WIZARD_PARTNER_MARITAL_STATUSES", '["married"]')
        monkeypatch.setenv("WIZARD_CURRENT_DATE", "2025-01-31")
        settings = WizardSettings(_env_file=None)
        assert settings.session_ttl_minutes == 5
        assert settings.partner_marital_statuses == ["married"]
        assert settings.today() == date(2025, 1, 31)

    def test_log_level_normalized(self):
        assert WizardSettings(log_level="warning").log_level == "WARNING"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValueError):
            WizardSettings(log_level="loud")

    def test_renewal_period_order_validated(self):
        with pytest.raises(ValueError):
            WizardSettings(renewal_period_start=date(2025, 6, 1), renewal_period_end=date(2025, 1, 1))

    def test_renewal_period_bounds(self):
        settings = WizardSettings(
            renewal_period_start=date(2025, 1, 1),
            renewal_period_end=date(2025, 6, 30),
            current_date=date(2025, 3, 1),
        )
        assert settings.is_within_renewal_period()
        assert not settings.is_within_renewal_period(date(2024, 12, 31))
        assert not settings.is_within_renewal_period(date(2025, 7, 1))

    def test_open_ended_renewal_period(self):
        assert WizardSettings().is_within_renewal_period(date(1999, 1, 1))

    def test_is_production(self):
        assert WizardSettings(environment="production").is_production
        assert not WizardSettings(environment="test").is_production

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
