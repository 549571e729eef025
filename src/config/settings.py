"""Application settings using Pydantic Settings.

Centralized configuration for the benefits wizard.

Everything the flow descriptors depend on (communication methods that need
a verified email, marital statuses that imply a partner, eligibility-by-age
rules, the "current date" used for age calculations) is read here and
passed explicitly to the descriptor loader. Nothing below the web layer
looks at environment variables.

Environment variables use the WIZARD_ prefix, e.g.:
- WIZARD_SESSION_TTL_MINUTES=20
- WIZARD_SESSION_DB_PATH=data/wizard_sessions.db
- WIZARD_PARTNER_MARITAL_STATUSES='["married", "commonlaw"]'
"""

import logging
from datetime import date
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EligibilityRule(BaseModel):
    """Age band that became eligible for coverage on a given date."""

    min_age: int = Field(ge=0, description="Inclusive lower age bound")
    max_age: int = Field(ge=0, description="Inclusive upper age bound")
    start_date: date = Field(description="Date the age band becomes eligible")

    @model_validator(mode="after")
    def check_bounds(self) -> "EligibilityRule":
        if self.min_age > self.max_age:
            raise ValueError(f"min_age {self.min_age} is greater than max_age {self.max_age}")
        return self


def _default_eligibility_rules() -> List[EligibilityRule]:
    return [
        EligibilityRule(min_age=65, max_age=150, start_date=date(2024, 5, 1)),
        EligibilityRule(min_age=0, max_age=17, start_date=date(2024, 6, 27)),
        EligibilityRule(min_age=18, max_age=64, start_date=date(2025, 5, 1)),
    ]


class WizardSettings(BaseSettings):
    """Main wizard settings."""

    model_config = SettingsConfigDict(
        env_prefix="WIZARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="Benefits Wizard", description="Application name")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    # Sessions
    session_ttl_minutes: int = Field(default=20, ge=1, description="Idle minutes before a submission expires")
    session_db_path: str = Field(default="data/wizard_sessions.db", description="SQLite file for session blobs")
    session_cookie_name: str = Field(default="wizard_session", description="Cookie carrying the session id")

    # Flow descriptors
    flows_dir: Optional[str] = Field(
        default=None,
        description="Directory of flow descriptor YAML files (defaults to the packaged flows)",
    )

    # Values consumed by flow predicates
    email_verification_method_ids: List[str] = Field(
        default=["email", "gc-digital"],
        description="Preferred communication methods that require a verified email",
    )
    partner_marital_statuses: List[str] = Field(
        default=["married", "commonlaw"],
        description="Marital status codes that imply a spouse or common-law partner",
    )
    eligibility_rules: List[EligibilityRule] = Field(default_factory=_default_eligibility_rules)
    current_date: Optional[date] = Field(
        default=None,
        description="Fixed 'today' for age calculations (testing and dry runs)",
    )
    renewal_period_start: Optional[date] = Field(default=None, description="First day renewals are accepted")
    renewal_period_end: Optional[date] = Field(default=None, description="Last day renewals are accepted")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def check_renewal_period(self) -> "WizardSettings":
        start, end = self.renewal_period_start, self.renewal_period_end
        if start and end and start > end:
            raise ValueError("renewal_period_start must not be after renewal_period_end")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    def today(self) -> date:
        """Return the configured current date, or the real one."""
        return self.current_date or date.today()

    def is_within_renewal_period(self, on: Optional[date] = None) -> bool:
        """
        Check whether renewals are open.

        An unconfigured bound is treated as open-ended.

        Args:
            on: Date to check (defaults to today()).

        Returns:
            True when the date falls inside the configured period.
        """
        on = on or self.today()
        if self.renewal_period_start and on < self.renewal_period_start:
            return False
        if self.renewal_period_end and on > self.renewal_period_end:
            return False
        return True


@lru_cache
def get_settings() -> WizardSettings:
    """
    Get cached wizard settings instance.

    Returns:
        WizardSettings: Cached settings loaded from environment.
    """
    settings = WizardSettings()
    logger.debug(f"Loaded wizard settings for environment '{settings.environment}'")
    return settings
