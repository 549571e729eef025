"""Configuration module for the benefits wizard."""

from .settings import EligibilityRule, WizardSettings, get_settings

__all__ = [
    "EligibilityRule",
    "WizardSettings",
    "get_settings",
]
