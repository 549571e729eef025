"""
FastAPI Routers - Modular endpoint organization.

Router modules:
- wizard: apply and renew questionnaire pages
"""

from .wizard import router as wizard_router

__all__ = [
    "wizard_router",
]
