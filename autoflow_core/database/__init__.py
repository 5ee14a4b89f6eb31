"""
SQL persistence for automations and runs.
"""

from .base import Base, DatabaseManager
from .models import AutomationModel, AutomationRunModel
from .repositories import (
    AutomationRepository,
    AutomationRunRepository,
    SqlAutomationStore,
    SqlRunStore,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "AutomationModel",
    "AutomationRunModel",
    "AutomationRepository",
    "AutomationRunRepository",
    "SqlAutomationStore",
    "SqlRunStore",
]
