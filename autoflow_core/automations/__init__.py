"""
Automation storage and management.
"""

from .service import AutomationService
from .store import AutomationStore, InMemoryAutomationStore

__all__ = ["AutomationService", "AutomationStore", "InMemoryAutomationStore"]
