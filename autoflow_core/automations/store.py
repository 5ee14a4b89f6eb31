"""
Automation persistence.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..errors import AutomationNotFoundError
from ..graph import Automation


class AutomationStore(ABC):
    """Abstract automation storage."""

    @abstractmethod
    async def create(self, automation: Automation) -> Automation:
        """Insert a new automation."""

    @abstractmethod
    async def get(self, automation_id: str, *, include_deleted: bool = False) -> Optional[Automation]:
        """Get an automation by id."""

    @abstractmethod
    async def list(self, tenant_id: str, *, include_deleted: bool = False) -> List[Automation]:
        """All automations of a tenant, oldest first."""

    @abstractmethod
    async def list_active(self, tenant_id: str) -> List[Automation]:
        """Active, non-deleted automations of a tenant."""

    @abstractmethod
    async def update(self, automation: Automation) -> Automation:
        """Replace a stored automation."""

    @abstractmethod
    async def increment_run_count(self, automation_id: str) -> int:
        """Atomically bump the run counter and return the new value."""


class InMemoryAutomationStore(AutomationStore):
    """Process-local automation store."""

    def __init__(self):
        self._automations: Dict[str, Automation] = {}
        self._lock = asyncio.Lock()

    async def create(self, automation: Automation) -> Automation:
        async with self._lock:
            if automation.id in self._automations:
                raise ValueError(f"Automation already exists: {automation.id}")
            self._automations[automation.id] = copy.deepcopy(automation)
            return automation

    async def get(self, automation_id: str, *, include_deleted: bool = False) -> Optional[Automation]:
        automation = self._automations.get(automation_id)
        if automation is None or (automation.is_deleted and not include_deleted):
            return None
        return copy.deepcopy(automation)

    async def list(self, tenant_id: str, *, include_deleted: bool = False) -> List[Automation]:
        automations = [
            a for a in self._automations.values()
            if a.tenant_id == tenant_id and (include_deleted or not a.is_deleted)
        ]
        automations.sort(key=lambda a: a.created_at)
        return [copy.deepcopy(a) for a in automations]

    async def list_active(self, tenant_id: str) -> List[Automation]:
        return [a for a in await self.list(tenant_id) if a.is_active]

    async def update(self, automation: Automation) -> Automation:
        async with self._lock:
            stored = self._automations.get(automation.id)
            if stored is None:
                raise AutomationNotFoundError(automation.id)
            # The counter only moves through increment_run_count
            automation.run_count = stored.run_count
            automation.updated_at = datetime.utcnow()
            self._automations[automation.id] = copy.deepcopy(automation)
            return automation

    async def increment_run_count(self, automation_id: str) -> int:
        async with self._lock:
            automation = self._automations.get(automation_id)
            if automation is None:
                raise AutomationNotFoundError(automation_id)
            automation.run_count += 1
            return automation.run_count
