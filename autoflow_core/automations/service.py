"""
Automation management: CRUD with validation, activation, soft deletion.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from ..errors import AutomationNotFoundError
from ..graph import (
    Automation,
    Edge,
    GraphValidator,
    Node,
    TriggerKind,
    TriggerParams,
    ValidationResult,
    new_trigger_node,
)
from .store import AutomationStore

logger = logging.getLogger(__name__)

_UNSET: Any = object()

DeactivationHook = Callable[[str], Awaitable[int]]


class AutomationService:
    """
    Manages automation graphs.

    Every write is validated before it reaches the store. Switching an
    automation off (or deleting it) stops new runs at once because the
    scheduler re-reads the automation on every admit; the deactivation hook
    then applies the pending-run policy.
    """

    def __init__(
        self,
        store: AutomationStore,
        *,
        validator: Optional[GraphValidator] = None,
        on_deactivated: Optional[DeactivationHook] = None,
    ):
        self.store = store
        self.validator = validator or GraphValidator()
        self.on_deactivated = on_deactivated

    def validate(self, automation: Automation) -> ValidationResult:
        return self.validator.validate(automation)

    async def create(
        self,
        tenant_id: str,
        name: str,
        *,
        trigger: TriggerKind = TriggerKind.NEW_CONVERSATION,
        description: str = "",
        trigger_params: Optional[TriggerParams] = None,
        channel_id: Optional[str] = None,
        nodes: Optional[List[Node]] = None,
        edges: Optional[List[Edge]] = None,
        is_active: bool = False,
    ) -> Automation:
        """
        Create an automation.

        Without a graph the automation starts with a lone trigger node, the
        same starting point the builder shows.

        Raises:
            GraphValidationError: The graph has errors
        """
        automation = Automation(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=name,
            description=description,
            trigger=trigger,
            trigger_params=trigger_params or TriggerParams(),
            channel_id=channel_id,
            is_active=is_active,
            nodes=list(nodes) if nodes is not None else [new_trigger_node()],
            edges=list(edges or []),
        )
        self.validate(automation).raise_for_errors()

        await self.store.create(automation)
        logger.info(f"Created automation {automation.id}: {name}")
        return automation

    async def get(self, automation_id: str) -> Automation:
        automation = await self.store.get(automation_id)
        if automation is None:
            raise AutomationNotFoundError(automation_id)
        return automation

    async def list(self, tenant_id: str) -> List[Automation]:
        return await self.store.list(tenant_id)

    async def update(
        self,
        automation_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        trigger: Optional[TriggerKind] = None,
        trigger_params: Optional[TriggerParams] = None,
        channel_id: Optional[str] = _UNSET,
        nodes: Optional[List[Node]] = None,
        edges: Optional[List[Edge]] = None,
    ) -> Automation:
        """
        Update fields of an automation; omitted fields are unchanged.

        Graph edits bump ``version``. Suspended runs keep their cursor and
        are re-checked against the new graph when they resume.

        Raises:
            AutomationNotFoundError: Unknown or deleted automation
            GraphValidationError: The resulting graph has errors
        """
        automation = await self.get(automation_id)

        if name is not None:
            automation.name = name
        if description is not None:
            automation.description = description
        if trigger is not None:
            automation.trigger = trigger
        if trigger_params is not None:
            automation.trigger_params = trigger_params
        if channel_id is not _UNSET:
            automation.channel_id = channel_id
        if nodes is not None or edges is not None:
            if nodes is not None:
                automation.nodes = list(nodes)
            if edges is not None:
                automation.edges = list(edges)
            automation.version += 1

        self.validate(automation).raise_for_errors()

        await self.store.update(automation)
        logger.info(f"Updated automation {automation_id} (version {automation.version})")

        if channel_id is None and automation.is_active:
            await self._deactivated(automation_id)
        return automation

    async def set_active(self, automation_id: str, active: bool) -> Automation:
        automation = await self.get(automation_id)
        if automation.is_active == active:
            return automation

        automation.is_active = active
        await self.store.update(automation)
        logger.info(f"Automation {automation_id} {'activated' if active else 'deactivated'}")

        if not active:
            await self._deactivated(automation_id)
        return automation

    async def toggle_active(self, automation_id: str) -> Automation:
        automation = await self.get(automation_id)
        return await self.set_active(automation_id, not automation.is_active)

    async def delete(self, automation_id: str) -> None:
        """
        Soft-delete an automation.

        The record is kept so pending runs and run history still resolve.
        """
        automation = await self.get(automation_id)
        automation.is_deleted = True
        automation.is_active = False
        automation.updated_at = datetime.utcnow()
        await self.store.update(automation)
        logger.info(f"Deleted automation {automation_id}")

        await self._deactivated(automation_id)

    async def run_count(self, automation_id: str) -> int:
        return (await self.get(automation_id)).run_count

    async def _deactivated(self, automation_id: str) -> None:
        if self.on_deactivated is not None:
            await self.on_deactivated(automation_id)
