"""
Trigger Matcher.

Decides which automations an incoming event starts.
"""

from typing import List

import structlog

from ..automations.store import AutomationStore
from ..events import AutomationEvent, EventType
from ..graph import Automation, TriggerKind

logger = structlog.get_logger(__name__)


class TriggerMatcher:
    """
    Matches events against active automations of the event's tenant.

    - NEW_CONVERSATION: same channel, no further filter
    - KEYWORD: incoming message on the same channel containing any keyword
      (case-insensitive substring)
    - BOOKING_CREATED: any booking of the tenant
    - BOOKING_STATUS_CHANGED: optionally only for one target status
    - MANUAL: never matched from events, see :meth:`match_manual`
    """

    def __init__(self, automation_store: AutomationStore):
        self.automation_store = automation_store

    async def on_event(self, event: AutomationEvent) -> List[str]:
        """Return ids of automations the event should start."""
        if event.type == EventType.MANUAL:
            return []

        candidates = await self.automation_store.list_active(event.tenant_id)
        matched = [a.id for a in candidates if self.matches(a, event)]

        logger.debug(
            "trigger_matched",
            event_type=event.type.value,
            tenant_id=event.tenant_id,
            candidates=len(candidates),
            matched=matched,
        )
        return matched

    def matches(self, automation: Automation, event: AutomationEvent) -> bool:
        if not automation.can_run or automation.tenant_id != event.tenant_id:
            return False

        trigger = automation.trigger

        if trigger == TriggerKind.NEW_CONVERSATION:
            return (
                event.type == EventType.NEW_CONVERSATION
                and event.channel_id == automation.channel_id
            )

        if trigger == TriggerKind.KEYWORD:
            if event.type != EventType.MESSAGE_RECEIVED or event.channel_id != automation.channel_id:
                return False
            text = (event.text or "").casefold()
            return any(
                keyword.strip().casefold() in text
                for keyword in automation.trigger_params.keywords
                if keyword.strip()
            )

        if trigger == TriggerKind.BOOKING_CREATED:
            return event.type == EventType.BOOKING_CREATED

        if trigger == TriggerKind.BOOKING_STATUS_CHANGED:
            if event.type != EventType.BOOKING_STATUS_CHANGED:
                return False
            target = automation.trigger_params.target_status
            return not target or target.upper() == (event.status or "").upper()

        return False

    def match_manual(self, automation: Automation, event: AutomationEvent) -> bool:
        """Explicit invocation of a MANUAL automation."""
        return (
            event.type == EventType.MANUAL
            and automation.trigger == TriggerKind.MANUAL
            and automation.can_run
            and automation.tenant_id == event.tenant_id
        )
