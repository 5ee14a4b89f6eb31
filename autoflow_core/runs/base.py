"""
Run records.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..events import AutomationEvent


class RunStatus(str, Enum):
    """Run lifecycle states."""

    RUNNING = "RUNNING"
    SUSPENDED = "SUSPENDED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})
PENDING_STATUSES = frozenset({RunStatus.RUNNING, RunStatus.SUSPENDED})


class RunErrorCode(str, Enum):
    """Reasons a run ends in FAILED or CANCELLED."""

    STEP_LIMIT_EXCEEDED = "STEP_LIMIT_EXCEEDED"
    RESUME_TARGET_MISSING = "RESUME_TARGET_MISSING"
    AUTOMATION_MISSING = "AUTOMATION_MISSING"
    COLLABORATOR_ERROR = "COLLABORATOR_ERROR"
    TIMEOUT = "TIMEOUT"
    NO_CHANNEL = "NO_CHANNEL"
    CHANNEL_UNAVAILABLE = "CHANNEL_UNAVAILABLE"
    NO_RECIPIENT = "NO_RECIPIENT"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"
    DELIVERY_REJECTED = "DELIVERY_REJECTED"
    MISSING_SERVICE = "MISSING_SERVICE"
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    INVALID_CONFIG = "INVALID_CONFIG"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CANCELLED = "CANCELLED"


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class RunStep:
    """One executed node."""

    node_id: str
    kind: str
    outcome: str
    at: datetime
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "kind": self.kind,
            "outcome": self.outcome,
            "at": self.at.isoformat(),
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunStep":
        return cls(
            node_id=data["nodeId"],
            kind=data["kind"],
            outcome=data["outcome"],
            at=datetime.fromisoformat(data["at"]),
            detail=data.get("detail"),
        )


@dataclass
class Run:
    """One execution of an automation, started by a single event."""

    automation_id: str
    tenant_id: str
    event_key: str
    trigger_context: AutomationEvent
    cursor: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    variables: Dict[str, str] = field(default_factory=dict)
    resume_at: Optional[datetime] = None
    steps_executed: int = 0
    error_code: Optional[str] = None
    error: Optional[str] = None
    end_reason: Optional[str] = None
    diagnostics: List[str] = field(default_factory=list)
    history: List[RunStep] = field(default_factory=list)
    claim_token: Optional[str] = None
    claim_expires_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def record_step(self, step: RunStep, limit: int) -> None:
        self.history.append(step)
        if len(self.history) > limit:
            del self.history[: len(self.history) - limit]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "automationId": self.automation_id,
            "tenantId": self.tenant_id,
            "eventKey": self.event_key,
            "triggerContext": self.trigger_context.to_dict(),
            "cursor": self.cursor,
            "status": self.status.value,
            "variables": dict(self.variables),
            "resumeAt": self.resume_at.isoformat() if self.resume_at else None,
            "stepsExecuted": self.steps_executed,
            "errorCode": self.error_code,
            "error": self.error,
            "endReason": self.end_reason,
            "diagnostics": list(self.diagnostics),
            "history": [s.to_dict() for s in self.history],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
