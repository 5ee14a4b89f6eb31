"""
Database Models

ORM models for automations and their runs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONType, SoftDeleteMixin, TimestampMixin


class AutomationModel(Base, TimestampMixin, SoftDeleteMixin):
    """Automation graph."""

    __tablename__ = "automations"

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Trigger
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_params: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    channel_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Graph (builder shape)
    nodes: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    edges: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_automations_tenant_active", "tenant_id", "is_active"),
    )


class AutomationRunModel(Base, TimestampMixin):
    """One execution of an automation."""

    __tablename__ = "automation_runs"

    automation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("automations.id"),
        nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_key: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_context: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)

    # State
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    cursor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    variables: Mapped[Dict[str, str]] = mapped_column(JSONType, default=dict)
    resume_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    steps_executed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Outcome
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    end_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    diagnostics: Mapped[List[str]] = mapped_column(JSONType, default=list)
    history: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, default=list)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Ownership
    claim_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    claim_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("automation_id", "event_key", name="uq_automation_runs_event"),
        Index("ix_automation_runs_due", "status", "resume_at"),
        Index("ix_automation_runs_automation", "automation_id", "created_at"),
    )
