"""
Database Repositories

Session-scoped repositories plus the SQL implementations of the automation
and run stores used by the engine.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import and_, desc, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..automations.store import AutomationStore
from ..errors import AutomationNotFoundError, ClaimLostError, RunNotFoundError, RunStateError
from ..events import AutomationEvent
from ..graph import Automation, Edge, Node, TriggerKind, TriggerParams
from ..runs import PENDING_STATUSES, Run, RunErrorCode, RunStatus, RunStep, RunStore
from .base import Base, DatabaseManager
from .models import AutomationModel, AutomationRunModel


ModelType = TypeVar("ModelType", bound=Base)

_PENDING = [s.value for s in PENDING_STATUSES]


# =============================================================================
# Base Repository
# =============================================================================


class BaseRepository(Generic[ModelType]):
    """Base repository with common operations."""

    model: Type[ModelType]

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """Get entity by ID."""
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    async def add(self, instance: ModelType) -> ModelType:
        self.session.add(instance)
        await self.session.flush()
        return instance


# =============================================================================
# Automations
# =============================================================================


class AutomationRepository(BaseRepository[AutomationModel]):
    """Automation queries."""

    model = AutomationModel

    async def list_for_tenant(
        self,
        tenant_id: str,
        include_deleted: bool = False,
        active_only: bool = False,
    ) -> List[AutomationModel]:
        query = select(AutomationModel).where(AutomationModel.tenant_id == tenant_id)
        if not include_deleted:
            query = query.where(AutomationModel.is_deleted.is_(False))
        if active_only:
            query = query.where(AutomationModel.is_active.is_(True))
        result = await self.session.execute(query.order_by(AutomationModel.created_at))
        return list(result.scalars().all())

    async def update_values(self, automation_id: str, values: Dict[str, Any]) -> bool:
        result = await self.session.execute(
            update(AutomationModel)
            .where(AutomationModel.id == automation_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_run_count(self, automation_id: str) -> Optional[int]:
        result = await self.session.execute(
            update(AutomationModel)
            .where(AutomationModel.id == automation_id)
            .values(run_count=AutomationModel.run_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        count = await self.session.execute(
            select(AutomationModel.run_count).where(AutomationModel.id == automation_id)
        )
        return count.scalar_one()


def automation_values(automation: Automation) -> Dict[str, Any]:
    """Column values for an automation, excluding the run counter."""
    return {
        "tenant_id": automation.tenant_id,
        "name": automation.name,
        "description": automation.description,
        "trigger": automation.trigger.value,
        "trigger_params": automation.trigger_params.to_dict(),
        "channel_id": automation.channel_id,
        "is_active": automation.is_active,
        "nodes": [n.to_dict() for n in automation.nodes],
        "edges": [e.to_dict() for e in automation.edges],
        "version": automation.version,
        "is_deleted": automation.is_deleted,
        "deleted_at": automation.updated_at if automation.is_deleted else None,
        "updated_at": automation.updated_at,
    }


def automation_from_model(model: AutomationModel) -> Automation:
    return Automation(
        id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        description=model.description or "",
        trigger=TriggerKind(model.trigger),
        trigger_params=TriggerParams.from_dict(model.trigger_params),
        channel_id=model.channel_id,
        is_active=model.is_active,
        nodes=[Node.from_dict(n) for n in model.nodes or []],
        edges=[Edge.from_dict(e) for e in model.edges or []],
        run_count=model.run_count,
        version=model.version,
        is_deleted=model.is_deleted,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SqlAutomationStore(AutomationStore):
    """Automation store on SQLAlchemy."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create(self, automation: Automation) -> Automation:
        async with self.db.session() as session:
            await AutomationRepository(session).add(
                AutomationModel(
                    id=automation.id,
                    run_count=automation.run_count,
                    created_at=automation.created_at,
                    **automation_values(automation),
                )
            )
        return automation

    async def get(self, automation_id: str, *, include_deleted: bool = False) -> Optional[Automation]:
        async with self.db.session() as session:
            model = await AutomationRepository(session).get_by_id(automation_id)
            if model is None or (model.is_deleted and not include_deleted):
                return None
            return automation_from_model(model)

    async def list(self, tenant_id: str, *, include_deleted: bool = False) -> List[Automation]:
        async with self.db.session() as session:
            models = await AutomationRepository(session).list_for_tenant(
                tenant_id, include_deleted=include_deleted
            )
            return [automation_from_model(m) for m in models]

    async def list_active(self, tenant_id: str) -> List[Automation]:
        async with self.db.session() as session:
            models = await AutomationRepository(session).list_for_tenant(tenant_id, active_only=True)
            return [automation_from_model(m) for m in models]

    async def update(self, automation: Automation) -> Automation:
        automation.updated_at = datetime.utcnow()
        async with self.db.session() as session:
            updated = await AutomationRepository(session).update_values(
                automation.id, automation_values(automation)
            )
        if not updated:
            raise AutomationNotFoundError(automation.id)
        return automation

    async def increment_run_count(self, automation_id: str) -> int:
        async with self.db.session() as session:
            count = await AutomationRepository(session).increment_run_count(automation_id)
        if count is None:
            raise AutomationNotFoundError(automation_id)
        return count


# =============================================================================
# Runs
# =============================================================================


def _claimable(now: datetime):
    M = AutomationRunModel
    return or_(
        and_(
            M.status == RunStatus.SUSPENDED.value,
            M.resume_at.is_not(None),
            M.resume_at <= now,
        ),
        and_(
            M.status == RunStatus.RUNNING.value,
            M.claim_expires_at.is_not(None),
            M.claim_expires_at <= now,
        ),
    )


def _held_by(token: Optional[str]):
    if token is None:
        return AutomationRunModel.claim_token.is_(None)
    return AutomationRunModel.claim_token == token


class AutomationRunRepository(BaseRepository[AutomationRunModel]):
    """Run queries. Ownership changes are conditional UPDATEs."""

    model = AutomationRunModel

    async def get_by_event_key(self, automation_id: str, event_key: str) -> Optional[AutomationRunModel]:
        result = await self.session.execute(
            select(AutomationRunModel).where(
                AutomationRunModel.automation_id == automation_id,
                AutomationRunModel.event_key == event_key,
            )
        )
        return result.scalar_one_or_none()

    async def due_ids(self, now: datetime, limit: int) -> List[str]:
        result = await self.session.execute(
            select(AutomationRunModel.id)
            .where(_claimable(now))
            .order_by(AutomationRunModel.resume_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def claim(self, run_id: str, now: datetime, token: str, expires_at: datetime) -> bool:
        result = await self.session.execute(
            update(AutomationRunModel)
            .where(AutomationRunModel.id == run_id, _claimable(now))
            .values(
                status=RunStatus.RUNNING.value,
                claim_token=token,
                claim_expires_at=expires_at,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def write(self, run_id: str, token: Optional[str], values: Dict[str, Any]) -> bool:
        result = await self.session.execute(
            update(AutomationRunModel)
            .where(
                AutomationRunModel.id == run_id,
                AutomationRunModel.status.in_(_PENDING),
                _held_by(token),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel(self, run_id: str, now: datetime, reason: str) -> bool:
        result = await self.session.execute(
            update(AutomationRunModel)
            .where(
                AutomationRunModel.id == run_id,
                AutomationRunModel.status.in_(_PENDING),
            )
            .values(
                status=RunStatus.CANCELLED.value,
                error_code=RunErrorCode.CANCELLED.value,
                error=reason,
                resume_at=None,
                claim_token=None,
                claim_expires_at=None,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_filtered(
        self,
        automation_id: Optional[str],
        statuses: Optional[List[str]],
        limit: int,
    ) -> List[AutomationRunModel]:
        query = select(AutomationRunModel)
        if automation_id is not None:
            query = query.where(AutomationRunModel.automation_id == automation_id)
        if statuses is not None:
            query = query.where(AutomationRunModel.status.in_(statuses))
        result = await self.session.execute(
            query.order_by(desc(AutomationRunModel.created_at)).limit(limit)
        )
        return list(result.scalars().all())


def run_values(run: Run) -> Dict[str, Any]:
    return {
        "automation_id": run.automation_id,
        "tenant_id": run.tenant_id,
        "event_key": run.event_key,
        "trigger_context": run.trigger_context.to_dict(),
        "status": run.status.value,
        "cursor": run.cursor,
        "variables": dict(run.variables),
        "resume_at": run.resume_at,
        "steps_executed": run.steps_executed,
        "error_code": run.error_code,
        "error": run.error,
        "end_reason": run.end_reason,
        "diagnostics": list(run.diagnostics),
        "history": [s.to_dict() for s in run.history],
        "completed_at": run.completed_at,
        "claim_token": run.claim_token,
        "claim_expires_at": run.claim_expires_at,
        "updated_at": run.updated_at,
    }


def run_from_model(model: AutomationRunModel) -> Run:
    return Run(
        id=model.id,
        automation_id=model.automation_id,
        tenant_id=model.tenant_id,
        event_key=model.event_key,
        trigger_context=AutomationEvent.from_dict(model.trigger_context),
        cursor=model.cursor,
        status=RunStatus(model.status),
        variables=dict(model.variables or {}),
        resume_at=model.resume_at,
        steps_executed=model.steps_executed,
        error_code=model.error_code,
        error=model.error,
        end_reason=model.end_reason,
        diagnostics=list(model.diagnostics or []),
        history=[RunStep.from_dict(s) for s in model.history or []],
        claim_token=model.claim_token,
        claim_expires_at=model.claim_expires_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=model.completed_at,
    )


class SqlRunStore(RunStore):
    """
    Run store on SQLAlchemy.

    Deduplication relies on the unique (automation_id, event_key)
    constraint; claims and checkpoints are conditional UPDATEs whose row
    count tells whether this worker won.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def create_if_absent(self, run: Run) -> Tuple[Run, bool]:
        async with self.db.session() as session:
            existing = await AutomationRunRepository(session).get_by_event_key(
                run.automation_id, run.event_key
            )
            if existing is not None:
                return run_from_model(existing), False

        try:
            async with self.db.session() as session:
                await AutomationRunRepository(session).add(
                    AutomationRunModel(id=run.id, created_at=run.created_at, **run_values(run))
                )
        except IntegrityError:
            # Lost the insert race to a concurrent delivery of the same event
            async with self.db.session() as session:
                existing = await AutomationRunRepository(session).get_by_event_key(
                    run.automation_id, run.event_key
                )
            if existing is None:
                raise
            return run_from_model(existing), False

        return run, True

    async def get(self, run_id: str) -> Optional[Run]:
        async with self.db.session() as session:
            model = await AutomationRunRepository(session).get_by_id(run_id)
            return run_from_model(model) if model else None

    async def get_by_event_key(self, automation_id: str, event_key: str) -> Optional[Run]:
        async with self.db.session() as session:
            model = await AutomationRunRepository(session).get_by_event_key(automation_id, event_key)
            return run_from_model(model) if model else None

    async def save(self, run: Run, *, token: Optional[str]) -> Run:
        run.updated_at = datetime.utcnow()
        async with self.db.session() as session:
            repo = AutomationRunRepository(session)
            if await repo.write(run.id, token, run_values(run)):
                return run

            stored = await repo.get_by_id(run.id)
            if stored is None:
                raise RunNotFoundError(run.id)
            if RunStatus(stored.status).is_terminal:
                raise RunStateError(f"Run {run.id} is {stored.status} and read-only")
            raise ClaimLostError(f"Run {run.id} is no longer owned by this worker")

    async def claim_due(
        self,
        now: datetime,
        *,
        limit: int,
        token: str,
        ttl: timedelta,
    ) -> List[Run]:
        async with self.db.session() as session:
            candidates = await AutomationRunRepository(session).due_ids(now, limit)

        claimed: List[Run] = []
        for run_id in candidates:
            async with self.db.session() as session:
                repo = AutomationRunRepository(session)
                if not await repo.claim(run_id, now, token, now + ttl):
                    continue
                model = await repo.get_by_id(run_id)
                if model is not None:
                    claimed.append(run_from_model(model))
        return claimed

    async def cancel(self, run_id: str, reason: str = "cancelled", now: Optional[datetime] = None) -> bool:
        async with self.db.session() as session:
            repo = AutomationRunRepository(session)
            if await repo.get_by_id(run_id) is None:
                raise RunNotFoundError(run_id)
            return await repo.cancel(run_id, now or datetime.utcnow(), reason)

    async def list_runs(
        self,
        *,
        automation_id: Optional[str] = None,
        statuses: Optional[Iterable[RunStatus]] = None,
        limit: int = 100,
    ) -> List[Run]:
        wanted = [s.value for s in statuses] if statuses is not None else None
        async with self.db.session() as session:
            models = await AutomationRunRepository(session).list_filtered(automation_id, wanted, limit)
            return [run_from_model(m) for m in models]
