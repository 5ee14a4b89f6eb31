"""
Run persistence.

Stores are the only state shared between concurrent runs and workers, so
every state change that decides ownership (creation under a dedup key,
claiming a due run, cancelling) is atomic inside the store.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import ClaimLostError, RunNotFoundError, RunStateError
from .base import PENDING_STATUSES, Run, RunErrorCode, RunStatus


def is_claimable(run: Run, now: datetime) -> bool:
    """Due suspended runs, and running runs whose owner stopped heartbeating."""
    if run.status == RunStatus.SUSPENDED:
        return run.resume_at is not None and run.resume_at <= now
    if run.status == RunStatus.RUNNING:
        return run.claim_expires_at is not None and run.claim_expires_at <= now
    return False


def check_writable(stored: Run, token: Optional[str]) -> None:
    if stored.status.is_terminal:
        raise RunStateError(f"Run {stored.id} is {stored.status.value} and read-only")
    if stored.claim_token != token:
        raise ClaimLostError(f"Run {stored.id} is no longer owned by this worker")


class RunStore(ABC):
    """Abstract run storage."""

    @abstractmethod
    async def create_if_absent(self, run: Run) -> Tuple[Run, bool]:
        """Insert ``run`` unless one exists for (automation_id, event_key).

        Returns the stored run and whether it was created.
        """

    @abstractmethod
    async def get(self, run_id: str) -> Optional[Run]:
        """Get a run by id."""

    @abstractmethod
    async def get_by_event_key(self, automation_id: str, event_key: str) -> Optional[Run]:
        """Get the run admitted for an event key."""

    @abstractmethod
    async def save(self, run: Run, *, token: Optional[str]) -> Run:
        """Checkpoint a run held under claim ``token``.

        Raises:
            ClaimLostError: The stored run is claimed by someone else or was
                cancelled.
            RunStateError: The stored run is already terminal.
        """

    @abstractmethod
    async def claim_due(
        self,
        now: datetime,
        *,
        limit: int,
        token: str,
        ttl: timedelta,
    ) -> List[Run]:
        """Atomically move due runs to RUNNING under ``token``."""

    @abstractmethod
    async def cancel(self, run_id: str, reason: str = "cancelled", now: Optional[datetime] = None) -> bool:
        """Cancel a pending run. Returns False if it already finished."""

    @abstractmethod
    async def list_runs(
        self,
        *,
        automation_id: Optional[str] = None,
        statuses: Optional[Iterable[RunStatus]] = None,
        limit: int = 100,
    ) -> List[Run]:
        """Newest runs first."""

    async def count_pending(self, automation_id: Optional[str] = None) -> int:
        runs = await self.list_runs(
            automation_id=automation_id,
            statuses=PENDING_STATUSES,
            limit=10_000,
        )
        return len(runs)


class InMemoryRunStore(RunStore):
    """
    Process-local run store.

    Runs are copied on the way in and out so callers never share objects
    with the store, matching the behaviour of a database-backed store.
    """

    def __init__(self):
        self._runs: Dict[str, Run] = {}
        self._keys: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def create_if_absent(self, run: Run) -> Tuple[Run, bool]:
        async with self._lock:
            key = (run.automation_id, run.event_key)
            existing_id = self._keys.get(key)
            if existing_id is not None:
                return copy.deepcopy(self._runs[existing_id]), False

            self._runs[run.id] = copy.deepcopy(run)
            self._keys[key] = run.id
            return copy.deepcopy(run), True

    async def get(self, run_id: str) -> Optional[Run]:
        run = self._runs.get(run_id)
        return copy.deepcopy(run) if run else None

    async def get_by_event_key(self, automation_id: str, event_key: str) -> Optional[Run]:
        run_id = self._keys.get((automation_id, event_key))
        return await self.get(run_id) if run_id else None

    async def save(self, run: Run, *, token: Optional[str]) -> Run:
        async with self._lock:
            stored = self._runs.get(run.id)
            if stored is None:
                raise RunNotFoundError(run.id)
            check_writable(stored, token)

            run.updated_at = datetime.utcnow()
            self._runs[run.id] = copy.deepcopy(run)
            return run

    async def claim_due(
        self,
        now: datetime,
        *,
        limit: int,
        token: str,
        ttl: timedelta,
    ) -> List[Run]:
        async with self._lock:
            due = [r for r in self._runs.values() if is_claimable(r, now)]
            due.sort(key=lambda r: r.resume_at or r.claim_expires_at or r.created_at)

            claimed = []
            for run in due[:limit]:
                run.status = RunStatus.RUNNING
                run.claim_token = token
                run.claim_expires_at = now + ttl
                run.updated_at = now
                claimed.append(copy.deepcopy(run))
            return claimed

    async def cancel(self, run_id: str, reason: str = "cancelled", now: Optional[datetime] = None) -> bool:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.is_terminal:
                return False

            now = now or datetime.utcnow()
            run.status = RunStatus.CANCELLED
            run.error_code = RunErrorCode.CANCELLED.value
            run.error = reason
            run.resume_at = None
            run.claim_token = None
            run.claim_expires_at = None
            run.completed_at = now
            run.updated_at = now
            return True

    async def list_runs(
        self,
        *,
        automation_id: Optional[str] = None,
        statuses: Optional[Iterable[RunStatus]] = None,
        limit: int = 100,
    ) -> List[Run]:
        wanted = set(statuses) if statuses is not None else None
        runs = [
            r for r in self._runs.values()
            if (automation_id is None or r.automation_id == automation_id)
            and (wanted is None or r.status in wanted)
        ]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in runs[:limit]]
