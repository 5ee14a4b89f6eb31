"""
Unit Tests for the SQL Stores

Tests for SqlAutomationStore and SqlRunStore on a SQLite file database.
"""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from autoflow_core.database import DatabaseManager, SqlAutomationStore, SqlRunStore
from autoflow_core.engine import AdmitStatus, AutomationEngine
from autoflow_core.errors import AutomationNotFoundError, ClaimLostError, RunNotFoundError, RunStateError
from autoflow_core.events import AutomationEvent, EventType
from autoflow_core.graph import (
    Automation,
    DelayConfig,
    DelayUnit,
    Edge,
    Node,
    NodeKind,
    SendMessageConfig,
    TriggerParams,
    new_trigger_node,
)
from autoflow_core.runs import Run, RunStatus

START = datetime(2025, 3, 1, 9, 0, 0)


def new_conversation(conversation_id: str = "conv_1") -> AutomationEvent:
    return AutomationEvent(
        type=EventType.NEW_CONVERSATION,
        tenant_id="tenant_1",
        channel_id="ch_1",
        conversation_id=conversation_id,
        contact_id="contact_1",
        contact_name="Ana",
        occurred_at=START,
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/autoflow.db")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def automation_store(db):
    return SqlAutomationStore(db)


@pytest.fixture
def run_store(db):
    return SqlRunStore(db)


def make_automation(**kwargs) -> Automation:
    values = dict(
        id="auto_1",
        tenant_id="tenant_1",
        name="Welcome",
        channel_id="ch_1",
        is_active=True,
        nodes=[
            new_trigger_node(),
            Node("msg", NodeKind.SEND_MESSAGE, SendMessageConfig(message="Hi {name}")),
            Node("end", NodeKind.END_FLOW),
        ],
        edges=[Edge("trigger", "msg"), Edge("msg", "end")],
    )
    values.update(kwargs)
    return Automation(**values)


def make_run(**kwargs) -> Run:
    values = dict(
        automation_id="auto_1",
        tenant_id="tenant_1",
        event_key="new_conversation:conv_1",
        trigger_context=new_conversation(),
        cursor="trigger",
        claim_token="tok_a",
        claim_expires_at=START + timedelta(minutes=1),
        created_at=START,
        updated_at=START,
    )
    values.update(kwargs)
    return Run(**values)


# =============================================================================
# Automation Store
# =============================================================================


class TestSqlAutomationStore:
    """Tests for SqlAutomationStore."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, automation_store):
        await automation_store.create(
            make_automation(trigger_params=TriggerParams(keywords=["price"]))
        )

        loaded = await automation_store.get("auto_1")

        assert loaded.name == "Welcome"
        assert [n.id for n in loaded.nodes] == ["trigger", "msg", "end"]
        assert loaded.nodes[1].config.message == "Hi {name}"
        assert loaded.trigger_params.keywords == ["price"]
        assert loaded.can_run

    @pytest.mark.asyncio
    async def test_list_active_skips_inactive_and_deleted(self, automation_store):
        await automation_store.create(make_automation())
        await automation_store.create(make_automation(id="auto_2", is_active=False))
        await automation_store.create(make_automation(id="auto_3", is_deleted=True))

        active = await automation_store.list_active("tenant_1")

        assert [a.id for a in active] == ["auto_1"]
        assert {a.id for a in await automation_store.list("tenant_1")} == {"auto_1", "auto_2"}

    @pytest.mark.asyncio
    async def test_deleted_hidden_by_default(self, automation_store):
        await automation_store.create(make_automation(is_deleted=True))

        assert await automation_store.get("auto_1") is None
        assert (await automation_store.get("auto_1", include_deleted=True)).is_deleted

    @pytest.mark.asyncio
    async def test_update_keeps_run_count(self, automation_store):
        automation = await automation_store.create(make_automation())
        await automation_store.increment_run_count("auto_1")
        await automation_store.increment_run_count("auto_1")

        automation.name = "Renamed"
        await automation_store.update(automation)

        loaded = await automation_store.get("auto_1")
        assert loaded.name == "Renamed"
        assert loaded.run_count == 2

    @pytest.mark.asyncio
    async def test_update_unknown(self, automation_store):
        with pytest.raises(AutomationNotFoundError):
            await automation_store.update(make_automation(id="nope"))


# =============================================================================
# Run Store
# =============================================================================


class TestSqlRunStore:
    """Tests for SqlRunStore."""

    @pytest_asyncio.fixture(autouse=True)
    async def automation(self, automation_store):
        return await automation_store.create(make_automation())

    @pytest.mark.asyncio
    async def test_create_if_absent_deduplicates(self, run_store):
        first, created = await run_store.create_if_absent(make_run())
        second, created_again = await run_store.create_if_absent(make_run())

        assert created
        assert not created_again
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_get_by_event_key(self, run_store):
        run, _ = await run_store.create_if_absent(make_run())

        found = await run_store.get_by_event_key("auto_1", "new_conversation:conv_1")

        assert found.id == run.id
        assert found.trigger_context.occurred_at == START
        assert await run_store.get_by_event_key("auto_1", "new_conversation:conv_2") is None

    @pytest.mark.asyncio
    async def test_round_trip(self, run_store):
        run, _ = await run_store.create_if_absent(make_run(variables={"name": "Ana"}))

        loaded = await run_store.get(run.id)

        assert loaded.status == RunStatus.RUNNING
        assert loaded.variables == {"name": "Ana"}
        assert loaded.trigger_context.conversation_id == "conv_1"
        assert loaded.claim_token == "tok_a"

    @pytest.mark.asyncio
    async def test_save_requires_claim(self, run_store):
        run, _ = await run_store.create_if_absent(make_run())
        run.cursor = "msg"

        await run_store.save(run, token="tok_a")
        with pytest.raises(ClaimLostError):
            await run_store.save(run, token="tok_b")

        assert (await run_store.get(run.id)).cursor == "msg"

    @pytest.mark.asyncio
    async def test_save_after_cancel(self, run_store):
        run, _ = await run_store.create_if_absent(make_run())

        assert await run_store.cancel(run.id, reason="operator", now=START)
        with pytest.raises(RunStateError):
            await run_store.save(run, token="tok_a")

        stored = await run_store.get(run.id)
        assert stored.status == RunStatus.CANCELLED
        assert stored.error == "operator"
        assert stored.claim_token is None

    @pytest.mark.asyncio
    async def test_cancel_finished_and_unknown(self, run_store):
        run, _ = await run_store.create_if_absent(make_run(status=RunStatus.COMPLETED, claim_token=None))

        assert await run_store.cancel(run.id) is False
        with pytest.raises(RunNotFoundError):
            await run_store.cancel("missing")

    @pytest.mark.asyncio
    async def test_claim_due_is_exclusive(self, run_store):
        due = make_run(
            status=RunStatus.SUSPENDED,
            claim_token=None,
            claim_expires_at=None,
            resume_at=START + timedelta(minutes=5),
        )
        await run_store.create_if_absent(due)
        later = START + timedelta(minutes=5)

        first = await run_store.claim_due(later, limit=10, token="w1", ttl=timedelta(seconds=60))
        second = await run_store.claim_due(later, limit=10, token="w2", ttl=timedelta(seconds=60))

        assert [r.id for r in first] == [due.id]
        assert first[0].status == RunStatus.RUNNING
        assert first[0].claim_token == "w1"
        assert second == []

    @pytest.mark.asyncio
    async def test_not_due_yet(self, run_store):
        await run_store.create_if_absent(
            make_run(status=RunStatus.SUSPENDED, claim_token=None, resume_at=START + timedelta(hours=1))
        )

        assert await run_store.claim_due(START, limit=10, token="w1", ttl=timedelta(seconds=60)) == []

    @pytest.mark.asyncio
    async def test_expired_claim_is_reclaimed(self, run_store):
        stale, _ = await run_store.create_if_absent(make_run(claim_expires_at=START - timedelta(seconds=1)))

        claimed = await run_store.claim_due(START, limit=10, token="w2", ttl=timedelta(seconds=60))

        assert [r.id for r in claimed] == [stale.id]
        with pytest.raises(ClaimLostError):
            await run_store.save(stale, token="tok_a")

    @pytest.mark.asyncio
    async def test_list_runs_filters(self, run_store):
        await run_store.create_if_absent(make_run(event_key="k1"))
        await run_store.create_if_absent(make_run(event_key="k2", status=RunStatus.COMPLETED, claim_token=None))

        pending = await run_store.list_runs(automation_id="auto_1", statuses=[RunStatus.RUNNING])

        assert [r.event_key for r in pending] == ["k1"]
        assert await run_store.count_pending("auto_1") == 1


# =============================================================================
# Engine on SQL
# =============================================================================


class TestEngineOnSql:
    """Tests for the engine running against the SQL stores."""

    @pytest.mark.asyncio
    async def test_delay_survives_between_ticks(self, db, fakes, settings, clock):
        engine = AutomationEngine(
            SqlAutomationStore(db),
            SqlRunStore(db),
            fakes.collaborators(),
            settings=settings,
            clock=clock,
        )
        automation = await engine.automations.create(
            "tenant_1",
            "Reminder",
            channel_id="ch_1",
            is_active=True,
            nodes=[
                new_trigger_node(),
                Node("wait", NodeKind.DELAY, DelayConfig(amount=1, unit=DelayUnit.HOURS)),
                Node("msg", NodeKind.SEND_MESSAGE, SendMessageConfig(message="Hi {name}")),
            ],
            edges=[Edge("trigger", "wait"), Edge("wait", "msg")],
        )

        results = await engine.handle_event(new_conversation())
        duplicate = await engine.handle_event(new_conversation())
        assert results[0].status == AdmitStatus.ADMITTED
        assert results[0].run.status == RunStatus.SUSPENDED
        assert duplicate[0].status == AdmitStatus.DEDUPLICATED

        clock.advance(hours=1)
        report = await engine.tick()

        assert report.completed == 1
        assert fakes.messaging.texts == ["Hi Ana"]
        assert await engine.automations.run_count(automation.id) == 1
        run = await engine.get_run(results[0].run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.end_reason == "no_outgoing_edge"
