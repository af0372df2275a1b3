"""Tests for delayed runs, continuations, stale-run recovery, cancel and re-trigger."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from automation.events import DomainEvent
from core import metrics
from core.constants import EventType
from core.exceptions import ClaimLostError, ConflictError, NotFoundError
from db.models.automation_graph import AutomationGraph
from db.models.automation_run import AutomationRun
from db.models.continuation import ScheduledContinuation

from conftest import ORG_ID, OTHER_ORG_ID

FOLLOW_UP_NODES = {
    "trigger": ("trigger", {}),
    "wait": ("delay", {"delay_value": 2, "delay_type": "days"}),
    "whatsapp": ("action", {"action_type": "send_message", "message": "Oi {{lead.name}}, tudo certo?"}),
}
FOLLOW_UP_EDGES = [("trigger", "wait", None), ("wait", "whatsapp", None)]


def lead_created(subject_id="lead-1"):
    return DomainEvent(type=EventType.LEAD_CREATED, organization_id=ORG_ID, subject_id=subject_id)


async def load_run(session_factory, run_id) -> AutomationRun:
    async with session_factory() as session:
        return await session.get(AutomationRun, run_id)


async def continuations(session_factory, run_id) -> list[ScheduledContinuation]:
    async with session_factory() as session:
        result = await session.scalars(
            select(ScheduledContinuation).where(ScheduledContinuation.run_id == run_id)
        )
        return list(result)


async def insert_run(session_factory, graph, **values) -> str:
    async with session_factory() as session:
        run = AutomationRun(
            graph_id=graph.id,
            organization_id=ORG_ID,
            trigger_node_id=graph["trigger"],
            subject_id="lead-1",
            trigger_event=lead_created().to_dict(),
            **values,
        )
        session.add(run)
        await session.commit()
        return run.id


@pytest_asyncio.fixture
async def waiting_run(build_graph, engine):
    graph = await build_graph("lead_created", FOLLOW_UP_NODES, FOLLOW_UP_EDGES)
    [run_id] = await engine.handle_event(lead_created())
    return graph, run_id


@pytest.mark.integration
class TestDelay:
    async def test_delay_suspends_run(self, waiting_run, session_factory, messaging, clock):
        graph, run_id = waiting_run

        run = await load_run(session_factory, run_id)
        assert run.status == "waiting"
        assert run.current_node_id == graph["whatsapp"]
        assert run.claim_token is None
        assert messaging.sent == []

        [continuation] = await continuations(session_factory, run_id)
        assert continuation.resume_node_id == graph["whatsapp"]
        assert continuation.resume_at.replace(tzinfo=None) == (clock() + timedelta(days=2)).replace(tzinfo=None)
        assert continuation.consumed_at is None

    async def test_not_resumed_before_due(self, waiting_run, scheduler, clock, messaging):
        clock.advance(days=1, hours=23)
        result = await scheduler.poll()
        assert result.due == 0
        assert messaging.sent == []

    async def test_resumes_once_when_due(self, waiting_run, scheduler, session_factory, clock, messaging):
        _, run_id = waiting_run
        clock.advance(days=2, seconds=1)

        result = await scheduler.poll()

        assert (result.due, result.resumed, result.skipped) == (1, 1, 0)
        assert result.run_ids == [run_id]
        assert [m["text"] for m in messaging.sent] == ["Oi Maria Silva, tudo certo?"]
        run = await load_run(session_factory, run_id)
        assert run.status == "completed"
        assert run.step_count == 3

        again = await scheduler.poll()
        assert again.due == 0
        assert len(messaging.sent) == 1

    async def test_ledger_records_the_wait(self, waiting_run, engine, session_factory):
        _, run_id = waiting_run
        async with session_factory() as session:
            entries = await engine.ledger.entries(session, run_id)
        assert [(e.kind, e.outcome) for e in entries] == [("trigger", "routed"), ("delay", "scheduled")]
        assert entries[1].result["seconds"] == 2 * 86400

    async def test_zero_delay_passes_through(self, build_graph, engine, session_factory, messaging):
        nodes = dict(FOLLOW_UP_NODES)
        nodes["wait"] = ("delay", {"delay_value": 0, "delay_type": "minutes"})
        await build_graph("lead_created", nodes, FOLLOW_UP_EDGES)

        [run_id] = await engine.handle_event(lead_created())

        assert (await load_run(session_factory, run_id)).status == "completed"
        assert len(messaging.sent) == 1

    async def test_overdue_continuation_survives_restart(self, waiting_run, make_runtime, clock, messaging):
        # A fresh runtime stands in for a restarted process
        clock.advance(days=30)
        result = await make_runtime().scheduler.poll()
        assert result.resumed == 1
        assert len(messaging.sent) == 1


@pytest.mark.integration
class TestConcurrency:
    async def test_concurrent_polls_resume_once(self, waiting_run, scheduler, session_factory, clock, messaging):
        _, run_id = waiting_run
        clock.advance(days=3)

        results = await asyncio.gather(*(scheduler.poll() for _ in range(5)))

        assert sum(r.resumed for r in results) == 1
        assert len(messaging.sent) == 1
        assert (await load_run(session_factory, run_id)).status == "completed"
        assert metrics.get_counter("automation_continuations_resumed_total") == 1

    async def test_resume_of_claimed_run_is_skipped(self, waiting_run, engine):
        graph, run_id = waiting_run
        assert await engine.claim(run_id) is not None
        assert await engine.resume(run_id, graph["whatsapp"]) is False


@pytest.mark.integration
class TestContinuationClaim:
    async def test_crash_during_claim_keeps_continuation(
        self, waiting_run, engine, scheduler, session_factory, clock, messaging, monkeypatch
    ):
        _, run_id = waiting_run
        clock.advance(days=2, seconds=1)
        set_running = engine._set_running

        async def worker_dies(session, run_id, values):
            raise RuntimeError("worker died while claiming")

        monkeypatch.setattr(engine, "_set_running", worker_dies)
        result = await scheduler.poll()

        assert (result.resumed, result.errors) == (0, 1)
        assert (await load_run(session_factory, run_id)).status == "waiting"
        [continuation] = await continuations(session_factory, run_id)
        assert continuation.consumed_at is None

        # The next cycle still finds the continuation
        monkeypatch.setattr(engine, "_set_running", set_running)
        clock.advance(hours=2)
        result = await scheduler.poll()

        assert result.resumed == 1
        assert (await load_run(session_factory, run_id)).status == "completed"
        assert len(messaging.sent) == 1

    async def test_continuation_of_finished_run_is_consumed(
        self, waiting_run, scheduler, session_factory, clock, messaging
    ):
        _, run_id = waiting_run
        async with session_factory() as session:
            (await session.get(AutomationRun, run_id)).status = "failed"
            await session.commit()
        clock.advance(days=3)

        result = await scheduler.poll()

        assert (result.due, result.resumed, result.skipped) == (1, 0, 1)
        [continuation] = await continuations(session_factory, run_id)
        assert continuation.consumed_at is not None
        assert (await scheduler.poll()).due == 0
        assert messaging.sent == []

    async def test_claim_with_consumed_continuation_fails(self, waiting_run, engine, session_factory):
        graph, run_id = waiting_run
        [continuation] = await continuations(session_factory, run_id)

        assert await engine.claim(run_id, graph["whatsapp"], continuation_id=continuation.id) is not None
        assert await engine.claim(run_id, graph["whatsapp"], continuation_id=continuation.id) is None


@pytest.mark.integration
class TestSchedule:
    async def test_scheduled_continuation_resumes_run(
        self, build_graph, scheduler, session_factory, clock, messaging
    ):
        graph = await build_graph("lead_created", FOLLOW_UP_NODES, FOLLOW_UP_EDGES)
        run_id = await insert_run(
            session_factory, graph, status="waiting", current_node_id=graph["wait"], step_count=2
        )
        resume_at = clock() + timedelta(hours=4)

        continuation_id = await scheduler.schedule(run_id, ORG_ID, resume_at, graph["whatsapp"])

        [continuation] = await continuations(session_factory, run_id)
        assert continuation.id == continuation_id
        assert continuation.resume_node_id == graph["whatsapp"]
        assert (await scheduler.poll()).due == 0

        clock.advance(hours=4, minutes=1)
        result = await scheduler.poll()

        assert result.run_ids == [run_id]
        assert (await load_run(session_factory, run_id)).status == "completed"
        assert [m["text"] for m in messaging.sent] == ["Oi Maria Silva, tudo certo?"]


@pytest.mark.integration
class TestStaleRecovery:
    async def test_recovers_crashed_and_unclaimed_runs(
        self, build_graph, scheduler, engine, session_factory, clock, messaging
    ):
        graph = await build_graph(
            "lead_created",
            {k: v for k, v in FOLLOW_UP_NODES.items() if k != "wait"},
            [("trigger", "whatsapp", None)],
        )
        long_ago = clock() - timedelta(hours=1)
        crashed = await insert_run(
            session_factory,
            graph,
            status="running",
            current_node_id=graph["whatsapp"],
            step_count=1,
            claimed_at=long_ago,
            claim_token="dead-token",
            created_at=long_ago,
        )
        unclaimed = await insert_run(
            session_factory,
            graph,
            status="pending",
            current_node_id=graph["trigger"],
            created_at=long_ago,
        )
        fresh = await insert_run(
            session_factory,
            graph,
            status="running",
            current_node_id=graph["whatsapp"],
            claimed_at=clock(),
            claim_token="live-token",
            created_at=clock(),
        )

        assert await scheduler.recover_stale_runs() == 2
        assert metrics.get_counter("automation_stale_runs_recovered_total") == 2

        result = await scheduler.poll()

        assert sorted(result.run_ids) == sorted([crashed, unclaimed])
        assert len(messaging.sent) == 2
        for run_id in (crashed, unclaimed):
            assert (await load_run(session_factory, run_id)).status == "completed"
        assert (await load_run(session_factory, fresh)).status == "running"

        # The crashed worker's late write is fenced off
        async with session_factory() as session:
            with pytest.raises(ClaimLostError):
                await engine._update_run(session, crashed, "dead-token", step_count=99)
        assert (await load_run(session_factory, crashed)).step_count == 2

    async def test_nothing_to_recover(self, waiting_run, scheduler):
        assert await scheduler.recover_stale_runs() == 0


@pytest.mark.integration
class TestCancel:
    async def test_cancel_waiting_run(self, waiting_run, engine, scheduler, session_factory, clock, messaging):
        graph, run_id = waiting_run

        await engine.cancel(run_id, ORG_ID)

        run = await load_run(session_factory, run_id)
        assert run.status == "failed"
        assert run.error_kind == "cancelled"
        assert run.failed_node_id == graph["whatsapp"]
        [continuation] = await continuations(session_factory, run_id)
        assert continuation.consumed_at is not None

        clock.advance(days=3)
        assert (await scheduler.poll()).due == 0
        assert messaging.sent == []

    async def test_cancel_finished_run_conflicts(self, waiting_run, engine):
        _, run_id = waiting_run
        await engine.cancel(run_id, ORG_ID)
        with pytest.raises(ConflictError):
            await engine.cancel(run_id, ORG_ID)

    async def test_cancel_unknown_run(self, engine):
        with pytest.raises(NotFoundError):
            await engine.cancel("no-such-run", ORG_ID)

    async def test_cancel_other_organization(self, waiting_run, engine):
        _, run_id = waiting_run
        with pytest.raises(NotFoundError):
            await engine.cancel(run_id, OTHER_ORG_ID)


@pytest.mark.integration
class TestRetrigger:
    @pytest_asyncio.fixture
    async def finished_run(self, build_graph, engine):
        graph = await build_graph(
            "lead_created",
            {k: v for k, v in FOLLOW_UP_NODES.items() if k != "wait"},
            [("trigger", "whatsapp", None)],
        )
        [run_id] = await engine.handle_event(lead_created())
        return graph, run_id

    async def test_retrigger_starts_new_run(self, finished_run, engine, session_factory, messaging):
        graph, run_id = finished_run

        new_run_id = await engine.retrigger(run_id, ORG_ID)

        assert new_run_id != run_id
        new_run = await load_run(session_factory, new_run_id)
        old_run = await load_run(session_factory, run_id)
        assert new_run.retry_of_run_id == run_id
        assert new_run.status == "completed"
        assert new_run.trigger_node_id == graph["trigger"]
        assert new_run.trigger_event["event_id"] == old_run.trigger_event["event_id"]
        assert len(messaging.sent) == 2

    async def test_retrigger_disabled_graph(self, finished_run, engine, session_factory):
        graph, run_id = finished_run
        async with session_factory() as session:
            (await session.get(AutomationGraph, graph.id)).is_enabled = False
            await session.commit()

        with pytest.raises(ConflictError):
            await engine.retrigger(run_id, ORG_ID)

    async def test_retrigger_waiting_run(self, waiting_run, engine):
        _, run_id = waiting_run
        with pytest.raises(ConflictError):
            await engine.retrigger(run_id, ORG_ID)
