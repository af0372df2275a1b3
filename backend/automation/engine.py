"""
Execution Engine.

Advances automation runs through their graph:

    pending ──claim──▶ running ──delay──▶ waiting ──poll/claim──▶ running
                          │                                         │
                          └────────────▶ completed | failed ◀────────┘

Claiming is a compare-and-set on the run status; the winner gets a
claim token that fences every later update of the episode, so a worker
whose run was recovered or cancelled underneath it stops quietly.

Each node visit is ordered log-then-act-then-confirm:
1. commit the run's step counter at the node (intent)
2. visit the node (evaluate / dispatch / schedule)
3. commit the ledger entry together with the move to the next node

A crash between 2 and 3 replays the visit on recovery; the ledger keeps
a single entry per (run, node, visit) and action handlers tolerate
repetition.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from actions.registry import ActionDispatcher
from app.config import get_settings
from automation.conditions import evaluate
from automation.context import ActionContext, ConditionContext
from automation.events import DomainEvent
from automation.graph import (
    GraphDefinition,
    NodeSpec,
    action_kind_of,
    delay_duration,
)
from automation.ledger import RunLedger
from automation.matcher import TriggerMatch, TriggerMatcher
from automation.retry_strategies import RetryStrategy, execute_with_retry
from automation.scheduler import consume_pending, schedule_continuation
from core import metrics
from core.constants import CLAIMABLE_STATUSES, ErrorKind, LogOutcome, NodeKind, RunStatus
from core.exceptions import (
    ClaimLostError,
    ConfigurationError,
    ConflictError,
    EngineError,
    NotFoundError,
    StepLimitExceeded,
)
from core.logging_config import run_log_context
from core.utils import utc_now
from db.models.automation_graph import AutomationGraph
from db.models.automation_run import AutomationRun
from db.models.continuation import ScheduledContinuation

logger = structlog.get_logger(__name__)


@dataclass
class StepOutcome:
    """What a node visit did and where the run goes next.

    ``resume_at`` set means the run suspends until then and resumes at
    ``next_node_id``; otherwise ``next_node_id`` of None completes it.
    """

    kind: str
    outcome: str
    result: dict[str, Any] = field(default_factory=dict)
    next_node_id: Optional[str] = None
    resume_at: Optional[datetime] = None


class ExecutionEngine:
    """Starts, resumes, cancels and re-triggers automation runs."""

    def __init__(
        self,
        session_factory,
        graph_store,
        dispatcher: ActionDispatcher,
        subjects,
        matcher: Optional[TriggerMatcher] = None,
        ledger: Optional[RunLedger] = None,
        clock: Callable[[], datetime] = utc_now,
        step_limit: Optional[int] = None,
        episode_timeout: Optional[float] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        retry_sleep: Callable = asyncio.sleep,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.graph_store = graph_store
        self.dispatcher = dispatcher
        self.subjects = subjects
        self.matcher = matcher or TriggerMatcher(graph_store)
        self.clock = clock
        self.ledger = ledger or RunLedger(clock=clock)
        self.step_limit = step_limit or settings.AUTOMATION_STEP_LIMIT
        self.episode_timeout = episode_timeout or settings.AUTOMATION_EPISODE_TIMEOUT_SECONDS
        self.retry_strategy = retry_strategy or RetryStrategy.exponential(
            max_attempts=settings.ACTION_MAX_ATTEMPTS,
            base_delay=settings.ACTION_RETRY_BASE_DELAY,
        )
        self.retry_sleep = retry_sleep

        self._visitors = {
            NodeKind.TRIGGER.value: self._visit_trigger,
            NodeKind.CONDITION.value: self._visit_condition,
            NodeKind.ACTION.value: self._visit_action,
            NodeKind.DELAY.value: self._visit_delay,
        }

    # ─── Entry points ─────────────────────────────────────────

    async def handle_event(self, event: DomainEvent) -> list[str]:
        """Start one run per matching trigger.

        Runs are independent and unordered; a graph that fails to start
        does not prevent the others.
        """
        matches = await self.matcher.match(event)
        run_ids: list[str] = []
        for match in matches:
            try:
                run_ids.append(await self.start(match, event))
            except Exception as e:
                logger.error(
                    "Failed to start run",
                    graph_id=match.graph_id,
                    event_id=event.event_id,
                    error=str(e),
                    exc_info=True,
                )
        return run_ids

    async def start(
        self,
        match: TriggerMatch,
        event: DomainEvent,
        retry_of_run_id: Optional[str] = None,
    ) -> str:
        """Create a pending run for ``match`` and advance it from the trigger node."""
        now = self.clock()
        async with self.session_factory() as session:
            run = AutomationRun(
                graph_id=match.graph_id,
                organization_id=event.organization_id,
                trigger_node_id=match.trigger_node_id,
                subject_id=event.subject_id,
                status=RunStatus.PENDING.value,
                current_node_id=match.trigger_node_id,
                trigger_event=event.to_dict(),
                step_count=0,
                started_at=now,
                retry_of_run_id=retry_of_run_id,
            )
            session.add(run)
            await session.commit()
            run_id = run.id

        metrics.record_run_started(match.graph_id)
        logger.info("Run created", run_id=run_id, graph_id=match.graph_id, event_type=event.type.value)

        token = await self.claim(run_id)
        if token is not None:
            await self._advance(run_id, token)
        return run_id

    async def resume(
        self, run_id: str, resume_node_id: str, continuation_id: Optional[str] = None
    ) -> bool:
        """Resume a waiting run at ``resume_node_id``.

        With ``continuation_id`` the continuation is consumed in the same
        transaction as the claim.

        Returns False when the run could not be claimed (already resumed,
        cancelled or finished).
        """
        token = await self.claim(run_id, node_id=resume_node_id, continuation_id=continuation_id)
        if token is None:
            logger.info("Run not claimable, skipping resume", run_id=run_id)
            return False
        await self._advance(run_id, token)
        return True

    async def claim(
        self,
        run_id: str,
        node_id: Optional[str] = None,
        continuation_id: Optional[str] = None,
    ) -> Optional[str]:
        """Compare-and-set a pending/waiting run into running.

        Exactly one concurrent caller gets a claim token back; the others
        get None. When ``continuation_id`` is given, consuming it and
        claiming the run commit together: a crash in between leaves both
        untouched. A continuation whose run is no longer claimable is
        consumed without a claim.
        """
        now = self.clock()
        token = str(uuid4())
        values = {
            "status": RunStatus.RUNNING.value,
            "claimed_at": now,
            "claim_token": token,
        }
        if node_id is not None:
            values["current_node_id"] = node_id

        async with self.session_factory() as session:
            if continuation_id is not None:
                consumed = await session.execute(
                    update(ScheduledContinuation)
                    .where(
                        ScheduledContinuation.id == continuation_id,
                        ScheduledContinuation.consumed_at.is_(None),
                    )
                    .values(consumed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if consumed.rowcount != 1:
                    await session.rollback()
                    return None

            claimed = await self._set_running(session, run_id, values)
            await session.commit()
        return token if claimed else None

    async def _set_running(self, session: AsyncSession, run_id: str, values: dict) -> bool:
        result = await session.execute(
            update(AutomationRun)
            .where(
                AutomationRun.id == run_id,
                AutomationRun.status.in_(CLAIMABLE_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel(self, run_id: str, organization_id: Optional[str] = None) -> None:
        """Fail a pending or waiting run with reason ``cancelled``.

        Raises:
            NotFoundError: Unknown run
            ConflictError: Run is running or already finished
        """
        now = self.clock()
        async with self.session_factory() as session:
            run = await self._get_run(session, run_id, organization_id)
            result = await session.execute(
                update(AutomationRun)
                .where(
                    AutomationRun.id == run_id,
                    AutomationRun.status.in_(CLAIMABLE_STATUSES),
                )
                .values(
                    status=RunStatus.FAILED.value,
                    error_kind=ErrorKind.CANCELLED.value,
                    error_message="Run cancelled",
                    failed_node_id=run.current_node_id,
                    completed_at=now,
                    claim_token=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Run {run_id} is {run.status} and cannot be cancelled")
            await consume_pending(session, run_id, now)
            await session.commit()

        metrics.record_run_finished(RunStatus.FAILED.value, ErrorKind.CANCELLED.value)
        logger.info("Run cancelled", run_id=run_id)

    async def retrigger(self, run_id: str, organization_id: Optional[str] = None) -> str:
        """Start a fresh run from a finished run's graph, trigger node and event.

        Raises:
            NotFoundError: Unknown run
            ConflictError: Run not finished, or its graph is disabled or deleted
        """
        async with self.session_factory() as session:
            run = await self._get_run(session, run_id, organization_id)
        if not run.is_terminal:
            raise ConflictError(f"Run {run_id} is {run.status}; only finished runs can be re-triggered")

        async with self.session_factory() as session:
            graph = await session.get(AutomationGraph, run.graph_id)
        if graph is None or graph.is_deleted or not graph.is_enabled:
            raise ConflictError(f"Graph {run.graph_id} is not enabled")

        event = DomainEvent.from_dict(run.trigger_event or {})
        return await self.start(
            TriggerMatch(graph_id=run.graph_id, trigger_node_id=run.trigger_node_id),
            event,
            retry_of_run_id=run_id,
        )

    # ─── Episode ──────────────────────────────────────────────

    async def _advance(self, run_id: str, token: str) -> Optional[RunStatus]:
        """Run one claimed episode under the wall-clock budget.

        Engine errors are captured onto the run; nothing propagates to
        the caller except cancellation.
        """
        with run_log_context(run_id):
            try:
                status = await asyncio.wait_for(self._traverse(run_id, token), timeout=self.episode_timeout)
            except ClaimLostError:
                logger.warning("Run claim lost, abandoning episode")
                return None
            except asyncio.TimeoutError:
                await self._fail(
                    run_id,
                    token,
                    ErrorKind.EPISODE_TIMEOUT,
                    f"Episode exceeded {self.episode_timeout}s",
                )
                return RunStatus.FAILED
            except EngineError as e:
                await self._fail(run_id, token, e.kind, e.message, e.node_id)
                return RunStatus.FAILED
            except Exception as e:
                logger.error("Unexpected error while advancing run", error=str(e), exc_info=True)
                await self._fail(run_id, token, ErrorKind.INTERNAL, str(e) or type(e).__name__)
                return RunStatus.FAILED

        if status is RunStatus.COMPLETED:
            metrics.record_run_finished(status.value)
        return status

    async def _traverse(self, run_id: str, token: str) -> RunStatus:
        async with self.session_factory() as session:
            run = await session.get(AutomationRun, run_id)
            graph = await self.graph_store.load(run.graph_id)
            structlog.contextvars.bind_contextvars(graph_id=graph.graph_id)

            node_id = run.current_node_id
            steps = run.step_count

            while True:
                if steps >= self.step_limit:
                    raise StepLimitExceeded(
                        f"Run exceeded the step limit of {self.step_limit}", node_id=node_id
                    )
                node = graph.node(node_id)
                steps += 1
                await self._update_run(session, run_id, token, current_node_id=node_id, step_count=steps)
                await session.commit()

                attempt = await self.ledger.next_attempt(session, run_id, node_id)
                visitor = self._visitors.get(node.kind)
                if visitor is None:
                    raise ConfigurationError(f"Unknown node kind: {node.kind!r}", node_id=node_id)
                try:
                    step = await visitor(run, graph, node, attempt)
                except EngineError as e:
                    e.node_id = e.node_id or node_id
                    raise

                await self.ledger.record(session, run_id, node, step.kind, step.outcome, step.result, attempt)

                if step.resume_at is not None:
                    await schedule_continuation(
                        session, run_id, run.organization_id, step.resume_at, step.next_node_id
                    )
                    await self._update_run(
                        session,
                        run_id,
                        token,
                        status=RunStatus.WAITING.value,
                        current_node_id=step.next_node_id,
                        claim_token=None,
                    )
                    await session.commit()
                    logger.info("Run waiting", node_id=node_id, resume_at=step.resume_at.isoformat())
                    return RunStatus.WAITING

                if step.next_node_id is None:
                    await self._update_run(
                        session,
                        run_id,
                        token,
                        status=RunStatus.COMPLETED.value,
                        completed_at=self.clock(),
                        claim_token=None,
                    )
                    await session.commit()
                    logger.info("Run completed", steps=steps)
                    return RunStatus.COMPLETED

                await self._update_run(session, run_id, token, current_node_id=step.next_node_id)
                await session.commit()
                node_id = step.next_node_id

    async def _update_run(self, session: AsyncSession, run_id: str, token: str, **values) -> None:
        """Update the run only while this episode still holds the claim."""
        result = await session.execute(
            update(AutomationRun)
            .where(
                AutomationRun.id == run_id,
                AutomationRun.status == RunStatus.RUNNING.value,
                AutomationRun.claim_token == token,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise ClaimLostError(run_id)

    async def _fail(
        self,
        run_id: str,
        token: str,
        kind: ErrorKind,
        message: str,
        node_id: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            run = await session.get(AutomationRun, run_id)
            node_id = node_id or run.current_node_id or run.trigger_node_id
            try:
                await self._update_run(
                    session,
                    run_id,
                    token,
                    status=RunStatus.FAILED.value,
                    error_kind=kind.value,
                    error_message=message[:2000],
                    failed_node_id=node_id,
                    completed_at=self.clock(),
                    claim_token=None,
                )
            except ClaimLostError:
                logger.warning("Run claim lost before failure could be recorded", error=message)
                return

            graph = await self.graph_store.load(run.graph_id)
            node = graph.nodes.get(node_id) or NodeSpec(id=node_id, kind="unknown")
            await self.ledger.record(
                session,
                run_id,
                node,
                kind="failed",
                outcome=LogOutcome.FAILED.value,
                result={"error_kind": kind.value, "error": message[:2000], "retryable": kind.is_retryable},
            )
            await session.commit()

        metrics.record_run_finished(RunStatus.FAILED.value, kind.value)
        logger.warning("Run failed", error_kind=kind.value, node_id=node_id, error=message)

    # ─── Node visitors ────────────────────────────────────────

    async def _visit_trigger(self, run, graph: GraphDefinition, node: NodeSpec, attempt: int) -> StepOutcome:
        event = run.trigger_event or {}
        return StepOutcome(
            kind=NodeKind.TRIGGER.value,
            outcome=LogOutcome.ROUTED.value,
            result={"event_type": event.get("type"), "event_id": event.get("event_id")},
            next_node_id=graph.single_successor(node.id),
        )

    async def _visit_condition(self, run, graph: GraphDefinition, node: NodeSpec, attempt: int) -> StepOutcome:
        context = await self._condition_context(run)
        branch = evaluate(node.config, context)
        target = graph.branch_target(node.id, branch)
        if target is None:
            return StepOutcome(
                kind="no_matching_branch",
                outcome=LogOutcome.NO_MATCH.value,
                result={"branch": branch},
            )
        return StepOutcome(
            kind=NodeKind.CONDITION.value,
            outcome=LogOutcome.BRANCHED.value,
            result={"branch": branch},
            next_node_id=target,
        )

    async def _visit_action(self, run, graph: GraphDefinition, node: NodeSpec, attempt: int) -> StepOutcome:
        kind = action_kind_of(node.config)
        context = ActionContext(
            organization_id=run.organization_id,
            run_id=run.id,
            graph_id=graph.graph_id,
            node_id=node.id,
            subject=await self._subject(run),
            trigger=dict((run.trigger_event or {}).get("payload") or {}),
            attempt=attempt,
        )

        strategy = self.retry_strategy
        if isinstance(node.config.get("retry"), dict):
            strategy = RetryStrategy.from_dict(node.config["retry"], default=self.retry_strategy)

        calls = {"count": 1}

        def on_retry(number, error, delay):
            calls["count"] = number + 1
            logger.warning("Retrying action", action_type=kind, attempt=number, delay=delay, error=str(error))

        result = await execute_with_retry(
            self.dispatcher.dispatch,
            strategy,
            kind,
            node.config,
            context,
            on_retry=on_retry,
            sleep=self.retry_sleep,
        )
        return StepOutcome(
            kind=f"action:{kind}",
            outcome=LogOutcome.SUCCEEDED.value,
            result={**result.to_dict(), "calls": calls["count"]},
            next_node_id=graph.single_successor(node.id),
        )

    async def _visit_delay(self, run, graph: GraphDefinition, node: NodeSpec, attempt: int) -> StepOutcome:
        duration = delay_duration(node.config)
        successor = graph.single_successor(node.id)
        seconds = duration.total_seconds()

        if successor is None or seconds == 0:
            return StepOutcome(
                kind=NodeKind.DELAY.value,
                outcome=LogOutcome.ROUTED.value,
                result={"seconds": seconds},
                next_node_id=successor,
            )

        resume_at = self.clock() + duration
        return StepOutcome(
            kind=NodeKind.DELAY.value,
            outcome=LogOutcome.SCHEDULED.value,
            result={"seconds": seconds, "resume_at": resume_at.isoformat(), "resume_node_id": successor},
            next_node_id=successor,
            resume_at=resume_at,
        )

    # ─── Helpers ──────────────────────────────────────────────

    async def _subject(self, run):
        if not run.subject_id:
            return None
        return await self.subjects.get_snapshot(run.organization_id, run.subject_id)

    async def _condition_context(self, run) -> ConditionContext:
        event = run.trigger_event or {}
        return ConditionContext(
            subject=await self._subject(run),
            event_type=event.get("type") or "",
            payload=dict(event.get("payload") or {}),
        )

    async def _get_run(self, session: AsyncSession, run_id: str, organization_id: Optional[str]) -> AutomationRun:
        run = await session.get(AutomationRun, run_id)
        if run is None or (organization_id and run.organization_id != organization_id):
            raise NotFoundError(f"Run {run_id} not found")
        return run
