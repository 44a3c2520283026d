"""
In-process scheduler for workflow automation.

Owns every live scheduling resource: one asyncio task per time trigger, one
polling task per condition trigger, and event listeners keyed by event name.
Nothing here is persisted. After a restart schedules are re-derived from the
``active`` workflows in storage, computing each next run forward from "now",
so fires that fell inside the downtime are skipped rather than replayed.

Scheduling is single-process: two running instances each schedule and fire
the same workflows.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session, sessionmaker

from volunteer_automation.config import settings
from volunteer_automation.core.logger import get_logger
from volunteer_automation.models import WORKFLOW_STATUS_ACTIVE, Workflow
from volunteer_automation.schemas.execution import ExecutionRecord
from volunteer_automation.schemas.workflow import (
    ConditionTrigger,
    EventTrigger,
    TimeTrigger,
    WorkflowDefinition,
)
from volunteer_automation.services.execution_logger import ExecutionLogger
from volunteer_automation.services.triggers import (
    condition_met,
    ensure_aware,
    event_matches,
    next_run_time,
    now_utc,
)
from volunteer_automation.services.workflow_actions import ExecutionContext, WorkflowActionExecutor

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class EventListener:
    definition: WorkflowDefinition
    trigger: EventTrigger


@dataclass
class EventDispatch:
    """Outcome of publishing one event."""

    event: str
    started: int = 0
    records: List[ExecutionRecord] = field(default_factory=list)
    # Workflow ids whose firings suspend on delays and are still running.
    running: List[str] = field(default_factory=list)


class WorkflowScheduler:
    """Registry of live timers, polls and listeners, plus the firing protocol."""

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] | None = None,
        executor: WorkflowActionExecutor | None = None,
        execution_logger: ExecutionLogger | None = None,
        clock: Callable[[], datetime] = now_utc,
        sleep: SleepFn = asyncio.sleep,
        tz: tzinfo | None = None,
        condition_poll_seconds: int | None = None,
        enabled: bool = True,
    ):
        if session_factory is None:
            from volunteer_automation.database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.clock = clock
        self.sleep = sleep
        self.tz = tz or settings.tz
        self.condition_poll_seconds = condition_poll_seconds or settings.condition_poll_seconds
        self.executor = executor or WorkflowActionExecutor(session_factory=session_factory, clock=clock, sleep=sleep)
        self.execution_logger = execution_logger or ExecutionLogger(session_factory=session_factory)

        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._tasks: Dict[str, List[asyncio.Task]] = {}
        self._listeners: Dict[str, List[EventListener]] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._next_runs: Dict[str, datetime] = {}
        # Disabled schedulers register nothing; manual runs still work.
        self.enabled = enabled
        self.started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Load and schedule every active workflow.

        A storage failure here propagates: the scheduler is not started.
        """
        if not self.enabled:
            logger.info("WorkflowScheduler disabled; no workflows loaded")
            return 0
        db = self.session_factory()
        try:
            rows = db.query(Workflow).filter(Workflow.status == WORKFLOW_STATUS_ACTIVE).all()
            definitions = [WorkflowDefinition.from_row(row) for row in rows]
        finally:
            db.close()

        for definition in definitions:
            self.schedule(definition)
        self.started = True
        logger.info("Initialized %s active workflows", len(definitions))
        return len(definitions)

    async def stop(self) -> None:
        """Cancel every timer, poll and in-flight firing, and forget all listeners."""
        tasks = [task for tasks in self._tasks.values() for task in tasks]
        tasks.extend(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._listeners.clear()
        self._definitions.clear()
        self._in_flight.clear()
        self._next_runs.clear()
        self.started = False
        logger.info("WorkflowScheduler stopped")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def schedule(self, workflow: Workflow | WorkflowDefinition) -> WorkflowDefinition:
        """(Re)register scheduling resources for every valid trigger of a workflow."""
        definition = workflow if isinstance(workflow, WorkflowDefinition) else WorkflowDefinition.from_row(workflow)
        key = str(definition.id)
        self.unschedule(key)
        if not self.enabled:
            logger.info("WorkflowScheduler disabled; workflow %s not scheduled", key)
            return definition

        for raw, error in definition.rejected_triggers:
            logger.warning("Workflow %s: trigger %s will never fire: %s", key, raw, error)

        self._definitions[key] = definition
        for index, trigger in enumerate(definition.triggers):
            if isinstance(trigger, TimeTrigger):
                self._spawn(key, self._run_time_trigger(definition, trigger, index), f"time:{key}:{index}")
            elif isinstance(trigger, EventTrigger):
                self._listeners.setdefault(trigger.config.event, []).append(EventListener(definition, trigger))
            elif isinstance(trigger, ConditionTrigger):
                self._spawn(key, self._run_condition_poll(definition, trigger), f"condition:{key}:{index}")
        logger.info("Scheduled workflow %s (%s trigger(s))", key, len(definition.triggers))
        return definition

    def unschedule(self, workflow_id: Any) -> bool:
        """Drop every scheduling resource of a workflow. Firings already running finish."""
        key = str(workflow_id)
        for task in self._tasks.pop(key, []):
            task.cancel()
        for event_name in list(self._listeners):
            remaining = [l for l in self._listeners[event_name] if str(l.definition.id) != key]
            if remaining:
                self._listeners[event_name] = remaining
            else:
                del self._listeners[event_name]
        for run_key in [k for k in self._next_runs if k.startswith(f"{key}:")]:
            del self._next_runs[run_key]
        removed = self._definitions.pop(key, None) is not None
        if removed:
            logger.info("Unscheduled workflow %s", key)
        return removed

    def is_scheduled(self, workflow_id: Any) -> bool:
        return str(workflow_id) in self._definitions

    def listeners_for(self, event_name: str) -> List[EventListener]:
        return list(self._listeners.get(event_name, []))

    def next_runs(self, workflow_id: Any) -> List[datetime]:
        prefix = f"{workflow_id}:"
        return [when for key, when in sorted(self._next_runs.items()) if key.startswith(prefix)]

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "started": self.started,
            "scheduled_workflows": len(self._definitions),
            "timers": sum(len(tasks) for tasks in self._tasks.values()),
            "event_listeners": {name: len(items) for name, items in self._listeners.items()},
            "in_flight": len(self._in_flight),
        }

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def trigger_event(self, event_name: str, payload: Optional[Dict[str, Any]] = None) -> EventDispatch:
        """Publish an event; every listener whose conditions match fires.

        Each firing runs as its own task, so firings of different workflows
        proceed independently. Firings without delays are awaited and their
        records returned; delayed firings keep running in the background and
        are reported by workflow id in ``running``.
        """
        dispatch = EventDispatch(event=event_name)
        awaited: List[asyncio.Task] = []
        for listener in self.listeners_for(event_name):
            try:
                if not event_matches(listener.trigger, event_name, payload):
                    continue
            except Exception as exc:
                logger.error("Event listener error for %s (workflow %s): %s", event_name, listener.definition.id, exc)
                continue
            task = self.start_firing(listener.definition, "event", payload)
            dispatch.started += 1
            if listener.definition.has_delays:
                dispatch.running.append(str(listener.definition.id))
            else:
                awaited.append(task)

        for task in awaited:
            record = await asyncio.shield(task)
            if record is not None:
                dispatch.records.append(record)
        return dispatch

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def fire(
        self,
        definition: WorkflowDefinition,
        trigger_type: str,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[ExecutionRecord]:
        """Run a workflow's actions and log the execution.

        Never raises: a failure while logging is itself logged, and the
        firing yields no record.
        """
        context = ExecutionContext(
            workflow_id=definition.id,
            owner_id=definition.owner_id,
            trigger_type=trigger_type,
            event_data=event_data,
        )
        executed_at = self.clock()
        logger.info("Executing workflow %s triggered by %s", definition.id, trigger_type)
        try:
            outcomes = await self.executor.run(definition.actions, context)
            return self.execution_logger.record(context, executed_at, outcomes)
        except Exception:
            logger.exception("Workflow %s firing could not be recorded", definition.id)
            return None

    def _spawn(self, key: str, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.setdefault(key, []).append(task)
        return task

    def start_firing(
        self,
        definition: WorkflowDefinition,
        trigger_type: str,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> asyncio.Task:
        """Run :meth:`fire` as a tracked task; ``stop()`` cancels it."""
        task = asyncio.get_running_loop().create_task(
            self.fire(definition, trigger_type, event_data),
            name=f"fire:{definition.id}:{trigger_type}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _fire_detached(self, definition: WorkflowDefinition, trigger_type: str) -> None:
        # Shielded so that unscheduling mid-firing lets the firing finish.
        await asyncio.shield(self.start_firing(definition, trigger_type))

    async def _run_time_trigger(self, definition: WorkflowDefinition, trigger: TimeTrigger, index: int) -> None:
        run_key = f"{definition.id}:{index}"
        reference = self.clock()
        while True:
            # Never compute from before the last fire, in case sleep woke early.
            now = max(ensure_aware(self.clock()), ensure_aware(reference))
            next_run = next_run_time(trigger, now, self.tz)
            self._next_runs[run_key] = next_run
            delay = (next_run - ensure_aware(self.clock())).total_seconds()
            logger.debug("Workflow %s next time run at %s", definition.id, next_run.isoformat())
            await self.sleep(max(delay, 0))
            reference = next_run
            await self._fire_detached(definition, "time")

    async def _run_condition_poll(self, definition: WorkflowDefinition, trigger: ConditionTrigger) -> None:
        while True:
            await self.sleep(self.condition_poll_seconds)
            try:
                db = self.session_factory()
                try:
                    met = condition_met(db, trigger)
                finally:
                    db.close()
            except Exception as exc:
                logger.error("Condition check failed for workflow %s: %s", definition.id, exc)
                continue
            if met:
                await self._fire_detached(definition, "condition")
