"""
Row changes published as workflow events.

Session hooks collect interesting inserts and updates during flush and hand
them to the scheduler's event bus once the transaction commits; rolled-back
changes publish nothing.

| event | source |
|---|---|
| form_response_received | insert into ``form_responses`` |
| presentation_created | insert into ``presentations`` |
| volunteer_approved | ``volunteers.application_status`` set to ``approved`` |
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import event, inspect
from sqlalchemy.orm.base import NO_VALUE

from volunteer_automation.core.logger import get_logger

logger = get_logger(__name__)

PENDING_EVENTS_KEY = "workflow_pending_events"

INSERT_EVENTS: Dict[str, str] = {
    "form_responses": "form_response_received",
    "presentations": "presentation_created",
}
# (table, column, new value) -> event name
UPDATE_EVENTS: Dict[Tuple[str, str, Any], str] = {
    ("volunteers", "application_status", "approved"): "volunteer_approved",
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_payload(obj: Any) -> Dict[str, Any]:
    """Loaded column values of a mapped object, without triggering loads."""
    state = inspect(obj)
    payload: Dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        value = state.attrs[attr.key].loaded_value
        if value is NO_VALUE:
            continue
        column = attr.columns[0]
        payload[column.name] = _jsonable(value)
    return payload


class ChangeFeed:
    """Bridges committed row changes into ``WorkflowScheduler.trigger_event``."""

    def __init__(self, scheduler, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.scheduler = scheduler
        self.loop = loop
        self._target = None
        self._dispatched: Set[asyncio.Task] = set()

    def install(self, target) -> None:
        """Listen on a ``sessionmaker`` (or Session class)."""
        if self._target is not None:
            return
        event.listen(target, "after_flush", self._collect)
        event.listen(target, "after_commit", self._publish)
        event.listen(target, "after_soft_rollback", self._discard)
        self._target = target

    def uninstall(self) -> None:
        if self._target is None:
            return
        event.remove(self._target, "after_flush", self._collect)
        event.remove(self._target, "after_commit", self._publish)
        event.remove(self._target, "after_soft_rollback", self._discard)
        self._target = None

    def _collect(self, session, flush_context) -> None:
        pending: List[Tuple[str, Dict[str, Any]]] = session.info.setdefault(PENDING_EVENTS_KEY, [])
        for obj in session.new:
            table = getattr(obj, "__tablename__", None)
            name = INSERT_EVENTS.get(table)
            if name:
                pending.append((name, row_payload(obj)))
        for obj in session.dirty:
            table = getattr(obj, "__tablename__", None)
            state = inspect(obj)
            for (rule_table, column, value), name in UPDATE_EVENTS.items():
                if table != rule_table:
                    continue
                history = state.attrs[column].history
                if value in (history.added or ()):
                    pending.append((name, row_payload(obj)))

    def _publish(self, session) -> None:
        for name, payload in session.info.pop(PENDING_EVENTS_KEY, []):
            self.dispatch(name, payload)

    def _discard(self, session, previous_transaction) -> None:
        session.info.pop(PENDING_EVENTS_KEY, None)

    def dispatch(self, name: str, payload: Dict[str, Any]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            task = running.create_task(self.scheduler.trigger_event(name, payload))
            self._dispatched.add(task)
            task.add_done_callback(self._dispatched.discard)
        elif self.loop is not None and self.loop.is_running():
            asyncio.run_coroutine_threadsafe(self.scheduler.trigger_event(name, payload), self.loop)
        else:
            logger.warning("No event loop running; dropped %s event", name)
            return
        logger.info("Published %s event", name)

    async def drain(self) -> None:
        """Wait for dispatched events started on the current loop."""
        if self._dispatched:
            await asyncio.gather(*list(self._dispatched), return_exceptions=True)
