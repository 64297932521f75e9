"""Work session lifecycle and its effects on shifts, tasks, stock and orders."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from .domain import AvailableTask, LowStockWarning, Machine, SessionOutcome, WorkSession
from .errors import (
    ActiveSessionConflict,
    InvalidQuantity,
    MachineNotFound,
    MachineUnavailable,
    SessionAlreadyEnded,
    SessionNotFound,
)
from .materials import MaterialConsumptionLedger
from .notifications import LoggingNotificationSink, NotificationSink, publish
from .options import TrackingOptions
from .progress import OrderStatusDeriver, TaskProgressEngine
from .repository import (
    DuplicateRecordError,
    InMemoryRepository,
    RecordNotFoundError,
    UnitOfWork,
)
from .shifts import ShiftTimekeeper

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class SessionTracker:
    """Opens and closes work sessions.

    Every collaborator is handed in by the caller; the tracker never builds
    or looks up services on its own. Each write runs in one unit of work.
    The material step of closing a session runs in a savepoint of its own
    and may fail without undoing the rest.
    """

    def __init__(
        self,
        sessions: InMemoryRepository[WorkSession],
        machines: InMemoryRepository[Machine],
        unit_of_work: UnitOfWork,
        timekeeper: ShiftTimekeeper,
        progress: TaskProgressEngine,
        orders: OrderStatusDeriver,
        ledger: MaterialConsumptionLedger,
        *,
        notifier: Optional[NotificationSink] = None,
        options: Optional[TrackingOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._sessions = sessions
        self._machines = machines
        self._unit_of_work = unit_of_work
        self._timekeeper = timekeeper
        self._progress = progress
        self._orders = orders
        self._ledger = ledger
        self._notifier = notifier or LoggingNotificationSink()
        self._options = options or TrackingOptions()
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def _open_session_of(self, user_id: str) -> Optional[WorkSession]:
        for session in self._sessions:
            if session.user_id == user_id and session.is_open:
                return session
        return None

    def get_active_session(self, user_id: str) -> Optional[WorkSession]:
        with self._unit_of_work.reading():
            return self._open_session_of(user_id)

    def get_session(self, session_id: str) -> WorkSession:
        try:
            return self._sessions.get(session_id)
        except RecordNotFoundError as exc:
            raise SessionNotFound(f"Work session {session_id!r} not found") from exc

    def sessions_for_task(self, task_id: str) -> List[WorkSession]:
        with self._unit_of_work.reading():
            sessions = [s for s in self._sessions if s.task_id == task_id]
        sessions.sort(key=lambda session: session.start_time, reverse=True)
        return sessions

    def sessions_for_user(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[WorkSession]:
        with self._unit_of_work.reading():
            sessions = [
                s
                for s in self._sessions
                if s.user_id == user_id
                and not s.is_open
                and start <= s.start_time <= end
            ]
        sessions.sort(key=lambda session: session.start_time, reverse=True)
        return sessions

    def available_tasks(self) -> List[AvailableTask]:
        """Open tasks that can be worked on right now, regardless of assignment.

        Tasks on machines under repair or requiring attention are left out.
        The most urgent order comes first, then the earliest deadline, then
        the task priority and the position of the task within its order.
        """

        with self._unit_of_work.reading():
            machines = {machine.id: machine for machine in self._machines}
            available = []
            for task in self._progress.open_tasks():
                machine = machines.get(task.machine_id)
                if machine is None or machine.status.blocks_work:
                    continue
                order = self._orders.get_order(task.order_id)
                available.append(
                    AvailableTask(
                        task=task,
                        order_title=order.title,
                        order_priority=order.priority,
                        deadline=order.deadline,
                        machine_name=machine.name,
                    )
                )
        available.sort(
            key=lambda entry: (
                entry.order_priority.rank,
                entry.deadline,
                entry.task.priority.rank,
                entry.task.sequence,
            )
        )
        return available

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------
    def _get_machine(self, machine_id: str) -> Machine:
        try:
            return self._machines.get(machine_id)
        except RecordNotFoundError as exc:
            raise MachineNotFound(f"Machine {machine_id!r} not found") from exc

    def start_session(self, task_id: str, user_id: str) -> WorkSession:
        with self._unit_of_work:
            task = self._progress.get_task(task_id)
            machine = self._get_machine(task.machine_id)
            if machine.status.blocks_work:
                raise MachineUnavailable(
                    f"Cannot start work on machine {machine.name} "
                    f"in status {machine.status.value}"
                )
            if self._open_session_of(user_id) is not None:
                raise ActiveSessionConflict("User already has an active work session")

            now = self._clock()
            session = WorkSession(
                id=str(uuid4()), task_id=task.id, user_id=user_id, start_time=now
            )
            try:
                self._sessions.add(session.id, session)
            except DuplicateRecordError as exc:
                raise ActiveSessionConflict(
                    "User already has an active work session"
                ) from exc
            self._timekeeper.register_clock_in(user_id, now)
            self._progress.mark_started(task)
            self._orders.mark_started(self._orders.get_order(task.order_id))

        logger.info(
            f"Work session started: task {task.id}, user {user_id}, "
            f"time {now.isoformat()}"
        )
        publish(
            self._notifier,
            "session.started",
            {"session_id": session.id, "task_id": task.id, "user_id": user_id},
        )
        return session

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------
    def end_session(
        self, session_id: str, quantity_produced: float, defect_quantity: float
    ) -> SessionOutcome:
        if quantity_produced < 0 or defect_quantity < 0:
            raise InvalidQuantity("Produced and defect quantities must not be negative")
        with self._unit_of_work:
            session = self._open_session(session_id)
            outcome = self._close(session, quantity_produced, defect_quantity)

        duration = (session.end_time - session.start_time).total_seconds() / 60
        logger.info(
            f"Work session ended: task {session.task_id}, "
            f"produced: {quantity_produced}, defects: {defect_quantity}, "
            f"duration: {round(duration)} min"
        )
        publish(
            self._notifier,
            "session.ended",
            {
                "session_id": session.id,
                "task_id": session.task_id,
                "user_id": session.user_id,
                "task_status": outcome.task.status.value,
                "order_status": outcome.order.status.value,
            },
        )
        for warning in outcome.warnings:
            publish(
                self._notifier,
                "material.low_stock",
                {
                    "material_id": warning.material_id,
                    "material_name": warning.material_name,
                    "current_stock": warning.current_stock,
                    "unit": warning.unit,
                },
            )
        return outcome

    def _open_session(self, session_id: str) -> WorkSession:
        session = self.get_session(session_id)
        if not session.is_open:
            raise SessionAlreadyEnded(f"Work session {session_id!r} already ended")
        return session

    def _close(
        self,
        session: WorkSession,
        quantity_produced: float,
        defect_quantity: float,
        *,
        consume_materials: bool = True,
    ) -> SessionOutcome:
        now = self._clock()
        session.end_time = now
        session.quantity_produced = quantity_produced
        session.defect_quantity = defect_quantity
        self._sessions.upsert(session.id, session)

        self._timekeeper.register_clock_out(session.user_id, session.start_time, now)
        task = self._progress.apply_production(
            session.task_id, quantity_produced, defect_quantity
        )
        warnings: List[LowStockWarning] = []
        material_error: Optional[str] = None
        if consume_materials:
            warnings, material_error = self._consume_materials(
                task.id, quantity_produced + defect_quantity
            )
        order = self._orders.recompute(task.order_id)
        return SessionOutcome(
            session=session,
            task=task,
            order=order,
            warnings=warnings,
            material_error=material_error,
        )

    def _consume_materials(
        self, task_id: str, quantity: float
    ) -> Tuple[List[LowStockWarning], Optional[str]]:
        try:
            with self._unit_of_work.savepoint():
                return self._ledger.consume(task_id, quantity), None
        except Exception as exc:
            logger.error(f"Failed to consume materials for task {task_id}: {exc}")
            return [], str(exc)

    # ------------------------------------------------------------------
    # Administrative close
    # ------------------------------------------------------------------
    def force_close_session(
        self, session_id: str, actor_id: str, reason: str = ""
    ) -> SessionOutcome:
        """Close a forgotten session without booking any production."""

        with self._unit_of_work:
            session = self._open_session(session_id)
            session.closed_by = actor_id
            session.close_reason = reason
            outcome = self._close(session, 0, 0, consume_materials=False)
        logger.warning(
            f"Work session {session.id} of user {session.user_id} force-closed "
            f"by {actor_id}: {reason or 'no reason given'}"
        )
        publish(
            self._notifier,
            "session.force_closed",
            {"session_id": session.id, "user_id": session.user_id, "actor_id": actor_id},
        )
        return outcome

    def close_idle_sessions(
        self, max_open_hours: Optional[float] = None
    ) -> List[WorkSession]:
        hours = self._options.idle_session_hours if max_open_hours is None else max_open_hours
        threshold = self._clock() - timedelta(hours=hours)
        with self._unit_of_work.reading():
            stale = [
                s.id for s in self._sessions if s.is_open and s.start_time < threshold
            ]
        closed: List[WorkSession] = []
        for session_id in stale:
            try:
                outcome = self.force_close_session(
                    session_id,
                    SYSTEM_ACTOR,
                    f"open for more than {hours:g} hours",
                )
            except SessionAlreadyEnded:
                continue
            closed.append(outcome.session)
        return closed


__all__ = ["SessionTracker", "SYSTEM_ACTOR"]
