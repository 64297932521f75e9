"""Service layer exposing the tracking use-cases to clients."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from .analytics import (
    EmployeeEfficiency,
    ProductionStatistics,
    TaskContribution,
    WorkloadEstimator,
    WorkloadSnapshot,
)
from .domain import (
    AvailableTask,
    Machine,
    MachineStatus,
    Material,
    Order,
    OrderStatus,
    Priority,
    ProductionTask,
    QRPoint,
    QRPointType,
    SessionOutcome,
    Shift,
    TaskMaterialAssignment,
    UserRole,
    WorkSession,
    Worker,
)
from .errors import InvalidQuantity, InvalidStatusTransition, MachineNotFound
from .materials import MaterialConsumptionLedger
from .notifications import LoggingNotificationSink, NotificationSink
from .options import TrackingOptions
from .progress import OrderStatusDeriver, TaskProgressEngine
from .repository import InMemoryRepository, InMemoryUnitOfWork, RecordNotFoundError, UnitOfWork
from .sessions import SessionTracker
from .shifts import ShiftTimekeeper
from .storage import TrackingDatabase


def _or_in_memory(repository, **unique):
    if repository is not None:
        return repository
    return InMemoryRepository(unique=unique)


class ProductionService:
    """Facade that wires the engine components and exposes their use-cases.

    Repositories default to in-memory ones guarded by the same partial unique
    constraints the SQLite schema declares.
    """

    def __init__(
        self,
        machine_repo: Optional[InMemoryRepository[Machine]] = None,
        worker_repo: Optional[InMemoryRepository[Worker]] = None,
        order_repo: Optional[InMemoryRepository[Order]] = None,
        task_repo: Optional[InMemoryRepository[ProductionTask]] = None,
        session_repo: Optional[InMemoryRepository[WorkSession]] = None,
        shift_repo: Optional[InMemoryRepository[Shift]] = None,
        material_repo: Optional[InMemoryRepository[Material]] = None,
        task_material_repo: Optional[InMemoryRepository[TaskMaterialAssignment]] = None,
        qr_point_repo: Optional[InMemoryRepository[QRPoint]] = None,
        *,
        unit_of_work: Optional[UnitOfWork] = None,
        notifier: Optional[NotificationSink] = None,
        options: Optional[TrackingOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        # Repositories define __len__, so an empty one is falsy.
        self.machines = _or_in_memory(machine_repo)
        self.workers = _or_in_memory(worker_repo)
        self.orders = _or_in_memory(order_repo)
        self.tasks = _or_in_memory(task_repo)
        self.sessions = _or_in_memory(
            session_repo,
            one_open_session_per_user=lambda session: session.open_key,
        )
        self.shifts = _or_in_memory(
            shift_repo, one_shift_per_user_and_day=lambda shift: shift.key
        )
        self.materials = _or_in_memory(material_repo)
        self.task_materials = _or_in_memory(
            task_material_repo, material_once_per_task=lambda assignment: assignment.key
        )
        self.qr_points = _or_in_memory(qr_point_repo, qr_hash=lambda point: point.hash)
        if unit_of_work is None:
            unit_of_work = InMemoryUnitOfWork(
                [
                    self.machines,
                    self.workers,
                    self.orders,
                    self.tasks,
                    self.sessions,
                    self.shifts,
                    self.materials,
                    self.task_materials,
                    self.qr_points,
                ]
            )
        self.unit_of_work = unit_of_work
        self.options = options or TrackingOptions()
        self.notifier = notifier or LoggingNotificationSink()
        self.clock = clock

        self.timekeeper = ShiftTimekeeper(
            self.shifts, self.qr_points, options=self.options, clock=clock
        )
        self.progress = TaskProgressEngine(self.tasks)
        self.order_status = OrderStatusDeriver(self.orders, self.tasks, self.notifier)
        self.ledger = MaterialConsumptionLedger(
            self.materials, self.task_materials, self.tasks
        )
        self.tracker = SessionTracker(
            self.sessions,
            self.machines,
            self.unit_of_work,
            self.timekeeper,
            self.progress,
            self.order_status,
            self.ledger,
            notifier=self.notifier,
            options=self.options,
            clock=clock,
        )
        self.estimator = WorkloadEstimator(
            tasks=self.tasks,
            orders=self.orders,
            machines=self.machines,
            sessions=self.sessions,
            workers=self.workers,
            unit_of_work=self.unit_of_work,
            options=self.options,
            clock=clock,
        )

    @classmethod
    def from_database(cls, database: TrackingDatabase, **kwargs) -> "ProductionService":
        return cls(
            machine_repo=database.machines,
            worker_repo=database.workers,
            order_repo=database.orders,
            task_repo=database.tasks,
            session_repo=database.sessions,
            shift_repo=database.shifts,
            material_repo=database.materials,
            task_material_repo=database.task_materials,
            qr_point_repo=database.qr_points,
            unit_of_work=database.unit_of_work,
            **kwargs,
        )

    def update_options(
        self,
        *,
        late_grace_minutes: Optional[int] = None,
        lunch_allowance_minutes: Optional[int] = None,
        max_session_hours: Optional[float] = None,
        idle_session_hours: Optional[float] = None,
    ) -> TrackingOptions:
        """Adjust tuning parameters in place so every component sees them."""

        options = self.options
        if late_grace_minutes is not None:
            options.late_grace_minutes = max(late_grace_minutes, 0)
        if lunch_allowance_minutes is not None:
            options.lunch_allowance_minutes = max(lunch_allowance_minutes, 0)
        if max_session_hours is not None:
            options.max_session_hours = max(max_session_hours, 0.0)
        if idle_session_hours is not None:
            options.idle_session_hours = max(idle_session_hours, 0.0)
        return options

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def register_machine(
        self,
        name: str,
        *,
        efficiency_norm: float,
        quantity: int = 1,
        status: MachineStatus = MachineStatus.WORKING,
    ) -> Machine:
        if efficiency_norm < 0:
            raise ValueError("Efficiency norm must not be negative")
        if quantity < 1:
            raise ValueError("A machine type needs at least one installed unit")
        machine = Machine(
            id=str(uuid4()),
            name=name,
            efficiency_norm=efficiency_norm,
            quantity=quantity,
            status=status,
        )
        with self.unit_of_work:
            self.machines.add(machine.id, machine)
        return machine

    def set_machine_status(self, machine_id: str, status: MachineStatus) -> Machine:
        with self.unit_of_work:
            try:
                machine = self.machines.get(machine_id)
            except RecordNotFoundError as exc:
                raise MachineNotFound(f"Machine {machine_id!r} not found") from exc
            machine.status = status
            self.machines.upsert(machine.id, machine)
        return machine

    def register_worker(
        self,
        first_name: str,
        last_name: str,
        *,
        role: UserRole = UserRole.EMPLOYEE,
        active: bool = True,
    ) -> Worker:
        worker = Worker(
            id=str(uuid4()),
            first_name=first_name,
            last_name=last_name,
            role=role,
            active=active,
        )
        with self.unit_of_work:
            self.workers.add(worker.id, worker)
        return worker

    def create_order(
        self,
        title: str,
        deadline: datetime,
        *,
        priority: Priority = Priority.MEDIUM,
    ) -> Order:
        order = Order(
            id=str(uuid4()),
            title=title,
            deadline=deadline,
            priority=priority,
            created_at=self.clock(),
        )
        with self.unit_of_work:
            self.orders.add(order.id, order)
        return order

    def add_task(
        self,
        order_id: str,
        machine_id: str,
        operation: str,
        total_quantity: float,
        *,
        sequence: Optional[int] = None,
        assigned_worker_ids: Sequence[str] = (),
    ) -> ProductionTask:
        if total_quantity < 0:
            raise InvalidQuantity("Task quantity must not be negative")
        with self.unit_of_work:
            order = self.order_status.get_order(order_id)
            if machine_id not in self.machines:
                raise MachineNotFound(f"Machine {machine_id!r} not found")
            task = ProductionTask(
                id=str(uuid4()),
                order_id=order.id,
                machine_id=machine_id,
                operation=operation,
                total_quantity=total_quantity,
                priority=order.priority,
                sequence=len(order.task_ids) + 1 if sequence is None else sequence,
                assigned_worker_ids=tuple(dict.fromkeys(assigned_worker_ids)),
            )
            self.tasks.add(task.id, task)
            order.task_ids.append(task.id)
            self.orders.upsert(order.id, order)
        return task

    def register_material(
        self,
        name: str,
        unit: str,
        *,
        current_stock: float,
        min_stock: float = 0.0,
    ) -> Material:
        material = Material(
            id=str(uuid4()),
            name=name,
            unit=unit,
            current_stock=current_stock,
            min_stock=min_stock,
        )
        with self.unit_of_work:
            self.materials.add(material.id, material)
        return material

    def assign_material_to_task(
        self, task_id: str, material_id: str, quantity: float
    ) -> TaskMaterialAssignment:
        with self.unit_of_work:
            return self.ledger.assign(task_id, material_id, quantity)

    def register_qr_point(
        self, name: str, *, type: QRPointType = QRPointType.ENTRANCE
    ) -> QRPoint:
        point = QRPoint(id=str(uuid4()), name=name, hash=uuid4().hex, type=type)
        with self.unit_of_work:
            self.qr_points.add(point.id, point)
        return point

    # ------------------------------------------------------------------
    # Work sessions
    # ------------------------------------------------------------------
    def start_session(self, task_id: str, user_id: str) -> WorkSession:
        return self.tracker.start_session(task_id, user_id)

    def end_session(
        self, session_id: str, quantity_produced: float, defect_quantity: float = 0
    ) -> SessionOutcome:
        return self.tracker.end_session(session_id, quantity_produced, defect_quantity)

    def get_active_session(self, user_id: str) -> Optional[WorkSession]:
        return self.tracker.get_active_session(user_id)

    def sessions_for_task(self, task_id: str) -> List[WorkSession]:
        return self.tracker.sessions_for_task(task_id)

    def sessions_for_user(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[WorkSession]:
        return self.tracker.sessions_for_user(user_id, start, end)

    def available_tasks(self) -> List[AvailableTask]:
        return self.tracker.available_tasks()

    def force_close_session(
        self, session_id: str, actor_id: str, reason: str = ""
    ) -> SessionOutcome:
        return self.tracker.force_close_session(session_id, actor_id, reason)

    def close_idle_sessions(
        self, max_open_hours: Optional[float] = None
    ) -> List[WorkSession]:
        return self.tracker.close_idle_sessions(max_open_hours)

    # ------------------------------------------------------------------
    # Shifts
    # ------------------------------------------------------------------
    def scan_clock(self, user_id: str, qr_hash: str) -> Shift:
        with self.unit_of_work:
            return self.timekeeper.scan_clock(user_id, qr_hash)

    def start_lunch(self, user_id: str) -> Shift:
        with self.unit_of_work:
            return self.timekeeper.start_lunch(user_id)

    def end_lunch(self, user_id: str) -> Shift:
        with self.unit_of_work:
            return self.timekeeper.end_lunch(user_id)

    def mark_no_lunch(self, user_id: str) -> Shift:
        with self.unit_of_work:
            return self.timekeeper.mark_no_lunch(user_id)

    def delete_shift(self, shift_id: str, actor_id: str, actor_role: UserRole) -> None:
        with self.unit_of_work:
            self.timekeeper.delete_shift(shift_id, actor_id, actor_role)

    def plan_shift(
        self, user_id: str, day: date, planned_start: Optional[datetime] = None
    ) -> Shift:
        with self.unit_of_work:
            return self.timekeeper.plan_shift(user_id, day, planned_start)

    def current_shift(self, user_id: str) -> Optional[Shift]:
        with self.unit_of_work.reading():
            return self.timekeeper.current_shift(user_id)

    def shift_calendar(self, start_day: date, end_day: date) -> Dict[str, List[Shift]]:
        with self.unit_of_work.reading():
            return self.timekeeper.shift_calendar(start_day, end_day)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def _manual_transition(
        self, order_id: str, allowed_from: OrderStatus, status: OrderStatus
    ) -> Order:
        with self.unit_of_work:
            order = self.order_status.get_order(order_id)
            if order.status != allowed_from:
                raise InvalidStatusTransition(
                    f"Order {order_id!r} is {order.status.value}; only "
                    f"{allowed_from.value} orders can become {status.value}"
                )
            order.status = status
            self.orders.upsert(order.id, order)
        return order

    def queue_order(self, order_id: str) -> Order:
        return self._manual_transition(order_id, OrderStatus.NEW, OrderStatus.IN_QUEUE)

    def issue_order(self, order_id: str) -> Order:
        return self._manual_transition(order_id, OrderStatus.READY, OrderStatus.ISSUED)

    def order_completion(self, order_id: str) -> int:
        with self.unit_of_work.reading():
            return self.order_status.completion_percentage(order_id)

    # ------------------------------------------------------------------
    # Materials and analytics
    # ------------------------------------------------------------------
    def low_stock_materials(self) -> List[Material]:
        with self.unit_of_work.reading():
            return self.ledger.low_stock_materials()

    def get_workload_snapshot(self) -> WorkloadSnapshot:
        return self.estimator.production_workload()

    def get_production_statistics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> ProductionStatistics:
        return self.estimator.production_statistics(start, end)

    def get_employee_efficiency(
        self, user_id: str, start: datetime, end: datetime
    ) -> EmployeeEfficiency:
        return self.estimator.employee_efficiency(user_id, start, end)

    def employees_efficiency(
        self, start: datetime, end: datetime
    ) -> List[EmployeeEfficiency]:
        return self.estimator.employees_efficiency(start, end)

    def task_contribution(self, task_id: str) -> TaskContribution:
        return self.estimator.task_contribution(task_id)


__all__ = ["ProductionService"]
