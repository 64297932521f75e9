"""Read-only workload projections and efficiency statistics.

Nothing here writes. The projections are descriptive: remaining quantity is
divided by machine throughput, headcount and machine multiplicity, without
assigning work to anyone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .domain import (
    Machine,
    MachineStatus,
    Order,
    ProductionTask,
    TaskStatus,
    WorkSession,
    Worker,
)
from .errors import TaskNotFound
from .options import TrackingOptions
from .repository import InMemoryRepository, UnitOfWork


@dataclass(slots=True)
class EmployeeEfficiency:
    user_id: str
    total_actual: float
    total_expected: float
    efficiency: float
    sessions_count: int


@dataclass(slots=True)
class TaskWorkload:
    task_id: str
    order_id: str
    order_title: str
    operation: str
    remaining_quantity: float
    deadline: datetime
    priority: str
    estimated_hours: float
    estimated_hours_with_workers: float
    estimated_hours_with_machines: float
    estimated_hours_with_machines_and_workers: float


@dataclass(slots=True)
class MachineWorkload:
    machine_id: str
    machine_name: str
    machine_status: MachineStatus
    efficiency_norm: float
    quantity: int
    total_efficiency_norm: float
    available_workers_count: int
    total_remaining_quantity: float = 0.0
    estimated_hours: float = 0.0
    estimated_hours_with_workers: float = 0.0
    estimated_hours_with_machines: float = 0.0
    estimated_hours_with_machines_and_workers: float = 0.0
    tasks: List[TaskWorkload] = field(default_factory=list)


@dataclass(slots=True)
class WorkloadSummary:
    total_machines: int
    total_machines_count: int
    active_machines: int
    machines_with_issues: int
    available_workers_count: int
    total_remaining_quantity: float
    total_estimated_hours: float
    total_estimated_hours_with_workers: float
    total_estimated_hours_with_machines: float
    total_estimated_hours_with_machines_and_workers: float
    average_hours_per_machine: float
    average_hours_per_machine_with_workers: float
    average_hours_per_machine_with_machines_and_workers: float


@dataclass(slots=True)
class WorkloadSnapshot:
    machines: List[MachineWorkload]
    summary: WorkloadSummary


@dataclass(slots=True)
class StatisticsBucket:
    """Actual versus expected output for one slice of the sessions."""

    label: str
    machine_id: Optional[str] = None
    actual_quantity: float = 0.0
    expected_quantity: float = 0.0
    defects: float = 0.0
    hours: float = 0.0
    efficiency: float = 0.0
    defect_rate: float = 0.0

    def add(self, actual: float, expected: float, defects: float, hours: float) -> None:
        self.actual_quantity += actual
        self.expected_quantity += expected
        self.defects += defects
        self.hours += hours

    def finalize(self) -> "StatisticsBucket":
        if self.expected_quantity > 0:
            self.efficiency = round(self.actual_quantity / self.expected_quantity * 100, 2)
        if self.actual_quantity > 0:
            self.defect_rate = round(self.defects / self.actual_quantity * 100, 2)
        self.expected_quantity = round(self.expected_quantity, 2)
        self.hours = round(self.hours, 2)
        return self


@dataclass(slots=True)
class ProductionStatistics:
    start: datetime
    end: datetime
    overall: StatisticsBucket
    daily: List[StatisticsBucket]
    by_machine: List[StatisticsBucket]


@dataclass(slots=True)
class SessionContribution:
    session_id: str
    user_id: str
    quantity_produced: float
    defect_quantity: float
    duration_hours: float
    expected: float
    efficiency: float
    start_time: datetime
    end_time: Optional[datetime]


@dataclass(slots=True)
class TaskContribution:
    task_id: str
    operation: str
    total_quantity: float
    completed_quantity: float
    contributions: List[SessionContribution]


def _share(numerator: float, denominator: float, fallback: float = 0.0) -> float:
    return numerator / denominator if denominator > 0 else fallback


class WorkloadEstimator:
    """Analytics over tasks, machines and closed work sessions."""

    def __init__(
        self,
        *,
        tasks: InMemoryRepository[ProductionTask],
        orders: InMemoryRepository[Order],
        machines: InMemoryRepository[Machine],
        sessions: InMemoryRepository[WorkSession],
        workers: InMemoryRepository[Worker],
        unit_of_work: UnitOfWork,
        options: Optional[TrackingOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._tasks = tasks
        self._orders = orders
        self._machines = machines
        self._sessions = sessions
        self._workers = workers
        self._unit_of_work = unit_of_work
        self._options = options or TrackingOptions()
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _worked_hours(self, session: WorkSession) -> float:
        """Session length, capped at one standard shift."""

        return min(session.duration_hours, self._options.max_session_hours)

    def _closed_sessions_with_machines(
        self, start: datetime, end: datetime, user_id: Optional[str] = None
    ) -> List[Tuple[WorkSession, Machine]]:
        with self._unit_of_work.reading():
            tasks = {task.id: task for task in self._tasks}
            machines = {machine.id: machine for machine in self._machines}
            sessions = self._sessions.list()
        rows: List[Tuple[WorkSession, Machine]] = []
        for session in sessions:
            if session.is_open or not start <= session.start_time <= end:
                continue
            if user_id is not None and session.user_id != user_id:
                continue
            task = tasks.get(session.task_id)
            machine = machines.get(task.machine_id) if task else None
            if machine is not None:
                rows.append((session, machine))
        return rows

    def headcount(self) -> int:
        eligible = self._options.eligible_worker_roles
        return sum(
            1 for worker in self._workers if worker.active and worker.role in eligible
        )

    # ------------------------------------------------------------------
    # Efficiency
    # ------------------------------------------------------------------
    def employee_efficiency(
        self, user_id: str, start: datetime, end: datetime
    ) -> EmployeeEfficiency:
        rows = self._closed_sessions_with_machines(start, end, user_id)
        total_actual = 0.0
        total_expected = 0.0
        for session, machine in rows:
            total_actual += session.quantity_produced
            total_expected += machine.efficiency_norm * self._worked_hours(session)
        return EmployeeEfficiency(
            user_id=user_id,
            total_actual=total_actual,
            total_expected=total_expected,
            efficiency=round(_share(total_actual, total_expected) * 100, 2),
            sessions_count=len(rows),
        )

    def employees_efficiency(self, start: datetime, end: datetime) -> List[EmployeeEfficiency]:
        eligible = self._options.eligible_worker_roles
        with self._unit_of_work.reading():
            workers = [w for w in self._workers if w.role in eligible]
        results = [self.employee_efficiency(worker.id, start, end) for worker in workers]
        results.sort(key=lambda result: result.efficiency, reverse=True)
        return results

    def task_contribution(self, task_id: str) -> TaskContribution:
        with self._unit_of_work.reading():
            if task_id not in self._tasks:
                raise TaskNotFound(f"Task {task_id!r} not found")
            task = self._tasks.get(task_id)
            machine = self._machines.get(task.machine_id)
            sessions = [s for s in self._sessions if s.task_id == task_id and not s.is_open]
        sessions.sort(key=lambda session: session.start_time)
        contributions = []
        for session in sessions:
            hours = self._worked_hours(session)
            expected = machine.efficiency_norm * hours
            contributions.append(
                SessionContribution(
                    session_id=session.id,
                    user_id=session.user_id,
                    quantity_produced=session.quantity_produced,
                    defect_quantity=session.defect_quantity,
                    duration_hours=round(hours, 2),
                    expected=expected,
                    efficiency=round(_share(session.quantity_produced, expected) * 100, 2),
                    start_time=session.start_time,
                    end_time=session.end_time,
                )
            )
        return TaskContribution(
            task_id=task.id,
            operation=task.operation,
            total_quantity=task.total_quantity,
            completed_quantity=task.completed_quantity,
            contributions=contributions,
        )

    # ------------------------------------------------------------------
    # Workload
    # ------------------------------------------------------------------
    def production_workload(self) -> WorkloadSnapshot:
        with self._unit_of_work.reading():
            machines = {machine.id: machine for machine in self._machines}
            orders = {order.id: order for order in self._orders}
            tasks = [
                task
                for task in self._tasks
                if task.status in {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}
            ]
        headcount = self.headcount()

        buckets: Dict[str, MachineWorkload] = {}
        for task in tasks:
            machine = machines.get(task.machine_id)
            order = orders.get(task.order_id)
            remaining = task.remaining_quantity
            if machine is None or order is None:
                continue
            if remaining <= 0 or machine.status == MachineStatus.REPAIR:
                continue

            hours = _share(remaining, machine.efficiency_norm)
            hours_with_machines = _share(remaining, machine.total_efficiency_norm, hours)
            hours_with_workers = _share(hours, headcount, hours)
            hours_with_both = _share(hours_with_machines, headcount, hours_with_machines)

            bucket = buckets.get(machine.id)
            if bucket is None:
                bucket = MachineWorkload(
                    machine_id=machine.id,
                    machine_name=machine.name,
                    machine_status=machine.status,
                    efficiency_norm=machine.efficiency_norm,
                    quantity=max(machine.quantity, 1),
                    total_efficiency_norm=machine.total_efficiency_norm,
                    available_workers_count=headcount,
                )
                buckets[machine.id] = bucket
            bucket.total_remaining_quantity += remaining
            bucket.estimated_hours += hours
            bucket.estimated_hours_with_workers += hours_with_workers
            bucket.estimated_hours_with_machines += hours_with_machines
            bucket.estimated_hours_with_machines_and_workers += hours_with_both
            bucket.tasks.append(
                TaskWorkload(
                    task_id=task.id,
                    order_id=order.id,
                    order_title=order.title,
                    operation=task.operation,
                    remaining_quantity=remaining,
                    deadline=order.deadline,
                    priority=order.priority.value,
                    estimated_hours=hours,
                    estimated_hours_with_workers=hours_with_workers,
                    estimated_hours_with_machines=hours_with_machines,
                    estimated_hours_with_machines_and_workers=hours_with_both,
                )
            )

        workload = list(buckets.values())
        for bucket in workload:
            bucket.tasks.sort(
                key=lambda item: (orders[item.order_id].priority.rank, item.deadline)
            )
        return WorkloadSnapshot(machines=workload, summary=self._summarize(workload, headcount))

    @staticmethod
    def _summarize(workload: List[MachineWorkload], headcount: int) -> WorkloadSummary:
        count = len(workload)
        total_hours = sum(m.estimated_hours for m in workload)
        total_with_workers = sum(m.estimated_hours_with_workers for m in workload)
        total_with_machines = sum(m.estimated_hours_with_machines for m in workload)
        total_with_both = sum(m.estimated_hours_with_machines_and_workers for m in workload)
        return WorkloadSummary(
            total_machines=count,
            total_machines_count=sum(m.quantity for m in workload),
            active_machines=sum(1 for m in workload if m.machine_status == MachineStatus.WORKING),
            machines_with_issues=sum(
                1 for m in workload if m.machine_status == MachineStatus.REQUIRES_ATTENTION
            ),
            available_workers_count=headcount,
            total_remaining_quantity=sum(m.total_remaining_quantity for m in workload),
            total_estimated_hours=round(total_hours, 2),
            total_estimated_hours_with_workers=round(total_with_workers, 2),
            total_estimated_hours_with_machines=round(total_with_machines, 2),
            total_estimated_hours_with_machines_and_workers=round(total_with_both, 2),
            average_hours_per_machine=round(_share(total_hours, count), 2),
            average_hours_per_machine_with_workers=round(_share(total_with_workers, count), 2),
            average_hours_per_machine_with_machines_and_workers=round(
                _share(total_with_both, count), 2
            ),
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def production_statistics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> ProductionStatistics:
        now = self._clock()
        start = start or now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        end = end or now

        overall = StatisticsBucket(label="overall")
        daily: Dict[str, StatisticsBucket] = {}
        by_machine: Dict[str, StatisticsBucket] = {}
        for session, machine in self._closed_sessions_with_machines(start, end):
            hours = self._worked_hours(session)
            expected = machine.total_efficiency_norm * hours
            day_key = session.start_time.date().isoformat()
            day = daily.setdefault(day_key, StatisticsBucket(label=day_key))
            per_machine = by_machine.setdefault(
                machine.id, StatisticsBucket(label=machine.name, machine_id=machine.id)
            )
            for bucket in (overall, day, per_machine):
                bucket.add(session.quantity_produced, expected, session.defect_quantity, hours)

        daily_buckets = sorted(
            (bucket.finalize() for bucket in daily.values()), key=lambda b: b.label
        )
        machine_buckets = sorted(
            (bucket.finalize() for bucket in by_machine.values()),
            key=lambda b: b.efficiency,
            reverse=True,
        )
        return ProductionStatistics(
            start=start,
            end=end,
            overall=overall.finalize(),
            daily=daily_buckets,
            by_machine=machine_buckets,
        )


__all__ = [
    "WorkloadEstimator",
    "EmployeeEfficiency",
    "MachineWorkload",
    "TaskWorkload",
    "WorkloadSummary",
    "WorkloadSnapshot",
    "StatisticsBucket",
    "ProductionStatistics",
    "SessionContribution",
    "TaskContribution",
]
