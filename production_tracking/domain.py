"""Core data structures for the production execution tracking engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Hashable, List, Optional, Tuple


class TaskStatus(str, Enum):
    """Lifecycle stages of a production task."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class OrderStatus(str, Enum):
    """Lifecycle stages of a customer order."""

    NEW = "NEW"
    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    PARTIALLY_READY = "PARTIALLY_READY"
    READY = "READY"
    ISSUED = "ISSUED"

    @property
    def rank(self) -> int:
        return _ORDER_STATUS_SEQUENCE.index(self)


_ORDER_STATUS_SEQUENCE = (
    OrderStatus.NEW,
    OrderStatus.IN_QUEUE,
    OrderStatus.IN_PROGRESS,
    OrderStatus.PARTIALLY_READY,
    OrderStatus.READY,
    OrderStatus.ISSUED,
)


class MachineStatus(str, Enum):
    """Operational state reported by the machine registry."""

    WORKING = "WORKING"
    IDLE = "IDLE"
    REQUIRES_ATTENTION = "REQUIRES_ATTENTION"
    REPAIR = "REPAIR"

    @property
    def blocks_work(self) -> bool:
        return self in {MachineStatus.REPAIR, MachineStatus.REQUIRES_ATTENTION}


class Priority(str, Enum):
    """Order priority, most urgent first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return {
            Priority.CRITICAL: 0,
            Priority.HIGH: 1,
            Priority.MEDIUM: 2,
            Priority.LOW: 3,
        }[self]


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class LunchStatus(str, Enum):
    """Whether the worker took, skipped or has not yet had lunch."""

    NOT_TAKEN = "NOT_TAKEN"
    TAKEN = "TAKEN"
    DECLINED = "DECLINED"


class QRPointType(str, Enum):
    ENTRANCE = "ENTRANCE"
    LUNCH = "LUNCH"
    BREAK_AREA = "BREAK_AREA"


@dataclass(slots=True)
class Machine:
    """A machine type on the shop floor, possibly installed several times."""

    id: str
    name: str
    efficiency_norm: float
    quantity: int = 1
    status: MachineStatus = MachineStatus.WORKING

    @property
    def total_efficiency_norm(self) -> float:
        return self.efficiency_norm * max(self.quantity, 1)


@dataclass(slots=True)
class Worker:
    """Entry of the worker directory."""

    id: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.EMPLOYEE
    active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(slots=True)
class Order:
    """A customer job composed of an ordered sequence of tasks."""

    id: str
    title: str
    deadline: datetime
    priority: Priority = Priority.MEDIUM
    status: OrderStatus = OrderStatus.NEW
    task_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(slots=True)
class ProductionTask:
    """A unit of production work bound to one machine and one order."""

    id: str
    order_id: str
    machine_id: str
    operation: str
    total_quantity: float
    completed_quantity: float = 0.0
    defect_quantity: float = 0.0
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    sequence: int = 0
    assigned_worker_ids: Tuple[str, ...] = tuple()

    @property
    def remaining_quantity(self) -> float:
        return self.total_quantity - self.completed_quantity


@dataclass(slots=True)
class WorkSession:
    """Timed interval during which one worker produces against one task."""

    id: str
    task_id: str
    user_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    quantity_produced: float = 0.0
    defect_quantity: float = 0.0
    closed_by: Optional[str] = None
    close_reason: str = ""

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def open_key(self) -> Optional[Hashable]:
        """Key of the one-open-session-per-user constraint."""

        return self.user_id if self.end_time is None else None

    @property
    def duration_hours(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() / 3600


@dataclass(slots=True)
class Shift:
    """A worker's attendance record for one calendar day."""

    id: str
    user_id: str
    day: date
    planned_start: Optional[datetime] = None
    time_in: Optional[datetime] = None
    time_out: Optional[datetime] = None
    is_late: bool = False
    lunch_status: LunchStatus = LunchStatus.NOT_TAKEN
    lunch_start: Optional[datetime] = None
    lunch_end: Optional[datetime] = None
    lunch_overtime: Optional[int] = None

    @property
    def key(self) -> Tuple[str, date]:
        return (self.user_id, self.day)


@dataclass(slots=True)
class Material:
    """Stock-keeping record for a consumable."""

    id: str
    name: str
    unit: str
    current_stock: float
    min_stock: float = 0.0

    @property
    def is_low(self) -> bool:
        return self.current_stock <= self.min_stock


@dataclass(slots=True)
class TaskMaterialAssignment:
    """Amount of a material needed for the full quantity of a task."""

    id: str
    task_id: str
    material_id: str
    quantity: float

    @property
    def key(self) -> Tuple[str, str]:
        return (self.task_id, self.material_id)


@dataclass(slots=True)
class QRPoint:
    """A scannable clock point on the premises."""

    id: str
    name: str
    hash: str
    type: QRPointType = QRPointType.ENTRANCE


@dataclass(slots=True)
class LowStockWarning:
    material_id: str
    material_name: str
    current_stock: float
    unit: str


@dataclass(slots=True)
class AvailableTask:
    """An open task whose machine can take work, with its order context."""

    task: ProductionTask
    order_title: str
    order_priority: Priority
    deadline: datetime
    machine_name: str


@dataclass(slots=True)
class SessionOutcome:
    """Everything that changed when a session was closed."""

    session: WorkSession
    task: ProductionTask
    order: Order
    warnings: List[LowStockWarning] = field(default_factory=list)
    material_error: Optional[str] = None


__all__ = [
    "TaskStatus",
    "OrderStatus",
    "MachineStatus",
    "Priority",
    "UserRole",
    "LunchStatus",
    "QRPointType",
    "Machine",
    "Worker",
    "Order",
    "ProductionTask",
    "WorkSession",
    "Shift",
    "Material",
    "TaskMaterialAssignment",
    "QRPoint",
    "LowStockWarning",
    "SessionOutcome",
    "AvailableTask",
]
