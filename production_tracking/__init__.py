"""Production execution and progress tracking for a machining shop floor.

Operators open and close timed work sessions against production tasks. The
sessions drive task and order status, daily attendance, material stock and
a read-only workload and efficiency analytics layer.
"""

from .domain import (
    AvailableTask,
    LunchStatus,
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
    TaskStatus,
    UserRole,
    WorkSession,
    Worker,
)
from .errors import TrackingError
from .options import TrackingOptions
from .services import ProductionService

__all__ = [
    "AvailableTask",
    "LunchStatus",
    "Machine",
    "MachineStatus",
    "Material",
    "Order",
    "OrderStatus",
    "Priority",
    "ProductionTask",
    "QRPoint",
    "QRPointType",
    "SessionOutcome",
    "Shift",
    "TaskStatus",
    "UserRole",
    "WorkSession",
    "Worker",
    "TrackingError",
    "TrackingOptions",
    "ProductionService",
]
