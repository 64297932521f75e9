"""Task progress accumulation and order status derivation."""

from __future__ import annotations

import logging
from typing import List, Optional

from .domain import Order, OrderStatus, ProductionTask, TaskStatus
from .errors import OrderNotFound, TaskNotFound
from .notifications import LoggingNotificationSink, NotificationSink, publish
from .repository import InMemoryRepository, RecordNotFoundError

logger = logging.getLogger(__name__)


class TaskProgressEngine:
    """Owns the quantity counters and status of production tasks."""

    def __init__(self, tasks: InMemoryRepository[ProductionTask]) -> None:
        self._tasks = tasks

    def get_task(self, task_id: str) -> ProductionTask:
        try:
            return self._tasks.get(task_id)
        except RecordNotFoundError as exc:
            raise TaskNotFound(f"Task {task_id!r} not found") from exc

    def open_tasks(self) -> List[ProductionTask]:
        return [
            task
            for task in self._tasks
            if task.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        ]

    def mark_started(self, task: ProductionTask) -> bool:
        if task.status != TaskStatus.PENDING:
            return False
        task.status = TaskStatus.IN_PROGRESS
        self._tasks.upsert(task.id, task)
        logger.info(f"Task {task.id} started")
        return True

    def apply_production(
        self, task_id: str, quantity: float, defects: float
    ) -> ProductionTask:
        """Add produced and defective units and derive the resulting status.

        Quantities only grow here. Production beyond the total is accepted
        and simply keeps the task completed.
        """

        task = self.get_task(task_id)
        task.completed_quantity += quantity
        task.defect_quantity += defects
        if task.completed_quantity >= task.total_quantity:
            if task.status != TaskStatus.COMPLETED:
                logger.info(f"Task {task.id} completed")
            task.status = TaskStatus.COMPLETED
        elif task.status == TaskStatus.COMPLETED:
            task.status = TaskStatus.IN_PROGRESS
            logger.warning(
                f"Task {task.id} was marked as COMPLETED but only "
                f"{task.completed_quantity}/{task.total_quantity} are done; "
                "status changed to IN_PROGRESS"
            )
        else:
            task.status = TaskStatus.IN_PROGRESS
        self._tasks.upsert(task.id, task)
        return task


class OrderStatusDeriver:
    """Aggregates task statuses into the order status.

    Transitions only move forward through ``OrderStatus`` and never touch an
    issued order; issuing is a manual step outside the derivation.
    """

    def __init__(
        self,
        orders: InMemoryRepository[Order],
        tasks: InMemoryRepository[ProductionTask],
        notifier: Optional[NotificationSink] = None,
    ) -> None:
        self._orders = orders
        self._tasks = tasks
        self._notifier = notifier or LoggingNotificationSink()

    def get_order(self, order_id: str) -> Order:
        try:
            return self._orders.get(order_id)
        except RecordNotFoundError as exc:
            raise OrderNotFound(f"Order {order_id!r} not found") from exc

    def tasks_of(self, order: Order) -> List[ProductionTask]:
        return [self._tasks.get(task_id) for task_id in order.task_ids]

    def mark_started(self, order: Order) -> bool:
        if order.status not in {OrderStatus.NEW, OrderStatus.IN_QUEUE}:
            return False
        return self._transition(order, OrderStatus.IN_PROGRESS)

    def recompute(self, order_id: str) -> Order:
        order = self.get_order(order_id)
        statuses = [task.status for task in self.tasks_of(order)]
        all_completed = bool(statuses) and all(
            status == TaskStatus.COMPLETED for status in statuses
        )
        any_completed = TaskStatus.COMPLETED in statuses
        any_started = any_completed or TaskStatus.IN_PROGRESS in statuses

        target: Optional[OrderStatus] = None
        if all_completed:
            target = OrderStatus.READY
        elif any_started and order.status in {OrderStatus.NEW, OrderStatus.IN_QUEUE}:
            target = OrderStatus.IN_PROGRESS
        elif any_completed:
            target = OrderStatus.PARTIALLY_READY

        completion = self.completion_percentage(order_id)
        if target is None or not self._transition(order, target):
            logger.info(
                f"Order {order.id} progress updated: {completion}% "
                f"(status unchanged: {order.status.value})"
            )
        return order

    def completion_percentage(self, order_id: str) -> int:
        """Average per-task progress for display; unrelated to the status."""

        order = self.get_order(order_id)
        tasks = self.tasks_of(order)
        if not tasks:
            return 0
        total = 0.0
        for task in tasks:
            if task.status == TaskStatus.COMPLETED:
                total += 100
            elif task.total_quantity > 0:
                total += min(task.completed_quantity / task.total_quantity * 100, 100)
        return round(total / len(tasks))

    def _transition(self, order: Order, status: OrderStatus) -> bool:
        if order.status == OrderStatus.ISSUED or status.rank <= order.status.rank:
            return False
        previous = order.status
        order.status = status
        self._orders.upsert(order.id, order)
        logger.info(f"Order {order.id} status updated: {previous.value} -> {status.value}")
        publish(
            self._notifier,
            "order.status_changed",
            {"order_id": order.id, "previous": previous.value, "status": status.value},
        )
        return True


__all__ = ["TaskProgressEngine", "OrderStatusDeriver"]
