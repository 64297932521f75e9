"""Proportional material consumption against task output."""

from __future__ import annotations

import logging
from typing import List, Tuple
from uuid import uuid4

from .domain import LowStockWarning, Material, ProductionTask, TaskMaterialAssignment
from .errors import (
    InsufficientStock,
    InvalidQuantity,
    MaterialAlreadyAssigned,
    MaterialNotFound,
    TaskNotFound,
)
from .repository import InMemoryRepository, RecordNotFoundError

logger = logging.getLogger(__name__)


class MaterialConsumptionLedger:
    """Debits stock for the materials assigned to a task.

    An assignment states how much of a material the task needs for its full
    ``total_quantity``; producing part of the total consumes the same share.
    """

    def __init__(
        self,
        materials: InMemoryRepository[Material],
        assignments: InMemoryRepository[TaskMaterialAssignment],
        tasks: InMemoryRepository[ProductionTask],
    ) -> None:
        self._materials = materials
        self._assignments = assignments
        self._tasks = tasks

    def get_material(self, material_id: str) -> Material:
        try:
            return self._materials.get(material_id)
        except RecordNotFoundError as exc:
            raise MaterialNotFound(f"Material {material_id!r} not found") from exc

    def assignments_for(self, task_id: str) -> List[TaskMaterialAssignment]:
        return [
            assignment for assignment in self._assignments if assignment.task_id == task_id
        ]

    def assign(self, task_id: str, material_id: str, quantity: float) -> TaskMaterialAssignment:
        if task_id not in self._tasks:
            raise TaskNotFound(f"Task {task_id!r} not found")
        self.get_material(material_id)
        if quantity < 0:
            raise InvalidQuantity("Assigned material quantity must not be negative")
        if any(a.material_id == material_id for a in self.assignments_for(task_id)):
            raise MaterialAlreadyAssigned("Material already assigned to this task")
        assignment = TaskMaterialAssignment(
            id=str(uuid4()), task_id=task_id, material_id=material_id, quantity=quantity
        )
        self._assignments.add(assignment.id, assignment)
        return assignment

    def consume(self, task_id: str, quantity: float) -> List[LowStockWarning]:
        """Debit all assigned materials for ``quantity`` units, or none of them."""

        try:
            task = self._tasks.get(task_id)
        except RecordNotFoundError as exc:
            raise TaskNotFound(f"Task {task_id!r} not found") from exc

        planned: List[Tuple[Material, float]] = []
        for assignment in self.assignments_for(task_id):
            material = self.get_material(assignment.material_id)
            if task.total_quantity > 0:
                consumption = assignment.quantity / task.total_quantity * quantity
            else:
                consumption = 0.0
            new_stock = material.current_stock - consumption
            if new_stock < 0:
                raise InsufficientStock(
                    f"Insufficient stock for {material.name}: need {consumption:g} "
                    f"{material.unit}, have {material.current_stock:g}"
                )
            planned.append((material, new_stock))

        warnings: List[LowStockWarning] = []
        for material, new_stock in planned:
            material.current_stock = new_stock
            self._materials.upsert(material.id, material)
            if material.is_low:
                logger.warning(
                    f"{material.name}: stock below minimum "
                    f"({material.current_stock:g} {material.unit})"
                )
                warnings.append(
                    LowStockWarning(
                        material_id=material.id,
                        material_name=material.name,
                        current_stock=material.current_stock,
                        unit=material.unit,
                    )
                )
        return warnings

    def low_stock_materials(self) -> List[Material]:
        low = [material for material in self._materials if material.is_low]
        low.sort(key=lambda material: material.current_stock)
        return low


__all__ = ["MaterialConsumptionLedger"]
