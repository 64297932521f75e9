from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Generator, List, Mapping, Tuple

import pytest
from fastapi.testclient import TestClient

from production_tracking import (
    Machine,
    Order,
    Priority,
    ProductionService,
    ProductionTask,
    UserRole,
    Worker,
)
from production_tracking.web.app import create_app


class ManualClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def notify(self, topic: str, payload: Mapping[str, Any]) -> None:
        self.events.append((topic, dict(payload)))

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.events]


@dataclass
class ShopFloor:
    machine: Machine
    operator: Worker
    colleague: Worker
    manager: Worker
    order: Order
    task_a: ProductionTask
    task_b: ProductionTask


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2026, 3, 2, 7, 0))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def service(clock: ManualClock, sink: RecordingSink) -> ProductionService:
    return ProductionService(notifier=sink, clock=clock)


@pytest.fixture
def floor(service: ProductionService, clock: ManualClock) -> ShopFloor:
    """One machine, three workers and order O with task A (100) and task B (50)."""
    machine = service.register_machine("Hermle C 42 U", efficiency_norm=10)
    operator = service.register_worker("Markus", "Schneider")
    colleague = service.register_worker("Aylin", "Demir")
    manager = service.register_worker("Sabine", "Hartmann", role=UserRole.MANAGER)
    order = service.create_order(
        "Spannvorrichtung SV-200", clock() + timedelta(days=7), priority=Priority.HIGH
    )
    task_a = service.add_task(order.id, machine.id, "Fräsen", 100)
    task_b = service.add_task(order.id, machine.id, "Entgraten", 50)
    return ShopFloor(
        machine=machine,
        operator=operator,
        colleague=colleague,
        manager=manager,
        order=service.orders.get(order.id),
        task_a=task_a,
        task_b=task_b,
    )


@pytest.fixture
def client(tmp_path, clock: ManualClock) -> Generator[TestClient, None, None]:
    app = create_app(str(tmp_path / "tracking.sqlite3"), clock=clock)
    with TestClient(app) as c:
        yield c
