"""FastAPI-based JSON interface for the tracking engine.

Authentication happens in front of this app; the acting user is passed in
the request body or path.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..domain import MachineStatus, Priority, QRPointType, UserRole
from ..errors import TrackingError
from ..options import TrackingOptions
from ..repository import RepositoryError
from ..services import ProductionService
from ..storage import TrackingDatabase

logger = logging.getLogger(__name__)


class StartSessionRequest(BaseModel):
    task_id: str
    user_id: str


class EndSessionRequest(BaseModel):
    quantity_produced: float = Field(ge=0)
    defect_quantity: float = Field(default=0, ge=0)


class ForceCloseRequest(BaseModel):
    actor_id: str
    reason: str = ""


class ScanRequest(BaseModel):
    user_id: str
    qr_hash: str


class UserRequest(BaseModel):
    user_id: str


class PlanShiftRequest(BaseModel):
    user_id: str
    day: date
    planned_start: Optional[datetime] = None


def create_app(
    database_path: str = "production_tracking.sqlite3",
    *,
    options: Optional[TrackingOptions] = None,
    seed_demo: bool = False,
    clock: Callable[[], datetime] = datetime.now,
) -> FastAPI:
    database = TrackingDatabase(database_path)
    service = ProductionService.from_database(database, options=options, clock=clock)
    if seed_demo:
        ensure_demo_data(service)

    app = FastAPI(title="Production Tracking")
    app.state.tracking_service = service
    app.state.database = database

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        database.close()

    @app.exception_handler(TrackingError)
    async def tracking_error_handler(request: Request, exc: TrackingError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.kind, "message": str(exc)},
        )

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError):
        logger.error(f"Persistence failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "InternalError", "message": "Internal persistence failure"},
        )

    def tracking(request: Request) -> ProductionService:
        return request.app.state.tracking_service

    @app.get("/")
    async def overview(request: Request):
        service = tracking(request)
        snapshot = service.get_workload_snapshot()
        with service.unit_of_work.reading():
            counts = {
                "machines": len(service.machines),
                "orders": len(service.orders),
                "open_sessions": sum(1 for session in service.sessions if session.is_open),
                "low_stock": [material.name for material in service.low_stock_materials()],
            }
        return {**counts, "workload": snapshot.summary}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    @app.post("/sessions", status_code=201)
    async def start_session(payload: StartSessionRequest, request: Request):
        return tracking(request).start_session(payload.task_id, payload.user_id)

    @app.post("/sessions/close-idle")
    async def close_idle_sessions(request: Request, max_open_hours: Optional[float] = None):
        return tracking(request).close_idle_sessions(max_open_hours)

    @app.post("/sessions/{session_id}/end")
    async def end_session(session_id: str, payload: EndSessionRequest, request: Request):
        return tracking(request).end_session(
            session_id, payload.quantity_produced, payload.defect_quantity
        )

    @app.post("/sessions/{session_id}/force-close")
    async def force_close_session(
        session_id: str, payload: ForceCloseRequest, request: Request
    ):
        return tracking(request).force_close_session(
            session_id, payload.actor_id, payload.reason
        )

    @app.get("/users/{user_id}/active-session")
    async def active_session(user_id: str, request: Request):
        return {"session": tracking(request).get_active_session(user_id)}

    @app.get("/users/{user_id}/sessions")
    async def user_sessions(user_id: str, start: datetime, end: datetime, request: Request):
        return tracking(request).sessions_for_user(user_id, start, end)

    @app.get("/tasks/available")
    async def available_tasks(request: Request):
        return tracking(request).available_tasks()

    @app.get("/tasks/{task_id}/sessions")
    async def task_sessions(task_id: str, request: Request):
        return tracking(request).sessions_for_task(task_id)

    @app.get("/tasks/{task_id}/contribution")
    async def task_contribution(task_id: str, request: Request):
        return tracking(request).task_contribution(task_id)

    # ------------------------------------------------------------------
    # Shifts
    # ------------------------------------------------------------------
    @app.post("/shifts/scan")
    async def scan_clock(payload: ScanRequest, request: Request):
        return tracking(request).scan_clock(payload.user_id, payload.qr_hash)

    @app.post("/shifts/lunch/start")
    async def start_lunch(payload: UserRequest, request: Request):
        return tracking(request).start_lunch(payload.user_id)

    @app.post("/shifts/lunch/end")
    async def end_lunch(payload: UserRequest, request: Request):
        return tracking(request).end_lunch(payload.user_id)

    @app.post("/shifts/lunch/decline")
    async def mark_no_lunch(payload: UserRequest, request: Request):
        return tracking(request).mark_no_lunch(payload.user_id)

    @app.post("/shifts/plan")
    async def plan_shift(payload: PlanShiftRequest, request: Request):
        return tracking(request).plan_shift(
            payload.user_id, payload.day, payload.planned_start
        )

    @app.get("/shifts/calendar")
    async def shift_calendar(start_day: date, end_day: date, request: Request):
        return tracking(request).shift_calendar(start_day, end_day)

    @app.get("/users/{user_id}/shift")
    async def current_shift(user_id: str, request: Request):
        return {"shift": tracking(request).current_shift(user_id)}

    @app.delete("/shifts/{shift_id}", status_code=204)
    async def delete_shift(
        shift_id: str, actor_id: str, actor_role: UserRole, request: Request
    ):
        tracking(request).delete_shift(shift_id, actor_id, actor_role)

    # ------------------------------------------------------------------
    # Orders and materials
    # ------------------------------------------------------------------
    @app.post("/orders/{order_id}/queue")
    async def queue_order(order_id: str, request: Request):
        return tracking(request).queue_order(order_id)

    @app.post("/orders/{order_id}/issue")
    async def issue_order(order_id: str, request: Request):
        return tracking(request).issue_order(order_id)

    @app.get("/orders/{order_id}/completion")
    async def order_completion(order_id: str, request: Request):
        return {
            "order_id": order_id,
            "completion": tracking(request).order_completion(order_id),
        }

    @app.get("/materials/low-stock")
    async def low_stock(request: Request):
        return tracking(request).low_stock_materials()

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------
    @app.get("/analytics/workload")
    async def workload(request: Request):
        return tracking(request).get_workload_snapshot()

    @app.get("/analytics/statistics")
    async def statistics(
        request: Request,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ):
        return tracking(request).get_production_statistics(start, end)

    @app.get("/analytics/efficiency")
    async def employees_efficiency(start: datetime, end: datetime, request: Request):
        return tracking(request).employees_efficiency(start, end)

    @app.get("/analytics/efficiency/{user_id}")
    async def employee_efficiency(
        user_id: str, start: datetime, end: datetime, request: Request
    ):
        return tracking(request).get_employee_efficiency(user_id, start, end)

    return app


def ensure_demo_data(service: ProductionService) -> None:
    if len(service.machines) > 0:
        return

    lathe = service.register_machine(
        "DMG MORI CTX beta 800", efficiency_norm=12, quantity=2
    )
    mill = service.register_machine("Hermle C 42 U", efficiency_norm=8)
    laser = service.register_machine(
        "Trumpf TruLaser 3030", efficiency_norm=30, status=MachineStatus.IDLE
    )

    workers = [
        service.register_worker("Markus", "Schneider"),
        service.register_worker("Aylin", "Demir"),
        service.register_worker("Jonas", "Weber"),
    ]
    service.register_worker("Sabine", "Hartmann", role=UserRole.MANAGER)

    deadline = service.clock() + timedelta(days=14)
    order = service.create_order(
        "Spannvorrichtung SV-200", deadline, priority=Priority.HIGH
    )
    blanks = service.add_task(order.id, laser.id, "Zuschnitt", 120)
    shafts = service.add_task(
        order.id,
        lathe.id,
        "Wellen drehen",
        60,
        assigned_worker_ids=[workers[0].id],
    )
    service.add_task(order.id, mill.id, "Gehäuse fräsen", 40)

    sheet = service.register_material(
        "Stahlblech S235 3mm", "m²", current_stock=80, min_stock=15
    )
    bar = service.register_material(
        "Rundstahl 42CrMo4 Ø40", "m", current_stock=25, min_stock=5
    )
    service.assign_material_to_task(blanks.id, sheet.id, 36)
    service.assign_material_to_task(shafts.id, bar.id, 18)

    service.create_order(
        "Ersatzteilpaket Kunde Müller",
        deadline + timedelta(days=7),
        priority=Priority.LOW,
    )
    service.register_qr_point("Haupteingang Halle A", type=QRPointType.ENTRANCE)
    service.register_qr_point("Kantine", type=QRPointType.LUNCH)


__all__ = ["create_app", "ensure_demo_data"]
