from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from production_tracking import MachineStatus, OrderStatus, Priority, TaskStatus
from production_tracking.errors import (
    ActiveSessionConflict,
    InvalidQuantity,
    MachineUnavailable,
    SessionAlreadyEnded,
    SessionNotFound,
    TaskNotFound,
)
from production_tracking.sessions import SYSTEM_ACTOR


class TestStartSession:
    def test_start_moves_task_and_order_in_progress(self, service, floor, clock):
        session = service.start_session(floor.task_a.id, floor.operator.id)

        assert session.start_time == clock()
        assert session.is_open
        assert service.tasks.get(floor.task_a.id).status == TaskStatus.IN_PROGRESS
        assert service.tasks.get(floor.task_b.id).status == TaskStatus.PENDING
        assert service.orders.get(floor.order.id).status == OrderStatus.IN_PROGRESS
        assert service.get_active_session(floor.operator.id).id == session.id

    def test_queued_order_moves_in_progress(self, service, floor):
        service.queue_order(floor.order.id)

        service.start_session(floor.task_a.id, floor.operator.id)

        assert service.orders.get(floor.order.id).status == OrderStatus.IN_PROGRESS

    def test_second_open_session_is_rejected(self, service, floor):
        service.start_session(floor.task_a.id, floor.operator.id)

        with pytest.raises(ActiveSessionConflict):
            service.start_session(floor.task_b.id, floor.operator.id)

        open_sessions = [s for s in service.sessions if s.is_open]
        assert len(open_sessions) == 1

    def test_other_users_can_work_in_parallel(self, service, floor):
        service.start_session(floor.task_a.id, floor.operator.id)
        service.start_session(floor.task_a.id, floor.colleague.id)

        assert len(service.sessions_for_task(floor.task_a.id)) == 2

    @pytest.mark.parametrize(
        "status", [MachineStatus.REPAIR, MachineStatus.REQUIRES_ATTENTION]
    )
    def test_blocked_machine_rejects_start(self, service, floor, status):
        service.set_machine_status(floor.machine.id, status)

        with pytest.raises(MachineUnavailable):
            service.start_session(floor.task_a.id, floor.operator.id)

        assert len(service.sessions) == 0
        assert len(service.shifts) == 0
        assert service.tasks.get(floor.task_a.id).status == TaskStatus.PENDING

    def test_idle_machine_accepts_start(self, service, floor):
        service.set_machine_status(floor.machine.id, MachineStatus.IDLE)

        session = service.start_session(floor.task_a.id, floor.operator.id)

        assert session.is_open

    def test_unknown_task(self, service, floor):
        with pytest.raises(TaskNotFound):
            service.start_session("missing", floor.operator.id)

    def test_start_clocks_in_on_todays_shift(self, service, floor, clock):
        service.plan_shift(floor.operator.id, clock().date(), datetime(2026, 3, 2, 6, 30))

        service.start_session(floor.task_a.id, floor.operator.id)

        shift = service.current_shift(floor.operator.id)
        assert shift.time_in == datetime(2026, 3, 2, 7, 0)
        assert shift.is_late is True

    def test_earliest_clock_in_wins(self, service, floor, clock):
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=2)
        service.end_session(session.id, 10, 0)
        clock.advance(minutes=30)
        service.start_session(floor.task_a.id, floor.operator.id)

        shift = service.current_shift(floor.operator.id)
        assert shift.time_in == datetime(2026, 3, 2, 7, 0)
        assert len(service.shifts) == 1

    def test_start_publishes_notification(self, service, floor, sink):
        service.start_session(floor.task_a.id, floor.operator.id)

        assert "session.started" in sink.topics()
        assert "order.status_changed" in sink.topics()

    def test_concurrent_starts_leave_one_open_session(self, service, floor):
        tasks = [
            service.add_task(floor.order.id, floor.machine.id, f"Operation {i}", 10)
            for i in range(8)
        ]
        barrier = threading.Barrier(len(tasks))
        started, conflicts = [], []

        def worker(task_id):
            barrier.wait()
            try:
                started.append(service.start_session(task_id, floor.operator.id))
            except ActiveSessionConflict:
                conflicts.append(task_id)

        threads = [threading.Thread(target=worker, args=(task.id,)) for task in tasks]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(started) == 1
        assert len(conflicts) == len(tasks) - 1
        assert sum(1 for s in service.sessions if s.is_open) == 1


class TestEndSession:
    def test_round_trip_completes_task(self, service, floor, clock):
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=3)

        outcome = service.end_session(session.id, 100, 0)

        assert outcome.session.end_time == clock()
        assert outcome.task.status == TaskStatus.COMPLETED
        assert outcome.material_error is None
        assert service.get_active_session(floor.operator.id) is None

    def test_two_task_order_scenario(self, service, floor, clock):
        """Task A finished while B is pending leaves the order partially ready."""
        session = service.start_session(floor.task_a.id, floor.operator.id)
        assert service.orders.get(floor.order.id).status == OrderStatus.IN_PROGRESS

        clock.advance(hours=4)
        outcome = service.end_session(session.id, 100, 0)

        assert outcome.task.status == TaskStatus.COMPLETED
        assert service.tasks.get(floor.task_b.id).status == TaskStatus.PENDING
        assert outcome.order.status == OrderStatus.PARTIALLY_READY

        session = service.start_session(floor.task_b.id, floor.operator.id)
        clock.advance(hours=2)
        outcome = service.end_session(session.id, 50, 0)

        assert outcome.order.status == OrderStatus.READY
        assert service.order_completion(floor.order.id) == 100

    def test_over_production_is_accepted(self, service, floor, clock):
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=1)

        outcome = service.end_session(session.id, 150, 3)

        assert outcome.task.status == TaskStatus.COMPLETED
        assert outcome.task.completed_quantity == 150
        assert outcome.task.defect_quantity == 3

    def test_partial_production_keeps_task_in_progress(self, service, floor, clock):
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=1)

        outcome = service.end_session(session.id, 40, 2)

        assert outcome.task.status == TaskStatus.IN_PROGRESS
        assert outcome.task.completed_quantity == 40
        assert outcome.order.status == OrderStatus.IN_PROGRESS

    def test_ending_twice_fails(self, service, floor):
        session = service.start_session(floor.task_a.id, floor.operator.id)
        service.end_session(session.id, 10, 0)

        with pytest.raises(SessionAlreadyEnded):
            service.end_session(session.id, 10, 0)

        assert service.tasks.get(floor.task_a.id).completed_quantity == 10

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFound):
            service.end_session("missing", 1, 0)

    def test_negative_quantity_is_rejected(self, service, floor):
        session = service.start_session(floor.task_a.id, floor.operator.id)

        with pytest.raises(InvalidQuantity):
            service.end_session(session.id, -1, 0)

        assert service.get_active_session(floor.operator.id).id == session.id

    def test_latest_clock_out_wins(self, service, floor, clock):
        first = service.start_session(floor.task_a.id, floor.operator.id)
        clock.set(datetime(2026, 3, 2, 9, 0))
        service.end_session(first.id, 10, 0)
        clock.set(datetime(2026, 3, 2, 9, 30))
        second = service.start_session(floor.task_a.id, floor.operator.id)
        clock.set(datetime(2026, 3, 2, 11, 0))
        service.end_session(second.id, 10, 0)

        shift = service.current_shift(floor.operator.id)
        assert shift.time_in == datetime(2026, 3, 2, 7, 0)
        assert shift.time_out == datetime(2026, 3, 2, 11, 0)

    def test_overnight_session_closes_the_shift_it_started_in(self, service, floor, clock):
        clock.set(datetime(2026, 3, 2, 22, 0))
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.set(datetime(2026, 3, 3, 2, 0))

        service.end_session(session.id, 20, 0)

        assert len(service.shifts) == 1
        shift = service.shifts.list()[0]
        assert shift.day.isoformat() == "2026-03-02"
        assert shift.time_out == datetime(2026, 3, 3, 2, 0)

    def test_insufficient_stock_does_not_abort_session_end(self, service, floor, clock):
        material = service.register_material(
            "Rundstahl 42CrMo4", "kg", current_stock=3, min_stock=5
        )
        service.assign_material_to_task(floor.task_a.id, material.id, 10)
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=2)

        outcome = service.end_session(session.id, 50, 0)

        assert outcome.material_error is not None
        assert outcome.warnings == []
        assert service.materials.get(material.id).current_stock == 3
        task = service.tasks.get(floor.task_a.id)
        assert task.completed_quantity == 50
        assert task.status == TaskStatus.IN_PROGRESS
        assert service.orders.get(floor.order.id).status == OrderStatus.IN_PROGRESS
        assert service.get_active_session(floor.operator.id) is None

    def test_end_publishes_low_stock(self, service, floor, sink, clock):
        material = service.register_material(
            "Stahlblech S235", "m²", current_stock=12, min_stock=5
        )
        service.assign_material_to_task(floor.task_a.id, material.id, 10)
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=2)

        outcome = service.end_session(session.id, 70, 0)

        assert service.materials.get(material.id).current_stock == pytest.approx(5)
        assert [w.material_name for w in outcome.warnings] == ["Stahlblech S235"]
        assert "session.ended" in sink.topics()
        assert "material.low_stock" in sink.topics()

    def test_failing_sink_does_not_break_session(self, service, floor, sink):
        def explode(topic, payload):
            raise RuntimeError("broker down")

        sink.notify = explode
        session = service.start_session(floor.task_a.id, floor.operator.id)
        outcome = service.end_session(session.id, 100, 0)

        assert outcome.task.status == TaskStatus.COMPLETED


class TestSessionQueries:
    def test_sessions_for_user_in_window(self, service, floor, clock):
        first = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=1)
        service.end_session(first.id, 5, 0)
        clock.advance(hours=1)
        second = service.start_session(floor.task_b.id, floor.operator.id)
        clock.advance(hours=1)
        service.end_session(second.id, 5, 0)
        service.start_session(floor.task_b.id, floor.operator.id)

        sessions = service.sessions_for_user(
            floor.operator.id, datetime(2026, 3, 2), datetime(2026, 3, 3)
        )

        assert [s.id for s in sessions] == [second.id, first.id]


class TestAvailableTasks:
    def test_most_urgent_order_comes_first(self, service, floor, clock):
        critical = service.create_order(
            "Greiferbacken", clock() + timedelta(days=14), priority=Priority.CRITICAL
        )
        sooner = service.create_order(
            "Lagerdeckel", clock() + timedelta(days=5), priority=Priority.HIGH
        )
        routine = service.create_order("Distanzhülsen", clock() + timedelta(days=2))
        task_c = service.add_task(critical.id, floor.machine.id, "Drehen", 10)
        task_e = service.add_task(sooner.id, floor.machine.id, "Bohren", 10)
        task_d = service.add_task(routine.id, floor.machine.id, "Sägen", 10)

        available = service.available_tasks()

        assert [entry.task.id for entry in available] == [
            task_c.id,
            task_e.id,
            floor.task_a.id,
            floor.task_b.id,
            task_d.id,
        ]
        assert available[0].order_title == "Greiferbacken"
        assert available[0].machine_name == "Hermle C 42 U"

    def test_blocked_machines_and_finished_tasks_are_left_out(
        self, service, floor, clock
    ):
        lathe = service.register_machine("DMG CTX 510", efficiency_norm=6)
        service.add_task(floor.order.id, lathe.id, "Drehen", 20)
        service.set_machine_status(lathe.id, MachineStatus.REPAIR)
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=2)
        service.end_session(session.id, 100, 0)
        service.start_session(floor.task_b.id, floor.colleague.id)

        available = service.available_tasks()

        assert [entry.task.id for entry in available] == [floor.task_b.id]
        assert available[0].task.status == TaskStatus.IN_PROGRESS

    def test_assignment_does_not_restrict_the_list(self, service, floor):
        service.add_task(
            floor.order.id,
            floor.machine.id,
            "Härten",
            5,
            assigned_worker_ids=[floor.colleague.id],
        )

        assert len(service.available_tasks()) == 3


class TestForcedClose:
    def test_force_close_books_nothing(self, service, floor, sink, clock):
        session = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=5)

        outcome = service.force_close_session(
            session.id, floor.manager.id, "forgot to sign off"
        )

        assert outcome.session.end_time == clock()
        assert outcome.session.closed_by == floor.manager.id
        assert outcome.session.close_reason == "forgot to sign off"
        assert outcome.task.completed_quantity == 0
        assert "session.force_closed" in sink.topics()
        assert service.start_session(floor.task_b.id, floor.operator.id).is_open

    def test_idle_sessions_are_reaped(self, service, floor, clock):
        stale = service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=10)
        fresh = service.start_session(floor.task_a.id, floor.colleague.id)
        clock.advance(hours=3)

        closed = service.close_idle_sessions()

        assert [s.id for s in closed] == [stale.id]
        assert closed[0].closed_by == SYSTEM_ACTOR
        assert service.get_active_session(floor.colleague.id).id == fresh.id
        assert service.get_active_session(floor.operator.id) is None

    def test_idle_threshold_can_be_overridden(self, service, floor, clock):
        service.start_session(floor.task_a.id, floor.operator.id)
        clock.advance(hours=2)

        assert service.close_idle_sessions(max_open_hours=1)
        assert service.get_active_session(floor.operator.id) is None
