from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from production_tracking import MachineStatus, QRPointType, UserRole
from production_tracking.web.app import create_app, ensure_demo_data


@pytest.fixture
def seeded(client):
    """Register a minimal shop floor through the service behind the app."""
    service = client.app.state.tracking_service
    machine = service.register_machine("Hermle C 42 U", efficiency_norm=10)
    operator = service.register_worker("Markus", "Schneider")
    order = service.create_order("SV-200", datetime(2026, 3, 20))
    task = service.add_task(order.id, machine.id, "Fräsen", 20)
    entrance = service.register_qr_point("Haupteingang")
    return {
        "service": service,
        "machine": machine,
        "operator": operator,
        "order": order,
        "task": task,
        "entrance": entrance,
    }


class TestSessionEndpoints:
    def test_start_and_end(self, client, seeded, clock):
        response = client.post(
            "/sessions",
            json={"task_id": seeded["task"].id, "user_id": seeded["operator"].id},
        )
        assert response.status_code == 201
        session_id = response.json()["id"]

        active = client.get(f"/users/{seeded['operator'].id}/active-session").json()
        assert active["session"]["id"] == session_id

        clock.advance(hours=2)
        response = client.post(
            f"/sessions/{session_id}/end",
            json={"quantity_produced": 20, "defect_quantity": 1},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["task"]["status"] == "COMPLETED"
        assert body["order"]["status"] == "READY"
        assert body["warnings"] == []

        completion = client.get(f"/orders/{seeded['order'].id}/completion").json()
        assert completion["completion"] == 100

    def test_conflict_is_reported_with_kind(self, client, seeded):
        payload = {"task_id": seeded["task"].id, "user_id": seeded["operator"].id}
        client.post("/sessions", json=payload)

        response = client.post("/sessions", json=payload)

        assert response.status_code == 409
        assert response.json()["error"] == "ActiveSessionConflict"

    def test_machine_under_repair(self, client, seeded):
        seeded["service"].set_machine_status(seeded["machine"].id, MachineStatus.REPAIR)

        response = client.post(
            "/sessions",
            json={"task_id": seeded["task"].id, "user_id": seeded["operator"].id},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "MachineUnavailable"

    def test_unknown_session(self, client):
        response = client.post("/sessions/missing/end", json={"quantity_produced": 1})

        assert response.status_code == 404
        assert response.json()["error"] == "SessionNotFound"

    def test_negative_quantity_fails_validation(self, client, seeded):
        session_id = client.post(
            "/sessions",
            json={"task_id": seeded["task"].id, "user_id": seeded["operator"].id},
        ).json()["id"]

        response = client.post(
            f"/sessions/{session_id}/end", json={"quantity_produced": -5}
        )

        assert response.status_code == 422

    def test_force_close(self, client, seeded):
        session_id = client.post(
            "/sessions",
            json={"task_id": seeded["task"].id, "user_id": seeded["operator"].id},
        ).json()["id"]

        response = client.post(
            f"/sessions/{session_id}/force-close",
            json={"actor_id": "manager-1", "reason": "Schichtende vergessen"},
        )

        assert response.status_code == 200
        assert response.json()["session"]["closed_by"] == "manager-1"
        assert client.get(
            f"/users/{seeded['operator'].id}/active-session"
        ).json() == {"session": None}

    def test_available_tasks(self, client, seeded):
        body = client.get("/tasks/available").json()

        assert [entry["task"]["id"] for entry in body] == [seeded["task"].id]
        assert body[0]["machine_name"] == "Hermle C 42 U"
        assert body[0]["order_title"] == "SV-200"

        seeded["service"].set_machine_status(seeded["machine"].id, MachineStatus.REPAIR)

        assert client.get("/tasks/available").json() == []


class TestShiftEndpoints:
    def test_scan_and_lunch(self, client, seeded, clock):
        user_id = seeded["operator"].id
        response = client.post(
            "/shifts/scan", json={"user_id": user_id, "qr_hash": seeded["entrance"].hash}
        )
        assert response.status_code == 200
        assert response.json()["time_in"] == clock().isoformat()

        clock.advance(hours=5)
        client.post("/shifts/lunch/start", json={"user_id": user_id})
        clock.advance(minutes=70)
        shift = client.post("/shifts/lunch/end", json={"user_id": user_id}).json()

        assert shift["lunch_status"] == "TAKEN"
        assert shift["lunch_overtime"] == 10

    def test_lunch_qr_point_is_rejected(self, client, seeded):
        canteen = seeded["service"].register_qr_point("Kantine", type=QRPointType.LUNCH)

        response = client.post(
            "/shifts/scan",
            json={"user_id": seeded["operator"].id, "qr_hash": canteen.hash},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidScanPoint"

    def test_lunch_without_shift(self, client, seeded):
        response = client.post("/shifts/lunch/start", json={"user_id": seeded["operator"].id})

        assert response.status_code == 404
        assert response.json()["error"] == "ShiftNotFound"

    def test_delete_rules(self, client, seeded, clock):
        user_id = seeded["operator"].id
        tomorrow = (clock() + timedelta(days=1)).date().isoformat()
        shift = client.post(
            "/shifts/plan", json={"user_id": user_id, "day": tomorrow}
        ).json()

        response = client.delete(
            f"/shifts/{shift['id']}",
            params={"actor_id": "someone-else", "actor_role": UserRole.EMPLOYEE.value},
        )
        assert response.status_code == 403

        response = client.delete(
            f"/shifts/{shift['id']}",
            params={"actor_id": user_id, "actor_role": UserRole.EMPLOYEE.value},
        )
        assert response.status_code == 204


class TestOrderAndAnalyticsEndpoints:
    def test_manual_transitions(self, client, seeded):
        order_id = seeded["order"].id

        assert client.post(f"/orders/{order_id}/queue").json()["status"] == "IN_QUEUE"
        response = client.post(f"/orders/{order_id}/issue")
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidStatusTransition"

    def test_workload(self, client, seeded):
        body = client.get("/analytics/workload").json()

        assert body["summary"]["available_workers_count"] == 1
        assert body["machines"][0]["tasks"][0]["remaining_quantity"] == 20
        assert body["machines"][0]["estimated_hours"] == pytest.approx(2)

    def test_statistics_and_efficiency(self, client, seeded, clock):
        user_id = seeded["operator"].id
        session_id = client.post(
            "/sessions", json={"task_id": seeded["task"].id, "user_id": user_id}
        ).json()["id"]
        clock.advance(hours=1)
        client.post(f"/sessions/{session_id}/end", json={"quantity_produced": 8})
        window = {"start": "2026-03-01T00:00:00", "end": "2026-03-31T00:00:00"}

        stats = client.get("/analytics/statistics", params=window).json()
        efficiency = client.get(f"/analytics/efficiency/{user_id}", params=window).json()
        ranking = client.get("/analytics/efficiency", params=window).json()

        assert stats["overall"]["efficiency"] == 80.0
        assert efficiency["efficiency"] == 80.0
        assert [entry["user_id"] for entry in ranking] == [user_id]

    def test_overview(self, client, seeded):
        body = client.get("/").json()

        assert body["machines"] == 1
        assert body["open_sessions"] == 0

        client.post(
            "/sessions",
            json={"task_id": seeded["task"].id, "user_id": seeded["operator"].id},
        )
        body = client.get("/").json()

        assert body["orders"] == 1
        assert body["open_sessions"] == 1
        assert body["low_stock"] == []


def test_demo_data_is_seeded_once(tmp_path):
    app = create_app(str(tmp_path / "demo.sqlite3"), seed_demo=True)
    with TestClient(app) as client:
        service = client.app.state.tracking_service
        ensure_demo_data(service)

        assert len(service.machines) == 3
        assert len(service.orders) == 2
        assert client.get("/materials/low-stock").json() == []
