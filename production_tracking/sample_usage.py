"""Demonstration script for the production tracking engine."""

from __future__ import annotations

from datetime import datetime, timedelta
from pprint import pprint

from . import MachineStatus, Priority, ProductionService


def main() -> None:
    tracking = ProductionService()

    # Stammdaten
    lathe = tracking.register_machine("DMG MORI CTX beta 800", efficiency_norm=12, quantity=2)
    mill = tracking.register_machine("Hermle C 42 U", efficiency_norm=8)
    grinder = tracking.register_machine("Jung J630", efficiency_norm=20)
    operator = tracking.register_worker("Markus", "Schneider")
    tracking.register_worker("Aylin", "Demir")

    order = tracking.create_order(
        "Spannvorrichtung SV-200",
        datetime.now() + timedelta(days=10),
        priority=Priority.HIGH,
    )
    turning = tracking.add_task(order.id, lathe.id, "Wellen drehen", 100)
    milling = tracking.add_task(order.id, mill.id, "Gehäuse fräsen", 50)
    bar = tracking.register_material("Rundstahl 42CrMo4 Ø40", "m", current_stock=30, min_stock=25)
    tracking.assign_material_to_task(turning.id, bar.id, 10)
    entrance = tracking.register_qr_point("Haupteingang Halle A")

    # Arbeitsbeginn
    shift = tracking.scan_clock(operator.id, entrance.hash)
    print(f"Eingestempelt: {shift.time_in:%H:%M}")

    session = tracking.start_session(turning.id, operator.id)
    print(f"Auftrag {order.title}: {tracking.orders.get(order.id).status.value}")

    outcome = tracking.end_session(session.id, quantity_produced=100, defect_quantity=2)
    print(f"Arbeitsgang {outcome.task.operation}: {outcome.task.status.value}")
    print(f"Auftrag {outcome.order.title}: {outcome.order.status.value}")
    for warning in outcome.warnings:
        print(
            f" - Mindestbestand unterschritten: {warning.material_name} "
            f"{warning.current_stock:.1f} {warning.unit}"
        )
    print(f"Fertigstellung: {tracking.order_completion(order.id)}%")

    # Maschinenstörung und Auslastung
    tracking.set_machine_status(grinder.id, MachineStatus.REPAIR)
    snapshot = tracking.get_workload_snapshot()
    print("\nAuslastung")
    for machine in snapshot.machines:
        print(
            f" - {machine.machine_name}: {machine.total_remaining_quantity:.0f} Stk., "
            f"{machine.estimated_hours_with_machines_and_workers:.1f} h"
        )
    print(f"Restaufwand gesamt: {snapshot.summary.total_estimated_hours:.1f} h")

    remaining = tracking.start_session(milling.id, operator.id)
    tracking.end_session(remaining.id, quantity_produced=50)
    print(f"\nAuftrag nach letztem Arbeitsgang: {tracking.orders.get(order.id).status.value}")

    statistics = tracking.get_production_statistics()
    print("\nProduktionsstatistik")
    pprint(statistics.overall)


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
