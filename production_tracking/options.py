"""Tunable parameters of the tracking engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet

from .domain import UserRole


@dataclass(slots=True)
class TrackingOptions:
    """Fine-tuning parameters shared by the engine components."""

    late_grace_minutes: int = 15
    lunch_allowance_minutes: int = 60
    max_session_hours: float = 8.0
    idle_session_hours: float = 12.0
    eligible_worker_roles: FrozenSet[UserRole] = field(
        default_factory=lambda: frozenset({UserRole.EMPLOYEE})
    )
    privileged_roles: FrozenSet[UserRole] = field(
        default_factory=lambda: frozenset({UserRole.ADMIN, UserRole.MANAGER})
    )


__all__ = ["TrackingOptions"]
