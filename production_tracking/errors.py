"""Domain errors raised by the tracking engine.

Every error carries the HTTP-equivalent ``status_code`` the web layer answers
with. ``kind`` is the class name and is what clients switch on.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Base class for rule violations surfaced to the caller."""

    status_code = 400

    @property
    def kind(self) -> str:
        return type(self).__name__


class ActiveSessionConflict(TrackingError):
    """The user already has an open work session."""

    status_code = 409


class SessionNotFound(TrackingError):
    status_code = 404


class SessionAlreadyEnded(TrackingError):
    status_code = 409


class MachineUnavailable(TrackingError):
    """The task's machine is under repair or requires attention."""

    status_code = 409


class MachineNotFound(TrackingError):
    status_code = 404


class TaskNotFound(TrackingError):
    status_code = 404


class OrderNotFound(TrackingError):
    status_code = 404


class ShiftNotFound(TrackingError):
    status_code = 404


class ShiftNotDeletable(TrackingError):
    """The shift has started already or belongs to someone else."""

    status_code = 403


class LunchAlreadyStarted(TrackingError):
    status_code = 409


class LunchNotStarted(TrackingError):
    status_code = 409


class InsufficientStock(TrackingError):
    status_code = 409


class MaterialNotFound(TrackingError):
    status_code = 404


class MaterialAlreadyAssigned(TrackingError):
    status_code = 409


class QRPointNotFound(TrackingError):
    status_code = 404


class InvalidScanPoint(TrackingError):
    """Lunch points are handled by the lunch operations, not the clock."""


class InvalidQuantity(TrackingError):
    status_code = 422


class InvalidStatusTransition(TrackingError):
    status_code = 409


__all__ = [
    "TrackingError",
    "ActiveSessionConflict",
    "SessionNotFound",
    "SessionAlreadyEnded",
    "MachineUnavailable",
    "MachineNotFound",
    "TaskNotFound",
    "OrderNotFound",
    "ShiftNotFound",
    "ShiftNotDeletable",
    "LunchAlreadyStarted",
    "LunchNotStarted",
    "InsufficientStock",
    "MaterialNotFound",
    "MaterialAlreadyAssigned",
    "QRPointNotFound",
    "InvalidScanPoint",
    "InvalidQuantity",
    "InvalidStatusTransition",
]
