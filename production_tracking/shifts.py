"""Daily attendance records: clock scans, session boundaries and lunch."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from .domain import LunchStatus, QRPoint, QRPointType, Shift, UserRole
from .errors import (
    InvalidScanPoint,
    LunchAlreadyStarted,
    LunchNotStarted,
    QRPointNotFound,
    ShiftNotDeletable,
    ShiftNotFound,
)
from .options import TrackingOptions
from .repository import InMemoryRepository, RecordNotFoundError

logger = logging.getLogger(__name__)


class ShiftTimekeeper:
    """Maintains one shift per worker and calendar day.

    The day of a timestamp is its local calendar date; that date together
    with the user id is the unique key of a shift.
    """

    def __init__(
        self,
        shifts: InMemoryRepository[Shift],
        qr_points: InMemoryRepository[QRPoint],
        *,
        options: Optional[TrackingOptions] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._shifts = shifts
        self._qr_points = qr_points
        self._options = options or TrackingOptions()
        self._clock = clock

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def find_shift(self, user_id: str, day: date) -> Optional[Shift]:
        for shift in self._shifts:
            if shift.user_id == user_id and shift.day == day:
                return shift
        return None

    def get_shift(self, shift_id: str) -> Shift:
        try:
            return self._shifts.get(shift_id)
        except RecordNotFoundError as exc:
            raise ShiftNotFound(f"Shift {shift_id!r} not found") from exc

    def current_shift(self, user_id: str) -> Optional[Shift]:
        return self.find_shift(user_id, self._clock().date())

    def ensure_shift(self, user_id: str, day: date) -> Shift:
        shift = self.find_shift(user_id, day)
        if shift is None:
            shift = Shift(id=str(uuid4()), user_id=user_id, day=day)
            self._shifts.add(shift.id, shift)
            logger.info(f"Auto-created shift for user {user_id} on {day.isoformat()}")
        return shift

    def plan_shift(
        self, user_id: str, day: date, planned_start: Optional[datetime]
    ) -> Shift:
        shift = self.ensure_shift(user_id, day)
        shift.planned_start = planned_start
        if shift.time_in is not None:
            shift.is_late = self._is_late(shift, shift.time_in)
        self._shifts.upsert(shift.id, shift)
        return shift

    def shift_calendar(self, start_day: date, end_day: date) -> Dict[str, List[Shift]]:
        calendar: Dict[str, List[Shift]] = {}
        shifts = sorted(
            (shift for shift in self._shifts if start_day <= shift.day <= end_day),
            key=lambda shift: (shift.day, shift.user_id),
        )
        for shift in shifts:
            calendar.setdefault(shift.day.isoformat(), []).append(shift)
        return calendar

    # ------------------------------------------------------------------
    # Clock in / out
    # ------------------------------------------------------------------
    def _is_late(self, shift: Shift, moment: datetime) -> bool:
        if shift.planned_start is None:
            return False
        grace = timedelta(minutes=self._options.late_grace_minutes)
        return moment > shift.planned_start + grace

    def _move_time_in(self, shift: Shift, moment: datetime) -> None:
        if shift.time_in is None or moment < shift.time_in:
            shift.time_in = moment
            shift.is_late = self._is_late(shift, moment)

    def register_clock_in(self, user_id: str, moment: datetime) -> Shift:
        """Session start hook: the earliest clock-in of the day wins."""

        shift = self.ensure_shift(user_id, moment.date())
        self._move_time_in(shift, moment)
        self._shifts.upsert(shift.id, shift)
        return shift

    def register_clock_out(
        self, user_id: str, started_at: datetime, moment: datetime
    ) -> Shift:
        """Session end hook on the shift the session started in.

        The latest clock-out of the day wins.
        """

        shift = self.ensure_shift(user_id, started_at.date())
        self._move_time_in(shift, started_at)
        if shift.time_out is None or moment > shift.time_out:
            shift.time_out = moment
            logger.info(f"Shift {shift.id} time out moved to {moment.isoformat()}")
        self._shifts.upsert(shift.id, shift)
        return shift

    def _find_qr_point(self, qr_hash: str) -> QRPoint:
        for point in self._qr_points:
            if point.hash == qr_hash:
                return point
        raise QRPointNotFound("Invalid QR code")

    def scan_clock(self, user_id: str, qr_hash: str) -> Shift:
        """Clock in on the first scan of the day, clock out on the second.

        Further scans leave the shift untouched.
        """

        point = self._find_qr_point(qr_hash)
        if point.type == QRPointType.LUNCH:
            raise InvalidScanPoint(
                "Lunch QR codes are processed through the lunch operations"
            )
        now = self._clock()
        shift = self.ensure_shift(user_id, now.date())
        if shift.time_in is not None and shift.time_out is None:
            shift.time_out = now
            logger.info(f"User {user_id} clocked out at {point.name}")
        elif shift.time_in is None:
            shift.time_in = now
            shift.is_late = self._is_late(shift, now)
            logger.info(
                f"User {user_id} clocked in at {point.name}"
                + (" (late)" if shift.is_late else "")
            )
        else:
            return shift
        self._shifts.upsert(shift.id, shift)
        return shift

    # ------------------------------------------------------------------
    # Lunch
    # ------------------------------------------------------------------
    def _todays_shift(self, user_id: str) -> Shift:
        shift = self.current_shift(user_id)
        if shift is None:
            raise ShiftNotFound(
                "Shift not found. Please scan QR code first to start your shift."
            )
        return shift

    def start_lunch(self, user_id: str) -> Shift:
        shift = self._todays_shift(user_id)
        if shift.lunch_status == LunchStatus.DECLINED:
            raise LunchAlreadyStarted("Lunch was declined for this shift")
        if shift.lunch_start is not None:
            raise LunchAlreadyStarted("Lunch already started")
        shift.lunch_start = self._clock()
        self._shifts.upsert(shift.id, shift)
        return shift

    def end_lunch(self, user_id: str) -> Shift:
        shift = self._todays_shift(user_id)
        if shift.lunch_status == LunchStatus.DECLINED or shift.lunch_start is None:
            raise LunchNotStarted("Lunch not started")
        lunch_end = self._clock()
        minutes = int((lunch_end - shift.lunch_start).total_seconds() // 60)
        allowance = self._options.lunch_allowance_minutes
        shift.lunch_end = lunch_end
        shift.lunch_status = LunchStatus.TAKEN
        shift.lunch_overtime = minutes - allowance if minutes > allowance else None
        self._shifts.upsert(shift.id, shift)
        return shift

    def mark_no_lunch(self, user_id: str) -> Shift:
        shift = self._todays_shift(user_id)
        shift.lunch_status = LunchStatus.DECLINED
        shift.lunch_start = None
        shift.lunch_end = None
        shift.lunch_overtime = None
        self._shifts.upsert(shift.id, shift)
        return shift

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------
    def delete_shift(self, shift_id: str, actor_id: str, actor_role: UserRole) -> None:
        shift = self.get_shift(shift_id)
        if shift.time_in is not None:
            raise ShiftNotDeletable("Cannot delete a shift that has already started")
        if actor_role not in self._options.privileged_roles and shift.user_id != actor_id:
            raise ShiftNotDeletable("You can only delete your own shifts")
        self._shifts.remove(shift.id)
        logger.info(f"Shift {shift.id} deleted by {actor_id}")


__all__ = ["ShiftTimekeeper"]
