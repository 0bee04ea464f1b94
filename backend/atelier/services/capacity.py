"""
Seat accounting for lessons.

Three classroom modes are supported:

- session_based: one shared pool per lesson
- time_dual: a morning and an afternoon block, each up to total_capacity;
  a booking spanning the break occupies a seat in both
- time_full: one all-day pool plus a sub-pool for first-time students

A time_dual lesson whose block times are missing or unparseable is counted
as session_based. A time_full lesson reads no window times when counting,
so malformed ones change nothing; a blank or zero beginner_capacity leaves
only the overall pool, which is the session_based calculation.
"""

import logging
import re
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional

from ..models.enums import ClassroomType, ReservationStatus
from ..models.lesson import LessonModel
from ..models.reservation import ReservationModel
from ..models.results import AvailableSlots

logger = logging.getLogger(__name__)

MIN_RESERVATION_MINUTES = 120

OCCUPYING_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED)

_TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})(?::\d{2})?")


def parse_time_minutes(value) -> Optional[int]:
    """Minutes after midnight of an ``HH:MM`` (or ``HH:MM:SS``) value, None if malformed."""
    if value is None:
        return None
    match = _TIME_PATTERN.fullmatch(str(value).strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


class Block(str, Enum):
    """Where a booking sits in a two-block lesson."""
    FIRST = "first"
    SECOND = "second"
    SPANNING = "spanning"


class TimeWindow(NamedTuple):
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class CapacityCalculator:
    """
    Remaining-seat arithmetic over a lesson and its reservations.

    Only Confirmed and Completed reservations occupy seats. Reservations of
    other lessons in the passed collection are ignored.
    """

    def effective_type(self, lesson: LessonModel) -> ClassroomType:
        """Classroom type used for counting, after the malformed-config fallback."""
        if lesson.classroom_type != ClassroomType.TIME_DUAL:
            return lesson.classroom_type

        first_end = parse_time_minutes(lesson.first_end)
        second_start = parse_time_minutes(lesson.second_start)
        if first_end is None or second_start is None or second_start < first_end:
            logger.warning(
                f"Lesson {lesson.lesson_id} has malformed block times "
                f"(first_end={lesson.first_end!r}, second_start={lesson.second_start!r}); "
                f"counting it as session based"
            )
            return ClassroomType.SESSION_BASED
        return ClassroomType.TIME_DUAL

    def classify(self, lesson: LessonModel, window: TimeWindow) -> Block:
        """
        Place a booking window in a two-block lesson.

        First block iff it ends by ``first_end``, second iff it starts at or
        after ``second_start``; anything else, unparseable times included,
        spans both.
        """
        first_end = parse_time_minutes(lesson.first_end)
        second_start = parse_time_minutes(lesson.second_start)
        start = parse_time_minutes(window.start_time)
        end = parse_time_minutes(window.end_time)

        if end is not None and first_end is not None and end <= first_end:
            return Block.FIRST
        if start is not None and second_start is not None and start >= second_start:
            return Block.SECOND
        return Block.SPANNING

    def occupying(
        self,
        lesson: LessonModel,
        reservations: Iterable[ReservationModel],
        exclude_reservation_id: Optional[str] = None
    ) -> List[ReservationModel]:
        return [
            r for r in reservations
            if r.lesson_id == lesson.lesson_id
            and r.status in OCCUPYING_STATUSES
            and r.reservation_id != exclude_reservation_id
        ]

    def _block_remaining(self, lesson: LessonModel, occupying: List[ReservationModel]):
        counts = {block: 0 for block in Block}
        for reservation in occupying:
            counts[self.classify(lesson, TimeWindow(reservation.start_time, reservation.end_time))] += 1

        total = lesson.total_capacity
        first = max(0, total - counts[Block.FIRST] - counts[Block.SPANNING])
        second = max(0, total - counts[Block.SECOND] - counts[Block.SPANNING])
        return first, second

    def remaining(
        self,
        lesson: LessonModel,
        reservations: Iterable[ReservationModel],
        window: Optional[TimeWindow] = None,
        exclude_reservation_id: Optional[str] = None
    ) -> int:
        """
        Seats left for ``window``.

        For two-block lessons a window inside one block gets that block's
        seats, a spanning window (or none) the smaller of the two. Other
        modes ignore the window.
        """
        occupying = self.occupying(lesson, reservations, exclude_reservation_id)

        if self.effective_type(lesson) != ClassroomType.TIME_DUAL:
            return max(0, lesson.total_capacity - len(occupying))

        first, second = self._block_remaining(lesson, occupying)
        block = self.classify(lesson, window) if window is not None else Block.SPANNING
        if block == Block.FIRST:
            return first
        if block == Block.SECOND:
            return second
        return min(first, second)

    def beginner_remaining(
        self,
        lesson: LessonModel,
        reservations: Iterable[ReservationModel],
        exclude_reservation_id: Optional[str] = None
    ) -> Optional[int]:
        """Seats left for first-time students; None where the lesson has no beginner pool."""
        if self.effective_type(lesson) != ClassroomType.TIME_FULL or lesson.beginner_capacity <= 0:
            return None

        occupying = self.occupying(lesson, reservations, exclude_reservation_id)
        overall = max(0, lesson.total_capacity - len(occupying))
        beginners = sum(1 for r in occupying if r.first_lecture)
        return max(0, min(overall, lesson.beginner_capacity - beginners))

    def is_full(
        self,
        lesson: LessonModel,
        reservations: Iterable[ReservationModel],
        window: Optional[TimeWindow] = None,
        first_lecture: bool = False,
        exclude_reservation_id: Optional[str] = None
    ) -> bool:
        """
        Whether one more booking for ``window`` would exceed capacity.

        A first-time student in a time_full lesson also needs a beginner seat.
        """
        reservations = list(reservations)
        if self.remaining(lesson, reservations, window, exclude_reservation_id) <= 0:
            return True

        if first_lecture:
            beginner = self.beginner_remaining(lesson, reservations, exclude_reservation_id)
            if beginner is not None and beginner <= 0:
                return True
        return False

    def available_slots(self, lesson: LessonModel, reservations: Iterable[ReservationModel]) -> AvailableSlots:
        """Per-block, beginner and overall seats for display."""
        reservations = list(reservations)
        occupying = self.occupying(lesson, reservations)

        if self.effective_type(lesson) == ClassroomType.TIME_DUAL:
            first, second = self._block_remaining(lesson, occupying)
            return AvailableSlots(lesson_id=lesson.lesson_id, overall=min(first, second), first=first, second=second)

        return AvailableSlots(
            lesson_id=lesson.lesson_id,
            overall=max(0, lesson.total_capacity - len(occupying)),
            beginner=self.beginner_remaining(lesson, reservations),
        )


def check_reservation_window(lesson: LessonModel, window: TimeWindow) -> Optional[str]:
    """
    Validate a requested window against a time-based lesson.

    Returns:
        A message describing the problem, or None if the window is valid
    """
    start = parse_time_minutes(window.start_time)
    end = parse_time_minutes(window.end_time)
    if start is None or end is None:
        return "Start and end time are required for this classroom"
    if start >= end:
        return f"Start time {window.start_time} must be before end time {window.end_time}"
    if end - start < MIN_RESERVATION_MINUTES:
        return f"Reservations must be at least {MIN_RESERVATION_MINUTES} minutes"

    if lesson.classroom_type == ClassroomType.TIME_DUAL:
        break_start = parse_time_minutes(lesson.first_end)
        break_end = parse_time_minutes(lesson.second_start)
        if break_start is not None and break_end is not None:
            if break_start <= start < break_end:
                return f"Start time {window.start_time} falls in the break"
            if break_start < end <= break_end:
                return f"End time {window.end_time} falls in the break"
    return None
