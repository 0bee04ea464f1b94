"""
Waitlist notifications after a cancellation frees a seat.

The notifier only selects who to tell; it never changes a reservation.
Promotion is a separate confirm request that goes back through the
reservation transaction manager.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from .capacity import CapacityCalculator, TimeWindow
from ..cache.versioned import VersionedCache
from ..models.enums import DatasetKey, ReservationStatus
from ..models.lesson import LessonModel
from ..models.results import WaitlistNotificationEvent

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Delivery collaborator (e-mail, SMS, ...)."""

    async def deliver(self, event: WaitlistNotificationEvent) -> None:
        ...


class LoggingNotificationSink:
    """Sink that only logs; used when no delivery channel is configured."""

    def __init__(self):
        self.delivered: List[WaitlistNotificationEvent] = []

    async def deliver(self, event: WaitlistNotificationEvent) -> None:
        self.delivered.append(event)
        logger.info(
            f"Seat free in lesson {event.lesson_id} on {event.date}: "
            f"notify {event.student_id} ({event.contact_email or 'no e-mail'})"
        )


class WaitlistNotifier:
    """
    Picks the waitlisted reservations that now fit, oldest first.

    Each selected reservation is counted as if confirmed before the next one
    is checked, so no more parties are told than there are seats.
    """

    def __init__(
        self,
        versioned_cache: VersionedCache,
        calculator: CapacityCalculator,
        sink: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.cache = versioned_cache
        self.calculator = calculator
        self.sink = sink or LoggingNotificationSink()
        self.clock = clock

    async def on_capacity_freed(self, lesson_id: str) -> List[WaitlistNotificationEvent]:
        lesson = await self._load_lesson(lesson_id)
        if lesson is None:
            return []

        if lesson.date < self.clock().date() or not lesson.is_bookable:
            logger.debug(f"Lesson {lesson_id} is past or not scheduled, no waitlist notifications")
            return []

        reservations = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
        indexed = [
            (position, r)
            for position, r in self.cache.spec(DatasetKey.RESERVATIONS).schema.decode_indexed(
                reservations.header, reservations.rows
            )
            if r.lesson_id == lesson_id
        ]

        occupying = self.calculator.occupying(lesson, [r for _, r in indexed])
        waitlisted = sorted(
            (item for item in indexed if item[1].status == ReservationStatus.WAITLISTED),
            key=lambda item: (item[1].created_at, item[0])
        )

        selected = []
        for _, reservation in waitlisted:
            window = TimeWindow(reservation.start_time, reservation.end_time)
            if self.calculator.is_full(lesson, occupying, window, reservation.first_lecture):
                continue
            selected.append(reservation)
            occupying.append(reservation.model_copy(update={"status": ReservationStatus.CONFIRMED}))

        if not selected:
            logger.debug(f"No waitlisted reservation fits lesson {lesson_id}")
            return []

        emails = await self._contact_emails()
        events = [
            WaitlistNotificationEvent(
                lesson_id=lesson.lesson_id,
                date=lesson.date,
                classroom=lesson.classroom,
                venue=lesson.venue,
                reservation_id=reservation.reservation_id,
                student_id=reservation.student_id,
                contact_email=emails.get(reservation.student_id),
                start_time=reservation.start_time,
                end_time=reservation.end_time,
                created_at=self.clock(),
            )
            for reservation in selected
        ]

        for event in events:
            try:
                await self.sink.deliver(event)
            except Exception as e:
                logger.error(f"Waitlist notification for {event.reservation_id} failed: {e}")

        logger.info(f"Sent {len(events)} waitlist notifications for lesson {lesson_id}")
        return events

    async def _load_lesson(self, lesson_id: str) -> Optional[LessonModel]:
        schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)
        try:
            lesson = self.cache.spec(DatasetKey.SCHEDULE).schema.find(schedule.header, schedule.rows, lesson_id)
        except ValidationError as e:
            logger.warning(f"Lesson {lesson_id} is malformed: {e.error_count()} errors")
            return None

        if lesson is None:
            logger.warning(f"Lesson {lesson_id} not found for waitlist notification")
        return lesson

    async def _contact_emails(self) -> Dict[str, str]:
        roster = await self.cache.get_cached_data(DatasetKey.ROSTER)
        students = self.cache.spec(DatasetKey.ROSTER).schema.decode_all(roster.header, roster.rows)
        return {s.student_id: s.email for s in students if s.email}
