"""
Reservation writes serialized under the reservation mutex.

Every mutating operation walks the same states:

    requested -> lock_acquired -> validated -> persisted -> cache_synced -> done

and may leave for ``rejected`` before ``persisted``. Validation always runs
on datasets re-read after the mutex is taken, the row store write is the
single durable step, and the cache is patched incrementally afterwards.
When Valkey refuses that patch the transaction still completes, with
``cache_synced`` false on its result.
Waitlist notifications run only after the mutex is released.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from .capacity import CapacityCalculator, TimeWindow, check_reservation_window
from .lock_manager import LockTimeoutError, ReservationMutex
from .waitlist_notifier import WaitlistNotifier
from ..cache.config import CacheWriteError
from ..cache.incremental import IncrementalCacheUpdater
from ..cache.versioned import VersionedCache
from ..models.cache import CachedDataset
from ..models.enums import DatasetKey, RejectionReason, ReservationStatus, TransactionState
from ..models.lesson import LessonModel
from ..models.reservation import AccountingDetails, ReservationModel
from ..models.results import AvailableSlots, ReservationRequest, ReservationResult
from ..store.base import RowStore, RowStoreError

logger = logging.getLogger(__name__)

# Columns a detail update may touch
UPDATABLE_COLUMNS = frozenset({
    "start_time",
    "end_time",
    "first_lecture",
    "chisel_rental",
    "work_in_progress",
    "message_to_teacher",
    "order",
    "venue",
})

_WINDOW_COLUMNS = ("start_time", "end_time", "first_lecture")


def new_reservation_id() -> str:
    return f"R-{uuid.uuid4().hex[:12]}"


@dataclass
class TransactionContext:
    """State of one reservation transaction."""
    operation: str
    subject: str
    state: TransactionState = TransactionState.REQUESTED
    freed_lesson_id: Optional[str] = None
    reservation_id: Optional[str] = None
    status: Optional[ReservationStatus] = None
    message: str = ""

    def advance(self, state: TransactionState) -> None:
        logger.debug(f"{self.operation} {self.subject}: {self.state.value} -> {state.value}")
        self.state = state

    def persisted(self, reservation_id: str, status: ReservationStatus, message: str) -> None:
        """Record what the row store now holds, before the cache is patched."""
        self.reservation_id = reservation_id
        self.status = status
        self.message = message
        self.advance(TransactionState.PERSISTED)

    def reject(
        self,
        reason: RejectionReason,
        message: str,
        reservation_id: Optional[str] = None,
        status: Optional[ReservationStatus] = None
    ) -> ReservationResult:
        logger.info(f"{self.operation} {self.subject} rejected at {self.state.value}: {reason.value} ({message})")
        return ReservationResult.rejected(reason, message, self.state, reservation_id, status)


class ReservationTransactionManager:
    """
    Create, cancel, update, confirm and complete reservations.

    Validation failures come back as rejected ``ReservationResult``s.
    Row store failures are raised after the mutex is released and leave the
    cache untouched. A cache write failure after the row store commit is
    reported through ``cache_synced`` instead.
    """

    def __init__(
        self,
        versioned_cache: VersionedCache,
        updater: IncrementalCacheUpdater,
        row_store: RowStore,
        mutex: ReservationMutex,
        calculator: CapacityCalculator,
        notifier: WaitlistNotifier,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = new_reservation_id
    ):
        self.cache = versioned_cache
        self.updater = updater
        self.row_store = row_store
        self.mutex = mutex
        self.calculator = calculator
        self.notifier = notifier
        self.clock = clock
        self.id_factory = id_factory

    # Transaction plumbing

    async def _run(
        self,
        ctx: TransactionContext,
        body: Callable[..., Awaitable[ReservationResult]],
        *args: Any
    ) -> ReservationResult:
        try:
            async with self.mutex.hold():
                ctx.advance(TransactionState.LOCK_ACQUIRED)
                result = await body(ctx, *args)
        except LockTimeoutError as e:
            logger.warning(f"{ctx.operation} {ctx.subject}: {e}")
            return ctx.reject(RejectionReason.LOCK_TIMEOUT, "Another booking is in progress, please try again")
        except RowStoreError as e:
            logger.error(f"{ctx.operation} {ctx.subject} failed at {ctx.state.value}: {e}")
            raise
        except CacheWriteError as e:
            if ctx.state != TransactionState.PERSISTED:
                raise
            logger.error(f"{ctx.operation} {ctx.subject} committed but the cache was not updated: {e}")
            result = ReservationResult.done(ctx.reservation_id, ctx.status, ctx.message, cache_synced=False)

        if not result.success:
            return result

        ctx.advance(TransactionState.DONE)
        if ctx.freed_lesson_id:
            await self._notify_waitlist(ctx.freed_lesson_id)
        return result

    async def _notify_waitlist(self, lesson_id: str) -> None:
        try:
            await self.notifier.on_capacity_freed(lesson_id)
        except Exception as e:
            logger.error(f"Waitlist notification for lesson {lesson_id} failed: {e}")

    def _schema(self, dataset_key: DatasetKey):
        return self.cache.spec(dataset_key).schema

    def _sheet(self, dataset_key: DatasetKey) -> str:
        return self.cache.spec(dataset_key).sheet_name

    def _find(self, dataset_key: DatasetKey, dataset: CachedDataset, row_id: str):
        try:
            return self._schema(dataset_key).find(dataset.header, dataset.rows, row_id)
        except ValidationError as e:
            logger.warning(f"{dataset_key.value} row {row_id} is malformed: {e.error_count()} errors")
            return None

    def _reservations(self, dataset: CachedDataset) -> List[ReservationModel]:
        return self._schema(DatasetKey.RESERVATIONS).decode_all(dataset.header, dataset.rows)

    @staticmethod
    def _has_confirmed_booking(reservations: List[ReservationModel], student_id: str, lesson: LessonModel) -> bool:
        return any(
            r.student_id == student_id
            and r.date == lesson.date
            and r.status == ReservationStatus.CONFIRMED
            for r in reservations
        )

    @staticmethod
    def _window(lesson: LessonModel, start_time: Optional[str], end_time: Optional[str]) -> TimeWindow:
        if lesson.is_time_based:
            return TimeWindow(start_time, end_time)
        return TimeWindow(start_time or lesson.first_start, end_time or lesson.first_end)

    @staticmethod
    def _not_owner(reservation: ReservationModel, student_id: Optional[str], is_by_admin: bool) -> bool:
        return not is_by_admin and student_id is not None and student_id != reservation.student_id

    async def _sync_lesson_ids(
        self,
        lesson: LessonModel,
        schedule: CachedDataset,
        add: Optional[str] = None,
        remove: Optional[str] = None
    ) -> None:
        """Best-effort update of a lesson's ``reservation_ids`` back-reference."""
        ids = list(lesson.reservation_ids)
        if add and add not in ids:
            ids.append(add)
        if remove and remove in ids:
            ids.remove(remove)
        if ids == lesson.reservation_ids:
            return

        try:
            self.row_store.update_row(self._sheet(DatasetKey.SCHEDULE), lesson.lesson_id, {"reservation_ids": ids})
        except RowStoreError as e:
            logger.warning(f"Could not update reservation_ids of lesson {lesson.lesson_id}: {e}")
            return
        await self.updater.update_column(DatasetKey.SCHEDULE, lesson.lesson_id, "reservation_ids", ids, snapshot=schedule)

    # Create

    async def create_reservation(self, request: ReservationRequest) -> ReservationResult:
        """
        Book a lesson.

        A full lesson does not reject the request; the reservation is
        recorded as Waitlisted instead.
        """
        ctx = TransactionContext("create", f"{request.student_id}@{request.lesson_id}")
        return await self._run(ctx, self._create_locked, request)

    async def _create_locked(self, ctx: TransactionContext, request: ReservationRequest) -> ReservationResult:
        schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)
        reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)

        lesson = self._find(DatasetKey.SCHEDULE, schedule, request.lesson_id)
        if lesson is None:
            return ctx.reject(RejectionReason.LESSON_NOT_FOUND, f"Lesson {request.lesson_id} not found")
        if not lesson.is_bookable:
            return ctx.reject(RejectionReason.LESSON_NOT_BOOKABLE, f"Lesson {lesson.lesson_id} is {lesson.status.value}")

        window = self._window(lesson, request.start_time, request.end_time)
        if lesson.is_time_based:
            problem = check_reservation_window(lesson, window)
            if problem:
                return ctx.reject(RejectionReason.INVALID_REQUEST, problem)

        reservations = self._reservations(reservations_ds)
        if self._has_confirmed_booking(reservations, request.student_id, lesson):
            return ctx.reject(
                RejectionReason.DUPLICATE_BOOKING,
                f"{request.student_id} already has a confirmed reservation on {lesson.date}"
            )

        full = self.calculator.is_full(lesson, reservations, window, request.first_lecture)
        status = ReservationStatus.WAITLISTED if full else ReservationStatus.CONFIRMED
        ctx.advance(TransactionState.VALIDATED)

        reservation = ReservationModel(
            reservation_id=self.id_factory(),
            lesson_id=lesson.lesson_id,
            student_id=request.student_id,
            date=lesson.date,
            classroom=lesson.classroom,
            venue=lesson.venue,
            start_time=window.start_time,
            end_time=window.end_time,
            status=status,
            first_lecture=request.first_lecture,
            chisel_rental=request.chisel_rental,
            work_in_progress=request.work_in_progress,
            message_to_teacher=request.message_to_teacher,
            order=request.order,
            created_at=self.clock().isoformat(),
        )
        values = self._schema(DatasetKey.RESERVATIONS).to_values(reservation)

        self.row_store.append_row(self._sheet(DatasetKey.RESERVATIONS), values)
        ctx.persisted(reservation.reservation_id, status, "Added to the waitlist" if full else "Reservation confirmed")

        await self.updater.append_row(DatasetKey.RESERVATIONS, values, snapshot=reservations_ds)
        await self._sync_lesson_ids(lesson, schedule, add=reservation.reservation_id)
        ctx.advance(TransactionState.CACHE_SYNCED)

        logger.info(f"Reservation {reservation.reservation_id} created as {status.value} for lesson {lesson.lesson_id}")
        return ReservationResult.done(reservation.reservation_id, status, ctx.message)

    # Cancel

    async def cancel_reservation(
        self,
        reservation_id: str,
        student_id: Optional[str] = None,
        is_by_admin: bool = False
    ) -> ReservationResult:
        """
        Cancel a Confirmed or Waitlisted reservation.

        Canceling a Confirmed reservation notifies waitlisted students once
        the mutex is released.
        """
        ctx = TransactionContext("cancel", reservation_id)
        return await self._run(ctx, self._cancel_locked, reservation_id, student_id, is_by_admin)

    async def _cancel_locked(
        self,
        ctx: TransactionContext,
        reservation_id: str,
        student_id: Optional[str],
        is_by_admin: bool
    ) -> ReservationResult:
        reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
        reservation = self._find(DatasetKey.RESERVATIONS, reservations_ds, reservation_id)
        if reservation is None:
            return ctx.reject(RejectionReason.RESERVATION_NOT_FOUND, f"Reservation {reservation_id} not found")
        if self._not_owner(reservation, student_id, is_by_admin):
            return ctx.reject(RejectionReason.PERMISSION_DENIED, "Only the booking student can cancel", reservation_id)
        if not reservation.is_active:
            return ctx.reject(
                RejectionReason.ALREADY_FINALIZED,
                f"Reservation is already {reservation.status.value}",
                reservation_id,
                reservation.status
            )
        ctx.advance(TransactionState.VALIDATED)

        self.row_store.update_row(
            self._sheet(DatasetKey.RESERVATIONS), reservation_id, {"status": ReservationStatus.CANCELED.value}
        )
        ctx.persisted(reservation_id, ReservationStatus.CANCELED, "Reservation canceled")
        if reservation.status == ReservationStatus.CONFIRMED:
            ctx.freed_lesson_id = reservation.lesson_id

        await self.updater.update_status(
            DatasetKey.RESERVATIONS, reservation_id, ReservationStatus.CANCELED, snapshot=reservations_ds
        )
        schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)
        lesson = self._find(DatasetKey.SCHEDULE, schedule, reservation.lesson_id)
        if lesson is not None:
            await self._sync_lesson_ids(lesson, schedule, remove=reservation_id)
        ctx.advance(TransactionState.CACHE_SYNCED)

        logger.info(f"Reservation {reservation_id} canceled{' by admin' if is_by_admin else ''}")
        return ReservationResult.done(reservation_id, ReservationStatus.CANCELED, ctx.message)

    # Update

    async def update_reservation_details(
        self,
        reservation_id: str,
        patch: Mapping[str, Any],
        student_id: Optional[str] = None,
        is_by_admin: bool = False
    ) -> ReservationResult:
        """
        Change detail columns of an active reservation.

        A Confirmed reservation whose window or first-lecture flag changes is
        re-checked against capacity, excluding its own seat, and rejected
        with CapacityExceeded if it no longer fits.
        """
        ctx = TransactionContext("update", reservation_id)

        unknown = sorted(set(patch) - UPDATABLE_COLUMNS)
        if unknown:
            return ctx.reject(RejectionReason.INVALID_REQUEST, f"Columns cannot be changed: {', '.join(unknown)}", reservation_id)
        if not patch:
            return ctx.reject(RejectionReason.INVALID_REQUEST, "Nothing to update", reservation_id)

        return await self._run(ctx, self._update_locked, reservation_id, dict(patch), student_id, is_by_admin)

    async def _update_locked(
        self,
        ctx: TransactionContext,
        reservation_id: str,
        patch: Dict[str, Any],
        student_id: Optional[str],
        is_by_admin: bool
    ) -> ReservationResult:
        schema = self._schema(DatasetKey.RESERVATIONS)
        reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
        reservation = self._find(DatasetKey.RESERVATIONS, reservations_ds, reservation_id)
        if reservation is None:
            return ctx.reject(RejectionReason.RESERVATION_NOT_FOUND, f"Reservation {reservation_id} not found")
        if self._not_owner(reservation, student_id, is_by_admin):
            return ctx.reject(RejectionReason.PERMISSION_DENIED, "Only the booking student can change it", reservation_id)
        if not reservation.is_active:
            return ctx.reject(
                RejectionReason.ALREADY_FINALIZED,
                f"Reservation is already {reservation.status.value}",
                reservation_id,
                reservation.status
            )

        current = schema.to_values(reservation)
        try:
            updated = ReservationModel.model_validate({**current, **patch})
        except ValidationError as e:
            return ctx.reject(RejectionReason.INVALID_REQUEST, f"Invalid values: {e.error_count()} errors", reservation_id)
        new_values = schema.to_values(updated)
        changed = [column for column in patch if new_values[column] != current[column]]
        if not changed:
            return ReservationResult.done(reservation_id, reservation.status, "No changes")

        if any(column in changed for column in _WINDOW_COLUMNS):
            schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)
            lesson = self._find(DatasetKey.SCHEDULE, schedule, reservation.lesson_id)
            if lesson is None:
                return ctx.reject(RejectionReason.LESSON_NOT_FOUND, f"Lesson {reservation.lesson_id} not found", reservation_id)

            window = TimeWindow(updated.start_time, updated.end_time)
            if lesson.is_time_based and ("start_time" in changed or "end_time" in changed):
                problem = check_reservation_window(lesson, window)
                if problem:
                    return ctx.reject(RejectionReason.INVALID_REQUEST, problem, reservation_id)

            if reservation.status == ReservationStatus.CONFIRMED and self.calculator.is_full(
                lesson,
                self._reservations(reservations_ds),
                window,
                updated.first_lecture,
                exclude_reservation_id=reservation_id
            ):
                return ctx.reject(
                    RejectionReason.CAPACITY_EXCEEDED,
                    "The requested time is fully booked",
                    reservation_id,
                    reservation.status
                )
        ctx.advance(TransactionState.VALIDATED)

        self.row_store.update_row(
            self._sheet(DatasetKey.RESERVATIONS), reservation_id, {column: new_values[column] for column in changed}
        )
        ctx.persisted(reservation_id, reservation.status, "Reservation updated")

        if len(changed) == 1:
            column = changed[0]
            await self.updater.update_column(
                DatasetKey.RESERVATIONS, reservation_id, column, new_values[column], snapshot=reservations_ds
            )
        else:
            await self.updater.replace_row(DatasetKey.RESERVATIONS, reservation_id, new_values, snapshot=reservations_ds)
        ctx.advance(TransactionState.CACHE_SYNCED)

        logger.info(f"Reservation {reservation_id} updated: {', '.join(changed)}")
        return ReservationResult.done(reservation_id, reservation.status, ctx.message)

    # Waitlist promotion

    async def confirm_waitlisted_reservation(
        self,
        reservation_id: str,
        student_id: Optional[str] = None,
        is_by_admin: bool = False
    ) -> ReservationResult:
        """Promote a Waitlisted reservation to Confirmed if a seat is free."""
        ctx = TransactionContext("confirm", reservation_id)
        return await self._run(ctx, self._confirm_locked, reservation_id, student_id, is_by_admin)

    async def _confirm_locked(
        self,
        ctx: TransactionContext,
        reservation_id: str,
        student_id: Optional[str],
        is_by_admin: bool
    ) -> ReservationResult:
        reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
        reservation = self._find(DatasetKey.RESERVATIONS, reservations_ds, reservation_id)
        if reservation is None:
            return ctx.reject(RejectionReason.RESERVATION_NOT_FOUND, f"Reservation {reservation_id} not found")
        if self._not_owner(reservation, student_id, is_by_admin):
            return ctx.reject(RejectionReason.PERMISSION_DENIED, "Only the booking student can confirm", reservation_id)
        if reservation.status != ReservationStatus.WAITLISTED:
            return ctx.reject(
                RejectionReason.INVALID_STATE,
                f"Reservation is {reservation.status.value}, not waitlisted",
                reservation_id,
                reservation.status
            )

        schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)
        lesson = self._find(DatasetKey.SCHEDULE, schedule, reservation.lesson_id)
        if lesson is None:
            return ctx.reject(RejectionReason.LESSON_NOT_FOUND, f"Lesson {reservation.lesson_id} not found", reservation_id)
        if not lesson.is_bookable:
            return ctx.reject(RejectionReason.LESSON_NOT_BOOKABLE, f"Lesson {lesson.lesson_id} is {lesson.status.value}", reservation_id)

        reservations = self._reservations(reservations_ds)
        if self._has_confirmed_booking(reservations, reservation.student_id, lesson):
            return ctx.reject(
                RejectionReason.DUPLICATE_BOOKING,
                f"{reservation.student_id} already has a confirmed reservation on {lesson.date}",
                reservation_id
            )

        window = TimeWindow(reservation.start_time, reservation.end_time)
        if self.calculator.is_full(lesson, reservations, window, reservation.first_lecture):
            return ctx.reject(
                RejectionReason.CAPACITY_EXCEEDED,
                "The lesson is still full",
                reservation_id,
                reservation.status
            )
        ctx.advance(TransactionState.VALIDATED)

        self.row_store.update_row(
            self._sheet(DatasetKey.RESERVATIONS), reservation_id, {"status": ReservationStatus.CONFIRMED.value}
        )
        ctx.persisted(reservation_id, ReservationStatus.CONFIRMED, "Reservation confirmed")

        await self.updater.update_status(
            DatasetKey.RESERVATIONS, reservation_id, ReservationStatus.CONFIRMED, snapshot=reservations_ds
        )
        ctx.advance(TransactionState.CACHE_SYNCED)

        logger.info(f"Waitlisted reservation {reservation_id} confirmed")
        return ReservationResult.done(reservation_id, ReservationStatus.CONFIRMED, ctx.message)

    # Accounting

    async def save_accounting_details(
        self,
        reservation_id: str,
        details: Union[AccountingDetails, Mapping[str, Any]]
    ) -> ReservationResult:
        """
        Record accounting and move a Confirmed reservation to Completed.

        Every line item must name an item of the accounting master.
        """
        ctx = TransactionContext("accounting", reservation_id)
        try:
            details = AccountingDetails.model_validate(details)
        except ValidationError as e:
            return ctx.reject(RejectionReason.INVALID_REQUEST, f"Malformed accounting details: {e.error_count()} errors", reservation_id)

        return await self._run(ctx, self._accounting_locked, reservation_id, details)

    async def _accounting_locked(
        self,
        ctx: TransactionContext,
        reservation_id: str,
        details: AccountingDetails
    ) -> ReservationResult:
        reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
        reservation = self._find(DatasetKey.RESERVATIONS, reservations_ds, reservation_id)
        if reservation is None:
            return ctx.reject(RejectionReason.RESERVATION_NOT_FOUND, f"Reservation {reservation_id} not found")
        if reservation.status in (ReservationStatus.CANCELED, ReservationStatus.COMPLETED):
            return ctx.reject(
                RejectionReason.ALREADY_FINALIZED,
                f"Reservation is already {reservation.status.value}",
                reservation_id,
                reservation.status
            )
        if reservation.status != ReservationStatus.CONFIRMED:
            return ctx.reject(
                RejectionReason.INVALID_STATE,
                "Only confirmed reservations can be completed",
                reservation_id,
                reservation.status
            )

        master = await self.cache.get_cached_data(DatasetKey.ACCOUNTING_MASTER)
        known_items = {item.item_name for item in self._schema(DatasetKey.ACCOUNTING_MASTER).decode_all(master.header, master.rows)}
        unknown = sorted({line.name for line in details.tuition + details.sales} - known_items)
        if unknown:
            return ctx.reject(RejectionReason.INVALID_REQUEST, f"Unknown accounting items: {', '.join(unknown)}", reservation_id)
        ctx.advance(TransactionState.VALIDATED)

        schema = self._schema(DatasetKey.RESERVATIONS)
        completed = reservation.model_copy(update={"status": ReservationStatus.COMPLETED, "accounting_details": details})
        new_values = schema.to_values(completed)

        self.row_store.update_row(
            self._sheet(DatasetKey.RESERVATIONS),
            reservation_id,
            {"status": new_values["status"], "accounting_details": new_values["accounting_details"]}
        )
        ctx.persisted(reservation_id, ReservationStatus.COMPLETED, "Accounting saved")

        await self.updater.replace_row(DatasetKey.RESERVATIONS, reservation_id, new_values, snapshot=reservations_ds)
        ctx.advance(TransactionState.CACHE_SYNCED)

        logger.info(f"Reservation {reservation_id} completed, total {details.grand_total}")
        return ReservationResult.done(reservation_id, ReservationStatus.COMPLETED, ctx.message)

    # Reconciliation and reads

    async def sync_reservation_ids(self) -> int:
        """
        Rebuild every lesson's ``reservation_ids`` from the reservations.

        Lists hold all non-canceled ids in row order. Only lessons whose list
        differs are written.

        Returns:
            Number of lessons updated

        Raises:
            LockTimeoutError: If the mutex is not acquired in time
        """
        async with self.mutex.hold():
            reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
            schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)

            expected: Dict[str, List[str]] = defaultdict(list)
            for reservation in self._reservations(reservations_ds):
                if reservation.status != ReservationStatus.CANCELED:
                    expected[reservation.lesson_id].append(reservation.reservation_id)

            lessons = self._schema(DatasetKey.SCHEDULE).decode_all(schedule.header, schedule.rows)
            updated = 0
            for lesson in lessons:
                ids = expected.get(lesson.lesson_id, [])
                if ids == lesson.reservation_ids:
                    continue
                self.row_store.update_row(self._sheet(DatasetKey.SCHEDULE), lesson.lesson_id, {"reservation_ids": ids})
                await self.updater.update_column(DatasetKey.SCHEDULE, lesson.lesson_id, "reservation_ids", ids, snapshot=schedule)
                updated += 1

        logger.info(f"Reconciled reservation_ids of {updated} of {len(lessons)} lessons")
        return updated

    async def get_available_slots(self, lesson_id: str) -> Optional[AvailableSlots]:
        """Seats left in a lesson, read from the cache without taking the mutex."""
        schedule = await self.cache.get_cached_data(DatasetKey.SCHEDULE)
        lesson = self._find(DatasetKey.SCHEDULE, schedule, lesson_id)
        if lesson is None:
            return None
        reservations_ds = await self.cache.get_cached_data(DatasetKey.RESERVATIONS)
        return self.calculator.available_slots(lesson, self._reservations(reservations_ds))
