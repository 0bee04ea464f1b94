"""
Pytest tests for Pydantic models.
Run with: pytest backend/tests/test_models.py -v
"""

import pytest
from atelier.models import *
from datetime import date
from pydantic import ValidationError


class TestLessonModels:
    """Test schedule models."""

    def test_lesson_model(self):
        """Test LessonModel creation with sheet-style values."""
        lesson = LessonModel(
            lesson_id='L1',
            date='2026-03-10',
            classroom='Tokyo',
            classroom_type='time_dual',
            first_start='09:00',
            first_end='12:00',
            total_capacity='',
            reservation_ids='["R1", "R2"]'
        )
        assert lesson.date == date(2026, 3, 10)
        assert lesson.classroom_type == ClassroomType.TIME_DUAL
        assert lesson.total_capacity == 0
        assert lesson.reservation_ids == ['R1', 'R2']
        assert lesson.is_time_based is True
        assert lesson.is_bookable is True

    def test_unparseable_reservation_ids(self):
        """Test that a broken back-reference reads as empty."""
        lesson = LessonModel(lesson_id='L1', date='2026-03-10', classroom='Tokyo', reservation_ids='[R1')
        assert lesson.reservation_ids == []

    def test_cancelled_lesson_not_bookable(self):
        lesson = LessonModel(lesson_id='L1', date='2026-03-10', classroom='Tokyo', status='cancelled')
        assert lesson.is_bookable is False
        assert lesson.is_time_based is False


class TestReservationModels:
    """Test reservation and accounting models."""

    def test_reservation_model(self):
        """Test ReservationModel with blank flags and JSON accounting."""
        reservation = ReservationModel(
            reservation_id='R1',
            lesson_id='L1',
            student_id='S1',
            date='2026-03-10',
            classroom='Tokyo',
            status='waitlisted',
            first_lecture='',
            accounting_details='{"payment_method": "card", "grand_total": 0}'
        )
        assert reservation.status == ReservationStatus.WAITLISTED
        assert reservation.first_lecture is False
        assert reservation.accounting_details.payment_method == PaymentMethod.CARD
        assert reservation.is_active is True

    def test_terminal_statuses_not_active(self):
        for status in ('canceled', 'completed'):
            reservation = ReservationModel(
                reservation_id='R1', lesson_id='L1', student_id='S1',
                date='2026-03-10', classroom='Tokyo', status=status
            )
            assert reservation.is_active is False

    def test_accounting_details(self):
        """Test AccountingDetails line totals."""
        details = AccountingDetails(
            tuition=[AccountingLineItem(name='Tuition 3h', unit_price=4000, subtotal=4000)],
            sales=[AccountingLineItem(name='Cherry board', unit_price=1500, quantity=2, subtotal=3000)],
            payment_method=PaymentMethod.CASH,
            grand_total=7000
        )
        assert details.grand_total == 7000
        assert details.sales[0].quantity == 2


class TestCacheModels:
    """Test cache payload models."""

    def test_chunk_meta_aliases(self):
        """Test ChunkMeta reads the stored camelCase keys."""
        meta = ChunkMeta.model_validate({
            'version': 3,
            'chunked': True,
            'totalChunks': 2,
            'totalCount': 10,
            'headerSchema': ['id'],
        })
        assert meta.total_chunks == 2
        assert meta.schema_version == 1
        assert 'totalChunks' in meta.model_dump(by_alias=True)

    def test_chunk_set_reassembles_rows(self):
        chunk_set = ChunkSet(
            base_key='k',
            version=1,
            chunked=True,
            total_chunks=2,
            total_count=3,
            header_schema=['id'],
            chunks=[
                ChunkPayload(index=0, version=1, rows=[['a'], ['b']]),
                ChunkPayload(index=1, version=1, rows=[['c']]),
            ]
        )
        assert chunk_set.rows == [['a'], ['b'], ['c']]

    def test_cached_dataset_lookup(self):
        dataset = CachedDataset(key='reservations', version=1, header=['reservation_id', 'status'],
                                rows=[['R1', 'confirmed'], ['R2', 'waitlisted']])
        assert dataset.column_index('status') == 1
        assert dataset.column_index('seat') == -1
        assert dataset.find_row_index('reservation_id', 'R2') == 1
        assert dataset.find_row_index('reservation_id', 'R9') == -1


class TestValidation:
    """Test model validation constraints."""

    def test_negative_capacity_rejected(self):
        """Test that negative capacities are rejected."""
        with pytest.raises(ValidationError):
            LessonModel(lesson_id='L1', date='2026-03-10', classroom='Tokyo', total_capacity=-1)

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            ReservationModel(
                reservation_id='R1', lesson_id='L1', student_id='S1',
                date='2026-03-10', classroom='Tokyo', status='pending'
            )

    def test_grand_total_mismatch_rejected(self):
        """Test that a grand total differing from the line subtotals is rejected."""
        with pytest.raises(ValidationError):
            AccountingDetails(
                tuition=[AccountingLineItem(name='Tuition 3h', unit_price=4000, subtotal=4000)],
                payment_method='cash',
                grand_total=3500
            )

    def test_incomplete_chunk_set_rejected(self):
        with pytest.raises(ValidationError):
            ChunkSet(base_key='k', version=1, chunked=True, total_chunks=2, total_count=1,
                     header_schema=['id'], chunks=[ChunkPayload(index=0, version=1, rows=[['a']])])

    def test_single_entry_needs_rows(self):
        with pytest.raises(ValidationError):
            ChunkMeta(version=1, chunked=False, total_chunks=1, total_count=0, header_schema=[])


class TestRowSchema:
    """Test the row codec."""

    schema = RowSchema(StudentModel, key_column='student_id')

    def test_decode_by_header_name(self):
        """Test that columns are matched by name, not position."""
        student = self.schema.decode(['email', 'extra', 'student_id'], ['a@example.com', 'x', 'S1'])
        assert student.student_id == 'S1'
        assert student.email == 'a@example.com'

    def test_decode_all_skips_malformed(self):
        students = self.schema.decode_all(['student_id'], [['S1'], [''], ['S2']])
        assert [s.student_id for s in students] == ['S1', 'S2']

    def test_encode_and_find(self):
        header = ['student_id', 'nickname']
        row = self.schema.encode(StudentModel(student_id='S1', nickname='Ken'), header)
        assert row == ['S1', 'Ken']
        assert self.schema.find(header, [row], 'S1').display_name == 'Ken'
        assert self.schema.find(header, [row], 'S2') is None


class TestResults:
    """Test transaction results."""

    def test_model_serialization(self):
        """Test that results can be serialized to JSON."""
        result = ReservationResult.rejected(
            RejectionReason.CAPACITY_EXCEEDED, 'full', TransactionState.VALIDATED, 'R1'
        )
        data = result.model_dump(mode='json')
        assert data['success'] is False
        assert data['rejection'] == 'capacity_exceeded'
        assert data['final_state'] == 'rejected'
        assert data['failed_at'] == 'validated'

        done = ReservationResult.done('R1', ReservationStatus.CONFIRMED)
        assert ReservationResult(**done.model_dump()).final_state == TransactionState.DONE
