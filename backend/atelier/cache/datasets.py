"""
Registry of the datasets mirrored in the cache.

Each entry names the row store sheet a dataset is rebuilt from, its
primary key column, the record schema and the transform applied to the
scanned rows before they are cached.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from ..models.cache import RowSet
from ..models.enums import DatasetKey
from ..models.lesson import LessonModel
from ..models.reservation import ReservationModel
from ..models.schema import RowSchema
from ..models.student import AccountingItemModel, StudentModel

logger = logging.getLogger(__name__)


def drop_keyless_rows(row_set: RowSet, key_column: str) -> RowSet:
    """Drop rows whose key column is empty."""
    column = row_set.column_index(key_column)
    if column < 0:
        logger.warning(f"Key column {key_column} missing from header {row_set.header}")
        return RowSet(header=row_set.header, rows=[])

    kept = [row for row in row_set.rows if column < len(row) and row[column] not in (None, "")]
    if len(kept) != len(row_set.rows):
        logger.warning(f"Dropped {len(row_set.rows) - len(kept)} rows without {key_column}")
    return RowSet(header=row_set.header, rows=kept)


def _parse_id_list(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning(f"Unparseable reservation_ids value: {value!r}")
            return []
    return [str(item) for item in value] if isinstance(value, list) else []


def normalize_schedule(row_set: RowSet) -> RowSet:
    """Drop keyless lessons and turn stored ``reservation_ids`` JSON text into lists."""
    row_set = drop_keyless_rows(row_set, "lesson_id")
    column = row_set.column_index("reservation_ids")
    if column < 0:
        return row_set

    rows = []
    for row in row_set.rows:
        row = list(row)
        if column < len(row):
            row[column] = _parse_id_list(row[column])
        rows.append(row)
    return RowSet(header=row_set.header, rows=rows)


@dataclass
class DatasetSpec:
    """How one dataset is stored, keyed and rebuilt."""
    key: DatasetKey
    sheet_name: str
    schema: RowSchema
    transform: Callable[[RowSet], RowSet]
    header: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.header:
            self.header = self.schema.columns

    @property
    def key_column(self) -> str:
        return self.schema.key_column

    @property
    def schema_version(self) -> int:
        return self.schema.version


RESERVATION_SCHEMA = RowSchema(ReservationModel, key_column="reservation_id", version=1)
LESSON_SCHEMA = RowSchema(LessonModel, key_column="lesson_id", version=1)
ACCOUNTING_ITEM_SCHEMA = RowSchema(AccountingItemModel, key_column="item_name", version=1)
STUDENT_SCHEMA = RowSchema(StudentModel, key_column="student_id", version=1)


DATASETS: Dict[DatasetKey, DatasetSpec] = {
    DatasetKey.RESERVATIONS: DatasetSpec(
        key=DatasetKey.RESERVATIONS,
        sheet_name="reservations",
        schema=RESERVATION_SCHEMA,
        transform=lambda rs: drop_keyless_rows(rs, "reservation_id"),
    ),
    DatasetKey.SCHEDULE: DatasetSpec(
        key=DatasetKey.SCHEDULE,
        sheet_name="schedule",
        schema=LESSON_SCHEMA,
        transform=normalize_schedule,
    ),
    DatasetKey.ACCOUNTING_MASTER: DatasetSpec(
        key=DatasetKey.ACCOUNTING_MASTER,
        sheet_name="accounting_master",
        schema=ACCOUNTING_ITEM_SCHEMA,
        transform=lambda rs: drop_keyless_rows(rs, "item_name"),
    ),
    DatasetKey.ROSTER: DatasetSpec(
        key=DatasetKey.ROSTER,
        sheet_name="roster",
        schema=STUDENT_SCHEMA,
        transform=lambda rs: drop_keyless_rows(rs, "student_id"),
    ),
}


def get_dataset_spec(key: Any) -> DatasetSpec:
    """
    Look up a dataset by key or key value.

    Raises:
        KeyError: If the dataset is unknown
    """
    try:
        return DATASETS[DatasetKey(key)]
    except ValueError as e:
        raise KeyError(f"Unknown dataset: {key}") from e


def bootstrap_sheets(row_store) -> None:
    """Define every registered dataset's sheet in ``row_store``."""
    for spec in DATASETS.values():
        row_store.define_sheet(spec.sheet_name, spec.header, spec.key_column)
