"""
RowStore on SQLAlchemy.

Rows are stored as JSON arrays in header order; ``position`` keeps the
sheet's insertion order for scans.
"""

import logging
from typing import Any, List, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..database.config import DatabaseConfig
from ..database.models import Sheet, SheetRow
from ..models.cache import RowSet
from .base import RowNotFoundError, RowStore, RowStoreError, RowStoreWriteError, SheetNotFoundError

logger = logging.getLogger(__name__)


class SqlRowStore(RowStore):
    """
    RowStore backed by the ``sheet`` and ``sheet_row`` tables.

    Any SQLAlchemy failure during a write surfaces as RowStoreWriteError.
    """

    def __init__(self, db_config: DatabaseConfig):
        super().__init__()
        self.db = db_config
        self.db.create_tables()

    def _sheet(self, session, sheet_name: str) -> Sheet:
        sheet = session.get(Sheet, sheet_name)
        if sheet is None:
            raise SheetNotFoundError(f"Sheet not defined: {sheet_name}")
        return sheet

    def define_sheet(self, sheet_name: str, header: List[str], key_column: str) -> None:
        with self.db.get_session_context() as session:
            sheet = session.get(Sheet, sheet_name)
            if sheet is None:
                session.add(Sheet(name=sheet_name, header=list(header), key_column=key_column))
                logger.info(f"Defined sheet {sheet_name} with {len(header)} columns")
                return

            has_rows = session.execute(
                select(func.count(SheetRow.row_id)).where(SheetRow.sheet_name == sheet_name)
            ).scalar_one()
            if has_rows:
                logger.debug(f"Sheet {sheet_name} already holds rows, keeping its header")
                return
            sheet.header = list(header)
            sheet.key_column = key_column

    def header(self, sheet_name: str) -> List[str]:
        with self.db.get_session_context() as session:
            return list(self._sheet(session, sheet_name).header)

    def _scan_all(self, sheet_name: str) -> RowSet:
        try:
            with self.db.get_session_context() as session:
                sheet = self._sheet(session, sheet_name)
                cells = session.execute(
                    select(SheetRow.cells)
                    .where(SheetRow.sheet_name == sheet_name)
                    .order_by(SheetRow.position)
                ).scalars().all()
                return RowSet(header=list(sheet.header), rows=[list(row) for row in cells])
        except SQLAlchemyError as e:
            raise RowStoreError(f"Scan of {sheet_name} failed: {e}") from e

    def append_row(self, sheet_name: str, values: Mapping[str, Any]) -> List[Any]:
        try:
            with self.db.get_session_context() as session:
                sheet = self._sheet(session, sheet_name)
                header = list(sheet.header)
                self._check_columns(sheet_name, header, values)

                last_position = session.execute(
                    select(func.max(SheetRow.position)).where(SheetRow.sheet_name == sheet_name)
                ).scalar()
                row = [values.get(name) for name in header]
                session.add(SheetRow(
                    sheet_name=sheet_name,
                    row_key=str(values.get(sheet.key_column)),
                    position=(last_position or 0) + 1,
                    cells=row,
                ))
                return row
        except SQLAlchemyError as e:
            raise RowStoreWriteError(f"Append to {sheet_name} failed: {e}") from e

    def update_row(self, sheet_name: str, row_id: Any, patch: Mapping[str, Any]) -> List[Any]:
        try:
            with self.db.get_session_context() as session:
                sheet = self._sheet(session, sheet_name)
                header = list(sheet.header)
                self._check_columns(sheet_name, header, patch)

                record = session.execute(
                    select(SheetRow)
                    .where(SheetRow.sheet_name == sheet_name, SheetRow.row_key == str(row_id))
                    .order_by(SheetRow.position)
                ).scalars().first()
                if record is None:
                    raise RowNotFoundError(f"No row {row_id} in {sheet_name}")

                row = list(record.cells)
                row += [None] * (len(header) - len(row))
                for name, value in patch.items():
                    row[header.index(name)] = value
                # JSON columns only persist on reassignment
                record.cells = row
                if sheet.key_column in patch:
                    record.row_key = str(patch[sheet.key_column])
                return row
        except SQLAlchemyError as e:
            raise RowStoreWriteError(f"Update of {row_id} in {sheet_name} failed: {e}") from e
