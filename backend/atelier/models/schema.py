"""
Schema-versioned codec between positional rows and typed records.

Rows are matched to model fields by header name, never by position, so
sheets may reorder or add columns without breaking readers.
"""

import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class RowSchema(Generic[ModelT]):
    """
    Decoder and encoder for one dataset's rows.

    Args:
        model: pydantic model a row decodes into
        key_column: Column holding the row's primary key
        version: Bumped whenever the cached row shape changes
    """

    def __init__(self, model: Type[ModelT], key_column: str, version: int = 1):
        self.model = model
        self.key_column = key_column
        self.version = version

    @property
    def columns(self) -> List[str]:
        return list(self.model.model_fields.keys())

    def decode(self, header: Sequence[str], row: Sequence[Any]) -> ModelT:
        """
        Build a record from one row.

        Raises:
            ValidationError: If the row does not fit the model
        """
        fields = self.model.model_fields
        values = {
            name: row[position]
            for position, name in enumerate(header)
            if name in fields and position < len(row)
        }
        return self.model.model_validate(values)

    def decode_all(self, header: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[ModelT]:
        """Decode every row, skipping (and logging) rows that do not validate."""
        return [record for _, record in self.decode_indexed(header, rows)]

    def decode_indexed(
        self, header: Sequence[str], rows: Sequence[Sequence[Any]]
    ) -> List[Tuple[int, ModelT]]:
        """Like ``decode_all`` but keeps each record's row position."""
        records: List[Tuple[int, ModelT]] = []
        for position, row in enumerate(rows):
            try:
                records.append((position, self.decode(header, row)))
            except ValidationError as e:
                logger.warning(
                    f"Skipping malformed {self.model.__name__} row {position}: {e.error_count()} errors"
                )
        return records

    def to_values(self, record: ModelT) -> Dict[str, Any]:
        """JSON-compatible column values of ``record``."""
        return record.model_dump(mode="json")

    def encode(self, record: ModelT, header: Sequence[str]) -> List[Any]:
        """Lay out ``record`` in ``header`` order; unknown columns stay empty."""
        return self.encode_values(self.to_values(record), header)

    @staticmethod
    def encode_values(values: Mapping[str, Any], header: Sequence[str]) -> List[Any]:
        return [values.get(name) for name in header]

    def find(self, header: Sequence[str], rows: Sequence[Sequence[Any]], row_id: Any) -> Optional[ModelT]:
        """Decode the row whose key column equals ``row_id``."""
        try:
            column = list(header).index(self.key_column)
        except ValueError:
            return None

        target = str(row_id)
        for row in rows:
            if column < len(row) and str(row[column]) == target:
                return self.decode(header, row)
        return None
