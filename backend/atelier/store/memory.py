"""
In-process RowStore used for tests and single-process deployments.
"""

import copy
import logging
from typing import Any, Dict, List, Mapping

from ..models.cache import RowSet
from .base import RowNotFoundError, RowStore, SheetNotFoundError

logger = logging.getLogger(__name__)


class InMemoryRowStore(RowStore):
    """RowStore on plain lists. Scans return deep copies."""

    def __init__(self):
        super().__init__()
        self._sheets: Dict[str, Dict[str, Any]] = {}

    def _sheet(self, sheet_name: str) -> Dict[str, Any]:
        try:
            return self._sheets[sheet_name]
        except KeyError:
            raise SheetNotFoundError(f"Sheet not defined: {sheet_name}") from None

    def define_sheet(self, sheet_name: str, header: List[str], key_column: str) -> None:
        existing = self._sheets.get(sheet_name)
        if existing and existing["rows"]:
            logger.debug(f"Sheet {sheet_name} already holds rows, keeping its header")
            return
        self._sheets[sheet_name] = {"header": list(header), "key_column": key_column, "rows": []}

    def header(self, sheet_name: str) -> List[str]:
        return list(self._sheet(sheet_name)["header"])

    def _scan_all(self, sheet_name: str) -> RowSet:
        sheet = self._sheet(sheet_name)
        return RowSet(header=list(sheet["header"]), rows=copy.deepcopy(sheet["rows"]))

    def append_row(self, sheet_name: str, values: Mapping[str, Any]) -> List[Any]:
        sheet = self._sheet(sheet_name)
        self._check_columns(sheet_name, sheet["header"], values)
        row = [copy.deepcopy(values.get(name)) for name in sheet["header"]]
        sheet["rows"].append(row)
        return list(row)

    def update_row(self, sheet_name: str, row_id: Any, patch: Mapping[str, Any]) -> List[Any]:
        sheet = self._sheet(sheet_name)
        header = sheet["header"]
        self._check_columns(sheet_name, header, patch)

        key_index = header.index(sheet["key_column"])
        for row in sheet["rows"]:
            if str(row[key_index]) == str(row_id):
                for name, value in patch.items():
                    row[header.index(name)] = copy.deepcopy(value)
                return list(row)

        raise RowNotFoundError(f"No row {row_id} in {sheet_name}")
