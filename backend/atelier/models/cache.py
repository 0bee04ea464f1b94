"""
Cache payload models.

A dataset travels as a header plus positional rows. In the cache it is
stored either as one entry or as a metadata entry plus numbered chunks.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RowSet(BaseModel):
    """Header and rows as read from the row store."""
    model_config = ConfigDict(from_attributes=True)

    header: List[str] = Field(..., description="Column names in row order")
    rows: List[List[Any]] = Field(default_factory=list, description="Positional rows")

    def column_index(self, column: str) -> int:
        """Position of ``column`` in the header, -1 if absent."""
        try:
            return self.header.index(column)
        except ValueError:
            return -1


class ChunkPayload(BaseModel):
    """One numbered chunk of a chunked entry."""

    index: int = Field(..., ge=0, description="Chunk position")
    version: int = Field(..., ge=0, description="Version of the set this chunk belongs to")
    rows: List[List[Any]] = Field(default_factory=list, description="Rows in this chunk")


class ChunkMeta(BaseModel):
    """
    Metadata entry stored under the dataset key.

    For a single entry (``chunked`` false) the rows are embedded here.
    """

    version: int = Field(..., ge=0)
    chunked: bool = Field(...)
    total_chunks: int = Field(..., ge=1, alias="totalChunks")
    total_count: int = Field(..., ge=0, alias="totalCount")
    header_schema: List[str] = Field(..., alias="headerSchema")
    schema_version: int = Field(default=1, alias="schemaVersion")
    rows: Optional[List[List[Any]]] = Field(None)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def single_entry_has_rows(self) -> "ChunkMeta":
        if not self.chunked:
            if self.rows is None or self.total_chunks != 1:
                raise ValueError("single entry must embed its rows")
        elif self.rows is not None:
            raise ValueError("chunked metadata must not embed rows")
        return self


class ChunkSet(BaseModel):
    """A complete, reassembled cache entry."""

    base_key: str
    version: int
    chunked: bool
    total_chunks: int
    total_count: int
    header_schema: List[str]
    schema_version: int = 1
    chunks: List[ChunkPayload] = Field(default_factory=list)

    @model_validator(mode="after")
    def chunks_are_complete(self) -> "ChunkSet":
        if self.total_chunks != len(self.chunks):
            raise ValueError("total_chunks does not match the chunks present")
        if [c.index for c in self.chunks] != list(range(self.total_chunks)):
            raise ValueError("chunk indexes are not contiguous")
        return self

    @property
    def rows(self) -> List[List[Any]]:
        rows: List[List[Any]] = []
        for chunk in self.chunks:
            rows.extend(chunk.rows)
        return rows


class CachedDataset(BaseModel):
    """A dataset as served by the versioned cache."""

    key: str = Field(..., description="Dataset key")
    version: int = Field(..., description="Opaque version, compare for equality only")
    schema_version: int = Field(default=1)
    header: List[str] = Field(...)
    rows: List[List[Any]] = Field(default_factory=list)
    cached: bool = Field(default=True, description="False when served from the row store because Valkey refused the write")

    def column_index(self, column: str) -> int:
        try:
            return self.header.index(column)
        except ValueError:
            return -1

    def find_row_index(self, key_column: str, row_id: Any) -> int:
        """Position of the row whose ``key_column`` equals ``row_id``, -1 if absent."""
        column = self.column_index(key_column)
        if column < 0:
            return -1
        target = str(row_id)
        for position, row in enumerate(self.rows):
            if column < len(row) and str(row[column]) == target:
                return position
        return -1

    def to_row_set(self) -> RowSet:
        return RowSet(header=list(self.header), rows=[list(row) for row in self.rows])


class CacheInfo(BaseModel):
    """Diagnostics for one cached dataset."""

    key: str
    exists: bool
    version: Optional[int] = None
    schema_version: Optional[int] = None
    total_count: Optional[int] = None
    total_chunks: Optional[int] = None
    chunked: Optional[bool] = None
    ttl_seconds: Optional[int] = None
    checked_at: datetime = Field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
