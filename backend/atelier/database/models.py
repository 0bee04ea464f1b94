"""
SQLAlchemy tables backing the SQL row store.

Each logical sheet (reservations, schedule, accounting master, roster) is a
``sheet`` row holding its header, and its rows live in ``sheet_row`` as
JSON arrays in header order, ordered by ``position``.
"""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Sheet(Base):
    """A named table with a positional header."""
    __tablename__ = 'sheet'

    name = Column(String(64), primary_key=True)
    header = Column(JSON, nullable=False)  # list of column names
    key_column = Column(String(64), nullable=False)

    rows = relationship("SheetRow", back_populates="sheet", lazy="select",
                        order_by="SheetRow.position", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Sheet(name='{self.name}', columns={len(self.header or [])})>"


class SheetRow(Base):
    """One row of a sheet."""
    __tablename__ = 'sheet_row'

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    sheet_name = Column(String(64), ForeignKey('sheet.name'), nullable=False)
    row_key = Column(String(128), nullable=False)
    position = Column(Integer, nullable=False)
    cells = Column(JSON, nullable=False)

    sheet = relationship("Sheet", back_populates="rows")

    __table_args__ = (
        Index('idx_sheet_row_key', 'sheet_name', 'row_key'),
        Index('idx_sheet_row_position', 'sheet_name', 'position'),
    )

    def __repr__(self):
        return f"<SheetRow(sheet='{self.sheet_name}', key='{self.row_key}', position={self.position})>"


def create_all_tables(engine):
    """Create all tables defined in the models."""
    Base.metadata.create_all(engine)


def drop_all_tables(engine):
    """Drop all tables defined in the models."""
    Base.metadata.drop_all(engine)
