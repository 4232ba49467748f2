"""Record model — a row within a table."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


class Record(Base):
    """A row; its values live in ``CellValue`` rows keyed by field.

    Attributes:
        id: Primary key.
        table_id: FK to DataTable.
        readonly: When true, none of the record's cells may be written.
        meta_json: Free-form metadata blob.
        created_at: Record creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "record"

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_id = Column(
        Integer, ForeignKey("data_table.id", ondelete="CASCADE"), nullable=False, index=True
    )
    readonly = Column(Boolean, default=False, nullable=False)
    meta_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    table = relationship("DataTable", back_populates="records", lazy="select")
    cells = relationship(
        "CellValue",
        back_populates="record",
        lazy="select",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
