"""CellValue model — the value (or formula) at a (record, field) intersection."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


class CellValue(Base):
    """One stored cell.

    Invariants:
        - At most one row per ``(record_id, field_id)``.
        - ``formula_expr`` is only set when the field's type is ``formula``.
        - For formula cells ``value_json`` is always the output of the last
          recomputation; ``is_dirty`` is true between storing a new
          expression and recomputing it.

    Attributes:
        id: Primary key.
        record_id: FK to Record.
        field_id: FK to TableField.
        value_json: Normalised value (SQL NULL when the cell is empty).
        formula_expr: Stored arithmetic expression for formula cells.
        is_dirty: True until the formula has been recomputed.
        computed_at: Timestamp of the last formula recomputation.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "cell_value"
    __table_args__ = (
        UniqueConstraint("record_id", "field_id", name="uq_cell_value_record_field"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(
        Integer, ForeignKey("record.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field_id = Column(
        Integer, ForeignKey("table_field.id", ondelete="CASCADE"), nullable=False, index=True
    )
    value_json = Column(JSON(none_as_null=True), nullable=True)
    formula_expr = Column(Text, nullable=True)
    is_dirty = Column(Boolean, default=False, nullable=False)
    computed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    record = relationship("Record", back_populates="cells", lazy="select")
    field = relationship("TableField", lazy="select")
