"""TableField model — a typed column definition within a table."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


class TableField(Base):
    """Column definition.

    The shape of ``options_json`` depends on ``type``:

    - text: ``{"maxLength": int}``
    - number: ``{"min": n, "max": n, "precision": int}``
    - single_select / multi_select: ``{"options": [str, ...]}``
    - formula: ``{"precision": int}``

    Any type may also carry ``{"required": true}``, honoured by CSV import.

    Attributes:
        id: Primary key.
        table_id: FK to DataTable.
        name: Column name, unique within its table.
        type: One of ``constants.FIELD_TYPES``.
        options_json: Type-dependent options blob.
        readonly: When true, no write path may change this column.
        created_at: Record creation timestamp.
    """

    __tablename__ = "table_field"
    __table_args__ = (UniqueConstraint("table_id", "name", name="uq_table_field_name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_id = Column(
        Integer, ForeignKey("data_table.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(200), nullable=False)
    type = Column(String(20), nullable=False)
    options_json = Column(JSON, nullable=False, default=dict)
    readonly = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    table = relationship("DataTable", back_populates="fields", lazy="select")

    @property
    def options(self) -> dict:
        return self.options_json if isinstance(self.options_json, dict) else {}
