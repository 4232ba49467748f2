"""DataTable model — a named collection of records sharing a field schema."""

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


class DataTable(Base):
    """User-defined table.

    ``revision`` is the optimistic-concurrency token for every cell of the
    table: it increases on structural changes and on each successful batch
    cell write, and never decreases.

    Attributes:
        id: Primary key.
        name: Display name.
        revision: Monotonic revision counter (starts at 0).
        meta_json: Free-form metadata blob.
        export_allowed_roles: Roles allowed to export this table.
        created_at: Record creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "data_table"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    revision = Column(Integer, nullable=False, default=0)
    meta_json = Column(JSON, nullable=False, default=dict)
    export_allowed_roles = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    fields = relationship(
        "TableField",
        back_populates="table",
        order_by="TableField.id",
        lazy="select",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    records = relationship(
        "Record",
        back_populates="table",
        lazy="select",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
