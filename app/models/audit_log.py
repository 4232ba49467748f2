"""AuditLog model — append-only record of every audited action."""

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.database import Base


class AuditLog(Base):
    """Immutable audit entry.

    Rows are written inside the same transaction as the mutation they
    document, so a failed audit insert rolls the mutation back as well.
    ``table_id`` and ``user_id`` are plain integers rather than foreign keys
    so history survives deletion of the table or user.

    Attributes:
        id: Primary key.
        action: One of ``constants.LOG_ACTIONS``.
        user_id: Acting user, when known.
        table_id: Affected table, when applicable.
        view_id: Affected view, when applicable.
        count: Rows or cells affected.
        meta_json: Extra context (e.g. ``{"dry_run": true}`` for imports).
        created_at: UTC timestamp of the action.
    """

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(30), nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    table_id = Column(Integer, nullable=True, index=True)
    view_id = Column(Integer, nullable=True)
    count = Column(Integer, nullable=False, default=0)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
