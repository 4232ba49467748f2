"""
Audit log service.

``append_log`` only stages the row on the session: it is always called from
inside a mutating transaction and is committed (or rolled back) together
with the mutation it documents.  ``list_logs`` backs ``GET /api/logs``.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.utils.constants import LOG_ACTIONS

logger = logging.getLogger(__name__)


def append_log(
    db: Session,
    action: str,
    user_id: int | None = None,
    table_id: int | None = None,
    count: int = 0,
    view_id: int | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row on *db* without committing.

    Raises:
        ValueError: If *action* is not one of ``LOG_ACTIONS``.
    """
    if action not in LOG_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    entry = AuditLog(
        action=action,
        user_id=user_id,
        table_id=table_id,
        view_id=view_id,
        count=count,
        meta_json=meta,
    )
    db.add(entry)
    logger.debug(
        "append_log: action=%s user_id=%s table_id=%s count=%d",
        action, user_id, table_id, count,
    )
    return entry


def list_logs(
    db: Session,
    page: int = 1,
    size: int = 50,
    action: str | None = None,
    user_id: int | None = None,
    table_id: int | None = None,
    view_id: int | None = None,
) -> tuple[list[AuditLog], int]:
    """Return one page of audit rows, newest first, plus the total count.

    An ``action`` that is not a known audit action is ignored rather than
    matching nothing.
    """
    query = db.query(AuditLog)
    if action and action.strip() in LOG_ACTIONS:
        query = query.filter(AuditLog.action == action.strip())
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if table_id is not None:
        query = query.filter(AuditLog.table_id == table_id)
    if view_id is not None:
        query = query.filter(AuditLog.view_id == view_id)

    total: int = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    logger.debug("list_logs: page=%d size=%d total=%d", page, size, total)
    return rows, total
