"""User model — application account with role-based access control."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.database import Base


class User(Base):
    """System user whose role controls which endpoints it may call.

    Roles:
        - viewer: Read-only access to records, progress and reports.
        - editor: Writes cells, creates/updates records, imports CSV.
        - exporter: Read access plus exports (export is a separate service).
        - admin: Everything, including the audit log.

    Attributes:
        id: Primary key.
        username: Unique login username.
        password_hash: Bcrypt-hashed password (never store plain text).
        role: Role identifier from ``constants.ROLES``.
        active: Whether the account may log in.
        last_login_at: Timestamp of the last successful login.
        created_at: Record creation timestamp.
    """

    __tablename__ = "app_user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False, default="viewer")
    # "viewer", "editor", "exporter", "admin"
    active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
