"""SQLAlchemy models package for Gridbase.

Importing all models here ensures that SQLAlchemy's mapper registry is
populated before ``Base.metadata.create_all()`` or Alembic migrations run.
The import order follows the foreign-key dependency graph so that parent
tables are always registered before their children.

Usage from other modules:
    from app.models import DataTable, TableField
"""

# Accounts
from app.models.user import User  # noqa: F401

# Schema: tables and their columns
from app.models.data_table import DataTable  # noqa: F401
from app.models.table_field import TableField  # noqa: F401

# Data: rows and cells
from app.models.record import Record  # noqa: F401
from app.models.cell_value import CellValue  # noqa: F401

# Audit log
from app.models.audit_log import AuditLog  # noqa: F401

__all__ = [
    "User",
    "DataTable",
    "TableField",
    "Record",
    "CellValue",
    "AuditLog",
]
