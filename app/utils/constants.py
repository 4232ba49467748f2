"""
Application-wide constants for the Gridbase tabular store.

Defines the role, field-type and audit-action enumerations plus the
role groups used by the routers' ``require_role`` guards.
"""

from typing import Final

# ---------------------------------------------------------------------------
# User roles
# ---------------------------------------------------------------------------

ROLES: Final[list[str]] = [
    "viewer",
    "editor",
    "exporter",
    "admin",
]

#: Roles allowed to mutate cells, create/update/delete records and import CSV.
WRITE_ROLES: Final[tuple[str, ...]] = ("editor", "admin")

#: Roles allowed to read the audit log.
AUDIT_ROLES: Final[tuple[str, ...]] = ("admin",)

# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------

FIELD_TYPE_TEXT: Final[str] = "text"
FIELD_TYPE_NUMBER: Final[str] = "number"
FIELD_TYPE_BOOLEAN: Final[str] = "boolean"
FIELD_TYPE_SINGLE_SELECT: Final[str] = "single_select"
FIELD_TYPE_MULTI_SELECT: Final[str] = "multi_select"
FIELD_TYPE_DATE: Final[str] = "date"
FIELD_TYPE_ATTACHMENT: Final[str] = "attachment"
FIELD_TYPE_FORMULA: Final[str] = "formula"

FIELD_TYPES: Final[list[str]] = [
    FIELD_TYPE_TEXT,
    FIELD_TYPE_NUMBER,
    FIELD_TYPE_BOOLEAN,
    FIELD_TYPE_SINGLE_SELECT,
    FIELD_TYPE_MULTI_SELECT,
    FIELD_TYPE_DATE,
    FIELD_TYPE_ATTACHMENT,
    FIELD_TYPE_FORMULA,
]

# ---------------------------------------------------------------------------
# Audit log actions
# ---------------------------------------------------------------------------

LOG_ACTION_LOGIN: Final[str] = "login"
LOG_ACTION_WRITE_CELLS: Final[str] = "write_cells"
LOG_ACTION_IMPORT: Final[str] = "import"
LOG_ACTION_EXPORT: Final[str] = "export"

LOG_ACTIONS: Final[list[str]] = [
    LOG_ACTION_LOGIN,
    LOG_ACTION_WRITE_CELLS,
    LOG_ACTION_IMPORT,
    LOG_ACTION_EXPORT,
    "create_table",
    "update_table",
    "delete_table",
    "create_field",
    "update_field",
    "delete_field",
]

# ---------------------------------------------------------------------------
# Import progress states
# ---------------------------------------------------------------------------

IMPORT_STATUS_IDLE: Final[str] = "idle"
IMPORT_STATUS_VALIDATING: Final[str] = "validating"
IMPORT_STATUS_INSERTING: Final[str] = "inserting"
IMPORT_STATUS_DONE: Final[str] = "done"
IMPORT_STATUS_ERROR: Final[str] = "error"

IMPORT_ACTIVE_STATUSES: Final[frozenset[str]] = frozenset(
    {IMPORT_STATUS_VALIDATING, IMPORT_STATUS_INSERTING}
)

# ---------------------------------------------------------------------------
# Record listing
# ---------------------------------------------------------------------------

RECORD_FILTER_OPS: Final[list[str]] = [
    "eq",
    "ne",
    "lt",
    "lte",
    "gt",
    "gte",
    "contains",
    "in",
    "between",
    "is_null",
    "is_not_null",
]

RECORD_PAGE_SIZE_MAX: Final[int] = 100
