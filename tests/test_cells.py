"""Tests for the revision-guarded batch cell write endpoint and service."""

from __future__ import annotations

import pytest
from sqlalchemy import update

from app.models.audit_log import AuditLog
from app.models.data_table import DataTable
from app.schemas.cells import CellWriteItem
from app.services import cell_service, record_service
from app.utils.exceptions import ConflictError, ValidationError


def _write(client, headers, table_id: int, revision: int, writes: list[dict]):
    return client.post(
        f"/api/tables/{table_id}/cells/batch-write",
        json={"revision": revision, "writes": writes},
        headers=headers,
    )


def _values(client, headers, table_id: int, record_id: int) -> dict:
    resp = client.get(f"/api/tables/{table_id}/records/{record_id}", headers=headers)
    assert resp.status_code == 200
    return resp.json()["values"]


def _revision(db, table_id: int) -> int:
    db.expire_all()
    return db.query(DataTable.revision).filter(DataTable.id == table_id).scalar()


@pytest.fixture
def record_id(db, demo_table) -> int:
    record = record_service.create_record(db, demo_table.id, values={demo_table.key("A"): 10})
    return record.id


# ---------------------------------------------------------------------------
# Successful writes
# ---------------------------------------------------------------------------


class TestBatchWrite:
    def test_increments_revision_once(self, client, db, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["A"], "value": 11},
                {"record_id": record_id, "field_id": t.fields["Name"], "value": "Widget"},
            ],
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "revision": 1, "written": 2}
        assert _revision(db, t.id) == 1

        values = _values(client, editor_headers, t.id, record_id)
        assert values[t.key("A")] == 11
        assert values[t.key("Name")] == "Widget"

    def test_formula_recomputed_after_write(self, client, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["B"], "value": 5},
                {"record_id": record_id, "field_id": t.fields["SUM"], "formula_expr": "A + B"},
            ],
        )
        assert resp.status_code == 200
        assert _values(client, editor_headers, t.id, record_id)[t.key("SUM")] == 15

        resp = _write(
            client, editor_headers, t.id, 1, [{"record_id": record_id, "field_id": t.fields["A"], "value": 20}]
        )
        assert resp.status_code == 200
        body = client.get(f"/api/tables/{t.id}/records/{record_id}", headers=editor_headers).json()
        assert body["values"][t.key("SUM")] == 25
        assert body["formulas"][t.key("SUM")] == "A + B"

    def test_precision_applied(self, client, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client, editor_headers, t.id, 0, [{"record_id": record_id, "field_id": t.fields["B"], "value": 1.005}]
        )
        assert resp.status_code == 200
        assert _values(client, editor_headers, t.id, record_id)[t.key("B")] == 1.01

    def test_null_empties_cell(self, client, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client, editor_headers, t.id, 0, [{"record_id": record_id, "field_id": t.fields["A"], "value": None}]
        )
        assert resp.status_code == 200
        assert _values(client, editor_headers, t.id, record_id).get(t.key("A")) is None

    def test_duplicate_key_last_write_wins(self, client, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["A"], "value": 1},
                {"record_id": record_id, "field_id": t.fields["A"], "value": 2},
            ],
        )
        assert resp.status_code == 200
        assert resp.json()["written"] == 2
        assert _values(client, editor_headers, t.id, record_id)[t.key("A")] == 2

    def test_appends_audit_row(self, client, db, users, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["A"], "value": 1},
                {"record_id": record_id, "field_id": t.fields["B"], "value": 2},
            ],
        )
        db.expire_all()
        rows = db.query(AuditLog).filter(AuditLog.action == "write_cells").all()
        assert len(rows) == 1
        assert rows[0].count == 2
        assert rows[0].table_id == t.id
        assert rows[0].user_id == users["editor"].id


# ---------------------------------------------------------------------------
# Revision conflicts
# ---------------------------------------------------------------------------


class TestConflicts:
    def test_stale_revision_lists_only_differing_writes(
        self, client, db, editor_headers, demo_table, record_id
    ) -> None:
        t = demo_table
        first = _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["A"], "value": 11},
                {"record_id": record_id, "field_id": t.fields["SUM"], "formula_expr": "A * 2"},
            ],
        )
        assert first.status_code == 200

        stale = _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["A"], "value": 11},
                {"record_id": record_id, "field_id": t.fields["SUM"], "formula_expr": "A * 2"},
                {"record_id": record_id, "field_id": t.fields["B"], "value": 3},
                {"record_id": record_id, "field_id": t.fields["Name"], "value": "late"},
            ],
        )
        assert stale.status_code == 409
        body = stale.json()
        assert body["code"] == "REVISION_CONFLICT"
        assert body["details"]["latest_revision"] == 1

        conflicts = {c["field_id"]: c for c in body["details"]["conflicts"]}
        assert set(conflicts) == {t.fields["B"], t.fields["Name"]}
        assert conflicts[t.fields["B"]]["current_value"] is None
        assert conflicts[t.fields["B"]]["attempted_value"] == 3
        assert conflicts[t.fields["Name"]]["attempted_value"] == "late"

        assert _revision(db, t.id) == 1
        values = _values(client, editor_headers, t.id, record_id)
        assert values.get(t.key("B")) is None
        assert values.get(t.key("Name")) is None

    def test_changed_formula_is_a_conflict(self, client, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        _write(
            client, editor_headers, t.id, 0,
            [{"record_id": record_id, "field_id": t.fields["SUM"], "formula_expr": "A + 1"}],
        )
        stale = _write(
            client, editor_headers, t.id, 0,
            [{"record_id": record_id, "field_id": t.fields["SUM"], "formula_expr": "A + 2"}],
        )
        assert stale.status_code == 409
        [conflict] = stale.json()["details"]["conflicts"]
        assert conflict["current_formula_expr"] == "A + 1"
        assert conflict["attempted_formula_expr"] == "A + 2"

    def test_revision_moved_between_check_and_write(self, db, demo_table, record_id, monkeypatch) -> None:
        t = demo_table
        original = cell_service._resolve_and_validate

        def _racing(session, table_id, writes):
            result = original(session, table_id, writes)
            # Another writer commits first.
            session.execute(update(DataTable).where(DataTable.id == table_id).values(revision=5))
            session.commit()
            return result

        monkeypatch.setattr(cell_service, "_resolve_and_validate", _racing)
        writes = [CellWriteItem(record_id=record_id, field_id=t.fields["A"], value=99)]

        with pytest.raises(ConflictError) as exc_info:
            cell_service.batch_write(db, t.id, 0, writes, None)

        assert exc_info.value.latest_revision == 5
        assert len(exc_info.value.conflicts) == 1
        assert _revision(db, t.id) == 5
        assert record_service.get_record(db, t.id, record_id)["values"][t.key("A")] == 10


# ---------------------------------------------------------------------------
# Rejected batches
# ---------------------------------------------------------------------------


class TestRejectedBatches:
    def test_one_invalid_write_rejects_the_batch(
        self, client, db, editor_headers, demo_table, record_id
    ) -> None:
        t = demo_table
        resp = _write(
            client,
            editor_headers,
            t.id,
            0,
            [
                {"record_id": record_id, "field_id": t.fields["A"], "value": 1},
                {"record_id": record_id, "field_id": t.fields["Name"], "value": "x" * 21},
            ],
        )
        assert resp.status_code == 422
        assert "maxLength" in resp.json()["message"]
        assert _revision(db, t.id) == 0
        assert _values(client, editor_headers, t.id, record_id)[t.key("A")] == 10

    def test_readonly_record(self, client, db, editor_headers, demo_table) -> None:
        t = demo_table
        locked = record_service.create_record(db, t.id, values={t.key("A"): 1}, readonly=True)
        resp = _write(client, editor_headers, t.id, 0, [{"record_id": locked.id, "field_id": t.fields["A"], "value": 2}])
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"
        assert _revision(db, t.id) == 0

    def test_readonly_field(self, client, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client, editor_headers, t.id, 0, [{"record_id": record_id, "field_id": t.fields["Locked"], "value": "x"}]
        )
        assert resp.status_code == 403
        assert "Locked" in resp.json()["message"]

    def test_unknown_field(self, client, editor_headers, demo_table, record_id) -> None:
        resp = _write(
            client, editor_headers, demo_table.id, 0, [{"record_id": record_id, "field_id": 9999, "value": 1}]
        )
        assert resp.status_code == 422
        assert resp.json()["message"] == "Field not found: 9999"

    def test_unknown_record(self, client, editor_headers, demo_table) -> None:
        resp = _write(
            client, editor_headers, demo_table.id, 0,
            [{"record_id": 9999, "field_id": demo_table.fields["A"], "value": 1}],
        )
        assert resp.status_code == 422
        assert resp.json()["message"] == "Record not found: 9999"

    def test_formula_on_plain_field(self, client, editor_headers, demo_table, record_id) -> None:
        resp = _write(
            client, editor_headers, demo_table.id, 0,
            [{"record_id": record_id, "field_id": demo_table.fields["A"], "formula_expr": "B * 2"}],
        )
        assert resp.status_code == 422
        assert "not a formula field" in resp.json()["message"]

    def test_invalid_formula_syntax(self, client, editor_headers, demo_table, record_id) -> None:
        resp = _write(
            client, editor_headers, demo_table.id, 0,
            [{"record_id": record_id, "field_id": demo_table.fields["SUM"], "formula_expr": "A +* B"}],
        )
        assert resp.status_code == 422
        assert "invalid formula" in resp.json()["message"]

    def test_wrong_type(self, client, editor_headers, demo_table, record_id) -> None:
        resp = _write(
            client, editor_headers, demo_table.id, 0,
            [{"record_id": record_id, "field_id": demo_table.fields["A"], "value": "ten"}],
        )
        assert resp.status_code == 422
        assert resp.json()["details"]["field"] == "A"

    def test_integer_beyond_float_range(self, client, db, editor_headers, demo_table, record_id) -> None:
        t = demo_table
        resp = _write(
            client, editor_headers, t.id, 0,
            [{"record_id": record_id, "field_id": t.fields["A"], "value": int("9" * 400)}],
        )
        assert resp.status_code == 422
        assert resp.json()["details"]["field"] == "A"
        assert _revision(db, t.id) == 0
        assert _values(client, editor_headers, t.id, record_id)[t.key("A")] == 10

    def test_empty_batch(self, client, editor_headers, demo_table, db) -> None:
        resp = _write(client, editor_headers, demo_table.id, 0, [])
        assert resp.status_code == 422
        with pytest.raises(ValidationError):
            cell_service.batch_write(db, demo_table.id, 0, [], None)

    def test_missing_table(self, client, editor_headers, record_id, demo_table) -> None:
        resp = _write(
            client, editor_headers, 999, 0, [{"record_id": record_id, "field_id": demo_table.fields["A"], "value": 1}]
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_viewer_cannot_write(self, client, viewer_headers, demo_table, record_id) -> None:
        resp = _write(
            client, viewer_headers, demo_table.id, 0,
            [{"record_id": record_id, "field_id": demo_table.fields["A"], "value": 1}],
        )
        assert resp.status_code == 403

    def test_requires_authentication(self, client, demo_table, record_id) -> None:
        resp = _write(client, {}, demo_table.id, 0, [{"record_id": record_id, "field_id": 1, "value": 1}])
        assert resp.status_code == 401
