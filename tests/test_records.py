"""Tests for records CRUD and the filtered/sorted listing."""

from __future__ import annotations

import json

import pytest

from app.models.cell_value import CellValue
from app.services import record_service
from app.utils.exceptions import ForbiddenError, NotFoundError, ValidationError


def _url(table_id: int, record_id: int | None = None) -> str:
    base = f"/api/tables/{table_id}/records"
    return base if record_id is None else f"{base}/{record_id}"


@pytest.fixture
def seeded(db, demo_table):
    """Five records with A = 3, None, 1, 2, 1 and matching Status/Name."""
    t = demo_table
    rows = [
        {t.key("A"): 3, t.key("Status"): "open", t.key("Name"): "gamma"},
        {t.key("Status"): "closed", t.key("Name"): "delta"},
        {t.key("A"): 1, t.key("Status"): "open", t.key("Name"): "alpha"},
        {t.key("A"): 2, t.key("Status"): "closed", t.key("Name"): "beta"},
        {t.key("A"): 1, t.key("Name"): "alpha two"},
    ]
    return [record_service.create_record(db, t.id, values=v).id for v in rows]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


class TestCrud:
    def test_create_returns_values_and_formulas(self, client, editor_headers, demo_table) -> None:
        t = demo_table
        resp = client.post(
            _url(t.id),
            json={
                "values": {t.key("A"): 2, t.key("B"): 3},
                "formulas": {t.key("SUM"): "A * B"},
                "meta_json": {"source": "test"},
            },
            headers=editor_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["table_id"] == t.id
        assert body["readonly"] is False
        assert body["meta_json"] == {"source": "test"}
        assert body["values"][t.key("SUM")] == 6
        assert body["formulas"] == {t.key("SUM"): "A * B"}

    def test_get_and_update(self, client, editor_headers, demo_table, seeded) -> None:
        t = demo_table
        resp = client.put(
            _url(t.id, seeded[0]),
            json={"values": {t.key("Name"): "renamed"}},
            headers=editor_headers,
        )
        assert resp.status_code == 200
        body = client.get(_url(t.id, seeded[0]), headers=editor_headers).json()
        assert body["values"][t.key("Name")] == "renamed"
        assert body["values"][t.key("A")] == 3

    def test_delete_removes_cells(self, client, db, editor_headers, demo_table, seeded) -> None:
        t = demo_table
        resp = client.delete(_url(t.id, seeded[0]), headers=editor_headers)
        assert resp.status_code == 200
        assert client.get(_url(t.id, seeded[0]), headers=editor_headers).status_code == 404
        db.expire_all()
        assert db.query(CellValue).filter(CellValue.record_id == seeded[0]).count() == 0

    def test_unknown_field_key(self, client, editor_headers, demo_table) -> None:
        resp = client.post(_url(demo_table.id), json={"values": {"9999": 1}}, headers=editor_headers)
        assert resp.status_code == 422
        assert resp.json()["message"] == "Unknown field id: 9999"

    def test_readonly_field_rejected(self, client, editor_headers, demo_table) -> None:
        resp = client.post(
            _url(demo_table.id), json={"values": {demo_table.key("Locked"): "x"}}, headers=editor_headers
        )
        assert resp.status_code == 403

    def test_readonly_record_cannot_change(self, db, demo_table) -> None:
        t = demo_table
        record = record_service.create_record(db, t.id, values={t.key("A"): 1}, readonly=True)
        with pytest.raises(ForbiddenError):
            record_service.update_record(db, t.id, record.id, values={t.key("A"): 2})

    def test_formula_for_plain_field(self, db, demo_table) -> None:
        with pytest.raises(ValidationError, match="not a formula field"):
            record_service.create_record(db, demo_table.id, formulas={demo_table.key("A"): "B"})

    def test_missing_table(self, db) -> None:
        with pytest.raises(NotFoundError):
            record_service.create_record(db, 404)

    def test_viewer_can_read_but_not_write(self, client, viewer_headers, demo_table, seeded) -> None:
        assert client.get(_url(demo_table.id, seeded[0]), headers=viewer_headers).status_code == 200
        resp = client.post(_url(demo_table.id), json={"values": {}}, headers=viewer_headers)
        assert resp.status_code == 403
        assert client.delete(_url(demo_table.id, seeded[0]), headers=viewer_headers).status_code == 403


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    def _list(self, client, headers, table_id: int, **params):
        if "filters" in params:
            params["filters"] = json.dumps(params["filters"])
        return client.get(_url(table_id), params=params, headers=headers)

    def test_default_order_and_pagination(self, client, viewer_headers, demo_table, seeded) -> None:
        resp = self._list(client, viewer_headers, demo_table.id, page=2, size=2)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 5
        assert [r["id"] for r in body["data"]] == seeded[2:4]

    def test_filters_are_anded(self, client, viewer_headers, demo_table, seeded) -> None:
        t = demo_table
        resp = self._list(
            client,
            viewer_headers,
            t.id,
            filters=[
                {"field_id": t.fields["Status"], "op": "eq", "value": "open"},
                {"field_id": t.fields["A"], "op": "gte", "value": 2},
            ],
        )
        assert [r["id"] for r in resp.json()["data"]] == [seeded[0]]

    @pytest.mark.parametrize(
        ("op", "value", "expected_positions"),
        [
            ("is_null", None, [1]),
            ("is_not_null", None, [0, 2, 3, 4]),
            ("ne", 1, [0, 3]),
            ("lt", 2, [2, 4]),
            ("in", [2, 3], [0, 3]),
            ("between", [1, 2], [2, 3, 4]),
        ],
    )
    def test_number_ops(self, client, viewer_headers, demo_table, seeded, op, value, expected_positions) -> None:
        resp = self._list(
            client,
            viewer_headers,
            demo_table.id,
            filters=[{"field_id": demo_table.fields["A"], "op": op, "value": value}],
        )
        assert [r["id"] for r in resp.json()["data"]] == [seeded[i] for i in expected_positions]

    def test_contains(self, client, viewer_headers, demo_table, seeded) -> None:
        resp = self._list(
            client,
            viewer_headers,
            demo_table.id,
            filters=[{"field_id": demo_table.fields["Name"], "op": "contains", "value": "alpha"}],
        )
        assert [r["id"] for r in resp.json()["data"]] == [seeded[2], seeded[4]]

    def test_mismatched_types_never_match(self, client, viewer_headers, demo_table, seeded) -> None:
        resp = self._list(
            client,
            viewer_headers,
            demo_table.id,
            filters=[{"field_id": demo_table.fields["A"], "op": "gt", "value": "a"}],
        )
        assert resp.json()["total"] == 0

    def test_sort_ascending_nulls_first(self, client, viewer_headers, demo_table, seeded) -> None:
        resp = self._list(client, viewer_headers, demo_table.id, sort_field_id=demo_table.fields["A"])
        assert [r["id"] for r in resp.json()["data"]] == [seeded[i] for i in (1, 2, 4, 3, 0)]

    def test_sort_descending_nulls_last(self, client, viewer_headers, demo_table, seeded) -> None:
        resp = self._list(
            client, viewer_headers, demo_table.id, sort_field_id=demo_table.fields["A"], sort_direction="desc"
        )
        assert [r["id"] for r in resp.json()["data"]][0] == seeded[0]
        assert [r["id"] for r in resp.json()["data"]][-1] == seeded[1]

    def test_unknown_filter_field(self, client, viewer_headers, demo_table, seeded) -> None:
        resp = self._list(
            client, viewer_headers, demo_table.id, filters=[{"field_id": 9999, "op": "eq", "value": 1}]
        )
        assert resp.status_code == 422

    def test_bad_filter_json(self, client, viewer_headers, demo_table) -> None:
        resp = client.get(_url(demo_table.id), params={"filters": "[{"}, headers=viewer_headers)
        assert resp.status_code == 422
        assert resp.json()["details"]["field"] == "filters"

    def test_unsupported_op(self, client, viewer_headers, demo_table) -> None:
        resp = self._list(
            client,
            viewer_headers,
            demo_table.id,
            filters=[{"field_id": demo_table.fields["A"], "op": "like", "value": 1}],
        )
        assert resp.status_code == 422

    def test_service_clamps_page_size(self, db, demo_table, seeded) -> None:
        data, total = record_service.list_records(db, demo_table.id, size=1000)
        assert total == 5
        assert len(data) == 5
