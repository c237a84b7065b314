"""Tests for the FastAPI review API."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from regsheet.project import init_store


@pytest.fixture
def make_xlsx(tmp_path: Path):
    """Factory for creating XLSX files with openpyxl."""
    openpyxl = pytest.importorskip("openpyxl")

    def _make(sheets: dict[str, dict[str, Any]], filename: str = "test.xlsx") -> Path:
        wb = openpyxl.Workbook()
        first = True
        for sheet_name, cells in sheets.items():
            if first:
                ws = wb.active
                ws.title = sheet_name
                first = False
            else:
                ws = wb.create_sheet(sheet_name)
            for addr, val in cells.items():
                ws[addr] = val
        path = tmp_path / filename
        wb.save(str(path))
        wb.close()
        return path

    return _make


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return init_store(tmp_path / "store")


@pytest.fixture
def client(store_dir: Path):
    from fastapi.testclient import TestClient

    from regsheet.logging.events import reset_sink
    from regsheet.ui.server import create_app

    app = create_app(store_dir)
    yield TestClient(app)
    reset_sink()


def _upload(client, path: Path, **form) -> Any:
    data = {"model_type": "BOM Diff", "build_type": "KB Release", "release_date": "2026-10-18"}
    data.update(form)
    with open(path, "rb") as f:
        return client.post(
            "/api/upload",
            files={"file": (path.name, f, "application/octet-stream")},
            data=data,
        )


KB_SHEET = {"A1": "Part", "B1": "KB Go/No Go", "A2": "P1", "B2": "TBD"}


class TestUploadEndpoint:
    def test_upload(self, client, make_xlsx) -> None:
        resp = _upload(client, make_xlsx({"Sheet1": KB_SHEET}))
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["sheets"][0]["sheet_name"] == "Sheet1"

    def test_bad_extension(self, client, tmp_path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("hi")
        resp = _upload(client, path)
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "unsupported_format"

    def test_unknown_model_type(self, client, make_xlsx) -> None:
        resp = _upload(client, make_xlsx({"Sheet1": KB_SHEET}), model_type="Other")
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "invalid_request"


class TestFilesEndpoints:
    def test_list_and_get(self, client, make_xlsx) -> None:
        file_id = _upload(client, make_xlsx({"Sheet1": KB_SHEET})).json()["file"]["id"]

        listed = client.get("/api/regression_files", params={"model_type": "BOM Diff"}).json()
        assert [f["id"] for f in listed] == [file_id]
        assert client.get("/api/regression_files", params={"model_type": "AAS BOM Diff"}).json() == []

        one = client.get("/api/regression_files", params={"id": file_id})
        assert one.status_code == 200
        assert one.json()["file_name"] == "test.xlsx"

    def test_get_unknown(self, client) -> None:
        resp = client.get("/api/regression_files", params={"id": "nope"})
        assert resp.status_code == 404
        assert resp.json()["detail"] == {"kind": "not_found", "message": "File 'nope' not found"}

    def test_create_and_integrity(self, client) -> None:
        f = client.post("/api/regression_files", json={
            "file_name": "m.xlsx",
            "model_type": "BOM Diff",
            "build_type": "KB Release",
            "sheet_names": ["One", "Two"],
        }).json()
        resp = client.post("/api/regression_sheets", json={"file_id": f["id"], "sheet_name": "One"})
        assert resp.status_code == 200
        assert resp.json()["sheet_name"] == "One"

        report = client.get(f"/api/regression_files/{f['id']}/integrity").json()
        assert report["ok"] is False
        assert report["missing"] == ["Two"]


class TestSheetsEndpoints:
    def _sheet_id(self, client, make_xlsx) -> str:
        return _upload(client, make_xlsx({"Sheet1": KB_SHEET})).json()["sheets"][0]["id"]

    def test_list_by_file_and_get(self, client, make_xlsx) -> None:
        body = _upload(client, make_xlsx({"Sheet1": KB_SHEET})).json()
        sheets = client.get("/api/regression_sheets", params={"file_id": body["file"]["id"]}).json()
        assert [s["sheet_name"] for s in sheets] == ["Sheet1"]
        one = client.get("/api/regression_sheets", params={"id": sheets[0]["id"]}).json()
        assert one["data"] == [{"Part": "P1", "KB Go/No Go": "TBD"}]

    def test_requires_a_filter(self, client) -> None:
        assert client.get("/api/regression_sheets").status_code == 400

    def test_batch_create(self, client) -> None:
        f = client.post("/api/regression_files", json={
            "file_name": "m.xlsx", "model_type": "BOM Diff", "build_type": "KB Release",
        }).json()
        resp = client.post("/api/regression_sheets", json=[
            {"file_id": f["id"], "sheet_name": "A", "headers": ["X"], "data": [{"X": 1}]},
            {"file_id": f["id"], "sheet_name": "B"},
        ])
        assert resp.status_code == 200
        assert [s["sheet_name"] for s in resp.json()] == ["A", "B"]

    def test_create_for_missing_file(self, client) -> None:
        resp = client.post("/api/regression_sheets", json={"file_id": "missing", "sheet_name": "A"})
        assert resp.status_code == 409
        assert resp.json()["detail"]["kind"] == "foreign_key_violation"

    def test_patch_replaces_rows(self, client, make_xlsx) -> None:
        sheet_id = self._sheet_id(client, make_xlsx)
        resp = client.patch(
            "/api/regression_sheets",
            params={"id": sheet_id},
            json={"data": [{"Part": "P1", "KB Go/No Go": "Go"}]},
        )
        assert resp.status_code == 200
        assert resp.json()["data"][0]["KB Go/No Go"] == "Go"

    def test_patch_row_count_change(self, client, make_xlsx) -> None:
        sheet_id = self._sheet_id(client, make_xlsx)
        resp = client.patch("/api/regression_sheets", params={"id": sheet_id}, json={"data": []})
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "invalid_row_data"

    def test_view(self, client, make_xlsx) -> None:
        sheet_id = self._sheet_id(client, make_xlsx)
        view = client.get(f"/api/regression_sheets/{sheet_id}/view").json()
        assert [h["editable"] for h in view["headers"]] == [False, True]

    def test_edits(self, client, make_xlsx) -> None:
        sheet_id = self._sheet_id(client, make_xlsx)
        resp = client.post(
            f"/api/regression_sheets/{sheet_id}/edits",
            json={"edits": [{"row_index": 0, "header": "KB Go/No Go", "value": "Go"}]},
        )
        assert resp.status_code == 200
        reloaded = client.get("/api/regression_sheets", params={"id": sheet_id}).json()
        assert reloaded["data"][0] == {"Part": "P1", "KB Go/No Go": "Go"}

    def test_edit_row_outside_sheet(self, client, make_xlsx) -> None:
        sheet_id = self._sheet_id(client, make_xlsx)
        resp = client.post(
            f"/api/regression_sheets/{sheet_id}/edits",
            json={"edits": [{"row_index": 7, "header": "KB Go/No Go", "value": "Go"}]},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "invalid_row_data"

    def test_edit_locked_column(self, client, make_xlsx) -> None:
        sheet_id = self._sheet_id(client, make_xlsx)
        resp = client.post(
            f"/api/regression_sheets/{sheet_id}/edits",
            json={"edits": [{"row_index": 0, "header": "Part", "value": "P9"}]},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "not_editable"


class TestCommentsEndpoints:
    def test_round_trip(self, client, make_xlsx) -> None:
        sheet_id = _upload(client, make_xlsx({"Sheet1": KB_SHEET})).json()["sheets"][0]["id"]
        resp = client.post("/api/sheet_comments", json={
            "sheet_id": sheet_id, "author": "alice", "comment": "check P1", "row_index": 0,
        })
        assert resp.status_code == 200
        comments = client.get("/api/sheet_comments", params={"sheet_id": sheet_id}).json()
        assert [c["comment"] for c in comments] == ["check P1"]

    def test_unknown_sheet(self, client) -> None:
        resp = client.post("/api/sheet_comments", json={
            "sheet_id": "nope", "author": "a", "comment": "c", "row_index": 0,
        })
        assert resp.status_code == 404


class TestDashboardEndpoints:
    def test_catalog(self, client) -> None:
        body = client.get("/api/catalog").json()
        assert body["build_types"] == ["KB Release", "Skinny Release"]

    def test_summary_and_release_dates(self, client, make_xlsx) -> None:
        _upload(client, make_xlsx({"Sheet1": KB_SHEET}))
        assert client.get("/api/summary").json()["total"] == 1
        assert client.get("/api/release_dates").json() == ["2026-10-18"]

    def test_events(self, client, make_xlsx) -> None:
        _upload(client, make_xlsx({"Sheet1": KB_SHEET}))
        events = client.get("/api/events", params={"event_type": "upload_completed"}).json()
        assert len(events) == 1
        assert events[0]["display_type"] == "Upload Completed"
