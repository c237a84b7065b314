"""Tests for the filesystem regression store."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import pytest

from regsheet.errors import (
    ForeignKeyViolation,
    InvalidRowData,
    NotFound,
    StorageFailure,
)
from regsheet.models import FileMeta, ParsedSheet
from regsheet.project import init_store
from regsheet.store import RegressionStore, validate_rows


@pytest.fixture
def store(tmp_path: Path) -> RegressionStore:
    return RegressionStore(init_store(tmp_path / "store"), fsync=False)


def _meta(**overrides) -> FileMeta:
    values = {
        "file_name": "regression.xlsx",
        "model_type": "BOM Diff",
        "build_type": "KB Release",
        "release_date": "2026-10-18",
        "sheet_names": ["Sheet1"],
    }
    values.update(overrides)
    return FileMeta(**values)


def _sheet(name: str = "Sheet1") -> ParsedSheet:
    return ParsedSheet(
        sheet_name=name,
        headers=["Part", "KB Go/No Go"],
        rows=[
            {"Part": "P1", "KB Go/No Go": "TBD"},
            {"Part": "P2", "KB Go/No Go": ""},
        ],
    )


class TestFiles:
    def test_create_assigns_id_and_timestamp(self, store) -> None:
        f = store.create_file(_meta())
        assert f.id
        assert f.uploaded_at.endswith("Z")
        assert store.get_file(f.id) == f

    def test_create_from_dict(self, store) -> None:
        f = store.create_file(_meta().model_dump())
        assert store.file_exists(f.id)

    def test_get_unknown(self, store) -> None:
        with pytest.raises(NotFound) as exc_info:
            store.get_file("nope")
        assert exc_info.value.entity == "file"

    def test_unsafe_id_is_not_found(self, store) -> None:
        with pytest.raises(NotFound):
            store.get_file("../regsheet")

    def test_list_newest_first(self, store) -> None:
        a = store.create_file(_meta(file_name="a.xlsx"))
        b = store.create_file(_meta(file_name="b.xlsx"))
        c = store.create_file(_meta(file_name="c.xlsx", model_type="AAS BOM Diff"))
        names = [f.file_name for f in store.list_files()]
        assert names[0] == "c.xlsx"
        assert set(names) == {"a.xlsx", "b.xlsx", "c.xlsx"}
        assert [f.id for f in store.list_files(model_type="AAS BOM Diff")] == [c.id]
        uploaded = [f.uploaded_at for f in store.list_files()]
        assert uploaded == sorted(uploaded, reverse=True)
        assert {a.id, b.id} <= {f.id for f in store.list_files(model_type="BOM Diff")}


class TestSheets:
    def test_create_and_read_back(self, store) -> None:
        f = store.create_file(_meta(sheet_names=["One", "Two"]))
        created = store.create_sheets(f.id, [_sheet("One"), _sheet("Two")])
        assert [s.sheet_index for s in created] == [0, 1]
        sheets = store.get_sheets_by_file(f.id)
        assert [s.sheet_name for s in sheets] == ["One", "Two"]
        assert sheets[0].data[0] == {"Part": "P1", "KB Go/No Go": "TBD"}
        assert store.get_sheet(created[1].id) == created[1]

    def test_row_key_order_survives_round_trip(self, store) -> None:
        f = store.create_file(_meta())
        sheet = ParsedSheet(sheet_name="S", headers=["Z", "A"], rows=[{"Z": 1, "A": 2}])
        created = store.create_sheets(f.id, [sheet])[0]
        assert list(store.get_sheet(created.id).data[0].keys()) == ["Z", "A"]

    def test_foreign_key(self, store) -> None:
        with pytest.raises(ForeignKeyViolation):
            store.create_sheets("missing", [_sheet()])

    def test_duplicate_headers_rejected(self, store) -> None:
        f = store.create_file(_meta())
        bad = ParsedSheet(sheet_name="S", headers=["A", "A"], rows=[])
        with pytest.raises(InvalidRowData):
            store.create_sheets(f.id, [bad])

    def test_unknown_row_key_rejected(self, store) -> None:
        f = store.create_file(_meta())
        bad = ParsedSheet(sheet_name="S", headers=["A"], rows=[{"A": 1, "B": 2}])
        with pytest.raises(InvalidRowData):
            store.create_sheets(f.id, [bad])
        assert store.get_sheets_by_file(f.id) == []

    def test_later_batches_continue_index(self, store) -> None:
        f = store.create_file(_meta())
        store.create_sheets(f.id, [_sheet("One")])
        second = store.create_sheets(f.id, [_sheet("Two")])
        assert second[0].sheet_index == 1

    def test_unknown_sheet(self, store) -> None:
        with pytest.raises(NotFound):
            store.get_sheet("nope")

    def test_sheets_of_unknown_file(self, store) -> None:
        assert store.get_sheets_by_file("nope") == []


class TestReplaceSheetData:
    def test_full_replacement(self, store) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]
        rows = [dict(r) for r in sheet.data]
        rows[0]["KB Go/No Go"] = "Go"
        updated = store.replace_sheet_data(sheet.id, rows)
        assert updated.data[0]["KB Go/No Go"] == "Go"
        reloaded = store.get_sheet(sheet.id)
        assert reloaded.data == rows
        assert reloaded.headers == sheet.headers
        assert reloaded.sheet_index == sheet.sheet_index

    def test_row_count_must_not_change(self, store) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]
        with pytest.raises(InvalidRowData):
            store.replace_sheet_data(sheet.id, sheet.data[:1])
        assert store.get_sheet(sheet.id).data == sheet.data

    def test_non_scalar_rejected(self, store) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]
        rows = [dict(r) for r in sheet.data]
        rows[0]["Part"] = {"nested": True}
        with pytest.raises(InvalidRowData):
            store.replace_sheet_data(sheet.id, rows)

    def test_unknown_sheet(self, store) -> None:
        with pytest.raises(NotFound):
            store.replace_sheet_data("nope", [])

    def test_write_failure_leaves_record_intact(self, store, monkeypatch) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]

        def _boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", _boom)
        rows = [dict(r) for r in sheet.data]
        rows[0]["KB Go/No Go"] = "Go"
        with pytest.raises(StorageFailure) as exc_info:
            store.replace_sheet_data(sheet.id, rows)
        assert isinstance(exc_info.value.__cause__, OSError)
        monkeypatch.undo()

        assert store.get_sheet(sheet.id).data == sheet.data
        leftovers = [p for p in (store.sheets_dir / f.id).iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_corrupt_record(self, store) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]
        (store.sheets_dir / f.id / f"{sheet.id}.json").write_text("{not json")
        with pytest.raises(StorageFailure):
            store.get_sheet(sheet.id)

    def test_record_is_plain_json(self, store) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]
        raw = json.loads((store.sheets_dir / f.id / f"{sheet.id}.json").read_text())
        assert raw["file_id"] == f.id
        assert raw["data"][1] == {"Part": "P2", "KB Go/No Go": ""}


class TestConcurrentWrites:
    def test_parallel_replacements_never_interleave(self, store) -> None:
        f = store.create_file(_meta())
        sheet = store.create_sheets(f.id, [_sheet()])[0]
        num_threads = 6
        saves_per_thread = 10
        barrier = threading.Barrier(num_threads)
        errors: list[Exception] = []

        def rows_for(thread_id: int) -> list[dict]:
            return [
                {"Part": "P1", "KB Go/No Go": f"t{thread_id}-a" * 50},
                {"Part": "P2", "KB Go/No Go": f"t{thread_id}-b" * 50},
            ]

        def writer(thread_id: int) -> None:
            barrier.wait()
            try:
                for _ in range(saves_per_thread):
                    store.replace_sheet_data(sheet.id, rows_for(thread_id))
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=writer, args=(tid,))
            for tid in range(num_threads)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        raw = json.loads((store.sheets_dir / f.id / f"{sheet.id}.json").read_text())
        assert raw["data"] in [rows_for(tid) for tid in range(num_threads)]
        assert store.get_sheet(sheet.id).data == raw["data"]

    def test_parallel_creates_get_distinct_indices(self, store) -> None:
        f = store.create_file(_meta())
        num_threads = 8
        barrier = threading.Barrier(num_threads)
        errors: list[Exception] = []

        def creator(thread_id: int) -> None:
            barrier.wait()
            try:
                store.create_sheets(f.id, [_sheet(f"S{thread_id}")])
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=creator, args=(tid,))
            for tid in range(num_threads)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        indices = [s.sheet_index for s in store.get_sheets_by_file(f.id)]
        assert indices == list(range(num_threads))


class TestValidateRows:
    def test_accepts_scalars(self) -> None:
        rows = [{"A": "x", "B": 1, "C": 1.5, "D": False}]
        assert validate_rows(rows, ["A", "B", "C", "D"], expected_count=1) is rows

    def test_rejects_non_list(self) -> None:
        with pytest.raises(InvalidRowData):
            validate_rows({"A": 1}, ["A"])

    def test_rejects_non_dict_row(self) -> None:
        with pytest.raises(InvalidRowData):
            validate_rows([["x"]], ["A"])

    def test_rejects_null(self) -> None:
        with pytest.raises(InvalidRowData):
            validate_rows([{"A": None}], ["A"])
