"""Tests for locked NDJSON helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from regsheet.ndjson import append_line, dumps_line, iter_records, read_text


class TestNdjson:
    def test_append_creates_parents(self, tmp_path: Path) -> None:
        path = tmp_path / "a" / "b" / "log.ndjson"
        append_line(path, dumps_line({"n": 1}))
        append_line(path, dumps_line({"n": 2}), fsync=True)
        assert [r["n"] for _, r in iter_records(read_text(path))] == [1, 2]

    def test_sorted_keys(self) -> None:
        line = dumps_line({"b": 1, "a": 2}, sort_keys=True)
        assert line.endswith("\n")
        assert list(json.loads(line)) == ["a", "b"]

    def test_tail_drops_partial_first_line(self, tmp_path: Path) -> None:
        path = tmp_path / "log.ndjson"
        for i in range(50):
            append_line(path, dumps_line({"i": i}))
        text = read_text(path, tail_bytes=40)
        records = [r for _, r in iter_records(text)]
        assert records
        assert records[-1] == {"i": 49}
        assert len(text) <= 40

    def test_iter_records_skips_blank_lines(self) -> None:
        records = list(iter_records('{"a": 1}\n\n  \n{"a": 2}\n'))
        assert records == [(1, {"a": 1}), (4, {"a": 2})]

    def test_iter_records_raises_on_garbage(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            list(iter_records("{nope\n"))
