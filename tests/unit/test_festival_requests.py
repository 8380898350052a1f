"""Unit tests for reading festival request files in gig_etl.festivals."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from gig_etl.festivals import read_festival_requests
from gig_etl.shared import ParseError

FESTIVAL_ID = "3f2b8c1e-9a4d-4e2f-8b1a-0c5d6e7f8a9b"


def _write(tmp_path: Path, payload) -> Path:
    p = tmp_path / "festivals.json"
    p.write_text(json.dumps(payload))
    return p


class TestReadFestivalRequests:
    def test_list_with_optional_ids(self, tmp_path: Path):
        p = _write(tmp_path, [
            {"name": "Download", "price": "100"},
            {"id": FESTIVAL_ID, "name": "Glastonbury"},
        ])
        pairs = read_festival_requests(p)
        assert [fid for fid, _ in pairs] == [None, FESTIVAL_ID]
        assert [req.name for _, req in pairs] == ["Download", "Glastonbury"]

    def test_wrapped_object(self, tmp_path: Path):
        p = _write(tmp_path, {"festivals": [{"name": "Reading"}]})
        assert read_festival_requests(p)[0][1].name == "Reading"

    def test_non_object_entries_rejected(self, tmp_path: Path):
        with pytest.raises(ValueError, match="festival objects"):
            read_festival_requests(_write(tmp_path, ["Download"]))

    def test_bad_field_is_parse_error(self, tmp_path: Path):
        with pytest.raises(ParseError):
            read_festival_requests(_write(tmp_path, [{"name": "Download", "year": "soon"}]))
