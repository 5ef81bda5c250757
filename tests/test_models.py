"""Tests for stroke points, stroke views and record encoding."""

import json
from datetime import datetime, timezone

import pytest

from drawat.models import (
    StrokePoint,
    VectorRecord,
    decode_paths,
    format_timestamp,
    join_strokes,
    parse_timestamp,
    split_strokes,
)

from .conftest import point


class TestStrokePoint:
    """Tests for StrokePoint wire conversion."""

    def test_from_dict(self):
        p = StrokePoint.from_dict(
            {"x": 1, "y": 2, "color": "#ff0000", "size": 4, "isNewStroke": True, "author": "did:plc:a"}
        )

        assert p.x == 1
        assert p.is_new_stroke is True
        assert p.author == "did:plc:a"
        assert p.extra == {}

    def test_to_dict_uses_wire_names(self):
        d = point(3, 4, new=True).to_dict()

        assert d["isNewStroke"] is True
        assert "is_new_stroke" not in d

    def test_extra_keys_are_preserved(self):
        data = {"x": 1, "y": 2, "color": "red", "size": 1, "isNewStroke": False,
                "author": "did:plc:a", "pressure": 0.5}

        p = StrokePoint.from_dict(data)

        assert p.extra == {"pressure": 0.5}
        assert p.to_dict()["pressure"] == 0.5

    def test_missing_field_raises(self):
        with pytest.raises(ValueError, match="author"):
            StrokePoint.from_dict({"x": 1, "y": 2, "color": "red", "size": 1, "isNewStroke": False})

    def test_non_object_raises(self):
        with pytest.raises(ValueError, match="object"):
            StrokePoint.from_dict(1)


class TestDecodePaths:
    """Tests for decoding list and blob payloads."""

    def test_none(self):
        assert decode_paths(None) is None

    def test_list(self):
        paths = decode_paths([point(1, 1, new=True).to_dict()])
        assert paths == [point(1, 1, new=True)]

    def test_json_string_blob(self):
        blob = json.dumps([point(1, 1, new=True).to_dict(), point(2, 2).to_dict()])
        assert decode_paths(blob) == [point(1, 1, new=True), point(2, 2)]

    def test_json_null_blob(self):
        assert decode_paths("null") is None

    def test_rejects_non_list(self):
        with pytest.raises(ValueError):
            decode_paths({"x": 1})


class TestStrokes:
    """Tests for rebuilding strokes from the marker bit."""

    def test_split_on_marker(self):
        points = [point(0, new=True), point(1), point(2, new=True), point(3)]

        strokes = split_strokes(points)

        assert [[p.x for p in s] for s in strokes] == [[0, 1], [2, 3]]

    def test_first_point_opens_stroke_without_marker(self):
        strokes = split_strokes([point(0), point(1), point(2, new=True)])

        assert [[p.x for p in s] for s in strokes] == [[0, 1], [2]]

    def test_split_empty(self):
        assert split_strokes([]) == []

    def test_join_resets_markers(self):
        strokes = [[point(0), point(1, new=True)], [point(2)]]

        flat = join_strokes(strokes)

        assert [p.is_new_stroke for p in flat] == [True, False, True]
        assert split_strokes(flat) == [[point(0, new=True), point(1)], [point(2, new=True)]]


class TestTimestamps:
    """Tests for timestamp parsing and formatting."""

    def test_parse_z_suffix(self):
        ts = parse_timestamp("2026-02-03T10:00:00.000Z")
        assert ts == datetime(2026, 2, 3, 10, 0, tzinfo=timezone.utc)

    def test_parse_naive_assumes_utc(self):
        assert parse_timestamp("2026-02-03T10:00:00").tzinfo == timezone.utc

    def test_parse_invalid(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None

    def test_parse_non_string(self):
        assert parse_timestamp(123) is None
        assert parse_timestamp(["2026-02-03"]) is None

    def test_format(self):
        ts = datetime(2026, 2, 3, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(ts) == "2026-02-03T10:00:00.123Z"


class TestVectorRecord:
    """Tests for backend-specific record encodings."""

    def test_repository_value(self):
        ts = datetime(2026, 2, 3, 10, 0, tzinfo=timezone.utc)
        rec = VectorRecord(did="did:plc:a", paths=[point(1, new=True)], updated_at=ts)

        value = rec.to_repository_value("blue.drawat.vector")

        assert value["$type"] == "blue.drawat.vector"
        assert value["createdAt"] == "2026-02-03T10:00:00.000Z"
        assert value["paths"][0]["isNewStroke"] is True

    def test_from_repository_value_with_string_paths(self):
        value = {
            "$type": "blue.drawat.vector",
            "did": "did:plc:a",
            "paths": json.dumps([point(5).to_dict()]),
            "createdAt": "2026-02-03T10:00:00.000Z",
        }

        rec = VectorRecord.from_repository_value("did:plc:a", value)

        assert rec.paths == [point(5)]
        assert rec.updated_at == datetime(2026, 2, 3, 10, 0, tzinfo=timezone.utc)

    def test_mirror_row_with_null_vector(self):
        rec = VectorRecord.from_mirror_row(
            {"did": "did:plc:c", "vector": None, "created_at": None,
             "updated_at": "2026-02-03T10:00:00+00:00"}
        )

        assert rec.paths is None
        assert rec.has_drawable_paths is False

    def test_to_mirror_row_keeps_null_vector(self):
        row = VectorRecord(did="did:plc:c", paths=None).to_mirror_row()

        assert row["vector"] is None
        assert row["did"] == "did:plc:c"
        assert row["updated_at"].endswith("Z")

    def test_empty_paths_are_not_drawable(self):
        assert VectorRecord(did="did:plc:a", paths=[]).has_drawable_paths is False

    def test_mirror_row_must_be_object(self):
        with pytest.raises(ValueError):
            VectorRecord.from_mirror_row(["did:plc:a"])
        with pytest.raises(ValueError, match="did"):
            VectorRecord.from_mirror_row({"did": None, "vector": None})

    def test_mirror_row_with_non_point_vector(self):
        with pytest.raises(ValueError):
            VectorRecord.from_mirror_row({"did": "did:plc:a", "vector": [1]})
