"""Stroke and record types shared by the session, store and sync layers.

Points are stored flat: a stroke has no object of its own, it starts at every
point whose ``is_new_stroke`` marker is set. ``split_strokes`` and
``join_strokes`` convert between the wire form and a list of strokes.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

WIRE_FIELDS = ("x", "y", "color", "size", "isNewStroke", "author")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif not isinstance(value, str):
        return None
    else:
        try:
            # fromisoformat() before 3.11 rejects the trailing Z
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (TypeError, ValueError):
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def format_timestamp(value: datetime) -> str:
    """Format as ISO-8601 with millisecond precision and a Z suffix."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class StrokePoint:
    """A single recorded point of a stroke."""

    x: float
    y: float
    color: str
    size: float
    is_new_stroke: bool
    author: str
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        data = dict(self.extra)
        data.update(
            {
                "x": self.x,
                "y": self.y,
                "color": self.color,
                "size": self.size,
                "isNewStroke": self.is_new_stroke,
                "author": self.author,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StrokePoint":
        """Create from the wire representation.

        Raises:
            ValueError: If data is not a dict or a required field is missing.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Stroke point must be an object, got {type(data).__name__}")
        missing = [name for name in WIRE_FIELDS if name not in data]
        if missing:
            raise ValueError(f"Stroke point missing fields: {', '.join(missing)}")
        return cls(
            x=data["x"],
            y=data["y"],
            color=data["color"],
            size=data["size"],
            is_new_stroke=bool(data["isNewStroke"]),
            author=data["author"],
            extra={k: v for k, v in data.items() if k not in WIRE_FIELDS},
        )


def decode_paths(raw: Any) -> list[StrokePoint] | None:
    """Decode a path payload from either backend.

    Accepts None, a list of point dicts, or JSON text of such a list (the
    opaque blob form the mirror and older repository records use).

    Raises:
        ValueError: If the payload is neither of those shapes.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Path payload is not valid JSON: {e}") from e
        if raw is None:
            return None
    if not isinstance(raw, list):
        raise ValueError(f"Path payload must be a list, got {type(raw).__name__}")
    return [StrokePoint.from_dict(p) for p in raw]


def encode_paths(paths: list[StrokePoint]) -> list[dict[str, Any]]:
    """Encode points to their wire dicts, preserving order."""
    return [p.to_dict() for p in paths]


def split_strokes(points: list[StrokePoint]) -> list[list[StrokePoint]]:
    """Rebuild strokes from a flat point sequence.

    A new stroke starts at each point with ``is_new_stroke`` set. The first
    point always opens a stroke, even when its marker is clear.
    """
    strokes: list[list[StrokePoint]] = []
    for point in points:
        if point.is_new_stroke or not strokes:
            strokes.append([point])
        else:
            strokes[-1].append(point)
    return strokes


def join_strokes(strokes: list[list[StrokePoint]]) -> list[StrokePoint]:
    """Flatten strokes back to the wire form, resetting the marker bits."""
    points: list[StrokePoint] = []
    for stroke in strokes:
        for i, point in enumerate(stroke):
            marker = i == 0
            if point.is_new_stroke != marker:
                point = StrokePoint(
                    x=point.x,
                    y=point.y,
                    color=point.color,
                    size=point.size,
                    is_new_stroke=marker,
                    author=point.author,
                    extra=dict(point.extra),
                )
            points.append(point)
    return points


@dataclass
class VectorRecord:
    """The single per-identity record holding that user's paths.

    ``paths`` is None for identities that registered but never drew.
    """

    did: str
    paths: list[StrokePoint] | None
    updated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def has_drawable_paths(self) -> bool:
        return bool(self.paths)

    @property
    def strokes(self) -> list[list[StrokePoint]]:
        return split_strokes(self.paths or [])

    def to_repository_value(self, collection: str) -> dict[str, Any]:
        """Build the repository record body, restamped with ``updated_at``."""
        stamp = self.updated_at or utcnow()
        return {
            "$type": collection,
            "paths": encode_paths(self.paths or []),
            "createdAt": format_timestamp(stamp),
        }

    @classmethod
    def from_repository_value(cls, did: str, value: dict[str, Any]) -> "VectorRecord":
        """Create from a repository record body.

        The record's ``createdAt`` is rewritten on every put, so it doubles as
        the update time.
        """
        if not isinstance(value, dict):
            raise ValueError(f"Record value must be an object, got {type(value).__name__}")
        stamp = parse_timestamp(value.get("createdAt"))
        return cls(
            did=did,
            paths=decode_paths(value.get("paths")),
            updated_at=stamp,
            created_at=stamp,
        )

    def to_mirror_row(self) -> dict[str, Any]:
        """Build the mirror upsert body."""
        return {
            "did": self.did,
            "vector": encode_paths(self.paths) if self.paths is not None else None,
            "updated_at": format_timestamp(self.updated_at or utcnow()),
        }

    @classmethod
    def from_mirror_row(cls, row: dict[str, Any]) -> "VectorRecord":
        """Create from a mirror row ``{did, vector, created_at, updated_at}``.

        Raises:
            ValueError: If the row is not an object or has no string did.
        """
        if not isinstance(row, dict):
            raise ValueError(f"Mirror row must be an object, got {type(row).__name__}")
        if not isinstance(row.get("did"), str):
            raise ValueError("Mirror row has no did")
        return cls(
            did=row["did"],
            paths=decode_paths(row.get("vector")),
            updated_at=parse_timestamp(row.get("updated_at")),
            created_at=parse_timestamp(row.get("created_at")),
        )
