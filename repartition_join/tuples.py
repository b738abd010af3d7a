"""
Copyright (c) 2025. All rights reserved.
"""

"""
Record model for the repartition join.

A relation is a stream of CSV-style lines. Each line becomes a Record: an
immutable tuple of field strings. The map stage wraps a Record into a
TaggedRecord that remembers which relation (LEFT or RIGHT) it came from, and
the reducer pairs one LEFT record with one RIGHT record into a JoinedRecord.

All three types are frozen dataclasses. A value that has to survive past the
iteration step that produced it (the reducer's buffer holds LEFT records for a
whole key-group) is always a fresh, independent object.
"""

from dataclasses import dataclass
from typing import Tuple

JoinKey = str

# Relation tags. Only two relations are supported.
LEFT = 0
RIGHT = 1
RELATION_TAGS = (LEFT, RIGHT)

FIELD_SEPARATOR = ","


class MalformedRecordError(IndexError):
    """Raised when a record has no field at the configured join index."""


@dataclass(frozen=True)
class Record:
    """One row of a relation, stored as an immutable tuple of fields."""

    fields: Tuple[str, ...]

    @classmethod
    def from_line(cls, line: str) -> "Record":
        """Parse one comma-separated line; the trailing newline is dropped."""
        return cls(tuple(line.rstrip("\r\n").split(FIELD_SEPARATOR)))

    @classmethod
    def from_fields(cls, fields) -> "Record":
        return cls(tuple(str(field) for field in fields))

    def field(self, index: int) -> str:
        """Return the field at a zero-based index.

        Raises:
            MalformedRecordError: if the record has fewer than index + 1 fields.
        """
        if index < 0 or index >= len(self.fields):
            raise MalformedRecordError(
                f"record has {len(self.fields)} field(s), no field at index {index}: "
                f"{self.render()!r}"
            )
        return self.fields[index]

    def render(self) -> str:
        return FIELD_SEPARATOR.join(self.fields)

    def __len__(self) -> int:
        return len(self.fields)


@dataclass(frozen=True)
class TaggedRecord:
    """A record together with the relation it was read from."""

    tag: int
    record: Record

    def __post_init__(self):
        if self.tag not in RELATION_TAGS:
            raise ValueError(
                f"relation tag must be one of {RELATION_TAGS}, got {self.tag!r}"
            )


@dataclass(frozen=True)
class JoinedRecord:
    """One output row: a LEFT record and a RIGHT record sharing a join key."""

    key: JoinKey
    left: Record
    right: Record

    def render_value(self) -> str:
        return self.left.render() + FIELD_SEPARATOR + self.right.render()

    def render(self) -> str:
        """Render as an output line: key, tab, left fields, comma, right fields."""
        return f"{self.key}\t{self.render_value()}"
