"""
Copyright (c) 2025. All rights reserved.
"""

"""
Pieces shared by every join strategy: the tagging map and the
self-pairing guard.
"""

from typing import Generator, Tuple

from ..tuples import LEFT, RIGHT, JoinKey, Record, TaggedRecord


class GroupOrderError(ValueError):
    """Raised when a key-group does not arrive in grouping order."""


def is_cross_relation_pair(left_tag: int, right_tag: int) -> bool:
    """Return True if (left_tag, right_tag) may form an output row.

    Only a LEFT record followed by a RIGHT record pairs. Same-relation pairs and
    the mirrored (RIGHT, LEFT) pair are rejected, so every match is emitted
    exactly once. Assumes exactly two relations.
    """
    return left_tag == LEFT and right_tag == RIGHT


def tag_record(tag: int, join_field_index: int, record: Record) -> Tuple[JoinKey, TaggedRecord]:
    """Map one record to (join key, tagged record).

    Raises:
        MalformedRecordError: if the record has no field at join_field_index.
    """
    key = record.field(join_field_index)
    return key, TaggedRecord(tag, record)


class JoinMapReduce:
    """Map side common to all join strategies."""

    @staticmethod
    def map(
        line: str, tag: int, join_field_index: int
    ) -> Generator[Tuple[JoinKey, TaggedRecord], None, None]:
        """Map phase: parse a line and emit its (key, tagged record) pair."""
        yield tag_record(tag, join_field_index, Record.from_line(line))
