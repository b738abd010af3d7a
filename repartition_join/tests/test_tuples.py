"""
Copyright (c) 2025. All rights reserved.
"""

"""
Unit tests for the record model.
"""

import dataclasses
import os
import sys

sys.path.append(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
)

import pytest

from repartition_join.tuples import (
    LEFT,
    RIGHT,
    JoinedRecord,
    MalformedRecordError,
    Record,
    TaggedRecord,
)


class TestRecord:
    """Test suite for Record parsing and field access."""

    def test_from_line_strips_newline(self):
        assert Record.from_line("1,a\n").fields == ("1", "a")
        assert Record.from_line("1,a\r\n").fields == ("1", "a")

    def test_from_line_keeps_empty_fields(self):
        assert Record.from_line("a,,b").fields == ("a", "", "b")
        assert Record.from_line("a,").fields == ("a", "")

    def test_from_fields_converts_to_str(self):
        record = Record.from_fields([1, "x", 2.5])
        assert record.fields == ("1", "x", "2.5")

    def test_field_access(self):
        record = Record.from_line("k,v1,v2")
        assert record.field(0) == "k"
        assert record.field(2) == "v2"
        assert len(record) == 3

    def test_field_out_of_range_is_malformed(self):
        record = Record.from_line("only")
        with pytest.raises(MalformedRecordError):
            record.field(1)
        with pytest.raises(MalformedRecordError):
            record.field(-1)

    def test_malformed_record_error_is_index_error(self):
        assert issubclass(MalformedRecordError, IndexError)

    def test_render_round_trips_line(self):
        assert Record.from_line("1,a,,b\n").render() == "1,a,,b"

    def test_record_is_immutable(self):
        record = Record.from_line("1,a")
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.fields = ("2",)


class TestTaggedRecord:
    """Test suite for TaggedRecord."""

    def test_valid_tags(self):
        record = Record.from_line("1,a")
        assert TaggedRecord(LEFT, record).tag == 0
        assert TaggedRecord(RIGHT, record).tag == 1

    def test_invalid_tag_rejected(self):
        with pytest.raises(ValueError):
            TaggedRecord(2, Record.from_line("1,a"))

    def test_structural_equality(self):
        assert TaggedRecord(LEFT, Record.from_line("1,a")) == TaggedRecord(LEFT, Record.from_line("1,a"))


class TestJoinedRecord:
    """Test suite for JoinedRecord rendering."""

    def test_render(self):
        joined = JoinedRecord("1", Record.from_line("1,a"), Record.from_line("1,x"))
        assert joined.render_value() == "1,a,1,x"
        assert joined.render() == "1\t1,a,1,x"
