"""
Copyright (c) 2025. All rights reserved.
"""

"""
Nested Loop Join Operations

Reference reducer: materializes the whole key-group and compares every record
with every other record, keeping only cross-relation pairs. Quadratic in the
group size and memory-hungry; kept as the correctness baseline for the
streaming reducer.
"""

from typing import Iterable, List

from ..tuples import JoinedRecord, JoinKey, TaggedRecord
from .base import JoinMapReduce, is_cross_relation_pair


class NestedLoopJoinMapReduce(JoinMapReduce):
    """MapReduce operations for the buffer-everything nested-loop join."""

    @staticmethod
    def reduce(key: JoinKey, tagged_records: Iterable[TaggedRecord]) -> List[JoinedRecord]:
        """Reduce phase: emit every (LEFT, RIGHT) pair of the key-group."""
        # The group can only be iterated once, so it is cached first
        group = list(tagged_records)

        results = []
        for first in group:
            for second in group:
                if is_cross_relation_pair(first.tag, second.tag):
                    results.append(JoinedRecord(key, first.record, second.record))
        return results
