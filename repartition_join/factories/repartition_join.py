"""
Copyright (c) 2025. All rights reserved.
"""

"""
Streaming Repartition Join Operations

The reduce side of the repartition join. A key-group arrives in grouping order
(all LEFT records, then all RIGHT records), so the reducer keeps a buffer of
the LEFT records only and streams each RIGHT record against it. Working memory
is bounded by the number of LEFT records sharing the key; the output is the
same multiset a nested-loop join of the group would give.
"""

from typing import Generator, Iterable, List

from ..tuples import LEFT, JoinedRecord, JoinKey, Record, TaggedRecord
from .base import GroupOrderError, JoinMapReduce, is_cross_relation_pair


class RepartitionJoinMapReduce(JoinMapReduce):
    """MapReduce operations for the single-pass repartition join."""

    @staticmethod
    def reduce(
        key: JoinKey, tagged_records: Iterable[TaggedRecord]
    ) -> Generator[JoinedRecord, None, None]:
        """Reduce phase: join one key-group in a single pass.

        Args:
            key: The join key shared by every record in the group
            tagged_records: The group's records, LEFT records first

        Yields:
            One JoinedRecord per (LEFT, RIGHT) pair of the group

        Raises:
            GroupOrderError: if a LEFT record follows a RIGHT record
        """
        left_records: List[Record] = []
        seen_right = False

        for tagged in tagged_records:
            if tagged.tag == LEFT:
                if seen_right:
                    raise GroupOrderError(
                        f"LEFT record after RIGHT record in key-group {key!r}; "
                        f"input is not in grouping order"
                    )
                left_records.append(tagged.record)
            elif is_cross_relation_pair(LEFT, tagged.tag):
                seen_right = True
                for left_record in left_records:
                    yield JoinedRecord(key, left_record, tagged.record)
