"""
Copyright (c) 2025. All rights reserved.
"""

"""
Grouping order for the reduce side of the join.

Records inside a partition are sorted by a composite key: join key first,
relation tag second. Sorting on the tag puts every LEFT record of a key-group
ahead of every RIGHT record, which is what lets the reducer join in one pass
while buffering only LEFT records. Group boundaries are decided by the join
key alone; the tag never splits a group.
"""

import itertools
from typing import Iterable, Iterator, List, Tuple

from .tuples import JoinKey, TaggedRecord


class GroupingKey:
    """Composite key for secondary sorting by join key, then relation tag."""

    def __init__(self, key: JoinKey, tag: int):
        self.key = key
        self.tag = tag

    def __lt__(self, other: "GroupingKey") -> bool:
        """Sort by join key first, then by tag within the same key."""
        if self.key != other.key:
            return self.key < other.key
        return self.tag < other.tag

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GroupingKey):
            return NotImplemented
        return self.key == other.key and self.tag == other.tag

    def __hash__(self) -> int:
        return hash((self.key, self.tag))

    def same_group(self, other: "GroupingKey") -> bool:
        """Grouping comparison: only the join key takes part."""
        return self.key == other.key

    def __repr__(self) -> str:
        return f"GroupingKey(key={self.key!r}, tag={self.tag})"


def sort_partition(
    pairs: Iterable[Tuple[JoinKey, TaggedRecord]]
) -> List[Tuple[JoinKey, TaggedRecord]]:
    """Sort (key, tagged record) pairs of one partition by the grouping order.

    The sort is stable, so records with equal key and tag keep their arrival
    order.
    """
    return sorted(pairs, key=lambda pair: GroupingKey(pair[0], pair[1].tag))


def group_by_key(
    sorted_pairs: Iterable[Tuple[JoinKey, TaggedRecord]]
) -> Iterator[Tuple[JoinKey, Iterator[TaggedRecord]]]:
    """Yield (key, records) runs from pairs already in grouping order.

    Each run is a lazy iterator over the run's tagged records and must be
    consumed before advancing to the next key.
    """
    for key, run in itertools.groupby(sorted_pairs, key=lambda pair: pair[0]):
        yield key, (tagged for _, tagged in run)
