"""
Copyright (c) 2025. All rights reserved.
"""

"""
In-Memory Repartition Join

Runs the whole repartition join on Python lists, without files or threads:

1. Map: tag every record of both relations with its relation and join key
2. Shuffle: route each key to a partition and sort by (partition, key, tag)
3. Reduce: stream each key-group of each partition through the reducer

Example:
    left = [("1", "a"), ("2", "b")]
    right = [("1", "x"), ("1", "y"), ("3", "z")]
    join_tables(left, right, 0, 0)

    Expected output (as rendered lines):
    ["1\t1,a,1,x", "1\t1,a,1,y"]
"""

from typing import Iterable, List, Sequence, Tuple, Union

from .factories.base import tag_record
from .factories.registry import DEFAULT_STRATEGY, get_join_class
from .grouping import GroupingKey, group_by_key
from .partitioner import partition
from .tuples import LEFT, RIGHT, JoinedRecord, JoinKey, Record, TaggedRecord

RowLike = Union[Record, str, Sequence[str]]


def to_record(row: RowLike) -> Record:
    """Accept a Record, a CSV line or a sequence of field values."""
    if isinstance(row, Record):
        return row
    if isinstance(row, str):
        return Record.from_line(row)
    return Record.from_fields(row)


def map_relation(
    rows: Iterable[RowLike], tag: int, join_field_index: int
) -> List[Tuple[JoinKey, TaggedRecord]]:
    """Map phase for one relation."""
    return [tag_record(tag, join_field_index, to_record(row)) for row in rows]


def shuffle(
    mapped: Iterable[Tuple[JoinKey, TaggedRecord]], num_partitions: int
) -> List[List[Tuple[JoinKey, TaggedRecord]]]:
    """Shuffle phase: route by key and sort each partition by grouping order."""
    routed = sorted(
        ((partition(key, num_partitions), key, tagged) for key, tagged in mapped),
        key=lambda item: (item[0], GroupingKey(item[1], item[2].tag)),
    )

    partitions: List[List[Tuple[JoinKey, TaggedRecord]]] = [[] for _ in range(num_partitions)]
    for partition_id, key, tagged in routed:
        partitions[partition_id].append((key, tagged))
    return partitions


def join_tables(
    left: Iterable[RowLike],
    right: Iterable[RowLike],
    left_index: int,
    right_index: int,
    num_partitions: int = 1,
    strategy: str = DEFAULT_STRATEGY,
) -> List[JoinedRecord]:
    """
    Equi-join two in-memory relations with the repartition join.

    Args:
        left: LEFT relation rows
        right: RIGHT relation rows
        left_index: Zero-based join field of the LEFT rows
        right_index: Zero-based join field of the RIGHT rows
        num_partitions: Number of partitions to route keys into
        strategy: Reducer strategy name from the factories registry

    Returns:
        Joined records, partition by partition, keys in sorted order

    Raises:
        MalformedRecordError: if a row has no field at its join index
        GroupOrderError: if the reducer sees a key-group out of order
    """
    if num_partitions < 1:
        raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")
    join_class = get_join_class(strategy)

    mapped = map_relation(left, LEFT, left_index) + map_relation(right, RIGHT, right_index)

    results = []
    for partition_data in shuffle(mapped, num_partitions):
        for key, tagged_records in group_by_key(partition_data):
            results.extend(join_class.reduce(key, tagged_records))
    return results
