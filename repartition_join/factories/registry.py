"""
Copyright (c) 2025. All rights reserved.
"""

"""
Join Strategy Registry

Central registry that provides join MapReduce classes by strategy name.
Every class exposes the same static map and reduce methods.
"""

from typing import Iterable

from ..tuples import JoinedRecord, JoinKey, TaggedRecord

DEFAULT_STRATEGY = "repartition"
JOIN_STRATEGIES = ("repartition", "nested_loop")

# Streaming reducers yield lazily, the nested-loop reducer returns a list
REDUCE_TYPE = Iterable[JoinedRecord]


def get_join_class(strategy: str = DEFAULT_STRATEGY):
    """Get the join MapReduce class for the given strategy."""
    if strategy == "repartition":
        from .repartition_join import RepartitionJoinMapReduce
        return RepartitionJoinMapReduce
    elif strategy == "nested_loop":
        from .nested_loop_join import NestedLoopJoinMapReduce
        return NestedLoopJoinMapReduce
    else:
        raise NotImplementedError(f"Unsupported join strategy: {strategy}")


def reduce_key_group(
    key: JoinKey, tagged_records: Iterable[TaggedRecord], strategy: str = DEFAULT_STRATEGY
) -> REDUCE_TYPE:
    """Reduce one key-group with the chosen strategy."""
    join_class = get_join_class(strategy)
    return join_class.reduce(key, tagged_records)
