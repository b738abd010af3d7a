"""
Copyright (c) 2025. All rights reserved.
"""

"""
Repartition (shuffle) equi-join of two relations on a local MapReduce engine.
"""

from .configs import JoinConfig
from .factories import GroupOrderError, get_join_class, is_cross_relation_pair
from .grouping import GroupingKey, group_by_key, sort_partition
from .in_process import join_tables
from .join import Join, RepartitionJoin
from .partitioner import hash_bytes, partition
from .scheduler import JobConfig, JoinScheduler
from .stats import JoinResult, JoinStats, TaskReport
from .tuples import LEFT, RIGHT, JoinedRecord, JoinKey, MalformedRecordError, Record, TaggedRecord

__all__ = [
    "GroupOrderError",
    "GroupingKey",
    "JobConfig",
    "Join",
    "JoinConfig",
    "JoinKey",
    "JoinResult",
    "JoinScheduler",
    "JoinStats",
    "JoinedRecord",
    "LEFT",
    "MalformedRecordError",
    "RIGHT",
    "Record",
    "RepartitionJoin",
    "TaggedRecord",
    "TaskReport",
    "get_join_class",
    "group_by_key",
    "hash_bytes",
    "is_cross_relation_pair",
    "join_tables",
    "partition",
    "sort_partition",
]
