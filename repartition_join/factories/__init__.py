"""
Copyright (c) 2025. All rights reserved.
"""

"""
Factories module for join operations.

This module contains separate implementations for each join strategy, each
with its own map and reduce functions, plus a registry to look them up by name.
"""

from .base import GroupOrderError, JoinMapReduce, is_cross_relation_pair, tag_record
from .nested_loop_join import NestedLoopJoinMapReduce
from .registry import DEFAULT_STRATEGY, JOIN_STRATEGIES, get_join_class, reduce_key_group
from .repartition_join import RepartitionJoinMapReduce

__all__ = [
    "DEFAULT_STRATEGY",
    "GroupOrderError",
    "JOIN_STRATEGIES",
    "JoinMapReduce",
    "NestedLoopJoinMapReduce",
    "RepartitionJoinMapReduce",
    "get_join_class",
    "is_cross_relation_pair",
    "reduce_key_group",
    "tag_record",
]
