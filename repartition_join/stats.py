"""
Copyright (c) 2025. All rights reserved.
"""

"""
Run statistics returned after a join completes.

JoinStats is built once, after every task of a successful run has finished,
and is never mutated afterwards. A failed run produces a JoinResult with no
stats at all rather than a partially filled record.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

# Counter names
MAP_INPUT_RECORDS = "MAP_INPUT_RECORDS"
MAP_INPUT_RECORDS_LEFT = "MAP_INPUT_RECORDS_LEFT"
MAP_INPUT_RECORDS_RIGHT = "MAP_INPUT_RECORDS_RIGHT"
MAP_OUTPUT_RECORDS = "MAP_OUTPUT_RECORDS"
REDUCE_INPUT_GROUPS = "REDUCE_INPUT_GROUPS"
REDUCE_INPUT_RECORDS = "REDUCE_INPUT_RECORDS"
REDUCE_OUTPUT_RECORDS = "REDUCE_OUTPUT_RECORDS"
MAX_BUFFERED_RECORDS = "MAX_BUFFERED_RECORDS"
FAILED_TASK_ATTEMPTS = "FAILED_TASK_ATTEMPTS"
PROCESS_RSS_BYTES = "PROCESS_RSS_BYTES"


@dataclass(frozen=True)
class TaskReport:
    """Final report of one map, shuffle or reduce task."""
    task_id: str
    task_type: str                       # 'map', 'shuffle' or 'reduce'
    status: str                          # 'completed' or 'failed'
    start_time: Optional[float]
    finish_time: Optional[float]
    attempts: int = 1
    input_records: int = 0
    output_records: int = 0
    relation: Optional[int] = None       # map tasks only
    partition: Optional[int] = None      # reduce tasks only
    errors: Tuple[str, ...] = ()

    @property
    def duration(self) -> float:
        if self.start_time is None or self.finish_time is None:
            return 0.0
        return self.finish_time - self.start_time


@dataclass(frozen=True)
class JoinStats:
    """Timings, counters and task reports of one completed join."""
    job_times: Tuple[float, ...]
    counters: Mapping[str, int]
    partition_loads: Tuple[int, ...]
    map_tasks: Tuple[TaskReport, ...]
    reduce_tasks: Tuple[TaskReport, ...]
    shuffle_tasks: Tuple[TaskReport, ...] = field(default=())

    def __post_init__(self):
        # Freeze the counters so the record cannot change after creation
        object.__setattr__(self, "counters", MappingProxyType(dict(self.counters)))

    @property
    def duration(self) -> float:
        """Total wall-clock time in seconds over all jobs of the run."""
        return sum(self.job_times)

    def counter(self, name: str) -> int:
        return self.counters.get(name, 0)


@dataclass(frozen=True)
class JoinResult:
    """Outcome of a join run: success flag plus stats, or the failure reason."""
    success: bool
    stats: Optional[JoinStats] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success
