"""
Copyright (c) 2025. All rights reserved.
"""

"""
Configuration dataclasses for repartition join jobs.

JoinConfig groups everything that defines one join: the two inputs, the join
field of each, where the output goes and how many partitions the key space is
split into. It is immutable and validated on construction, so an invalid job
is rejected before anything runs.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class JoinConfig:
    """
    Configuration for a two-relation equi-join.

    Attributes:
        input_location_1 (str): File or directory holding the LEFT relation
        join_field_index_1 (int): Zero-based join field of the LEFT relation
        input_location_2 (str): File or directory holding the RIGHT relation
        join_field_index_2 (int): Zero-based join field of the RIGHT relation
        output_location (str): Directory that receives the part files
        partition_count (int): Number of partitions (reduce tasks), at least 1

    Example:
        config = JoinConfig(
            input_location_1="data/t1.csv",
            join_field_index_1=0,
            input_location_2="data/t2.csv",
            join_field_index_2=0,
            output_location="out/join",
            partition_count=4,
        )
    """
    input_location_1: str        # LEFT relation input
    join_field_index_1: int      # LEFT join field
    input_location_2: str        # RIGHT relation input
    join_field_index_2: int      # RIGHT join field
    output_location: str         # Output directory
    partition_count: int = 1     # Number of reduce partitions

    def __post_init__(self):
        for name in ("join_field_index_1", "join_field_index_2", "partition_count"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {value!r}")
        if self.join_field_index_1 < 0:
            raise ValueError(f"join_field_index_1 must be >= 0, got {self.join_field_index_1}")
        if self.join_field_index_2 < 0:
            raise ValueError(f"join_field_index_2 must be >= 0, got {self.join_field_index_2}")
        if self.partition_count < 1:
            raise ValueError(f"partition_count must be >= 1, got {self.partition_count}")

    @property
    def inputs(self) -> Tuple[str, str]:
        return (self.input_location_1, self.input_location_2)

    @property
    def indices(self) -> Tuple[int, int]:
        return (self.join_field_index_1, self.join_field_index_2)
