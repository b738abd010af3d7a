"""
Copyright (c) 2025. All rights reserved.
"""

"""
Command line entry point for the repartition join.

Usage:
    repartition-join INPUT1 INDEX1 INPUT2 INDEX2 OUTPUT [--reducers N]

Exit status is 0 on success, 1 when the configuration is invalid or the job
fails, and 2 for a usage error.
"""

import argparse
import logging
import sys

from .configs import JoinConfig
from .factories.registry import DEFAULT_STRATEGY, JOIN_STRATEGIES
from .join import RepartitionJoin
from .partition_report import PartitionLoadReport, plot_partition_loads

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repartition-join",
        description="Equi-join two CSV relations with a repartition join",
    )
    parser.add_argument("input_1", help="LEFT relation: file or directory")
    parser.add_argument("index_1", type=int, help="Zero-based join field of the LEFT relation")
    parser.add_argument("input_2", help="RIGHT relation: file or directory")
    parser.add_argument("index_2", type=int, help="Zero-based join field of the RIGHT relation")
    parser.add_argument("output", help="Output directory (must not exist or be empty)")
    parser.add_argument("--reducers", type=int, default=1, help="Number of partitions / reduce tasks")
    parser.add_argument("--max-concurrent-tasks", type=int, default=4)
    parser.add_argument("--strategy", choices=JOIN_STRATEGIES, default=DEFAULT_STRATEGY)
    parser.add_argument("--plot-partitions", metavar="PATH", default=None,
                        help="Save a bar chart of records per partition")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        config = JoinConfig(
            input_location_1=args.input_1,
            join_field_index_1=args.index_1,
            input_location_2=args.input_2,
            join_field_index_2=args.index_2,
            output_location=args.output,
            partition_count=args.reducers,
        )
        if args.max_concurrent_tasks < 1:
            raise ValueError(f"--max-concurrent-tasks must be >= 1, got {args.max_concurrent_tasks}")
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    join = RepartitionJoin(strategy=args.strategy, max_concurrent_tasks=args.max_concurrent_tasks)
    join.init(config)

    if not join.run(verbose=args.verbose):
        print(f"Join failed: {join.result.error}", file=sys.stderr)
        return 1

    stats = join.get_join_stats()
    print(f"Join completed in {stats.duration:.3f}s")
    for name, value in sorted(stats.counters.items()):
        print(f"  {name}: {value}")

    report = PartitionLoadReport.from_stats(stats)
    print(report.summary())

    if args.plot_partitions:
        plot_partition_loads(stats.partition_loads, args.plot_partitions)
        print(f"Partition load chart saved to {args.plot_partitions}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
