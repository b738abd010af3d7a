"""
Copyright (c) 2025. All rights reserved.
"""

"""
End-to-end tests for the local join engine.
"""

import os
import sys
from collections import Counter
from pathlib import Path

sys.path.append(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
)

import pytest

from repartition_join.configs import JoinConfig
from repartition_join.error_handling import (
    ErrorRecoverySystem,
    FailureConfig,
    FailureType,
    RetryConfig,
    RetryStrategy,
)
from repartition_join.in_process import join_tables
from repartition_join.join import RepartitionJoin
from repartition_join.partitioner import partition
from repartition_join.scheduler import (
    IntermediateFileManager,
    JobConfig,
    JoinScheduler,
    TaskCoordinator,
    TaskInfo,
    list_input_files,
)
from repartition_join.stats import (
    FAILED_TASK_ATTEMPTS,
    MAP_INPUT_RECORDS,
    MAP_INPUT_RECORDS_LEFT,
    MAP_INPUT_RECORDS_RIGHT,
    MAP_OUTPUT_RECORDS,
    MAX_BUFFERED_RECORDS,
    PROCESS_RSS_BYTES,
    REDUCE_INPUT_GROUPS,
    REDUCE_INPUT_RECORDS,
    REDUCE_OUTPUT_RECORDS,
)

FAST_RETRIES = RetryConfig(max_retries=3, strategy=RetryStrategy.IMMEDIATE, jitter=False)


def write_lines(path, lines):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(line + "\n" for line in lines))
    return str(path)


def read_output(output_dir):
    """All joined lines of an output directory, as a multiset."""
    lines = Counter()
    for part in sorted(Path(output_dir).glob("part-r-*")):
        lines.update(part.read_text().splitlines())
    return lines


def run_join(tmp_path, left, right, index_1=0, index_2=0, partitions=1,
             output_name="out", **join_kwargs):
    config = JoinConfig(
        input_location_1=left,
        join_field_index_1=index_1,
        input_location_2=right,
        join_field_index_2=index_2,
        output_location=str(tmp_path / output_name),
        partition_count=partitions,
    )
    join_kwargs.setdefault("retry_config", FAST_RETRIES)
    join = RepartitionJoin(intermediate_dir=str(tmp_path / "tmp"), **join_kwargs)
    join.init(config, name="test-join")
    return join, join.run()


@pytest.fixture
def example_inputs(tmp_path):
    left = write_lines(tmp_path / "t1.csv", ["1,a", "2,b"])
    right = write_lines(tmp_path / "t2.csv", ["1,x", "1,y", "3,z"])
    return left, right


class TestRepartitionJoinEndToEnd:
    """Full map -> shuffle -> reduce runs against files."""

    @pytest.mark.parametrize("partitions", [1, 2, 5])
    def test_example_join(self, tmp_path, example_inputs, partitions):
        join, success = run_join(tmp_path, *example_inputs, partitions=partitions)

        assert success
        output_dir = tmp_path / "out"
        assert read_output(output_dir) == Counter(["1\t1,a,1,x", "1\t1,a,1,y"])
        assert (output_dir / "_SUCCESS").exists()
        assert sorted(p.name for p in output_dir.glob("part-r-*")) == [
            f"part-r-{i:05d}" for i in range(partitions)
        ]

    def test_stats(self, tmp_path, example_inputs):
        join, success = run_join(tmp_path, *example_inputs, partitions=2)
        assert success
        stats = join.get_join_stats()

        assert stats.counter(MAP_INPUT_RECORDS) == 5
        assert stats.counter(MAP_INPUT_RECORDS_LEFT) == 2
        assert stats.counter(MAP_INPUT_RECORDS_RIGHT) == 3
        assert stats.counter(MAP_OUTPUT_RECORDS) == 5
        assert stats.counter(REDUCE_INPUT_GROUPS) == 3
        assert stats.counter(REDUCE_INPUT_RECORDS) == 5
        assert stats.counter(REDUCE_OUTPUT_RECORDS) == 2
        assert stats.counter(MAX_BUFFERED_RECORDS) == 1
        assert stats.counter(FAILED_TASK_ATTEMPTS) == 0
        assert stats.counter(PROCESS_RSS_BYTES) > 0

        assert len(stats.partition_loads) == 2
        assert sum(stats.partition_loads) == 5
        assert len(stats.job_times) == 1 and stats.duration >= 0
        assert [t.relation for t in stats.map_tasks] == [0, 1]
        assert [t.partition for t in stats.reduce_tasks] == [0, 1]
        assert all(t.status == "completed" and t.attempts == 1 for t in stats.map_tasks)
        assert len(stats.shuffle_tasks) == 1

    def test_nested_loop_strategy_matches(self, tmp_path, example_inputs):
        _, success = run_join(tmp_path, *example_inputs, partitions=3,
                              output_name="nested", strategy="nested_loop")
        assert success
        assert read_output(tmp_path / "nested") == Counter(["1\t1,a,1,x", "1\t1,a,1,y"])

    def test_each_key_lands_in_one_partition(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", [f"{i % 17},l{i}" for i in range(60)])
        right = write_lines(tmp_path / "t2.csv", [f"r{i},{i % 13}" for i in range(40)])

        _, success = run_join(tmp_path, left, right, index_1=0, index_2=1, partitions=4)
        assert success

        for part in sorted((tmp_path / "out").glob("part-r-*")):
            partition_id = int(part.name.split("-")[-1])
            for line in part.read_text().splitlines():
                key = line.split("\t")[0]
                assert partition(key, 4) == partition_id

    def test_partition_count_does_not_change_result(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", [f"{i % 7},l{i}" for i in range(30)])
        right = write_lines(tmp_path / "t2.csv", [f"{i % 5},r{i}" for i in range(25)])

        results = []
        for partitions in [1, 3, 8]:
            _, success = run_join(tmp_path, left, right, partitions=partitions,
                                  output_name=f"out_{partitions}")
            assert success
            results.append(read_output(tmp_path / f"out_{partitions}"))

        assert results[0] == results[1] == results[2]
        # Keys 0..4 match: 5 keys with left/right multiplicities from the modulo pattern
        expected = sum((30 // 7 + (1 if k < 30 % 7 else 0)) * 5 for k in range(5))
        assert sum(results[0].values()) == expected

    def test_directory_input_skips_hidden_files(self, tmp_path):
        write_lines(tmp_path / "left" / "part-0", ["1,a"])
        write_lines(tmp_path / "left" / "part-1", ["2,b"])
        write_lines(tmp_path / "left" / ".hidden", ["broken"])
        write_lines(tmp_path / "left" / "_SUCCESS", ["broken"])
        right = write_lines(tmp_path / "t2.csv", ["x,1", "y,2", "z,3"])

        join, success = run_join(tmp_path, str(tmp_path / "left"), right, index_1=0, index_2=1)

        assert success
        assert read_output(tmp_path / "out") == Counter(["1\t1,a,x,1", "2\t2,b,y,2"])
        assert len(join.get_join_stats().map_tasks) == 3

    def test_whitespace_line_is_a_record(self, tmp_path):
        left_lines, right_lines = ["  ", "1,a"], ["  ", "1,x"]
        left = write_lines(tmp_path / "t1.csv", left_lines)
        right = write_lines(tmp_path / "t2.csv", right_lines)

        join, success = run_join(tmp_path, left, right, partitions=2)

        expected = Counter(["  \t  ,  ", "1\t1,a,1,x"])
        assert success
        assert read_output(tmp_path / "out") == expected
        assert join.get_join_stats().counter(MAP_INPUT_RECORDS_LEFT) == 2
        # The in-memory join agrees with the file engine
        in_memory = join_tables(left_lines, right_lines, 0, 0, num_partitions=2)
        assert Counter(j.render() for j in in_memory) == expected

    def test_blank_line_joins_on_empty_key(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", ["1,a", "", "2,b"])
        right = write_lines(tmp_path / "t2.csv", ["", "2,x"])

        join, success = run_join(tmp_path, left, right)

        assert success
        assert join.get_join_stats().counter(MAP_INPUT_RECORDS_LEFT) == 3
        assert read_output(tmp_path / "out") == Counter(["\t,", "2\t2,b,2,x"])

    def test_blank_line_without_join_field_fails_job(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", ["1,a", "", "2,b"])
        right = write_lines(tmp_path / "t2.csv", ["a,1", "b,2"])

        join, success = run_join(tmp_path, left, right, index_1=1, index_2=0)

        assert not success
        assert join.result.stats is None
        assert "MalformedRecordError" in join.result.error
        assert "t1.csv:2" in join.result.error
        assert not (tmp_path / "out").exists()

    def test_no_matches_gives_empty_parts(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", ["1,a"])
        right = write_lines(tmp_path / "t2.csv", ["2,x"])

        _, success = run_join(tmp_path, left, right, partitions=2)
        assert success
        assert read_output(tmp_path / "out") == Counter()
        assert (tmp_path / "out" / "_SUCCESS").exists()


class TestFailures:
    """Failed runs report failure and leave no output behind."""

    def test_malformed_record_fails_job(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", ["1,a", "2,b"])
        right = write_lines(tmp_path / "t2.csv", ["x,1", "broken"])

        join, success = run_join(tmp_path, left, right, index_2=1)

        assert not success
        assert join.result.stats is None
        assert "MalformedRecordError" in join.result.error
        assert "t2.csv:2" in join.result.error
        assert not (tmp_path / "out").exists()
        with pytest.raises(RuntimeError):
            join.get_join_stats()

        # Data errors are not retried
        failed = [t for t in join.scheduler.coordinator.tasks.values() if t.status == "failed"]
        assert [t.attempts for t in failed] == [1]

    def test_missing_input_fails_job(self, tmp_path):
        right = write_lines(tmp_path / "t2.csv", ["1,x"])
        join, success = run_join(tmp_path, str(tmp_path / "missing.csv"), right)

        assert not success
        assert "FileNotFoundError" in join.result.error

    def test_non_empty_output_location_is_rejected(self, tmp_path, example_inputs):
        existing = write_lines(tmp_path / "out" / "keep.txt", ["precious"])

        join, success = run_join(tmp_path, *example_inputs)

        assert not success
        assert "FileExistsError" in join.result.error
        assert Path(existing).read_text() == "precious\n"
        assert not list((tmp_path / "out").glob("part-r-*"))

    def test_empty_output_directory_is_accepted(self, tmp_path, example_inputs):
        (tmp_path / "out").mkdir()
        _, success = run_join(tmp_path, *example_inputs)
        assert success

    def test_intermediate_files_are_removed(self, tmp_path, example_inputs):
        _, success = run_join(tmp_path, *example_inputs)
        assert success
        assert list((tmp_path / "tmp").iterdir()) == []

    def test_run_before_init(self):
        with pytest.raises(RuntimeError):
            RepartitionJoin().run()

    def test_unknown_strategy(self):
        with pytest.raises(NotImplementedError):
            RepartitionJoin(strategy="broadcast")


class TestRetries:
    """Injected transient failures are retried without changing the output."""

    def test_retried_run_gives_identical_output(self, tmp_path):
        left = write_lines(tmp_path / "t1.csv", [f"{i % 9},l{i}" for i in range(40)])
        right = write_lines(tmp_path / "t2.csv", [f"{i % 6},r{i}" for i in range(30)])

        _, clean = run_join(tmp_path, left, right, partitions=3, output_name="clean")
        failure_config = FailureConfig(
            enabled=True,
            failure_rate=1.0,
            failure_types=[FailureType.TASK_CRASH, FailureType.NETWORK_FAILURE],
            max_failures_per_task=1,
        )
        join, retried = run_join(tmp_path, left, right, partitions=3, output_name="retried",
                                 failure_config=failure_config)

        assert clean and retried
        for i in range(3):
            name = f"part-r-{i:05d}"
            assert (tmp_path / "clean" / name).read_bytes() == (tmp_path / "retried" / name).read_bytes()

        stats = join.get_join_stats()
        # Every task fails once: 2 maps, 1 shuffle, 3 reduces
        assert stats.counter(FAILED_TASK_ATTEMPTS) == 6
        assert all(t.attempts == 2 for t in stats.map_tasks + stats.reduce_tasks)

    def test_exhausted_retries_fail_job(self, tmp_path, example_inputs):
        failure_config = FailureConfig(enabled=True, failure_rate=1.0, target_tasks=["reduce_0"],
                                       failure_types=[FailureType.DISK_FULL], max_failures_per_task=10)
        join, success = run_join(tmp_path, *example_inputs, failure_config=failure_config,
                                 retry_config=RetryConfig(max_retries=1, strategy=RetryStrategy.IMMEDIATE,
                                                          jitter=False))

        assert not success
        assert "reduce_0" in join.result.error
        assert not (tmp_path / "out").exists()

    def test_job_overrides_leave_shared_recovery_untouched(self, tmp_path, example_inputs):
        shared = ErrorRecoverySystem(FAST_RETRIES)
        retry_manager = shared.retry_manager
        failure_simulator = shared.failure_simulator
        failure_config = FailureConfig(enabled=True, failure_rate=1.0, failure_types=[FailureType.TIMEOUT])

        join, success = run_join(tmp_path, *example_inputs, output_name="injected",
                                 failure_config=failure_config, recovery_system=shared)
        assert success
        assert join.get_join_stats().counter(FAILED_TASK_ATTEMPTS) > 0

        assert shared.retry_manager is retry_manager
        assert shared.failure_simulator is failure_simulator
        assert not shared.failure_simulator.config.enabled

        join, success = run_join(tmp_path, *example_inputs, output_name="plain",
                                 retry_config=None, recovery_system=shared)
        assert success
        assert join.get_join_stats().counter(FAILED_TASK_ATTEMPTS) == 0

    def test_without_error_recovery(self, tmp_path, example_inputs):
        _, success = run_join(tmp_path, *example_inputs, enable_error_recovery=False)
        assert success
        assert read_output(tmp_path / "out") == Counter(["1\t1,a,1,x", "1\t1,a,1,y"])


class TestSchedulerParts:
    """Unit tests for the engine building blocks."""

    def test_task_coordinator_dependencies(self):
        coordinator = TaskCoordinator()
        coordinator.add_task(TaskInfo("map_0", "map", ["a"], "a.out"))
        coordinator.add_task(TaskInfo("shuffle", "shuffle", ["a.out"], "dir"), dependencies=["map_0"])

        assert [t.task_id for t in coordinator.get_ready_tasks()] == ["map_0"]
        coordinator.mark_task_completed("map_0")
        assert [t.task_id for t in coordinator.get_ready_tasks()] == ["shuffle"]
        coordinator.mark_task_failed("shuffle", "boom")
        assert coordinator.has_failed_tasks()
        assert coordinator.get_task_stats() == {"completed": 1, "failed": 1}

    def test_intermediate_file_manager(self, tmp_path):
        manager = IntermediateFileManager(str(tmp_path / "work"))

        assert manager.get_staged_output_file(3).endswith("part-r-00003")
        assert manager.map_output_dir.is_dir()
        manager.cleanup()
        assert not (tmp_path / "work").exists()

    def test_list_input_files(self, tmp_path):
        write_lines(tmp_path / "d" / "b", ["x"])
        write_lines(tmp_path / "d" / "a", ["x"])
        write_lines(tmp_path / "d" / "_logs", ["x"])
        (tmp_path / "d" / "sub").mkdir()

        assert [Path(p).name for p in list_input_files(str(tmp_path / "d"))] == ["a", "b"]
        with pytest.raises(FileNotFoundError):
            list_input_files(str(tmp_path / "nope"))

    def test_scheduler_direct(self, tmp_path, example_inputs):
        config = JoinConfig(example_inputs[0], 0, example_inputs[1], 0, str(tmp_path / "direct"), 2)
        result = JoinScheduler(max_concurrent_tasks=2).execute_job(
            JobConfig(job_name="direct", join_config=config, max_concurrent_tasks=1,
                      retry_config=FAST_RETRIES)
        )

        assert result.success
        assert result.stats.counter(REDUCE_OUTPUT_RECORDS) == 2
