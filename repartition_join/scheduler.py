"""
Copyright (c) 2025. All rights reserved.
"""

"""
In-process MapReduce engine for the repartition join

A local stand-in for a distributed execution engine. It handles:
- Map -> Shuffle -> Reduce phases, with a hard barrier before the reduce phase
- Intermediate file management between phases
- Task coordination, bounded parallelism and retries

Routing, ordering and joining are delegated to the partitioner, the grouping
order and the join classes from the factories registry; the engine only
moves records between them.
"""

import json
import shutil
import tempfile
import time
from collections import defaultdict
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

import psutil

from .configs import JoinConfig
from .error_handling import (
    ErrorRecoverySystem, FailureConfig, RetryConfig, create_development_config,
)
from .factories.registry import DEFAULT_STRATEGY, get_join_class
from .grouping import group_by_key, sort_partition
from .partitioner import partition
from .stats import (
    FAILED_TASK_ATTEMPTS, MAP_INPUT_RECORDS, MAP_INPUT_RECORDS_LEFT,
    MAP_INPUT_RECORDS_RIGHT, MAP_OUTPUT_RECORDS, MAX_BUFFERED_RECORDS,
    PROCESS_RSS_BYTES, REDUCE_INPUT_GROUPS, REDUCE_INPUT_RECORDS,
    REDUCE_OUTPUT_RECORDS, JoinResult, JoinStats, TaskReport,
)
from .tuples import LEFT, RIGHT, JoinKey, MalformedRecordError, Record, TaggedRecord

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "_SUCCESS"


@dataclass
class TaskInfo:
    """Information about a map, shuffle or reduce task"""
    task_id: str
    task_type: str  # 'map', 'shuffle' or 'reduce'
    input_files: List[str]
    output_file: str
    status: str = 'pending'  # pending, running, completed, failed
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    attempts: int = 0
    error_message: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    relation: Optional[int] = None  # map tasks: relation tag of the input
    join_field_index: Optional[int] = None  # map tasks: join field of the input
    partition: Optional[int] = None  # reduce tasks: partition served
    counters: Dict[str, Any] = field(default_factory=dict)

    def to_report(self) -> TaskReport:
        return TaskReport(
            task_id=self.task_id,
            task_type=self.task_type,
            status=self.status,
            start_time=self.start_time,
            finish_time=self.end_time,
            attempts=self.attempts,
            input_records=self.counters.get('input_records', 0),
            output_records=self.counters.get('output_records', 0),
            relation=self.relation,
            partition=self.partition,
            errors=tuple(self.errors),
        )


@dataclass
class JobConfig:
    """Configuration for one join job on the local engine
    - The join itself (inputs, join fields, output, partitions)
    - Reducer strategy
    - Intermediate directory and parallelism
    - Retry and failure-injection settings
    """
    job_name: str
    join_config: JoinConfig
    strategy: str = DEFAULT_STRATEGY
    intermediate_dir: Optional[str] = None
    max_concurrent_tasks: int = 4
    keep_intermediate: bool = False

    # Error handling configuration
    enable_error_recovery: bool = True
    retry_config: Optional[RetryConfig] = None
    failure_config: Optional[FailureConfig] = None


class IntermediateFileManager:
    """Manages intermediate files between map, shuffle and reduce phases
    Reduce output is staged here too and only moved to the output location
    once every task of the job succeeded.
    """

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        self.map_output_dir = self.base_dir / "map_output"
        self.reduce_input_dir = self.base_dir / "reduce_input"
        self.reduce_output_dir = self.base_dir / "reduce_output"

        for dir_path in [self.map_output_dir, self.reduce_input_dir, self.reduce_output_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def get_map_output_file(self, map_task_id: str) -> str:
        """Get the output file path for a map task"""
        return str(self.map_output_dir / f"{map_task_id}.jsonl")

    def get_reduce_input_file(self, partition_id: int) -> str:
        """Get the sorted input file of one partition"""
        return str(self.reduce_input_dir / f"partition_{partition_id:05d}.jsonl")

    def get_staged_output_file(self, partition_id: int) -> str:
        """Get the staging path of one partition's output"""
        return str(self.reduce_output_dir / part_file_name(partition_id))

    def cleanup(self):
        """Clean up all intermediate files"""
        if self.base_dir.exists():
            shutil.rmtree(self.base_dir)
            logger.info(f"Cleaned up intermediate directory: {self.base_dir}")


class TaskCoordinator:
    """Coordinates task execution and dependency management
    [task id] --> TaskInfo
    [task id] --> List of prerequisite task ids to finish before executing this task.
    """

    def __init__(self):
        self.tasks: Dict[str, TaskInfo] = {}
        self.dependencies: Dict[str, List[str]] = {}
        self.completed_tasks: set = set()
        self.failed_tasks: set = set()

    def add_task(self, task: TaskInfo, dependencies: List[str] = None):
        """Add a task with optional dependencies"""
        self.tasks[task.task_id] = task
        self.dependencies[task.task_id] = dependencies or []
        logger.debug(f"Added task {task.task_id} with {len(self.dependencies[task.task_id])} dependencies")

    def get_ready_tasks(self) -> List[TaskInfo]:
        """Get tasks that are ready to run (all dependencies completed)"""
        return [
            task for task_id, task in self.tasks.items()
            if task.status == 'pending'
            and all(dep_id in self.completed_tasks for dep_id in self.dependencies[task_id])
        ]

    def mark_task_completed(self, task_id: str):
        """Mark a task as completed"""
        if task_id in self.tasks:
            self.tasks[task_id].status = 'completed'
            self.tasks[task_id].end_time = time.time()
            self.completed_tasks.add(task_id)
            logger.debug(f"Task {task_id} marked as completed")

    def mark_task_failed(self, task_id: str, error_message: str):
        """Mark a task as failed"""
        if task_id in self.tasks:
            self.tasks[task_id].status = 'failed'
            self.tasks[task_id].error_message = error_message
            self.tasks[task_id].end_time = time.time()
            self.failed_tasks.add(task_id)
            logger.error(f"Task {task_id} marked as failed: {error_message}")

    def all_tasks_completed(self) -> bool:
        return len(self.completed_tasks) == len(self.tasks)

    def has_failed_tasks(self) -> bool:
        return len(self.failed_tasks) > 0

    def tasks_of_type(self, task_type: str) -> List[TaskInfo]:
        return [task for task in self.tasks.values() if task.task_type == task_type]

    def get_task_stats(self) -> Dict[str, int]:
        """Number of pending, running, completed and failed tasks"""
        stats = defaultdict(int)
        for task in self.tasks.values():
            stats[task.status] += 1
        return dict(stats)


def part_file_name(partition_id: int) -> str:
    return f"part-r-{partition_id:05d}"


def list_input_files(location: str) -> List[str]:
    """Expand an input location into the files it holds.

    A directory contributes its regular files in name order, skipping hidden
    and bookkeeping files (names starting with '.' or '_').
    """
    path = Path(location)
    if path.is_dir():
        return [
            str(child) for child in sorted(path.iterdir())
            if child.is_file() and not child.name.startswith(('.', '_'))
        ]
    if path.is_file():
        return [str(path)]
    raise FileNotFoundError(f"Input location does not exist: {location}")


def check_output_location(location: str):
    """Refuse to write into an output location that already holds data."""
    path = Path(location)
    if path.exists() and (not path.is_dir() or any(path.iterdir())):
        raise FileExistsError(f"Output location already exists and is not empty: {location}")


def read_sorted_partition(path: str) -> Iterator[Tuple[JoinKey, TaggedRecord]]:
    """Read a shuffled partition, building fresh records for every line."""
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            record = json.loads(line)
            yield record['key'], TaggedRecord(record['tag'], Record(tuple(record['fields'])))


def count_tags(tagged_records, tag_counts: Dict[int, int]):
    """Pass records through while counting them per relation tag."""
    for tagged in tagged_records:
        tag_counts[tagged.tag] += 1
        yield tagged


class JoinScheduler:
    """Runs a repartition join job on a local thread pool with error recovery"""

    def __init__(self,
                 max_concurrent_tasks: int = 4,
                 recovery_system: ErrorRecoverySystem = None):
        self.max_concurrent_tasks = max_concurrent_tasks
        self.coordinator = TaskCoordinator()
        self.file_manager: Optional[IntermediateFileManager] = None
        self.recovery_system = recovery_system or ErrorRecoverySystem(*create_development_config())
        self.job_recovery_system = self.recovery_system

    def execute_job(self, job_config: JobConfig) -> JoinResult:
        """Execute a complete join job and return its result.

        Stats are only produced when every task succeeded and the output was
        committed; any failure yields a result with success=False and no stats.
        """
        join_config = job_config.join_config
        logger.info(f"Starting join job: {job_config.job_name} "
                    f"({join_config.partition_count} partitions, strategy={job_config.strategy})")
        start_time = time.time()
        self.coordinator = TaskCoordinator()
        self.file_manager = None

        if job_config.enable_error_recovery:
            self._initialize_error_recovery(job_config)

        try:
            check_output_location(join_config.output_location)
            get_join_class(job_config.strategy)

            if job_config.intermediate_dir:
                Path(job_config.intermediate_dir).mkdir(parents=True, exist_ok=True)
            intermediate_dir = tempfile.mkdtemp(prefix="repartition_join_", dir=job_config.intermediate_dir)
            self.file_manager = IntermediateFileManager(intermediate_dir)

            # Phase 1: one map task per input file of each relation
            map_task_ids = self._create_map_tasks(join_config)

            # Phase 2: shuffle waits for every map task
            shuffle_task_id = self._create_shuffle_task(map_task_ids)

            # Phase 3: one reduce task per partition
            self._create_reduce_tasks(join_config, shuffle_task_id)

            if not self._execute_all_tasks(job_config):
                error = self._failure_summary()
                logger.error(f"Join job {job_config.job_name} failed: {error}")
                return JoinResult(success=False, error=error)

            self._commit_outputs(join_config)
            stats = self._build_stats(time.time() - start_time)
            logger.info(f"Join job {job_config.job_name} completed in {stats.duration:.3f}s, "
                        f"{stats.counter(REDUCE_OUTPUT_RECORDS)} joined records")
            return JoinResult(success=True, stats=stats)

        except Exception as e:
            logger.error(f"Error executing job {job_config.job_name}: {type(e).__name__}: {e}")
            return JoinResult(success=False, error=f"{type(e).__name__}: {e}")

        finally:
            if self.file_manager and not job_config.keep_intermediate:
                self.file_manager.cleanup()

    def _initialize_error_recovery(self, job_config: JobConfig):
        """Build the recovery system for this job, leaving the shared one untouched"""
        self.job_recovery_system = self.recovery_system
        if job_config.retry_config or job_config.failure_config:
            self.job_recovery_system = ErrorRecoverySystem(
                job_config.retry_config or self.recovery_system.retry_manager.config,
                job_config.failure_config or self.recovery_system.failure_simulator.config,
            )

    def _create_map_tasks(self, join_config: JoinConfig) -> List[str]:
        """Create one map task per input file, tagged with its relation"""
        map_task_ids = []

        for tag, location, join_field_index in (
            (LEFT, join_config.input_location_1, join_config.join_field_index_1),
            (RIGHT, join_config.input_location_2, join_config.join_field_index_2),
        ):
            for input_file in list_input_files(location):
                task_id = f"map_{len(map_task_ids)}"
                task = TaskInfo(
                    task_id=task_id,
                    task_type='map',
                    input_files=[input_file],
                    output_file=self.file_manager.get_map_output_file(task_id),
                    relation=tag,
                    join_field_index=join_field_index,
                )
                self.coordinator.add_task(task)
                map_task_ids.append(task_id)

        logger.info(f"Created {len(map_task_ids)} map tasks")
        return map_task_ids

    def _create_shuffle_task(self, map_task_ids: List[str]) -> str:
        """Create the shuffle task that depends on all map tasks"""
        shuffle_task_id = "shuffle"
        task = TaskInfo(
            task_id=shuffle_task_id,
            task_type='shuffle',
            input_files=[self.coordinator.tasks[task_id].output_file for task_id in map_task_ids],
            output_file=str(self.file_manager.reduce_input_dir),
        )
        self.coordinator.add_task(task, dependencies=map_task_ids)
        logger.info(f"Created shuffle task depending on {len(map_task_ids)} map tasks")
        return shuffle_task_id

    def _create_reduce_tasks(self, join_config: JoinConfig, shuffle_task_id: str) -> List[str]:
        """Create reduce tasks that depend on shuffle completion"""
        reduce_task_ids = []

        for partition_id in range(join_config.partition_count):
            task_id = f"reduce_{partition_id}"
            task = TaskInfo(
                task_id=task_id,
                task_type='reduce',
                input_files=[self.file_manager.get_reduce_input_file(partition_id)],
                output_file=self.file_manager.get_staged_output_file(partition_id),
                partition=partition_id,
            )
            self.coordinator.add_task(task, dependencies=[shuffle_task_id])
            reduce_task_ids.append(task_id)

        logger.info(f"Created {len(reduce_task_ids)} reduce tasks")
        return reduce_task_ids

    def _execute_all_tasks(self, job_config: JobConfig) -> bool:
        """Execute all tasks respecting dependencies.

        Ready tasks are submitted to a bounded pool; the loop blocks until at
        least one running task finishes, then re-evaluates which tasks are ready.
        """
        max_workers = job_config.max_concurrent_tasks or self.max_concurrent_tasks
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            running = {}

            while not self.coordinator.all_tasks_completed() and not self.coordinator.has_failed_tasks():
                for task in self.coordinator.get_ready_tasks():
                    task.status = 'running'
                    task.start_time = time.time()
                    running[executor.submit(self._execute_task, task, job_config)] = task
                    logger.debug(f"Started task {task.task_id}")

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    task = running.pop(future)
                    try:
                        success = future.result()
                    except Exception as e:
                        self.coordinator.mark_task_failed(task.task_id, str(e))
                        continue

                    if success:
                        self.coordinator.mark_task_completed(task.task_id)
                    else:
                        self.coordinator.mark_task_failed(
                            task.task_id, task.error_message or "Task execution failed"
                        )

                stats = self.coordinator.get_task_stats()
                logger.info(f"Task progress: {stats.get('completed', 0)}/{len(self.coordinator.tasks)} completed, "
                            f"{stats.get('running', 0)} running, {stats.get('failed', 0)} failed")

        return self.coordinator.all_tasks_completed() and not self.coordinator.has_failed_tasks()

    def _execute_task(self, task: TaskInfo, job_config: JobConfig) -> bool:
        """Execute a single task, with retries when error recovery is enabled"""

        def task_function():
            if task.task_type == 'map':
                return self._execute_map_task(task, job_config)
            elif task.task_type == 'shuffle':
                return self._execute_shuffle_task(task, job_config)
            elif task.task_type == 'reduce':
                return self._execute_reduce_task(task, job_config)
            raise ValueError(f"Unknown task type: {task.task_type}")

        if job_config.enable_error_recovery:
            success, result, errors = self.job_recovery_system.execute_task_with_recovery(
                task.task_id, task_function
            )
            task.attempts = len(errors) + (1 if success else 0)
            task.errors = errors
            if errors:
                task.error_message = "; ".join(errors)
            if success:
                task.counters = result
            return success

        task.attempts = 1
        try:
            task.counters = task_function()
            return True
        except Exception as e:
            logger.error(f"Error executing task {task.task_id}: {type(e).__name__}: {e}")
            task.error_message = f"{type(e).__name__}: {e}"
            task.errors = [task.error_message]
            return False

    def _execute_map_task(self, task: TaskInfo, job_config: JobConfig) -> Dict[str, Any]:
        """Tag every record of the input and route it to its partition"""
        join_class = get_join_class(job_config.strategy)
        num_partitions = job_config.join_config.partition_count
        input_records = 0
        output_records = 0

        # Rewritten from scratch on every attempt
        with open(task.output_file, 'w', encoding='utf-8') as out:
            for input_file in task.input_files:
                with open(input_file, 'r', encoding='utf-8') as f:
                    # Every line is a record, blank ones included
                    for line_num, line in enumerate(f, start=1):
                        input_records += 1
                        try:
                            for key, tagged in join_class.map(line, task.relation, task.join_field_index):
                                out.write(json.dumps({
                                    'key': key,
                                    'tag': tagged.tag,
                                    'fields': list(tagged.record.fields),
                                    'partition': partition(key, num_partitions),
                                }) + '\n')
                                output_records += 1
                        except MalformedRecordError as e:
                            raise MalformedRecordError(f"{input_file}:{line_num}: {e}") from e

        logger.info(f"Map task {task.task_id} (relation {task.relation}) completed, "
                    f"wrote {output_records} records")
        return {'input_records': input_records, 'output_records': output_records}

    def _execute_shuffle_task(self, task: TaskInfo, job_config: JobConfig) -> Dict[str, Any]:
        """Collect map output per partition and sort it by the grouping order"""
        logger.info(f"Executing shuffle task {task.task_id}")
        partitioned_data = defaultdict(list)
        total_records = 0

        for map_output_file in task.input_files:
            for record in self._read_map_output(map_output_file):
                tagged = TaggedRecord(record['tag'], Record(tuple(record['fields'])))
                partitioned_data[record['partition']].append((record['key'], tagged))
                total_records += 1

        partition_loads = []
        for partition_id in range(job_config.join_config.partition_count):
            partition_data = sort_partition(partitioned_data.pop(partition_id, []))

            with open(self.file_manager.get_reduce_input_file(partition_id), 'w', encoding='utf-8') as f:
                for key, tagged in partition_data:
                    f.write(json.dumps({
                        'key': key,
                        'tag': tagged.tag,
                        'fields': list(tagged.record.fields),
                    }) + '\n')

            partition_loads.append(len(partition_data))
            logger.debug(f"Wrote {len(partition_data)} records to partition {partition_id}")

        logger.info(f"Shuffle task {task.task_id} completed, {total_records} records "
                    f"over {len(partition_loads)} partitions")
        return {
            'input_records': total_records,
            'output_records': total_records,
            'partition_loads': partition_loads,
        }

    @staticmethod
    def _read_map_output(path: str) -> Iterator[Dict[str, Any]]:
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                yield json.loads(line)

    def _execute_reduce_task(self, task: TaskInfo, job_config: JobConfig) -> Dict[str, Any]:
        """Join every key-group of one partition"""
        join_class = get_join_class(job_config.strategy)
        input_records = 0
        output_records = 0
        groups = 0
        max_buffered = 0

        with open(task.output_file, 'w', encoding='utf-8') as out:
            for key, tagged_records in group_by_key(read_sorted_partition(task.input_files[0])):
                tag_counts = {LEFT: 0, RIGHT: 0}
                for joined in join_class.reduce(key, count_tags(tagged_records, tag_counts)):
                    out.write(joined.render() + '\n')
                    output_records += 1

                groups += 1
                input_records += tag_counts[LEFT] + tag_counts[RIGHT]
                max_buffered = max(max_buffered, tag_counts[LEFT])

        logger.info(f"Reduce task {task.task_id} completed, {groups} key-groups, "
                    f"wrote {output_records} records")
        return {
            'input_records': input_records,
            'output_records': output_records,
            'groups': groups,
            'max_buffered': max_buffered,
        }

    def _commit_outputs(self, join_config: JoinConfig):
        """Move staged part files into the output location"""
        output_path = Path(join_config.output_location)
        output_path.mkdir(parents=True, exist_ok=True)

        for task in sorted(self.coordinator.tasks_of_type('reduce'), key=lambda t: t.partition):
            shutil.move(task.output_file, str(output_path / part_file_name(task.partition)))

        (output_path / SUCCESS_MARKER).touch()
        logger.info(f"Committed output to {output_path}")

    def _failure_summary(self) -> str:
        failed = [self.coordinator.tasks[task_id] for task_id in sorted(self.coordinator.failed_tasks)]
        if not failed:
            return "job did not complete"
        return "; ".join(f"{task.task_id}: {task.error_message}" for task in failed)

    def _build_stats(self, elapsed: float) -> JoinStats:
        """Build the immutable stats record from the finished tasks"""
        map_tasks = self.coordinator.tasks_of_type('map')
        shuffle_tasks = self.coordinator.tasks_of_type('shuffle')
        reduce_tasks = sorted(self.coordinator.tasks_of_type('reduce'), key=lambda t: t.partition)

        def total(tasks, name, relation=None):
            return sum(t.counters.get(name, 0) for t in tasks
                       if relation is None or t.relation == relation)

        counters = {
            MAP_INPUT_RECORDS: total(map_tasks, 'input_records'),
            MAP_INPUT_RECORDS_LEFT: total(map_tasks, 'input_records', LEFT),
            MAP_INPUT_RECORDS_RIGHT: total(map_tasks, 'input_records', RIGHT),
            MAP_OUTPUT_RECORDS: total(map_tasks, 'output_records'),
            REDUCE_INPUT_GROUPS: total(reduce_tasks, 'groups'),
            REDUCE_INPUT_RECORDS: total(reduce_tasks, 'input_records'),
            REDUCE_OUTPUT_RECORDS: total(reduce_tasks, 'output_records'),
            MAX_BUFFERED_RECORDS: max((t.counters.get('max_buffered', 0) for t in reduce_tasks), default=0),
            FAILED_TASK_ATTEMPTS: sum(len(t.errors) for t in self.coordinator.tasks.values()),
            PROCESS_RSS_BYTES: psutil.Process().memory_info().rss,
        }
        partition_loads = shuffle_tasks[0].counters.get('partition_loads', []) if shuffle_tasks else []

        return JoinStats(
            job_times=(elapsed,),
            counters=counters,
            partition_loads=tuple(partition_loads),
            map_tasks=tuple(t.to_report() for t in map_tasks),
            reduce_tasks=tuple(t.to_report() for t in reduce_tasks),
            shuffle_tasks=tuple(t.to_report() for t in shuffle_tasks),
        )
