"""
Copyright (c) 2025. All rights reserved.
"""

"""
Error Handling and Retry System for the join engine

This module implements retry logic and failure injection for map, shuffle and
reduce tasks.

Key Features:
1. Configurable retry strategies with backoff
2. Fail-fast for deterministic data errors (malformed records, bad ordering)
3. Transient failure simulation to exercise retries
4. Task-level recovery statistics

A task may run more than once. Every task function must therefore give the
same result for the same input, with no side effect other than (re)writing
its own output file.
"""

import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from .factories.base import GroupOrderError
from .tuples import MalformedRecordError

logger = logging.getLogger(__name__)

# Errors that would fail again on every retry
NON_RETRYABLE_ERRORS = (MalformedRecordError, GroupOrderError)


class RetryStrategy(Enum):
    """Different retry strategies for failed tasks"""
    IMMEDIATE = "immediate"
    LINEAR_BACKOFF = "linear_backoff"
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    FIXED_DELAY = "fixed_delay"


class FailureType(Enum):
    """Types of failures that can be simulated"""
    TASK_CRASH = "task_crash"
    NETWORK_FAILURE = "network_failure"
    DISK_FULL = "disk_full"
    TIMEOUT = "timeout"


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_retries: int = 3
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    backoff_multiplier: float = 2.0
    jitter: bool = True  # Add randomness to prevent thundering herd


@dataclass
class FailureConfig:
    """Configuration for failure simulation"""
    enabled: bool = False
    failure_rate: float = 0.1  # chance that a targeted attempt fails
    failure_types: Optional[List[FailureType]] = None
    target_tasks: Optional[List[str]] = None  # Specific tasks to fail, None for all
    max_failures_per_task: int = 1  # later attempts succeed


class RetryManager:
    """Manages retry logic for failed tasks"""

    def __init__(self, config: RetryConfig):
        self.config = config

    def should_retry(self, task_id: str, retry_count: int, error: BaseException) -> bool:
        """Determine if a task should be retried based on failure count and type"""
        if isinstance(error, NON_RETRYABLE_ERRORS):
            logger.info(f"Task {task_id} failed with non-retryable error: {type(error).__name__}")
            return False

        if retry_count > self.config.max_retries:
            logger.warning(f"Task {task_id} exceeded max retries ({self.config.max_retries})")
            return False

        return True

    def calculate_delay(self, retry_count: int) -> float:
        """Calculate delay before next retry attempt"""
        if self.config.strategy == RetryStrategy.IMMEDIATE:
            delay = 0.0
        elif self.config.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.config.base_delay_seconds * retry_count
        elif self.config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.config.base_delay_seconds * (self.config.backoff_multiplier ** retry_count)
        else:
            delay = self.config.base_delay_seconds

        # Cap at max delay
        delay = min(delay, self.config.max_delay_seconds)

        if self.config.jitter:
            delay *= random.uniform(0.5, 1.5)

        return delay

    def execute_with_retry(self,
                           task_id: str,
                           task_function: Callable,
                           *args, **kwargs) -> Tuple[bool, Any, List[str]]:
        """Execute a task with retry logic.

        Returns:
            (success, result, errors) where errors holds one message per failed attempt
        """
        retry_count = 0
        errors = []

        while True:
            try:
                logger.debug(f"Executing task {task_id} (attempt {retry_count + 1})")
                result = task_function(*args, **kwargs)
                if retry_count > 0:
                    logger.info(f"Task {task_id} succeeded after {retry_count} retries")
                return True, result, errors

            except Exception as e:
                retry_count += 1
                error_msg = f"Attempt {retry_count}: {type(e).__name__}: {e}"
                errors.append(error_msg)
                logger.error(f"Task {task_id} failed: {error_msg}")

                if not self.should_retry(task_id, retry_count, e):
                    break

                delay = self.calculate_delay(retry_count)
                logger.warning(f"Retrying task {task_id} after {delay:.2f} seconds")
                time.sleep(delay)

        logger.error(f"Task {task_id} failed after {retry_count} attempts")
        return False, None, errors


class FailureSimulator:
    """Injects transient failures into task attempts for testing recovery"""

    def __init__(self, config: FailureConfig):
        self.config = config
        if config.failure_types is None:
            self.config.failure_types = list(FailureType)
        self._failures: Dict[str, int] = {}
        self._lock = threading.Lock()

    def should_fail(self, task_id: str) -> Tuple[bool, Optional[FailureType]]:
        """Determine if this attempt of a task should fail and how"""
        if not self.config.enabled:
            return False, None

        # Check if this specific task is targeted
        if self.config.target_tasks and task_id not in self.config.target_tasks:
            return False, None

        with self._lock:
            if self._failures.get(task_id, 0) >= self.config.max_failures_per_task:
                return False, None
            if random.random() < self.config.failure_rate:
                self._failures[task_id] = self._failures.get(task_id, 0) + 1
                return True, random.choice(self.config.failure_types)

        return False, None

    def simulate_failure(self, task_id: str, failure_type: FailureType):
        """Raise the exception matching a failure type"""
        logger.warning(f"Simulating {failure_type.value} for task {task_id}")

        if failure_type == FailureType.TASK_CRASH:
            raise RuntimeError(f"Simulated task crash for {task_id}")
        elif failure_type == FailureType.NETWORK_FAILURE:
            raise ConnectionError(f"Simulated network failure for {task_id}")
        elif failure_type == FailureType.DISK_FULL:
            raise OSError(f"Simulated disk full error for {task_id}")
        elif failure_type == FailureType.TIMEOUT:
            raise TimeoutError(f"Simulated timeout for {task_id}")

    def injected_failures(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._failures)


class ErrorRecoverySystem:
    """Coordinates retries and failure injection for task execution"""

    def __init__(self,
                 retry_config: RetryConfig = None,
                 failure_config: FailureConfig = None):

        self.retry_manager = RetryManager(retry_config or RetryConfig())
        self.failure_simulator = FailureSimulator(failure_config or FailureConfig())

        self._stats_lock = threading.Lock()
        self.recovery_stats = {
            'total_tasks': 0,
            'failed_attempts': 0,
            'recovered_tasks': 0,
            'permanently_failed_tasks': 0,
        }

    def execute_task_with_recovery(self,
                                   task_id: str,
                                   task_function: Callable,
                                   *args, **kwargs) -> Tuple[bool, Any, List[str]]:
        """Execute a task with retries and optional failure injection"""

        def wrapped_task_function(*args, **kwargs):
            should_fail, failure_type = self.failure_simulator.should_fail(task_id)
            if should_fail:
                self.failure_simulator.simulate_failure(task_id, failure_type)
            return task_function(*args, **kwargs)

        success, result, errors = self.retry_manager.execute_with_retry(
            task_id, wrapped_task_function, *args, **kwargs
        )

        with self._stats_lock:
            self.recovery_stats['total_tasks'] += 1
            self.recovery_stats['failed_attempts'] += len(errors)
            if not success:
                self.recovery_stats['permanently_failed_tasks'] += 1
            elif errors:
                self.recovery_stats['recovered_tasks'] += 1

        return success, result, errors

    def get_recovery_statistics(self) -> Dict[str, int]:
        """Get statistics about error recovery performance"""
        with self._stats_lock:
            return self.recovery_stats.copy()

    def reset_statistics(self):
        """Reset recovery statistics"""
        with self._stats_lock:
            for key in self.recovery_stats:
                self.recovery_stats[key] = 0


# Convenience functions for common configurations
def create_development_config() -> Tuple[RetryConfig, FailureConfig]:
    """Create configuration suitable for development and local runs"""
    return (
        RetryConfig(max_retries=2, strategy=RetryStrategy.FIXED_DELAY, base_delay_seconds=0.5),
        FailureConfig(enabled=False)
    )


def create_production_config() -> Tuple[RetryConfig, FailureConfig]:
    """Create configuration suitable for production use"""
    return (
        RetryConfig(max_retries=5, strategy=RetryStrategy.EXPONENTIAL_BACKOFF, base_delay_seconds=2.0),
        FailureConfig(enabled=False)
    )


def create_testing_config() -> Tuple[RetryConfig, FailureConfig]:
    """Create configuration suitable for failure testing"""
    return (
        RetryConfig(max_retries=3, strategy=RetryStrategy.IMMEDIATE, jitter=False),
        FailureConfig(enabled=True, failure_rate=1.0, failure_types=[FailureType.TASK_CRASH, FailureType.TIMEOUT])
    )
