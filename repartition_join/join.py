"""
Copyright (c) 2025. All rights reserved.
"""

"""
Job-facing join interface.

A Join is configured once with init(), executed with run() and queried for its
statistics with get_join_stats(). RepartitionJoin runs the repartition join on
the local engine in scheduler.py.
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

from .configs import JoinConfig
from .error_handling import ErrorRecoverySystem, FailureConfig, RetryConfig
from .factories.registry import DEFAULT_STRATEGY, get_join_class
from .scheduler import JobConfig, JoinScheduler
from .stats import JoinResult, JoinStats

logger = logging.getLogger(__name__)


class Join(ABC):
    """
    Base class for two-relation equi-joins.

    Subclasses implement execute(); init() and run() keep the bookkeeping
    common to every join: the job name, the last result and the rule that
    statistics exist only after a successful run.
    """

    def __init__(self) -> None:
        self.config: Optional[JoinConfig] = None
        self.name: Optional[str] = None
        self.result: Optional[JoinResult] = None

    def init(self, config: JoinConfig, name: Optional[str] = None) -> None:
        """
        Configure the join.

        Args:
            config (JoinConfig): Inputs, join fields, output location and partitions
            name (str): Job name used in logs; derived from the inputs when omitted
        """
        if not isinstance(config, JoinConfig):
            raise TypeError(f"config must be a JoinConfig, got {type(config).__name__}")
        self.config = config
        self.name = name or f"join({config.input_location_1}, {config.input_location_2})"
        self.result = None

    def run(self, verbose: bool = False) -> bool:
        """Run the configured join; return True when it succeeded."""
        if self.config is None:
            raise RuntimeError("Join.run() called before init()")

        if verbose:
            logger.info(f"Running {self.name} with {self.config.partition_count} partition(s)")

        self.result = self.execute()

        if verbose:
            if self.result.success:
                logger.info(f"{self.name} finished in {self.result.stats.duration:.3f}s")
            else:
                logger.info(f"{self.name} failed: {self.result.error}")
        return self.result.success

    @abstractmethod
    def execute(self) -> JoinResult:
        pass

    def get_join_stats(self) -> JoinStats:
        """Statistics of the last successful run."""
        if self.result is None:
            raise RuntimeError("Join has not been run yet")
        if not self.result.success:
            raise RuntimeError(f"Join failed, no statistics available: {self.result.error}")
        return self.result.stats


class RepartitionJoin(Join):
    """Repartition join executed on the local MapReduce engine."""

    def __init__(self,
                 strategy: str = DEFAULT_STRATEGY,
                 max_concurrent_tasks: int = 4,
                 intermediate_dir: Optional[str] = None,
                 enable_error_recovery: bool = True,
                 retry_config: RetryConfig = None,
                 failure_config: FailureConfig = None,
                 recovery_system: ErrorRecoverySystem = None) -> None:
        super().__init__()
        # Unknown strategies are rejected here, before any job is configured
        get_join_class(strategy)
        self.strategy = strategy
        self.max_concurrent_tasks = max_concurrent_tasks
        self.intermediate_dir = intermediate_dir
        self.enable_error_recovery = enable_error_recovery
        self.retry_config = retry_config
        self.failure_config = failure_config
        self.scheduler = JoinScheduler(max_concurrent_tasks, recovery_system)

    def execute(self) -> JoinResult:
        job_config = JobConfig(
            job_name=self.name,
            join_config=self.config,
            strategy=self.strategy,
            intermediate_dir=self.intermediate_dir,
            max_concurrent_tasks=self.max_concurrent_tasks,
            enable_error_recovery=self.enable_error_recovery,
            retry_config=self.retry_config,
            failure_config=self.failure_config,
        )
        return self.scheduler.execute_job(job_config)
