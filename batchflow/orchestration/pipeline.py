"""
Pipeline orchestrator for batchflow

Runs every configured job, one at a time, in the order the dependency graph
allows. A job whose dependency failed in the same run is skipped. A
FatalPipelineError aborts the whole run.
"""
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set

from batchflow.common.config import Config
from batchflow.common.exceptions import ConfigurationError, DependencyValidationError, FatalPipelineError
from batchflow.common.logging import get_logger
from batchflow.common.models import JobConfig, JobError, JobResult, JobStatus
from batchflow.ledger.manager import LedgerManager
from batchflow.ledger.registry import LedgerRegistry
from batchflow.orchestration.graph import ValidationResult, validate
from batchflow.orchestration.job import PipelineJob
from batchflow.orchestration.loader_chain import ProgressListener


class Pipeline:
    """
    Runs the `migration` job list of a configuration

    Example:
        results = Pipeline(Config("migration.yml")).run(only=["users", "posts"])
    """

    def __init__(
        self,
        config: Config,
        registry: Optional[LedgerRegistry] = None,
        listeners: Sequence[ProgressListener] = ()
    ):
        """
        Initialize pipeline

        Args:
            config: Loaded configuration
            registry: Ledger registry shared by all jobs of the run
            listeners: Progress listeners handed to every job's Load phase
        """
        self.config = config
        self.registry = registry or LedgerRegistry(config)
        self.manager = LedgerManager(config, registry=self.registry)
        self.listeners = list(listeners)
        self.logger = get_logger("Pipeline")

        self.validation: Optional[ValidationResult] = None
        self.results: List[JobResult] = []

    def validate(self) -> ValidationResult:
        """
        Validate the job graph

        Cycles always abort. Unknown and misordered dependencies abort when
        `pipeline.strict_dependencies` is on (the default); otherwise the
        offending jobs are left out of the plan.

        Returns:
            ValidationResult

        Raises:
            DependencyValidationError: When the graph cannot be run
        """
        result = validate(self.config.get_jobs())
        self.validation = result

        if result.has_cycles:
            raise DependencyValidationError(result.errors)

        if result.errors:
            if self.config.strict_dependencies:
                raise DependencyValidationError(result.errors)
            for name, reason in result.excluded.items():
                self.logger.warning(f"Excluding job '{name}': {reason}")

        return result

    def plan(
        self,
        only: Optional[Iterable[str]] = None,
        skip: Optional[Iterable[str]] = None
    ) -> List[JobConfig]:
        """
        Jobs that will run, in execution order

        Args:
            only: Run just these jobs
            skip: Leave these jobs out

        Returns:
            Jobs to run

        Raises:
            ConfigurationError: If a filter names an unknown job
        """
        validation = self.validation or self.validate()
        only_names = self._check_names(only)
        skip_names = self._check_names(skip)

        jobs = []
        for name in validation.execution_order:
            job = self.config.find_job(name)
            if job.skip or name in skip_names:
                continue
            if only_names and name not in only_names:
                continue
            jobs.append(job)
        return jobs

    def run(
        self,
        only: Optional[Iterable[str]] = None,
        skip: Optional[Iterable[str]] = None,
        dry_run: bool = False
    ) -> List[JobResult]:
        """
        Execute the pipeline

        Args:
            only: Run just these jobs
            skip: Leave these jobs out
            dry_run: Validate and report the plan without running anything

        Returns:
            One JobResult per job in the plan

        Raises:
            DependencyValidationError: If the job graph cannot be run
            FatalPipelineError: If a job failed fatally
        """
        self.results = []
        self.validate()
        jobs = self.plan(only, skip)
        planned = {job.name for job in jobs}

        for job in self.config.get_jobs():
            if job.name not in planned and job.skip:
                self.logger.info(f"Skipping job '{job.name}' (skip: true)")

        if dry_run:
            for index, job in enumerate(jobs, 1):
                depends = f" (depends on {', '.join(job.depends_on)})" if job.depends_on else ""
                self.logger.info(f"[dry run] {index}. {job.name}{depends}")
                self.results.append(JobResult(name=job.name, status=JobStatus.BUILT))
            return self.results

        self.logger.info(f"Starting pipeline: {len(jobs)} job(s)")
        start = datetime.now()
        failed: Set[str] = set()

        for job in jobs:
            blocked = [d for d in job.depends_on if d in failed]
            if blocked:
                failed.add(job.name)
                self.results.append(self._skipped(job, blocked))
                continue

            runner = PipelineJob(self.config, job, self.registry, self.manager, self.listeners)
            try:
                runner.build().process()
            except FatalPipelineError as e:
                self.results.append(runner.result)
                self.logger.critical(f"Pipeline aborted by job '{job.name}': {e}")
                raise
            except Exception as e:
                failed.add(job.name)
                self.logger.error(f"Job '{job.name}' failed: {e}")
            finally:
                self.registry.clear()

            self.results.append(runner.result)

        duration = (datetime.now() - start).total_seconds()
        done = sum(1 for r in self.results if r.status == JobStatus.DONE)
        self.logger.info(
            f"Pipeline finished in {duration:.2f}s: {done} done, {len(failed)} failed or blocked"
        )
        return self.results

    def _skipped(self, job: JobConfig, blocked: List[str]) -> JobResult:
        message = f"dependency {', '.join(repr(d) for d in blocked)} failed"
        self.logger.warning(f"Skipping job '{job.name}': {message}")
        return JobResult(
            name=job.name,
            status=JobStatus.SKIPPED,
            errors=[JobError(phase="pipeline", error_type="DependencyFailed", message=message)]
        )

    def _check_names(self, names: Optional[Iterable[str]]) -> Set[str]:
        selected = {n for n in (names or []) if n}
        unknown = [n for n in selected if self.config.find_job(n) is None]
        if unknown:
            raise ConfigurationError(f"Unknown job(s): {', '.join(sorted(unknown))}")
        return selected
