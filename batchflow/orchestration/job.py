"""
Job runner

Runs the Extract, Transform and Load phases of one job in sequence, threading
the state forward. Around every phase the ledgers of the job's declared
dependencies are loaded into the registry and unloaded again.
"""
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from batchflow.common.config import Config
from batchflow.common.exceptions import MissingDependencyData
from batchflow.common.logging import get_logger
from batchflow.common.models import JobConfig, JobError, JobResult, JobStatus, PhaseType
from batchflow.ledger.manager import LedgerManager
from batchflow.ledger.registry import LedgerRegistry
from batchflow.orchestration.loader_chain import ProgressListener
from batchflow.orchestration.phases import (
    ExtractOrchestrator,
    LoadOrchestrator,
    PhaseProcessor,
    PipelineState,
    TransformOrchestrator,
)

RUNNING_STATUS = {
    PhaseType.EXTRACT: JobStatus.EXTRACT_RUNNING,
    PhaseType.TRANSFORM: JobStatus.TRANSFORM_RUNNING,
    PhaseType.LOAD: JobStatus.LOAD_RUNNING,
}


class PipelineJob:
    """
    One job run

    Status moves `built -> extract_running -> transform_running ->
    load_running -> done`, or to `failed` from any running state. A single
    phase may be run on its own (to preview an extraction or a
    transformation); the status then names the last phase that ran.

    Example:
        job = PipelineJob(config, config.find_job("posts"), registry).build()
        result = job.run()
    """

    def __init__(
        self,
        config: Config,
        job: JobConfig,
        registry: Optional[LedgerRegistry] = None,
        manager: Optional[LedgerManager] = None,
        listeners: Sequence[ProgressListener] = ()
    ):
        """
        Initialize job runner

        Args:
            config: Global configuration
            job: Job to run
            registry: Ledger registry shared by every job of a run
            manager: Ledger manager, defaults to one publishing to `registry`
            listeners: Progress listeners for the Load phase
        """
        self.config = config
        self.job = job
        self.registry = registry or LedgerRegistry(config)
        self.manager = manager or LedgerManager(config, registry=self.registry)
        self.listeners = list(listeners)

        self.state = PipelineState()
        self.status = JobStatus.BUILT
        self.result = JobResult(name=job.name)
        self.processors: Dict[PhaseType, PhaseProcessor] = {}

        self.processor_factories: Dict[PhaseType, Callable[[], PhaseProcessor]] = {
            PhaseType.EXTRACT: lambda: ExtractOrchestrator(self.config, self.job, self.registry),
            PhaseType.TRANSFORM: lambda: TransformOrchestrator(self.config, self.job, self.registry),
            PhaseType.LOAD: lambda: LoadOrchestrator(
                self.config, self.job, self.registry, self.manager, self.listeners
            ),
        }

        self.logger = get_logger("PipelineJob")

    def build(self) -> 'PipelineJob':
        """
        Create one processor per phase

        Returns:
            self for chaining
        """
        for phase in PhaseType:
            self.processors[phase] = self.processor_factories[phase]()
        return self

    def process(self, phase: Optional[PhaseType] = None) -> 'PipelineJob':
        """
        Run one phase, or all three in order

        Args:
            phase: Phase to run; None runs extract, transform and load

        Returns:
            self for chaining

        Raises:
            MissingDependencyData: If the job requires dependency data that
                does not exist
            ETLError: Whatever the failing phase raised
        """
        if not self.processors:
            self.build()

        if self.result.start_time is None:
            self.result.start_time = datetime.now()

        phases = [phase] if phase is not None else list(PhaseType)
        for current in phases:
            self._run_phase(current)

        if PhaseType.LOAD in phases:
            self._set_status(JobStatus.DONE)
            self.result.end_time = datetime.now()
            self.logger.info(
                f"Job '{self.job.name}' completed in {self.result.duration_seconds:.2f}s: "
                f"{self.result.rows_extracted} extracted, {self.result.rows_transformed} transformed, "
                f"{self.result.rows_loaded} loaded"
            )

        return self

    def run(self) -> JobResult:
        """Run every phase and return the result"""
        self.process()
        return self.result

    def load_dependencies(self) -> List[str]:
        """
        Load the ledgers of the job's declared dependencies into the registry

        Returns:
            Names of the dependencies whose ledger was found

        Raises:
            MissingDependencyData: If a ledger is missing and the job sets
                `requires_dependency_data`
        """
        loaded = []
        for dependency in self.job.depends_on:
            if self.registry.get(dependency) is not None:
                loaded.append(dependency)
                continue

            error = MissingDependencyData(self.job.name, dependency)
            if self.job.requires_dependency_data:
                raise error
            self.logger.warning(str(error))

        return loaded

    def unload_dependencies(self) -> None:
        for dependency in self.job.depends_on:
            self.registry.unload(dependency)

    def _run_phase(self, phase: PhaseType) -> None:
        self._set_status(RUNNING_STATUS[phase])
        self.logger.info(f"Job '{self.job.name}': {phase.value} phase starting")
        start = time.time()

        try:
            self.load_dependencies()
            self.state = self.processors[phase].process(self.state)
        except Exception as e:
            self._set_status(JobStatus.FAILED)
            self.result.end_time = datetime.now()
            self.result.errors.append(JobError(
                phase=phase.value,
                error_type=type(e).__name__,
                message=str(e)
            ))
            self.logger.error(f"Job '{self.job.name}': {phase.value} phase failed: {e}")
            raise
        finally:
            self.unload_dependencies()
            self.result.phase_durations[phase.value] = time.time() - start

        self._record(phase)

    def _record(self, phase: PhaseType) -> None:
        """Copy the counts of a finished phase into the job result"""
        count = len(self.state.rows)

        if phase == PhaseType.EXTRACT:
            self.result.rows_extracted = count
        elif phase == PhaseType.TRANSFORM:
            self.result.rows_transformed = count
        else:
            self.result.rows_loaded = count
            self.result.ledger_paths = list(self.state.ledger_paths)
            for loader, effect in self.state.loader_effects.items():
                for message in effect.errors:
                    self.result.errors.append(JobError(
                        phase=phase.value,
                        error_type="LoaderError",
                        message=message,
                        loader=loader,
                        recoverable=True
                    ))

    def _set_status(self, status: JobStatus) -> None:
        self.status = status
        self.result.status = status
