"""
Phase processors

One processor per phase type. Each takes the state the previous phase left
behind and returns the state for the next one: `process(state) -> state`.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from batchflow.adapters.registry import LOADERS, SOURCES, TRANSFORMERS
from batchflow.common.config import Config
from batchflow.common.exceptions import FatalPipelineError, ReadError
from batchflow.common.logging import get_logger
from batchflow.common.models import UID_FIELD, Batch, JobConfig, Ledger, PhaseType, Row
from batchflow.ledger.manager import LedgerManager
from batchflow.orchestration.loader_chain import LoaderChain, LoaderEffect, ProgressListener, ProgressReporter

_INVALID_CHARS = re.compile(r'[^\x20-\x7E]')
_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_SEPARATORS = re.compile(r'[\s\-]+')


@dataclass
class PipelineState:
    """Tabular state threaded through the phases of one job"""
    rows: List[Row] = field(default_factory=list)

    # Set by the Load phase
    ledger: Optional[Ledger] = None
    ledger_paths: List[str] = field(default_factory=list)
    loader_effects: Dict[str, LoaderEffect] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.rows)


def normalize_field_name(name: str) -> str:
    """
    Normalize a source column name

    Control and non-ASCII characters are stripped, then the name is converted
    to snake case. Dots are kept so prefixed names survive.

    Args:
        name: Column name as read from the source

    Returns:
        Normalized name
    """
    if name == UID_FIELD:
        return name
    cleaned = _INVALID_CHARS.sub('', str(name)).strip()
    cleaned = _CAMEL_BOUNDARY.sub('_', cleaned)
    cleaned = _SEPARATORS.sub('_', cleaned)
    return cleaned.lower()


def normalize_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {normalize_field_name(k): v for k, v in record.items()}


class PhaseProcessor(ABC):
    """Base class for the processor of one phase of one job"""

    phase: PhaseType

    def __init__(self, config: Config, job: JobConfig, registry=None):
        """
        Initialize phase processor

        Args:
            config: Global configuration
            job: Job the processor runs for
            registry: LedgerRegistry holding the job's dependency ledgers
        """
        self.config = config
        self.job = job
        self.registry = registry
        self.steps = job.steps(self.phase)
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def process(self, state: PipelineState) -> PipelineState:
        """Run the phase and return the resulting state"""
        pass


class ExtractOrchestrator(PhaseProcessor):
    """
    Reads every extract step of a job into rows

    Rows from several extract steps are concatenated in step order. Unless a
    step sets `normalize: false`, column names are normalized and the step's
    `prefix` is applied. Each row gets its `etl.uid` here.
    """

    phase = PhaseType.EXTRACT

    def process(self, state: PipelineState) -> PipelineState:
        self.logger.info(f"Job '{self.job.name}': extracting from {len(self.steps)} source(s)")
        rows = list(state.rows)

        for index, step in enumerate(self.steps):
            extracted = self.extract_step(step)
            self.logger.info(
                f"Job '{self.job.name}': extract step #{index} ({step.get('type')}) "
                f"read {len(extracted)} rows"
            )
            rows.extend(extracted)

        state.rows = rows
        return state

    def extract_step(self, step: Mapping[str, Any]) -> List[Row]:
        """
        Read one extract step

        Raises:
            ReadError: If the source cannot be read
        """
        normalize = step.get('normalize', True)
        prefix = step.get('prefix') or ''

        rows: List[Row] = []
        with SOURCES.create(step, self.config) as source:
            for record in source.read():
                if normalize:
                    record = normalize_record(record)
                try:
                    row = Row.create(record)
                except ValueError as e:
                    raise ReadError(f"Job '{self.job.name}': {e}")
                if prefix:
                    row = row.with_prefix(prefix)
                rows.append(row)

        return rows


class TransformOrchestrator(PhaseProcessor):
    """Applies the transform steps of a job in order"""

    phase = PhaseType.TRANSFORM

    def process(self, state: PipelineState) -> PipelineState:
        if not self.steps:
            self.logger.info(f"Job '{self.job.name}': no transformers to apply")
            return state

        transformers = [TRANSFORMERS.create(step, self.registry) for step in self.steps]

        # Call setup on all transformers first
        for transformer in transformers:
            transformer.setup()

        rows = state.rows
        try:
            for transformer in transformers:
                transformer_name = transformer.__class__.__name__
                self.logger.info(f"Job '{self.job.name}': applying transformer {transformer_name}")

                rows = transformer.transform_batch(rows)

                self.logger.info(f"After {transformer_name}: {len(rows)} rows remain")
        finally:
            for transformer in transformers:
                transformer.cleanup()

        state.rows = rows
        return state


class LoadOrchestrator(PhaseProcessor):
    """
    Runs the loader chain of a job over its rows, batch by batch

    Once every batch went through the chain, the loaders are closed and
    their ledgers handed to the LedgerManager. Ledgers are persisted even
    when a fatal error aborts the chain, so writes that did succeed keep
    their record.
    """

    phase = PhaseType.LOAD

    def __init__(
        self,
        config: Config,
        job: JobConfig,
        registry=None,
        manager: Optional[LedgerManager] = None,
        listeners: Sequence[ProgressListener] = ()
    ):
        """
        Initialize load orchestrator

        Args:
            config: Global configuration
            job: Job the processor runs for
            registry: LedgerRegistry handed to loaders
            manager: LedgerManager persisting the job's ledgers
            listeners: Progress listeners for this run
        """
        super().__init__(config, job, registry)
        self.manager = manager or LedgerManager(config, registry=registry)
        self.listeners = list(listeners)
        self.batch_size = int(job.batch_size or config.batch_size)

    def create_loaders(self) -> List[Any]:
        return [LOADERS.create(step, self.config, self.registry) for step in self.steps]

    def process(self, state: PipelineState) -> PipelineState:
        if not self.steps:
            self.logger.warning(f"Job '{self.job.name}': no loaders configured")
            return state

        loaders = self.create_loaders()
        reporter = ProgressReporter(self.job.name, total=len(state.rows))
        for listener in self.listeners:
            reporter.subscribe(listener)

        chain = LoaderChain(loaders, job_name=self.job.name, reporter=reporter)
        self.logger.info(
            f"Job '{self.job.name}': loading {len(state.rows)} rows through "
            f"{len(loaders)} loader(s) in batches of {self.batch_size}"
        )

        loaded: List[Row] = []
        try:
            for batch in Batch.chunks(state.rows, self.batch_size):
                result = chain.run(batch)
                loaded.extend(result.batch)
        except FatalPipelineError:
            self.logger.critical(f"Job '{self.job.name}': load aborted, persisting recorded ledgers")
            try:
                chain.close()
                self.manager.finalize(self.job, loaders)
            except Exception as cleanup_error:
                self.logger.error(
                    f"Job '{self.job.name}': cleanup after the fatal error failed: {cleanup_error}",
                    exc_info=True
                )
            raise

        chain.close()

        state.ledger = self.manager.finalize(self.job, loaders)
        state.ledger_paths = [str(p) for p in self.manager.paths]
        state.loader_effects = dict(chain.totals)
        state.rows = loaded

        for name, effect in chain.totals.items():
            self.logger.info(
                f"Job '{self.job.name}': loader '{name}' saw {effect.rows_seen} rows, "
                f"recorded {effect.ledger_entries} ledger entries, {len(effect.errors)} error(s)"
            )

        return state


PHASE_PROCESSORS = {
    PhaseType.EXTRACT: ExtractOrchestrator,
    PhaseType.TRANSFORM: TransformOrchestrator,
    PhaseType.LOAD: LoadOrchestrator,
}
