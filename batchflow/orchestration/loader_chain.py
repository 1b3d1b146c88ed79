"""
Synchronous loader chain

Runs the loaders of a job one after another against the same batch. A loader
that mutates rows (e.g. to record the id a destination minted) hands the
mutated rows on: the next loader receives the batch with those rows
substituted by uid, and every other row unchanged.
"""
import gc
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from batchflow.common.exceptions import FatalPipelineError, RecoverableWriteError
from batchflow.common.logging import get_logger, log_context
from batchflow.common.models import Batch

ProgressListener = Callable[[str, int, Optional[int]], None]


class ProgressReporter:
    """
    Progress notifications for one job run

    Listeners receive `(loader_name, rows_processed, total_rows)` after each
    loader invocation. Reporting never influences execution: a failing
    listener is logged and ignored.
    """

    def __init__(self, job_name: str, total: Optional[int] = None):
        self.job_name = job_name
        self.total = total
        self.counts: Dict[str, int] = {}
        self._listeners: List[ProgressListener] = []
        self.logger = get_logger("ProgressReporter")

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def advance(self, loader_name: str, count: int) -> None:
        """Record `count` more rows processed by a loader and notify listeners"""
        self.counts[loader_name] = self.counts.get(loader_name, 0) + count
        for listener in self._listeners:
            try:
                listener(loader_name, self.counts[loader_name], self.total)
            except Exception as e:
                self.logger.warning(f"Progress listener failed for job '{self.job_name}': {e}")

    def processed(self, loader_name: str) -> int:
        return self.counts.get(loader_name, 0)


@dataclass
class LoaderEffect:
    """What one loader did with one or more batches"""
    rows_seen: int = 0
    ledger_entries: int = 0
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def add(self, other: 'LoaderEffect') -> None:
        self.rows_seen += other.rows_seen
        self.ledger_entries += other.ledger_entries
        if other.error:
            self.error = other.error
            self.errors.append(other.error)


@dataclass
class ChainResult:
    """Per-loader effects of one batch plus the batch as the last loader saw it"""
    effects: Dict[str, LoaderEffect]
    batch: Batch


class LoaderChain:
    """Runs an ordered list of loaders against each batch"""

    def __init__(self, loaders: Sequence[Any], job_name: str = "", reporter: Optional[ProgressReporter] = None):
        """
        Initialize loader chain

        Args:
            loaders: Loaders in declared order
            job_name: Job the chain belongs to, for log context
            reporter: Progress reporter for this job run
        """
        self.loaders = list(loaders)
        self.job_name = job_name
        self.reporter = reporter
        self.totals: Dict[str, LoaderEffect] = {loader.name: LoaderEffect() for loader in self.loaders}
        self.logger = get_logger("LoaderChain")

    def run(self, batch: Batch) -> ChainResult:
        """
        Run every loader against a batch

        A RecoverableWriteError is logged as a warning and any other error is
        logged as an error; in both cases the chain moves on to the next
        loader. Rows a loader mutated before failing are still handed on.

        Args:
            batch: Rows to load

        Returns:
            ChainResult

        Raises:
            FatalPipelineError: Re-raised to abort the whole run
        """
        effects: Dict[str, LoaderEffect] = {}
        current = batch

        for loader in self.loaders:
            effect = LoaderEffect(rows_seen=len(current))
            ledger_before = self._ledger_size(loader)

            try:
                loader.run(current)
            except FatalPipelineError:
                self.logger.critical(
                    f"Job '{self.job_name}': loader '{loader.name}' failed fatally",
                    extra=log_context(self.job_name, loader.name)
                )
                raise
            except RecoverableWriteError as e:
                effect.error = str(e)
                uid = f" (row {e.uid})" if e.uid else ""
                self.logger.warning(
                    f"Job '{self.job_name}': loader '{loader.name}'{uid}: {e}",
                    extra=log_context(self.job_name, loader.name, e.uid)
                )
            except Exception as e:
                effect.error = str(e)
                uid = getattr(e, 'uid', None)
                where = f"row {uid}" if uid else f"a batch of {len(current)} rows"
                self.logger.error(
                    f"Job '{self.job_name}': loader '{loader.name}' failed on {where}: "
                    f"{type(e).__name__}: {e}",
                    exc_info=True,
                    extra=log_context(self.job_name, loader.name, uid)
                )

            if loader.has_mutated_rows():
                current = current.substitute(loader.collect_mutated_rows())

            effect.ledger_entries = self._ledger_size(loader) - ledger_before
            effects[loader.name] = effect
            self.totals[loader.name].add(effect)

            if self.reporter is not None:
                self.reporter.advance(loader.name, len(current))

        result = ChainResult(effects=effects, batch=current)

        del current
        gc.collect()

        return result

    def close(self) -> Dict[str, str]:
        """
        Call every loader's close hook once all batches ran

        Returns:
            Loader name -> error message for hooks that failed
        """
        failures: Dict[str, str] = {}
        for loader in self.loaders:
            try:
                loader.close()
            except FatalPipelineError:
                raise
            except Exception as e:
                failures[loader.name] = str(e)
                self.totals[loader.name].errors.append(str(e))
                self.logger.error(
                    f"Job '{self.job_name}': closing loader '{loader.name}' failed: {e}",
                    extra=log_context(self.job_name, loader.name)
                )
        return failures

    @staticmethod
    def _ledger_size(loader: Any) -> int:
        ledger = loader.get_ledger()
        return len(ledger) if ledger is not None else 0
