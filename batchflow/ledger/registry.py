"""
Registry of ledgers written by earlier jobs
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

from batchflow.adapters.registry import loader_name
from batchflow.common.config import Config
from batchflow.common.exceptions import ConfigurationError
from batchflow.common.logging import get_logger
from batchflow.common.models import Ledger, loader_ledger_name
from batchflow.storage.base import LedgerStorage
from batchflow.storage.file_storage import create_storage


class LedgerRegistry:
    """
    Caches ledgers by job name

    A ledger is loaded from disk the first time a dependent job asks for it
    and stays cached until it is unloaded. Only the most recent file for a
    job is ever read.
    """

    def __init__(self, config: Config, storage: Optional[LedgerStorage] = None):
        """
        Initialize registry

        Args:
            config: Configuration holding the job list and ledger root
            storage: Ledger storage, defaults to the configured `ledger.format`
        """
        self.config = config
        self.storage = storage or create_storage(config.ledger_format)
        self._ledgers: Dict[str, Ledger] = {}
        self.logger = get_logger("LedgerRegistry")

    def get(self, name: str) -> Optional[Ledger]:
        """
        Get a job's ledger, loading the latest persisted file on a cache miss

        Args:
            name: Job name

        Returns:
            Ledger, or None when the job is not configured or has no ledger file
        """
        if name in self._ledgers:
            return self._ledgers[name]

        job = self.config.find_job(name)
        if job is None:
            self.logger.warning(f"No migration config found for {name}")
            return None

        directory = self.config.job_ledger_dir(job)
        latest = self.storage.find_latest(directory, name)
        if latest is None:
            self.logger.warning(
                f"No ledger file found for {name} in {directory} "
                f"({name}-ledger-*.{self.storage.extension})"
            )
            return None

        ledger = self.storage.load_ledger(latest, name=name)
        self._ledgers[name] = ledger
        self.logger.debug(f"Loaded ledger '{name}' from {latest}")
        return ledger

    def put(self, name: str, ledger: Ledger) -> None:
        """Publish a ledger without a disk round-trip"""
        self._ledgers[name] = ledger

    def unload(self, name: str) -> None:
        """Remove a ledger from the cache"""
        if self._ledgers.pop(name, None) is not None:
            self.logger.debug(f"Unloaded ledger '{name}'")

    def is_loaded(self, name: str) -> bool:
        return name in self._ledgers

    def loaded(self) -> List[str]:
        """Names of the cached ledgers"""
        return list(self._ledgers)

    def clear(self) -> None:
        self._ledgers.clear()

    def lookup(self, name: str, field: str, value: Any) -> Optional[Dict[str, Any]]:
        """
        Find the first entry of a job's ledger whose field equals value

        Args:
            name: Job name
            field: Ledger field to match
            value: Value to match

        Returns:
            Ledger entry, or None if the ledger or the entry does not exist
        """
        ledger = self.get(name)
        if ledger is None:
            return None
        return ledger.find(field, value)

    def prune(self, name: str, keep: int = 1) -> List[Path]:
        """
        Delete all but the newest `keep` ledger files of a job

        Covers the job's own ledger and the per-loader ledgers it was joined
        from. The cached copy is dropped.

        Args:
            name: Job name
            keep: Files to keep per ledger name

        Returns:
            Deleted paths

        Raises:
            ConfigurationError: If the job is not configured or keep is negative
        """
        job = self.config.find_job(name)
        if job is None:
            raise ConfigurationError(f"Unknown job: '{name}'")
        if keep < 0:
            raise ConfigurationError(f"Cannot keep a negative number of ledger files: {keep}")

        directory = self.config.job_ledger_dir(job)
        names = [name] + [loader_ledger_name(name, loader_name(step)) for step in job.load]

        deleted: List[Path] = []
        for ledger_name in names:
            deleted.extend(self.storage.cleanup(directory, ledger_name, keep=keep))

        self.unload(name)
        self.logger.info(f"Pruned {len(deleted)} ledger file(s) of '{name}', keeping {keep} per ledger")
        return deleted
