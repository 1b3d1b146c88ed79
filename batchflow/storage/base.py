"""
Base interface for ledger storage
"""
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from batchflow.common.models import Ledger
from batchflow.common.logging import get_logger

LEDGER_MARKER = "-ledger-"


def ledger_timestamp(moment: Optional[datetime] = None) -> str:
    """Fixed-width timestamp, so lexicographic order is chronological order"""
    return (moment or datetime.now()).strftime("%Y%m%d%H%M%S%f")


def ledger_filename(name: str, timestamp: str, extension: str) -> str:
    """`{name}-ledger-{timestamp}.{ext}`"""
    return f"{name}{LEDGER_MARKER}{timestamp}.{extension.lstrip('.')}"


class LedgerStorage(ABC):
    """
    Abstract base class for durable ledger storage

    Ledger files live in a directory and are named after the job or loader
    that produced them plus the time they were written. Readers pick the most
    recent file for a name.
    """

    extension = "json"

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def save_ledger(self, ledger: Ledger, directory: Path, name: Optional[str] = None,
                    timestamp: Optional[str] = None) -> Path:
        """
        Persist a ledger as a sequence of flat records

        Args:
            ledger: Ledger to persist
            directory: Target directory (created if missing)
            name: File name stem, defaults to the ledger name
            timestamp: Timestamp for the file name, defaults to now

        Returns:
            Path of the written file

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def load_ledger(self, path: Path, name: Optional[str] = None) -> Ledger:
        """
        Load a ledger file

        Args:
            path: Ledger file
            name: Name for the loaded ledger, defaults to the file's name stem

        Returns:
            Ledger with entries in file order

        Raises:
            StorageError: If the file cannot be read
        """
        pass

    def list_ledgers(self, directory: Path, name: str) -> List[Path]:
        """
        List ledger files for a name, oldest first

        Args:
            directory: Directory to search
            name: Job or loader name

        Returns:
            Matching files sorted by their timestamp
        """
        if not directory.is_dir():
            return []

        pattern = re.compile(
            rf"^{re.escape(name)}{re.escape(LEDGER_MARKER)}(\d+)\.{re.escape(self.extension)}$"
        )
        files = [
            path for path in directory.glob(f"*{LEDGER_MARKER}*.{self.extension}")
            if pattern.match(path.name)
        ]
        return sorted(files, key=lambda p: pattern.match(p.name).group(1))

    def find_latest(self, directory: Path, name: str) -> Optional[Path]:
        """Most recent ledger file for a name, or None"""
        files = self.list_ledgers(directory, name)
        return files[-1] if files else None

    def delete(self, path: Path) -> None:
        """Delete a ledger file"""
        if path.exists():
            path.unlink()
        self.logger.info(f"Deleted {path}")

    def cleanup(self, directory: Path, name: str, keep: int = 1) -> List[Path]:
        """
        Delete all but the newest `keep` ledger files for a name

        Returns:
            Deleted paths
        """
        files = self.list_ledgers(directory, name)
        stale = files[:-keep] if keep > 0 else files
        for path in stale:
            self.delete(path)
        return stale
