"""
Base adapter interfaces for sources and loaders
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

from batchflow.common.exceptions import ConfigurationError, LedgerError
from batchflow.common.logging import get_logger
from batchflow.common.models import LEDGER_UID, Batch, Ledger, Row, Schema


class SourceAdapter(ABC):
    """Abstract base class for all source adapters"""

    def __init__(self, step_config: Dict[str, Any], config=None):
        """
        Initialize adapter with its extract step configuration

        Args:
            step_config: Extract step configuration
            config: Global Config, used to resolve relative paths
        """
        self.step_config = dict(step_config)
        self.config = config
        self._connected = False
        self.logger = get_logger(self.__class__.__name__)

    def resolve_path(self, value: str) -> Path:
        """Resolve a source path against `sources.path`"""
        path = Path(value).expanduser()
        if path.is_absolute() or self.config is None:
            return path
        return self.config.resolve_path(str(self.config.get('sources.path', '.'))) / path

    @abstractmethod
    def connect(self) -> None:
        """
        Open the source

        Raises:
            ReadError: If the source is unavailable
        """
        pass

    @abstractmethod
    def read(self) -> Iterator[Dict[str, Any]]:
        """
        Read records from source

        Yields:
            Dict: One flat record per row

        Raises:
            ReadError: If reading fails
        """
        pass

    def close(self) -> None:
        """Close source and cleanup resources"""
        self._connected = False

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()


class LedgerMixin:
    """
    Ledger bookkeeping for loaders

    A loader keeps a ledger only when its step configuration has a truthy
    `ledger` key. `ledger.schema` declares field types for persistence.
    """

    ledger: Optional[Ledger] = None

    def init_ledger(self, name: str, ledger_config: Any) -> None:
        if not ledger_config:
            self.ledger = None
            return

        schema = None
        if isinstance(ledger_config, Mapping) and ledger_config.get('schema'):
            schema = Schema.from_mapping(name, ledger_config['schema'])
        self.ledger = Ledger(name=name, schema=schema)

    def create_ledger_entry(self, row: Row, values: Optional[Mapping[str, Any]] = None) -> None:
        """
        Record a side effect for a row

        Args:
            row: Row that produced the side effect
            values: Fields describing the side effect
        """
        if self.ledger is None:
            return

        entry = {LEDGER_UID: row.uid}
        entry.update(values or {})
        if str(entry[LEDGER_UID]) != row.uid:
            raise LedgerError(f"Ledger entry for row {row.uid} names another uid: {entry[LEDGER_UID]}")
        self.ledger.append(entry)

    def get_ledger(self) -> Optional[Ledger]:
        return self.ledger

    def has_ledger(self) -> bool:
        """True once the loader has recorded at least one ledger entry"""
        return self.ledger is not None and not self.ledger.is_empty

    def reset_ledger(self) -> None:
        if self.ledger is not None:
            self.ledger.clear()


class RowMutationMixin:
    """
    Row mutation bookkeeping for loaders

    A loader that adds fields to rows (e.g. a destination id it just minted)
    records the new rows here. The loader chain hands them to the next loader
    in place of the originals.
    """

    def mutate_row(self, row: Row, values: Optional[Mapping[str, Any]] = None) -> Row:
        """
        Record a mutated row

        Args:
            row: Row to mutate
            values: Fields to add or replace

        Returns:
            The mutated row
        """
        if values:
            row = row.with_values(values)
        if not hasattr(self, '_mutated_rows'):
            self._mutated_rows = {}
        self._mutated_rows[row.uid] = row
        return row

    def has_mutated_rows(self) -> bool:
        return bool(getattr(self, '_mutated_rows', None))

    def collect_mutated_rows(self) -> Dict[str, Row]:
        """Return the mutated rows keyed by uid and forget them"""
        rows = getattr(self, '_mutated_rows', None) or {}
        self._mutated_rows = {}
        return rows


class Loader(LedgerMixin, ABC):
    """
    Abstract base class for all loaders

    A loader writes every batch it is given to one destination. Loaders run
    in the order they are declared in the job's `load` list.
    """

    # Destination entity type, compared with the job's entity when picking the primary ledger
    entity_type: Optional[str] = None

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        """
        Initialize loader with its load step configuration

        Args:
            step_config: Load step configuration
            config: Global Config
            registry: LedgerRegistry holding the ledgers of dependencies
        """
        self.step_config = dict(step_config)
        self.config = config
        self.registry = registry
        self.name = str(step_config.get('name') or step_config.get('type') or self.__class__.__name__)
        self.primary = bool(step_config.get('primary', False))
        if step_config.get('entity'):
            self.entity_type = str(step_config['entity'])
        self.logger = get_logger(self.__class__.__name__)

        self.init_ledger(self.name, step_config.get('ledger'))

    def resolve_path(self, value: str) -> Path:
        """Resolve an output path against the configuration directory"""
        if self.config is None:
            return Path(value).expanduser()
        return self.config.resolve_path(value)

    def require(self, key: str) -> Any:
        """
        Get a required step option

        Raises:
            ConfigurationError: If the option is missing
        """
        value = self.step_config.get(key)
        if value in (None, ''):
            raise ConfigurationError(f"Loader '{self.name}' requires '{key}'")
        return value

    @abstractmethod
    def run(self, batch: Batch) -> None:
        """
        Write one batch to the destination

        Args:
            batch: Rows to write

        Raises:
            RecoverableWriteError: Destination temporarily unavailable
            WriteError: Writing failed
        """
        pass

    def has_mutated_rows(self) -> bool:
        return False

    def collect_mutated_rows(self) -> Dict[str, Row]:
        return {}

    def close(self) -> None:
        """Called once after the last batch"""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
