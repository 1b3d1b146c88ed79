"""
Base transformer interface
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from batchflow.common.models import Row
from batchflow.common.exceptions import ConfigurationError, TransformError
from batchflow.common.logging import get_logger

# Step keys consumed by the pipeline rather than the transformer
STEP_KEYS = ('type', 'name', 'description')


@dataclass
class TransformerStats:
    """Statistics for transformer execution"""
    records_processed: int = 0
    records_filtered: int = 0
    records_modified: int = 0
    errors: int = 0


class Transformer(ABC):
    """Abstract base class for all transformers"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize transformer

        Args:
            config: Transformer-specific configuration
        """
        self.config = config or {}
        self.stats = TransformerStats()
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_step(cls, step: Mapping[str, Any], registry=None) -> 'Transformer':
        """
        Build a transformer from its transform step configuration

        Args:
            step: Transform step; every key but the step keys is an option
            registry: LedgerRegistry, for transformers that read dependency ledgers

        Returns:
            Transformer
        """
        options = {k: v for k, v in step.items() if k not in STEP_KEYS}
        try:
            return cls(**options)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid options for '{step.get('type')}' transformer: {e}")

    def setup(self) -> None:
        """Called once before the first row"""
        pass

    def cleanup(self) -> None:
        """Called once after the last row"""
        pass

    @abstractmethod
    def transform(self, row: Row) -> Optional[Row]:
        """
        Transform a single row

        Args:
            row: Input row

        Returns:
            Optional[Row]: Transformed row, or None if row should be filtered

        Raises:
            TransformError: If transformation fails
        """
        pass

    def transform_batch(self, rows: List[Row]) -> List[Row]:
        """
        Transform a batch of rows (default implementation)

        Override this for batch-optimized transformations

        Args:
            rows: Input rows

        Returns:
            List[Row]: Transformed rows
        """
        result = []
        for row in rows:
            try:
                transformed = self.transform(row)
                if transformed is not None:
                    result.append(transformed)
                    self.stats.records_processed += 1
                else:
                    self.stats.records_filtered += 1
            except TransformError as e:
                self.stats.errors += 1
                self.logger.error(f"Transform error on row {row.uid}: {e}")
                if self.config.get('error_handling') == 'fail':
                    raise
                # Otherwise skip the row

        return result

    def get_stats(self) -> Dict[str, Any]:
        """
        Get transformation statistics

        Returns:
            Dict: Statistics (records processed, filtered, errors, etc.)
        """
        return {
            'records_processed': self.stats.records_processed,
            'records_filtered': self.stats.records_filtered,
            'records_modified': self.stats.records_modified,
            'errors': self.stats.errors
        }

    def reset_stats(self) -> None:
        """Reset statistics"""
        self.stats = TransformerStats()
