"""
Column Remover Transformer

Removes specified fields from rows.
Useful for cleaning up source fields that should not reach any loader.
"""
from typing import List, Optional, Set
import re

from batchflow.transformers.base_transformer import Transformer
from batchflow.common.models import UID_FIELD, Row


class ColumnRemover(Transformer):
    """
    Transformer that removes specified fields from rows

    Supports:
    1. Exact field name matching
    2. Prefix matching (e.g., "source.")
    3. Regex pattern matching

    The `etl.uid` field is never removed.
    """

    def __init__(
        self,
        columns: Optional[List[str]] = None,
        prefix: Optional[str] = None,
        pattern: Optional[str] = None,
        keep_columns: Optional[List[str]] = None,
        **kwargs
    ):
        """
        Initialize column remover

        Args:
            columns: List of exact field names to remove
            prefix: Remove all fields starting with this prefix
            pattern: Regex pattern - remove fields matching this pattern
            keep_columns: Fields to keep (overrides removal - useful with prefix/pattern)
            **kwargs: Additional configuration

        Example:
            # Remove all raw source fields except the source id
            ColumnRemover(prefix="source.", keep_columns=["source.id"])
        """
        super().__init__({
            'columns': columns or [],
            'prefix': prefix,
            'pattern': pattern,
            'keep_columns': keep_columns or [],
            **kwargs
        })

        self.columns_to_remove = set(columns or [])
        self.prefix = prefix
        self.pattern = self._compile(pattern)
        self.keep_columns = set(keep_columns or []) | {UID_FIELD}

        # Statistics
        self._columns_removed: Set[str] = set()
        self._total_removed = 0

    @staticmethod
    def _compile(pattern: Optional[str]):
        if not pattern:
            return None
        try:
            return re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid pattern {pattern!r}: {e}")

    def _should_remove_column(self, column_name: str) -> bool:
        """
        Check if a field should be removed

        Args:
            column_name: Name of the field

        Returns:
            True if field should be removed, False otherwise
        """
        # Check keep list first (override)
        if column_name in self.keep_columns:
            return False

        if column_name in self.columns_to_remove:
            return True

        if self.prefix and column_name.startswith(self.prefix):
            return True

        if self.pattern and self.pattern.match(column_name):
            return True

        return False

    def transform(self, row: Row) -> Optional[Row]:
        """
        Remove specified fields from row

        Args:
            row: Input row

        Returns:
            Row with specified fields removed
        """
        columns_to_drop = [c for c in row.keys() if self._should_remove_column(c)]

        if not columns_to_drop:
            return row

        self._columns_removed.update(columns_to_drop)
        self._total_removed += len(columns_to_drop)
        self.stats.records_modified += 1
        return row.without(*columns_to_drop)

    def cleanup(self):
        """Log summary of removed fields"""
        if self._columns_removed:
            self.logger.info(
                f"Removed {len(self._columns_removed)} unique fields: "
                f"{', '.join(sorted(self._columns_removed))}"
            )
        else:
            self.logger.debug("No fields removed")

    def get_stats(self) -> dict:
        """Get removal statistics"""
        base_stats = super().get_stats()
        base_stats.update({
            'columns_removed': sorted(self._columns_removed),
            'unique_columns_removed': len(self._columns_removed),
            'total_removals': self._total_removed
        })
        return base_stats
