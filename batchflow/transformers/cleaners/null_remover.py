"""
Null value remover transformer
"""
from typing import Any, List, Optional

from batchflow.transformers.base_transformer import Transformer
from batchflow.common.models import UID_FIELD, Row
from batchflow.common.exceptions import TransformError


class NullRemover(Transformer):
    """Transformer that handles null/missing values"""

    def __init__(
        self,
        strategy: str = "remove_fields",
        fill_value: Any = None,
        null_values: Optional[List[Any]] = None,
        columns: Optional[List[str]] = None,
        **kwargs
    ):
        """
        Initialize null remover

        Args:
            strategy: How to handle nulls:
                - 'drop': Remove rows with any null values
                - 'drop_all': Remove only rows where all values are null
                - 'remove_fields': Keep row but remove fields with null values
                - 'fill': Fill nulls with a specific value
                - 'set_null': Replace null-like values with None
            fill_value: Value to fill nulls with (when strategy='fill')
            null_values: Values treated as null besides None (default: [""])
            columns: Only look at these fields (default: every field)
            **kwargs: Additional configuration
        """
        super().__init__({
            'strategy': strategy,
            'fill_value': fill_value,
            **kwargs
        })

        self.strategy = strategy
        self.fill_value = fill_value
        self.null_values = list(null_values) if null_values is not None else [""]
        self.columns = set(columns) if columns else None

        if strategy not in ['drop', 'drop_all', 'remove_fields', 'fill', 'set_null']:
            raise ValueError(
                f"Invalid strategy: {strategy}. "
                f"Must be one of: 'drop', 'drop_all', 'remove_fields', 'fill', 'set_null'"
            )

    def transform(self, row: Row) -> Optional[Row]:
        """
        Transform a single row by handling null values

        Args:
            row: Input row

        Returns:
            Optional[Row]: Transformed row, or None if row should be filtered
        """
        try:
            nulls = [k for k in self._fields(row) if self._is_null(row[k])]

            if self.strategy == "drop":
                # Drop if any value is null
                if nulls:
                    return None

            elif self.strategy == "drop_all":
                # Drop only if all values are null
                if nulls and len(nulls) == len(self._fields(row)):
                    return None

            elif nulls and self.strategy == "remove_fields":
                row = row.without(*nulls)
                self.stats.records_modified += 1

            elif nulls and self.strategy == "fill":
                row = row.with_values({k: self.fill_value for k in nulls})
                self.stats.records_modified += 1

            elif nulls and self.strategy == "set_null":
                row = row.with_values({k: None for k in nulls})
                self.stats.records_modified += 1

            return row

        except Exception as e:
            raise TransformError(f"Error in NullRemover: {e}")

    def _fields(self, row: Row) -> List[str]:
        return [
            k for k in row.keys()
            if k != UID_FIELD and (self.columns is None or k in self.columns)
        ]

    def _is_null(self, value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, (list, dict)):
            return False
        return value in self.null_values
