"""
String splitting transformer
"""
from typing import List, Optional, Union

from batchflow.transformers.base_transformer import Transformer
from batchflow.common.models import Row


class ExplodeTransformer(Transformer):
    """Split delimited string fields into lists of trimmed values"""

    def __init__(self, columns: Union[str, List[str]], delimiter: str = ",", **kwargs):
        super().__init__({'columns': columns, 'delimiter': delimiter, **kwargs})

        self.columns = [columns] if isinstance(columns, str) else list(columns)
        self.delimiter = delimiter

    def transform(self, row: Row) -> Optional[Row]:
        values = {}
        for column in self.columns:
            value = row.get(column)
            if isinstance(value, str):
                values[column] = [part.strip() for part in value.split(self.delimiter) if part.strip()]

        if not values:
            return row

        self.stats.records_modified += 1
        return row.with_values(values)
