"""
Prefix selection transformer
"""
from typing import List, Optional, Union

from batchflow.transformers.base_transformer import Transformer
from batchflow.common.models import UID_FIELD, Row


class SelectPrefixTransformer(Transformer):
    """
    Keep only the fields under one or more prefixes

    With `remove_prefix` the prefix is stripped from the kept field names.
    The `etl.uid` field is always kept.
    """

    def __init__(self, prefix: Union[str, List[str]], remove_prefix: bool = False, **kwargs):
        super().__init__({'prefix': prefix, 'remove_prefix': remove_prefix, **kwargs})

        self.prefixes = [prefix] if isinstance(prefix, str) else list(prefix)
        if not self.prefixes:
            raise ValueError("select_prefix needs at least one prefix")
        self.remove_prefix = remove_prefix

    def transform(self, row: Row) -> Optional[Row]:
        selected = {UID_FIELD: row.uid}
        for name, value in row.data.items():
            for prefix in self.prefixes:
                if name.startswith(prefix):
                    if self.remove_prefix:
                        name = name[len(prefix):].lstrip('.')
                    selected[name] = value
                    break

        return Row(selected)
