"""
Field renaming transformer
"""
import re
from typing import Dict, Optional

from batchflow.transformers.base_transformer import Transformer
from batchflow.common.models import UID_FIELD, Row
from batchflow.common.exceptions import TransformError


class RenameTransformer(Transformer):
    """
    Transformer that renames fields

    Renames are applied in this order: explicit mapping, regex replacement,
    prefix. The `etl.uid` field is never renamed.
    """

    def __init__(
        self,
        mapping: Optional[Dict[str, str]] = None,
        pattern: Optional[str] = None,
        replace: str = "",
        prefix: Optional[str] = None,
        **kwargs
    ):
        """
        Initialize rename transformer

        Args:
            mapping: Old name -> new name
            pattern: Regex applied to every field name
            replace: Replacement for `pattern` matches
            prefix: Prefix added to every field name (e.g. "post" -> "post.title")
            **kwargs: Additional configuration
        """
        super().__init__({
            'mapping': mapping or {},
            'pattern': pattern,
            'replace': replace,
            'prefix': prefix,
            **kwargs
        })

        if not (mapping or pattern or prefix):
            raise ValueError("Rename needs at least one of 'mapping', 'pattern' or 'prefix'")

        self.mapping = dict(mapping or {})
        self.pattern = re.compile(pattern) if pattern else None
        self.replace = replace
        self.prefix = prefix

    def transform(self, row: Row) -> Optional[Row]:
        renamed = {}
        for name, value in row.data.items():
            new_name = self.rename(name)
            if new_name in renamed:
                raise TransformError(
                    f"Renaming '{name}' to '{new_name}' collides with another field in row {row.uid}"
                )
            renamed[new_name] = value

        if list(renamed) != row.keys():
            self.stats.records_modified += 1
        return Row(renamed)

    def rename(self, name: str) -> str:
        """New name of a field"""
        if name == UID_FIELD:
            return name

        name = self.mapping.get(name, name)
        if self.pattern:
            name = self.pattern.sub(self.replace, name)
        if self.prefix:
            name = f"{self.prefix.rstrip('.')}.{name}"
        return name
