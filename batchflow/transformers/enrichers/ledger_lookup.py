"""
Ledger Lookup Transformer

Copies values from a dependency job's ledger into rows. A typical use is
pointing a child record at the destination id its parent was given by an
earlier job.
"""
from typing import Any, Dict, Mapping, Optional

from batchflow.transformers.base_transformer import STEP_KEYS, Transformer
from batchflow.common.models import Row
from batchflow.common.exceptions import ConfigurationError, TransformError


class LedgerLookupTransformer(Transformer):
    """
    Transformer that joins rows against a dependency's ledger

    Example step:
        - type: ledger_lookup
          job: authors
          match: {source.id: post.author_source_id}
          fields: {user.id: post.author_id}
    """

    def __init__(
        self,
        job: str,
        match: Dict[str, str],
        fields: Dict[str, str],
        on_missing: str = "keep",
        registry=None,
        **kwargs
    ):
        """
        Initialize ledger lookup

        Args:
            job: Job whose ledger is searched; must be a declared dependency
            match: One ledger field -> row field pair to match entries on
            fields: Ledger field -> row field to copy from the matched entry
            on_missing: 'keep' the row unchanged, 'drop' it, or 'error'
            registry: LedgerRegistry serving the dependency's ledger
            **kwargs: Additional configuration
        """
        super().__init__({
            'job': job,
            'match': match,
            'fields': fields,
            'on_missing': on_missing,
            **kwargs
        })

        if not isinstance(match, Mapping) or len(match) != 1:
            raise ValueError("'match' must map exactly one ledger field to a row field")
        if not isinstance(fields, Mapping) or not fields:
            raise ValueError("'fields' must map ledger fields to row fields")
        if on_missing not in ('keep', 'drop', 'error'):
            raise ValueError(f"Invalid on_missing: {on_missing}. Must be 'keep', 'drop' or 'error'")

        self.job = job
        self.ledger_field, self.row_field = next(iter(match.items()))
        self.fields = dict(fields)
        self.on_missing = on_missing
        self.registry = registry
        self._misses = 0

    @classmethod
    def from_step(cls, step: Mapping[str, Any], registry=None) -> 'LedgerLookupTransformer':
        if registry is None:
            raise ConfigurationError("ledger_lookup needs a ledger registry")
        options = {k: v for k, v in step.items() if k not in STEP_KEYS}
        try:
            return cls(registry=registry, **options)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid options for 'ledger_lookup' transformer: {e}")

    def setup(self) -> None:
        if self.registry.get(self.job) is None:
            self.logger.warning(f"Ledger of '{self.job}' is not available; lookups will miss")

    def transform(self, row: Row) -> Optional[Row]:
        value = row.get(self.row_field)
        entry = None
        if value is not None:
            entry = self.registry.lookup(self.job, self.ledger_field, value)

        if entry is None:
            self._misses += 1
            if self.on_missing == 'drop':
                return None
            if self.on_missing == 'error':
                raise TransformError(
                    f"No '{self.job}' ledger entry with {self.ledger_field}={value!r} for row {row.uid}"
                )
            return row

        values = {
            row_field: entry[ledger_field]
            for ledger_field, row_field in self.fields.items()
            if ledger_field in entry
        }
        self.stats.records_modified += 1
        return row.with_values(values)

    def cleanup(self) -> None:
        if self._misses:
            self.logger.warning(f"{self._misses} rows had no match in the '{self.job}' ledger")
