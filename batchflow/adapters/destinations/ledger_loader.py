"""
Loader recording `ledger.`-prefixed row fields
"""
from typing import Any, Dict

from batchflow.adapters.base import Loader
from batchflow.common.models import Batch


class LedgerLoader(Loader):
    """
    Loader that writes nothing but its ledger

    Every field named `ledger.<field>` becomes `<field>` in the row's ledger
    entry. Transformers put the values there, so a job can record
    cross-references without a destination of its own.
    """

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        step_config = dict(step_config)
        step_config.setdefault('ledger', True)
        super().__init__(step_config, config, registry)

        self.prefix = step_config.get('prefix', 'ledger')

    def run(self, batch: Batch) -> None:
        for row in batch:
            self.create_ledger_entry(row, row.reduce_on_prefix(self.prefix))

        self.logger.debug(f"Recorded {len(batch)} ledger entries")
