"""
In-memory loaders for exercising the loader chain and the ledger manager
"""
from itertools import count
from typing import Any, Dict, List

from batchflow.adapters.base import Loader, RowMutationMixin
from batchflow.common.exceptions import FatalPipelineError, RecoverableWriteError
from batchflow.common.models import Batch, Row

ERRORS = {
    'recoverable': lambda row: RecoverableWriteError(f"destination busy for {row.uid}", uid=row.uid),
    'fatal': lambda row: FatalPipelineError(f"destination gone at {row.uid}"),
    'generic': lambda row: RuntimeError(f"unexpected failure at {row.uid}"),
}


class MemoryLoader(Loader):
    """
    Loader keeping every batch it sees

    Step options:
        fail_on: Row uids the loader raises on (after writing earlier rows), or '*' for every row
        error: 'recoverable', 'fatal' or 'generic'
        record: Row fields copied into the ledger entry
    """

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        super().__init__(step_config, config, registry)
        self.batches: List[Batch] = []
        self.seen: List[Row] = []
        fail_on = step_config.get('fail_on', [])
        self.fail_all = fail_on == '*'
        self.fail_on = set() if self.fail_all else set(fail_on)
        self.error = step_config.get('error', 'recoverable')
        self.record = list(step_config.get('record', []))
        self.closed = False

    def run(self, batch: Batch) -> None:
        self.batches.append(batch)
        for row in batch:
            if self.fail_all or row.uid in self.fail_on:
                raise ERRORS[self.error](row)
            self.write(row)

    def write(self, row: Row) -> None:
        self.seen.append(row)
        values = {f"{self.name}.written": True}
        values.update({f: row.get(f) for f in self.record if row.has(f)})
        self.create_ledger_entry(row, values)

    def close(self) -> None:
        self.closed = True


class MintingLoader(RowMutationMixin, MemoryLoader):
    """Memory loader that mints `<name>.id` into every row it writes"""

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        super().__init__(step_config, config, registry)
        self._ids = count(int(step_config.get('first_id', 1)))

    def write(self, row: Row) -> None:
        minted = next(self._ids)
        row = self.mutate_row(row, {f"{self.name}.id": minted})
        self.seen.append(row)
        self.create_ledger_entry(row, {f"{self.name}.id": minted})


class BrokenCloseLoader(MemoryLoader):
    def close(self) -> None:
        raise RuntimeError("cannot flush")


def make_rows(count_: int, **fields: Any) -> List[Row]:
    """Rows `r1..rN` with an `n` field and any extra fields"""
    return [
        Row.create({'n': i, **fields}, uid=f"r{i}")
        for i in range(1, count_ + 1)
    ]
