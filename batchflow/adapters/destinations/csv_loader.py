"""
CSV destination loader for writing rows to CSV files
"""
from typing import Any, Dict, List

import pandas as pd

from batchflow.adapters.destinations.file_loader import FileLoader
from batchflow.common.exceptions import WriteError
from batchflow.common.models import Batch


class CSVLoader(FileLoader):
    """
    Loader writing every batch to one CSV file

    The header is written with the first batch and fixes the columns; later
    batches append, and fields unknown to the header are left out.
    """

    extension = "csv"

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        super().__init__(step_config, config, registry)

        self.delimiter = step_config.get('delimiter', ',')
        self.encoding = step_config.get('encoding', 'utf-8')
        self._columns: List[str] = []

    def run(self, batch: Batch) -> None:
        """Append a batch to the CSV file"""
        records = [self.select_fields(row) for row in batch]
        if not records:
            return

        df = pd.DataFrame(records)
        first_write = self._rows_written == 0
        if first_write:
            self._columns = list(df.columns)
        else:
            extra = [c for c in df.columns if c not in self._columns]
            if extra:
                self.logger.warning(f"Loader '{self.name}' skips fields not in the CSV header: {extra}")
            df = df.reindex(columns=self._columns)

        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(
                self.file_path,
                sep=self.delimiter,
                encoding=self.encoding,
                index=False,
                mode='w' if first_write else 'a',
                header=first_write,
            )
        except OSError as e:
            raise WriteError(f"Failed to write CSV {self.file_path}: {e}")

        for row in batch:
            self.record_written(row)

        self.logger.debug(f"Wrote {len(records)} rows to {self.file_path}")

    def close(self) -> None:
        if self._rows_written:
            self.logger.info(f"Wrote {self._rows_written} rows to {self.file_path}")
