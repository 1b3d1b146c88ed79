"""
CSV source adapter for reading CSV files
"""
from typing import Any, Dict, Iterator

import pandas as pd

from batchflow.adapters.base import SourceAdapter
from batchflow.common.exceptions import ConfigurationError, ReadError


class CSVSource(SourceAdapter):
    """
    Source adapter for CSV files

    Step options:
        path: CSV file, relative to `sources.path`
        delimiter: Field delimiter (default: ',')
        encoding: File encoding (default: 'utf-8')
        chunk_size: Rows read per pandas chunk (default: 1000)
        dtype: Column dtypes passed to pandas (default: keep strings as read)
    """

    def __init__(self, step_config: Dict[str, Any], config=None):
        super().__init__(step_config, config)

        if not step_config.get('path'):
            raise ConfigurationError("CSV source requires 'path'")

        self.file_path = self.resolve_path(step_config['path'])
        self.delimiter = step_config.get('delimiter', ',')
        self.encoding = step_config.get('encoding', 'utf-8')
        self.chunk_size = int(step_config.get('chunk_size', 1000))
        self.dtype = step_config.get('dtype')

    def connect(self) -> None:
        """Validate the file exists"""
        if not self.file_path.exists():
            raise ReadError(f"CSV file not found: {self.file_path}")

        if not self.file_path.is_file():
            raise ReadError(f"Path is not a file: {self.file_path}")

        self._connected = True
        self.logger.info(f"Connected to CSV file: {self.file_path}")

    def read(self) -> Iterator[Dict[str, Any]]:
        """
        Read records from CSV file

        Empty cells are read as None.

        Yields:
            Dict: One record per CSV row
        """
        if not self._connected:
            raise ReadError("Not connected. Call connect() first.")

        try:
            # Read CSV in chunks for memory efficiency
            chunk_iter = pd.read_csv(
                self.file_path,
                delimiter=self.delimiter,
                encoding=self.encoding,
                chunksize=self.chunk_size,
                dtype=self.dtype,
            )

            row_num = 0
            for chunk in chunk_iter:
                chunk = chunk.astype(object).where(pd.notna(chunk), None)
                for record in chunk.to_dict(orient='records'):
                    yield {str(k): v for k, v in record.items()}
                    row_num += 1

            self.logger.info(f"Read {row_num} records from CSV")

        except ReadError:
            raise
        except Exception as e:
            raise ReadError(f"Error reading CSV file {self.file_path}: {e}")
