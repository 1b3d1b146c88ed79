"""
JSON destination loader for writing rows to JSON/JSONL files
"""
import json
import shutil
from typing import Any, Dict, List

from batchflow.adapters.destinations.file_loader import FileLoader
from batchflow.common.exceptions import ConfigurationError, WriteError
from batchflow.common.models import Batch


class JSONLoader(FileLoader):
    """Loader writing rows as a JSON array or as JSON lines"""

    extension = "json"

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        """
        Initialize JSON loader

        Args:
            step_config: Load step with the file options of FileLoader plus:
                - mode: 'array' (default, written on close) or 'lines'
                  (appended after every batch)
                - pretty: Pretty print the array (default: True)
                - indent: Indentation for pretty printing (default: 2)
            config: Global Config
            registry: LedgerRegistry
        """
        super().__init__(step_config, config, registry)

        self.mode = step_config.get('mode', 'array')
        self.pretty = bool(step_config.get('pretty', True))
        self.indent = int(step_config.get('indent', 2))
        self.encoding = step_config.get('encoding', 'utf-8')

        if self.mode not in ['array', 'lines']:
            raise ConfigurationError(f"Invalid mode: {self.mode}. Must be 'array' or 'lines'")

        self._buffer: List[Dict[str, Any]] = []

    def run(self, batch: Batch) -> None:
        records = [self.select_fields(row) for row in batch]

        if self.mode == 'lines':
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.file_path, 'a', encoding=self.encoding) as f:
                    for record in records:
                        f.write(json.dumps(record, ensure_ascii=False, default=str) + '\n')
            except OSError as e:
                raise WriteError(f"Failed to append JSONL to {self.file_path}: {e}")
        else:
            self._buffer.extend(records)

        for row in batch:
            self.record_written(row)

    def close(self) -> None:
        """Write the buffered array"""
        if self.mode != 'array' or not self._rows_written:
            return

        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.file_path.with_suffix(self.file_path.suffix + '.tmp')
            with open(temp_path, 'w', encoding=self.encoding) as f:
                json.dump(
                    self._buffer,
                    f,
                    ensure_ascii=False,
                    indent=self.indent if self.pretty else None,
                    default=str
                )
            shutil.move(str(temp_path), str(self.file_path))
        except OSError as e:
            raise WriteError(f"Failed to write JSON array to {self.file_path}: {e}")

        self.logger.info(f"Wrote {len(self._buffer)} records to {self.file_path}")
        self._buffer = []
