"""
JSON source adapter for reading JSON and JSONL files
"""
import json
from typing import Any, Dict, Iterator

from batchflow.adapters.base import SourceAdapter
from batchflow.common.exceptions import ConfigurationError, ReadError


class JSONSource(SourceAdapter):
    """Source adapter for JSON and JSONL files"""

    def __init__(self, step_config: Dict[str, Any], config=None):
        """
        Initialize JSON source

        Args:
            step_config: Extract step with options:
                - path: JSON/JSONL file, relative to `sources.path`
                - encoding: File encoding (default: 'utf-8')
                - mode: 'auto' (default), 'array' or 'lines'
                - json_path: Dot-notation path to a nested array (e.g., "data.records")
            config: Global Config
        """
        super().__init__(step_config, config)

        if not step_config.get('path'):
            raise ConfigurationError("JSON source requires 'path'")

        self.file_path = self.resolve_path(step_config['path'])
        self.encoding = step_config.get('encoding', 'utf-8')
        self.mode = step_config.get('mode', 'auto')
        self.json_path = step_config.get('json_path')

        if self.mode not in ('auto', 'array', 'lines'):
            raise ConfigurationError(
                f"Invalid mode: {self.mode}. Must be 'auto', 'array' or 'lines'"
            )

        self._records_count = 0

    def connect(self) -> None:
        """Validate the file exists and detect its layout"""
        if not self.file_path.exists():
            raise ReadError(f"JSON file not found: {self.file_path}")

        if not self.file_path.is_file():
            raise ReadError(f"Path is not a file: {self.file_path}")

        self._connected = True
        self.logger.info(f"Connected to JSON file: {self.file_path}")

        if self.mode == 'auto':
            self.mode = self._detect_mode()
            self.logger.debug(f"Auto-detected mode: {self.mode}")

    def _detect_mode(self) -> str:
        """Auto-detect JSON format"""
        # json_path addresses into a single document
        if self.json_path:
            return 'array'

        with open(self.file_path, 'r', encoding=self.encoding) as f:
            first_line = f.readline().strip()

        # JSONL has a complete object on the first line
        if first_line.startswith('{') and first_line.endswith('}'):
            try:
                json.loads(first_line)
                return 'lines'
            except json.JSONDecodeError:
                pass

        return 'array'

    def read(self) -> Iterator[Dict[str, Any]]:
        """
        Read records from JSON file

        Yields:
            Dict: One record per array item or line
        """
        if not self._connected:
            raise ReadError("Not connected. Call connect() first.")

        self._records_count = 0
        try:
            if self.mode == 'lines':
                yield from self._read_jsonl()
            else:
                yield from self._read_json_array()

            self.logger.info(f"Read {self._records_count} records from JSON")

        except ReadError:
            raise
        except (OSError, ValueError) as e:
            raise ReadError(f"Error reading JSON file {self.file_path}: {e}")

    def _read_jsonl(self) -> Iterator[Dict[str, Any]]:
        """Read JSONL file (one JSON object per line)"""
        with open(self.file_path, 'r', encoding=self.encoding) as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    self.logger.warning(f"Invalid JSON on line {line_num} of {self.file_path}: {e}")
                    continue

                yield data if isinstance(data, dict) else {"value": data}
                self._records_count += 1

    def _read_json_array(self) -> Iterator[Dict[str, Any]]:
        """Read JSON file containing an array of objects"""
        with open(self.file_path, 'r', encoding=self.encoding) as f:
            data = json.load(f)

        if self.json_path:
            data = self._get_nested_value(data, self.json_path)

        if not isinstance(data, list):
            raise ReadError(
                f"JSON data is not an array. Found: {type(data).__name__}. "
                f"Use json_path if data is nested."
            )

        for item in data:
            yield item if isinstance(item, dict) else {"value": item}
            self._records_count += 1

    def _get_nested_value(self, data: Any, path: str) -> Any:
        """Navigate to nested value using dot notation"""
        value = data
        for key in path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                raise ReadError(f"Invalid json_path: '{path}' not found")
        return value
