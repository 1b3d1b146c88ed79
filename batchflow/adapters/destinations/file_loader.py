"""
Shared behaviour of loaders that write rows to local files
"""
import time
from pathlib import Path
from typing import Any, Dict, List

from batchflow.adapters.base import Loader
from batchflow.common.models import UID_FIELD, Row


class FileLoader(Loader):
    """
    Base class for file writers

    Step options:
        destination: {path: directory, file: file name}
        overwrite: Write to `file` as is; otherwise a timestamp suffix keeps
            earlier exports (default: False)
        prefix: Prefix or list of prefixes to select fields by; with a
            single prefix it is stripped from the field names
        include_uid: Keep the `etl.uid` field in the output (default: False)
    """

    extension = "txt"

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        super().__init__(step_config, config, registry)

        prefix = step_config.get('prefix') or []
        self.prefixes: List[str] = [prefix] if isinstance(prefix, str) else list(prefix)
        self.include_uid = bool(step_config.get('include_uid', False))
        self.file_path = self.determine_destination()
        self._rows_written = 0

    def determine_destination(self) -> Path:
        """Output file for this run"""
        destination = self.step_config.get('destination') or {}
        if isinstance(destination, str):
            destination = {'file': destination}

        file_name = destination.get('file') or self.step_config.get('file') or f"{self.name}.{self.extension}"
        directory = destination.get('path') or self.step_config.get('path') or '.'

        file_name = Path(file_name)
        if not self.step_config.get('overwrite', False):
            file_name = Path(f"{file_name.stem}-{int(time.time())}{file_name.suffix}")

        return self.resolve_path(str(Path(directory) / file_name))

    def select_fields(self, row: Row) -> Dict[str, Any]:
        """Fields of a row that go to the file"""
        data = row.to_dict()
        if not self.include_uid:
            data.pop(UID_FIELD, None)

        if not self.prefixes:
            return data

        strip = len(self.prefixes) == 1
        selected = {}
        for key, value in data.items():
            for prefix in self.prefixes:
                if key.startswith(prefix):
                    selected[key[len(prefix):].lstrip('.') if strip else key] = value
                    break
        return selected

    def record_written(self, row: Row) -> None:
        """Ledger entry pointing at the written record"""
        self._rows_written += 1
        self.create_ledger_entry(row, {
            f"{self.name}.file": str(self.file_path),
            f"{self.name}.record": self._rows_written,
        })
