"""
File-based ledger storage implementations
"""
import json
import math
import shutil
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pyarrow as pa
import pyarrow.parquet as pq

from batchflow.common.exceptions import StorageError
from batchflow.common.models import Field, FieldType, Ledger, Schema
from batchflow.storage.base import LedgerStorage, ledger_filename, ledger_timestamp

# Parquet key/value metadata
ABSENT_METADATA = b"batchflow.absent"
JSON_COLUMNS_METADATA = b"batchflow.json_columns"

ARROW_TYPES = {
    FieldType.STRING: pa.string(),
    FieldType.INTEGER: pa.int64(),
    FieldType.FLOAT: pa.float64(),
    FieldType.BOOLEAN: pa.bool_(),
    FieldType.DATETIME: pa.string(),
    FieldType.JSON: pa.string(),
    FieldType.ARRAY: pa.list_(pa.string()),
}


class JSONLedgerStorage(LedgerStorage):
    """
    Ledger storage as pretty-printed JSON arrays

    When a ledger declares a schema, entry values are coerced to the declared
    types before writing and the schema is saved in a `.meta.json` sidecar.
    """

    extension = "json"

    def save_ledger(self, ledger: Ledger, directory: Path, name: Optional[str] = None,
                    timestamp: Optional[str] = None) -> Path:
        """Save ledger entries to a JSON file"""
        file_path = Path(directory) / ledger_filename(
            name or ledger.name, timestamp or ledger_timestamp(), self.extension
        )

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            entries = coerce_entries(ledger.entries, ledger.schema)

            # Write to a temp file first so readers never see a partial ledger
            temp_path = file_path.with_suffix('.json.tmp')
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(entries, f, indent=2, ensure_ascii=False, default=str)
            shutil.move(str(temp_path), str(file_path))

            self._save_metadata(file_path, ledger)

        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save ledger '{ledger.name}' to {file_path}: {e}")

        self.logger.info(f"Saved {len(ledger)} ledger entries to {file_path}")
        return file_path

    def load_ledger(self, path: Path, name: Optional[str] = None) -> Ledger:
        """Load ledger entries from a JSON file"""
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                entries = json.load(f)
        except FileNotFoundError:
            raise StorageError(f"Ledger file not found: {path}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to load ledger from {path}: {e}")

        if not isinstance(entries, list):
            raise StorageError(f"Ledger file {path} does not contain a list of records")

        ledger = Ledger(
            name=name or ledger_name_from_path(path),
            entries=[dict(e) for e in entries],
            schema=self._load_metadata(path)
        )
        self.logger.info(f"Loaded {len(ledger)} ledger entries from {path}")
        return ledger

    def delete(self, path: Path) -> None:
        """Delete ledger file and metadata"""
        try:
            metadata_path = _metadata_path(path)
            if metadata_path.exists():
                metadata_path.unlink()
            super().delete(path)
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")

    def _save_metadata(self, file_path: Path, ledger: Ledger) -> None:
        """Write the declared schema next to the ledger file"""
        if not ledger.schema:
            return

        schema_dict = asdict(ledger.schema)
        for field in schema_dict['fields']:
            field['type'] = field['type'].value

        metadata = {
            'ledger': ledger.name,
            'entry_count': len(ledger),
            'schema': schema_dict,
        }
        with open(_metadata_path(file_path), 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2, default=str)

    def _load_metadata(self, file_path: Path) -> Optional[Schema]:
        metadata_path = _metadata_path(file_path)
        if not metadata_path.exists():
            return None

        with open(metadata_path, 'r', encoding='utf-8') as f:
            metadata = json.load(f)

        if not metadata.get('schema'):
            return None
        return dict_to_schema(metadata['schema'])


class ParquetLedgerStorage(JSONLedgerStorage):
    """
    Ledger storage as Parquet files, typed by the declared schema when there is one

    Undeclared columns whose values do not share one type are stored as JSON
    text. The file's key/value metadata lists those columns and, per entry,
    the columns the entry did not have, so loading gives back the entries
    that were saved, None values included.
    """

    extension = "parquet"

    def save_ledger(self, ledger: Ledger, directory: Path, name: Optional[str] = None,
                    timestamp: Optional[str] = None) -> Path:
        """Save ledger entries to a Parquet file"""
        file_path = Path(directory) / ledger_filename(
            name or ledger.name, timestamp or ledger_timestamp(), self.extension
        )

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            entries = coerce_entries(ledger.entries, ledger.schema)

            columns = _columns(entries)
            if ledger.schema:
                for field in ledger.schema.fields:
                    columns.setdefault(field.name, [None] * len(entries))

            table, encoded = _arrow_table(columns, ledger.schema)
            absent = {}
            for index, entry in enumerate(entries):
                missing = [column for column in columns if column not in entry]
                if missing:
                    absent[str(index)] = missing
            table = table.replace_schema_metadata({
                ABSENT_METADATA: json.dumps(absent),
                JSON_COLUMNS_METADATA: json.dumps(encoded),
            })

            pq.write_table(table, file_path, compression='snappy')
            self._save_metadata(file_path, ledger)

        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save ledger '{ledger.name}' to {file_path}: {e}")

        self.logger.info(f"Saved {len(ledger)} ledger entries to {file_path}")
        return file_path

    def load_ledger(self, path: Path, name: Optional[str] = None) -> Ledger:
        """Load ledger entries from a Parquet file"""
        path = Path(path)
        if not path.exists():
            raise StorageError(f"Ledger file not found: {path}")

        try:
            table = pq.read_table(path)
            metadata = table.schema.metadata or {}
            absent = json.loads(metadata.get(ABSENT_METADATA, b'null'))
            encoded = json.loads(metadata.get(JSON_COLUMNS_METADATA, b'[]'))

            entries = []
            for index, record in enumerate(table.to_pylist()):
                for column in encoded:
                    if record.get(column) is not None:
                        record[column] = json.loads(record[column])
                if absent is None:
                    # Written elsewhere: nulls are the only trace of absent keys
                    record = {k: v for k, v in record.items() if v is not None}
                else:
                    for column in absent.get(str(index), []):
                        record.pop(column, None)
                entries.append(record)
        except Exception as e:
            raise StorageError(f"Failed to load ledger from {path}: {e}")

        ledger = Ledger(
            name=name or ledger_name_from_path(path),
            entries=entries,
            schema=self._load_metadata(path)
        )
        self.logger.info(f"Loaded {len(ledger)} ledger entries from {path}")
        return ledger


STORAGE_FORMATS = {
    'json': JSONLedgerStorage,
    'parquet': ParquetLedgerStorage,
}


def create_storage(format_name: str = "json") -> LedgerStorage:
    """
    Create ledger storage for a configured format

    Raises:
        StorageError: If the format is not supported
    """
    storage_class = STORAGE_FORMATS.get(format_name.lower())
    if storage_class is None:
        raise StorageError(
            f"Unsupported ledger format: {format_name}. "
            f"Must be one of: {', '.join(sorted(STORAGE_FORMATS))}"
        )
    return storage_class()


def ledger_name_from_path(path: Path) -> str:
    """`posts-ledger-20250101...json` -> `posts`"""
    stem = Path(path).name
    marker = stem.rfind("-ledger-")
    return stem[:marker] if marker > 0 else Path(path).stem


def coerce_entries(entries: List[Dict[str, Any]], schema: Optional[Schema]) -> List[Dict[str, Any]]:
    """
    Coerce entry values to the types declared in a schema

    Fields not in the schema pass through unchanged.

    Raises:
        StorageError: If a value cannot be coerced or a required field is missing
    """
    if not schema:
        return [dict(e) for e in entries]

    coerced = []
    for entry in entries:
        values = dict(entry)
        for field in schema.fields:
            value = values.get(field.name)
            if _is_missing(value):
                if not field.nullable:
                    raise StorageError(
                        f"Ledger '{schema.name}' entry {entry.get('uid')} "
                        f"is missing required field '{field.name}'"
                    )
                if field.name in values:
                    values[field.name] = None
                continue
            try:
                values[field.name] = _coerce_value(value, field.type)
            except (TypeError, ValueError) as e:
                raise StorageError(
                    f"Ledger '{schema.name}' entry {entry.get('uid')}: "
                    f"cannot store {value!r} as {field.type.value} in '{field.name}': {e}"
                )
        coerced.append(values)
    return coerced


def _coerce_value(value: Any, field_type: FieldType) -> Any:
    if field_type == FieldType.INTEGER:
        return int(value)
    if field_type == FieldType.FLOAT:
        return float(value)
    if field_type == FieldType.BOOLEAN:
        if isinstance(value, str):
            return value.strip().lower() in ('true', '1', 'yes', 'on')
        return bool(value)
    if field_type == FieldType.STRING:
        return str(value)
    if field_type == FieldType.DATETIME:
        if isinstance(value, datetime):
            return value.isoformat()
        return datetime.fromisoformat(str(value)).isoformat()
    if field_type == FieldType.ARRAY:
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        return [str(value)]
    if field_type == FieldType.JSON:
        return value if isinstance(value, str) else json.dumps(value, default=str)
    return value


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _columns(entries: List[Dict[str, Any]]) -> Dict[str, List[Any]]:
    """Column lists over the union of entry keys, in order of first appearance"""
    names: Dict[str, None] = {}
    for entry in entries:
        names.update(dict.fromkeys(entry))
    return {name: [entry.get(name) for entry in entries] for name in names}


def _arrow_table(columns: Dict[str, List[Any]], schema: Optional[Schema]) -> Tuple[pa.Table, List[str]]:
    """
    Arrow table typed by the declared fields, inferring undeclared columns

    Returns:
        The table and the names of the columns stored as JSON text
    """
    declared = {field.name: ARROW_TYPES[field.type] for field in schema.fields} if schema else {}

    arrays = []
    encoded = []
    for name, values in columns.items():
        if name in declared:
            arrays.append(pa.array(values, type=declared[name]))
            continue

        kinds = {type(v) for v in values if v is not None}
        array = None
        if len(kinds) <= 1 and dict not in kinds:
            try:
                array = pa.array(values)
            except (pa.ArrowInvalid, pa.ArrowTypeError):
                array = None
        if array is None:
            array = pa.array(
                [None if v is None else json.dumps(v, default=str) for v in values],
                type=pa.string()
            )
            encoded.append(name)
        arrays.append(array)

    return pa.Table.from_arrays(arrays, names=list(columns)), encoded


def _metadata_path(file_path: Path) -> Path:
    return Path(file_path).with_suffix('.meta.json')


def dict_to_schema(schema_dict: dict) -> Schema:
    """Convert dict back to Schema object"""
    fields = [
        Field(
            name=field_dict['name'],
            type=FieldType(field_dict['type']),
            nullable=field_dict.get('nullable', True),
            description=field_dict.get('description')
        )
        for field_dict in schema_dict['fields']
    ]

    return Schema(
        name=schema_dict['name'],
        fields=fields,
        primary_key=schema_dict.get('primary_key'),
        version=schema_dict.get('version', '1.0'),
        created_at=datetime.fromisoformat(schema_dict['created_at']) if schema_dict.get('created_at') else None
    )
