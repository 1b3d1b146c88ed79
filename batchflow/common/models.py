"""
Data models for the batchflow migration engine
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from batchflow.common.exceptions import ConfigurationError, LedgerError

# Row field that carries the stable unique identifier
UID_FIELD = "etl.uid"

# Ledger entry field that references the row which produced it
LEDGER_UID = "uid"

# Per-loader ledger files are named `<job>.<loader>`
LOADER_LEDGER_SEPARATOR = "."


def loader_ledger_name(job_name: str, loader_name: str) -> str:
    """File name stem of one loader's ledger within a job"""
    return f"{job_name}{LOADER_LEDGER_SEPARATOR}{loader_name}"


class FieldType(Enum):
    """Supported field types"""
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    JSON = "json"
    ARRAY = "array"


@dataclass
class Field:
    """Schema field definition"""
    name: str
    type: FieldType
    nullable: bool = True
    description: Optional[str] = None


@dataclass
class Schema:
    """Declared schema for typed ledger persistence"""
    name: str
    fields: List[Field]

    # Keys
    primary_key: Optional[List[str]] = None

    version: str = "1.0"
    created_at: Optional[datetime] = None

    def get_field(self, name: str) -> Optional[Field]:
        """Get field by name"""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @classmethod
    def from_mapping(cls, name: str, mapping: Mapping[str, Any]) -> 'Schema':
        """
        Build a schema from a `{field: type}` or `{field: {type:, nullable:}}` mapping

        Args:
            name: Schema name
            mapping: Field declarations, usually from YAML

        Returns:
            Schema

        Raises:
            ConfigurationError: If a field type is unknown
        """
        fields = []
        for field_name, spec in mapping.items():
            if isinstance(spec, Mapping):
                type_name = spec.get('type', 'string')
                nullable = spec.get('nullable', True)
                description = spec.get('description')
            else:
                type_name, nullable, description = spec, True, None

            try:
                field_type = FieldType(str(type_name).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown type '{type_name}' for ledger field '{field_name}' in '{name}'"
                )
            fields.append(Field(field_name, field_type, nullable, description))

        return cls(name=name, fields=fields, created_at=datetime.now())


@dataclass(frozen=True)
class Row:
    """
    Immutable set of named fields carrying a unique identifier

    Every change returns a new Row, so a row handed to one loader can never
    be edited under the feet of another reader.
    """
    data: Mapping[str, Any]

    def __post_init__(self):
        if not self.data.get(UID_FIELD):
            raise ValueError(f"Row is missing its '{UID_FIELD}' identifier")
        object.__setattr__(self, 'data', MappingProxyType(dict(self.data)))

    @classmethod
    def create(cls, data: Mapping[str, Any], uid: Optional[str] = None) -> 'Row':
        """
        Create a row, minting a uid when the data has none

        Args:
            data: Field values
            uid: Explicit identifier (overrides any uid in data)

        Returns:
            Row
        """
        values = dict(data)
        if uid:
            values[UID_FIELD] = uid
        elif not values.get(UID_FIELD):
            values[UID_FIELD] = str(uuid.uuid4())
        return cls(values)

    @property
    def uid(self) -> str:
        return str(self.data[UID_FIELD])

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.data

    def __getitem__(self, name: str) -> Any:
        return self.data[name]

    def __contains__(self, name: object) -> bool:
        return name in self.data

    def keys(self) -> List[str]:
        return list(self.data.keys())

    def with_values(self, values: Mapping[str, Any]) -> 'Row':
        """Return a copy of this row with the given fields added or replaced"""
        if UID_FIELD in values and str(values[UID_FIELD]) != self.uid:
            raise ValueError(f"Cannot change the '{UID_FIELD}' of row {self.uid}")
        merged = dict(self.data)
        merged.update(values)
        return Row(merged)

    def without(self, *names: str) -> 'Row':
        """Return a copy of this row without the given fields (uid is always kept)"""
        return Row({
            k: v for k, v in self.data.items()
            if k == UID_FIELD or k not in names
        })

    def with_prefix(self, prefix: str) -> 'Row':
        """Return a copy with every field except the uid renamed to `prefix.field`"""
        prefix = prefix.rstrip('.') + '.'
        return Row({
            (k if k == UID_FIELD or k.startswith(prefix) else prefix + k): v
            for k, v in self.data.items()
        })

    def reduce_on_prefix(self, prefix: str, unpack: bool = False, delimiter: str = '.') -> Dict[str, Any]:
        """
        Reduce the row to the fields under a prefix

        Args:
            prefix: Field prefix, with or without the trailing dot
            unpack: Unpack dotted remainders into nested dicts
            delimiter: Delimiter used when unpacking

        Returns:
            Dict of the prefixed fields with the prefix stripped
        """
        prefix = prefix.rstrip('.') + '.'
        reduced = {
            k[len(prefix):]: v for k, v in self.data.items()
            if k.startswith(prefix)
        }

        if not unpack:
            return reduced

        result: Dict[str, Any] = {}
        for key, value in reduced.items():
            node = result
            parts = key.split(delimiter)
            for part in parts[:-1]:
                if not isinstance(node.get(part), dict):
                    node[part] = {}
                node = node[part]
            node[parts[-1]] = value
        return result

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)


@dataclass(frozen=True)
class Batch:
    """Ordered, finite collection of rows processed together by one loader invocation"""
    rows: Tuple[Row, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'rows', tuple(self.rows))

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> Row:
        return self.rows[index]

    def uids(self) -> List[str]:
        return [row.uid for row in self.rows]

    def get(self, uid: str) -> Optional[Row]:
        for row in self.rows:
            if row.uid == uid:
                return row
        return None

    def substitute(self, mutated: Union['Batch', Mapping[str, Row], Iterable[Row]]) -> 'Batch':
        """
        Replace rows by uid with their mutated versions

        Rows without a mutated counterpart are kept unchanged and the batch
        order is preserved. Mutated rows whose uid is not part of this batch
        are ignored.

        Args:
            mutated: Mutated rows, keyed by uid or as an iterable of rows

        Returns:
            New Batch
        """
        if isinstance(mutated, Mapping):
            replacements = dict(mutated)
        else:
            replacements = {row.uid: row for row in mutated}

        if not replacements:
            return self

        return Batch(tuple(replacements.get(row.uid, row) for row in self.rows))

    @classmethod
    def chunks(cls, rows: Iterable[Row], size: int) -> Iterator['Batch']:
        """Split rows into consecutive batches of at most `size` rows"""
        if size < 1:
            raise ValueError(f"Batch size must be positive, got {size}")

        buffer: List[Row] = []
        for row in rows:
            buffer.append(row)
            if len(buffer) >= size:
                yield cls(tuple(buffer))
                buffer = []
        if buffer:
            yield cls(tuple(buffer))


class PhaseType(Enum):
    """Pipeline phases, in execution order"""
    EXTRACT = "extract"
    TRANSFORM = "transform"
    LOAD = "load"


class JobStatus(Enum):
    """Lifecycle of one job run"""
    BUILT = "built"
    EXTRACT_RUNNING = "extract_running"
    TRANSFORM_RUNNING = "transform_running"
    LOAD_RUNNING = "load_running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobConfig:
    """One named unit of migration work, immutable once loaded"""
    name: str
    extract: Tuple[Dict[str, Any], ...] = ()
    transform: Tuple[Dict[str, Any], ...] = ()
    load: Tuple[Dict[str, Any], ...] = ()
    depends_on: Tuple[str, ...] = ()
    skip: bool = False
    order: int = 0

    description: Optional[str] = None
    entity: Optional[str] = None  # Principal entity type, used to pick the primary ledger
    ledger_path: str = ""
    requires_dependency_data: bool = False
    batch_size: Optional[int] = None

    @classmethod
    def from_dict(cls, config: Mapping[str, Any], order: int = 0) -> 'JobConfig':
        """
        Build a job from its configuration record

        Args:
            config: Job record from the `migration` list
            order: Position of the job in the configuration

        Returns:
            JobConfig

        Raises:
            ConfigurationError: If the record is malformed
        """
        if not isinstance(config, Mapping):
            raise ConfigurationError(f"Migration entry #{order} must be a mapping")

        name = config.get('name')
        if not name or not isinstance(name, str):
            raise ConfigurationError(f"Migration entry #{order} has no 'name'")
        if LOADER_LEDGER_SEPARATOR in name:
            raise ConfigurationError(
                f"Job name '{name}' must not contain '{LOADER_LEDGER_SEPARATOR}'; "
                f"it separates job and loader in ledger file names"
            )

        depends_on = config.get('depends_on') or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]

        ledger = config.get('ledger') or {}

        return cls(
            name=name,
            extract=tuple(_as_steps(config.get('extract'), name, 'extract')),
            transform=tuple(_as_steps(config.get('transform'), name, 'transform')),
            load=tuple(_as_steps(config.get('load'), name, 'load')),
            depends_on=tuple(str(d) for d in depends_on),
            skip=bool(config.get('skip', False)),
            order=order,
            description=config.get('description'),
            entity=config.get('entity'),
            ledger_path=str(ledger.get('path', '')) if isinstance(ledger, Mapping) else '',
            requires_dependency_data=bool(config.get('requires_dependency_data', False)),
            batch_size=config.get('batch_size'),
        )

    def steps(self, phase: PhaseType) -> Tuple[Dict[str, Any], ...]:
        return getattr(self, phase.value)


def _as_steps(value: Any, job: str, phase: str) -> List[Dict[str, Any]]:
    """Normalize a phase step list; a single mapping counts as one step"""
    if value is None:
        return []
    if isinstance(value, Mapping):
        return [dict(value)]
    if not isinstance(value, list) or not all(isinstance(v, Mapping) for v in value):
        raise ConfigurationError(f"'{phase}' of job '{job}' must be a list of mappings")
    return [dict(v) for v in value]


@dataclass
class Ledger:
    """Append-only record of the side effects one loader produced in one job run"""
    name: str
    entries: List[Dict[str, Any]] = field(default_factory=list)
    schema: Optional[Schema] = None

    def append(self, entry: Mapping[str, Any]) -> None:
        """
        Append a ledger entry

        Raises:
            LedgerError: If the entry does not reference a row uid
        """
        if entry.get(LEDGER_UID) in (None, ""):
            raise LedgerError(f"Ledger entry for '{self.name}' is missing '{LEDGER_UID}'")
        self.entries.append(dict(entry))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def uids(self) -> List[str]:
        return [str(e[LEDGER_UID]) for e in self.entries]

    def find(self, field_name: str, value: Any) -> Optional[Dict[str, Any]]:
        """First entry whose field equals value"""
        for entry in self.entries:
            if entry.get(field_name) == value:
                return entry
        return None

    def clear(self) -> None:
        self.entries = []


@dataclass
class UnifiedLedger(Ledger):
    """Primary ledger with every secondary ledger left-joined on the row uid"""
    primary: str = ""
    secondaries: List[str] = field(default_factory=list)


@dataclass
class JobError:
    """Error information"""
    phase: str  # 'extract', 'transform', 'load'
    error_type: str
    message: str
    loader: Optional[str] = None
    uid: Optional[str] = None
    recoverable: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class JobResult:
    """Result of one job run"""
    name: str
    status: JobStatus = JobStatus.BUILT

    # Statistics
    rows_extracted: int = 0
    rows_transformed: int = 0
    rows_loaded: int = 0

    # Timing
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    phase_durations: Dict[str, float] = field(default_factory=dict)

    # Ledgers written by this run
    ledger_paths: List[str] = field(default_factory=list)

    errors: List[JobError] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.status == JobStatus.DONE
