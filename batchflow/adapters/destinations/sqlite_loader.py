"""
SQLite destination loader for loading rows into a SQLite database
"""
import json
import sqlite3
from typing import Any, Dict, List, Optional

from batchflow.adapters.base import Loader, RowMutationMixin
from batchflow.common.exceptions import RecoverableWriteError, WriteError
from batchflow.common.models import Batch, Row


class SQLiteLoader(RowMutationMixin, Loader):
    """
    Loader inserting rows into a SQLite table

    Each inserted row is mutated to carry the id the database minted as
    `<entity>.id`, so loaders further down the chain can reference it.

    Step options:
        database: Database file, relative to the configuration directory
        table: Table to write (created on first use)
        entity: Entity type written by this loader (default: the table name)
        prefix: Row prefix whose fields become columns (default: the entity)
        upsert: Natural-key column; rows whose key already exists are updated
        ledger.fields: Row fields copied into each ledger entry
    """

    def __init__(self, step_config: Dict[str, Any], config=None, registry=None):
        super().__init__(step_config, config, registry)

        self.table = str(self.require('table'))
        self.db_path = self.resolve_path(str(self.require('database')))
        self.entity_type = str(step_config.get('entity') or self.table)
        self.prefix = step_config.get('prefix', self.entity_type)
        self.upsert_key: Optional[str] = step_config.get('upsert')

        ledger_config = step_config.get('ledger')
        self.ledger_fields: List[str] = []
        if isinstance(ledger_config, dict):
            self.ledger_fields = list(ledger_config.get('fields') or [])

        self._conn: Optional[sqlite3.Connection] = None
        self._columns: List[str] = []

    @property
    def id_field(self) -> str:
        return f"{self.entity_type}.id"

    def connect(self) -> None:
        """Open the database and create the table if it doesn't exist"""
        if self._conn is not None:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" '
                f'(id INTEGER PRIMARY KEY AUTOINCREMENT, etl_uid TEXT)'
            )
            self._columns = [
                info[1] for info in self._conn.execute(f'PRAGMA table_info("{self.table}")')
            ]
            self.logger.info(f"Connected to SQLite database: {self.db_path} (table '{self.table}')")

        except sqlite3.OperationalError as e:
            self._conn = None
            raise RecoverableWriteError(f"SQLite database {self.db_path} unavailable: {e}")

    def run(self, batch: Batch) -> None:
        """
        Insert or update every row of a batch

        A row the database rejects is logged and skipped; it gets no ledger
        entry and no minted id.

        Raises:
            RecoverableWriteError: The database is locked or unavailable
        """
        self.connect()

        written = 0
        for row in batch:
            try:
                row_id = self._write_row(row)
            except sqlite3.IntegrityError as e:
                self.logger.warning(
                    f"Loader '{self.name}' rejected row {row.uid} for table '{self.table}': {e}"
                )
                continue
            except sqlite3.OperationalError as e:
                self._conn.commit()
                raise RecoverableWriteError(
                    f"Loader '{self.name}' could not write row {row.uid} to '{self.table}': {e}",
                    uid=row.uid
                )

            row = self.mutate_row(row, {self.id_field: row_id})

            entry = {self.id_field: row_id}
            for field_name in self.ledger_fields:
                if row.has(field_name):
                    entry[field_name] = row.get(field_name)
            self.create_ledger_entry(row, entry)
            written += 1

        self._conn.commit()
        self.logger.debug(f"Wrote {written} of {len(batch)} rows to table '{self.table}'")

    def _write_row(self, row: Row) -> int:
        """Insert or update one row and return its id"""
        values = self._columns_for(row)
        self._ensure_columns(values)

        existing_id = row.get(self.id_field)
        if existing_id is None and self.upsert_key and values.get(self.upsert_key) is not None:
            found = self._conn.execute(
                f'SELECT id FROM "{self.table}" WHERE "{self.upsert_key}" = ?',
                (values[self.upsert_key],)
            ).fetchone()
            existing_id = found[0] if found else None

        if existing_id is not None:
            if values:
                assignments = ", ".join(f'"{c}" = ?' for c in values)
                self._conn.execute(
                    f'UPDATE "{self.table}" SET {assignments} WHERE id = ?',
                    (*values.values(), existing_id)
                )
            self.logger.debug(f"Updated {self.table} {existing_id} for row {row.uid}")
            return int(existing_id)

        values['etl_uid'] = row.uid
        columns = ", ".join(f'"{c}"' for c in values)
        placeholders = ", ".join("?" for _ in values)
        cursor = self._conn.execute(
            f'INSERT INTO "{self.table}" ({columns}) VALUES ({placeholders})',
            tuple(values.values())
        )
        return int(cursor.lastrowid)

    def _columns_for(self, row: Row) -> Dict[str, Any]:
        """Map row fields to column values"""
        if self.prefix:
            fields = row.reduce_on_prefix(self.prefix)
        else:
            fields = row.to_dict()

        values = {}
        for name, value in fields.items():
            column = name.replace('.', '_')
            if column in ('id', 'etl_uid'):
                continue
            # Convert lists and dicts to JSON strings for SQLite
            if isinstance(value, (list, dict)):
                value = json.dumps(value)
            values[column] = value
        return values

    def _ensure_columns(self, values: Dict[str, Any]) -> None:
        for column, value in values.items():
            if column in self._columns:
                continue
            self._conn.execute(
                f'ALTER TABLE "{self.table}" ADD COLUMN "{column}" {self._sql_type(value)}'
            )
            self._columns.append(column)
            self.logger.debug(f"Added column '{column}' to table '{self.table}'")

    def _sql_type(self, value: Any) -> str:
        """Map a Python value to a SQLite column type"""
        if isinstance(value, (bool, int)):
            return "INTEGER"
        if isinstance(value, float):
            return "REAL"
        return "TEXT"

    def close(self) -> None:
        """Close database connection"""
        if self._conn is None:
            return

        try:
            self._conn.commit()
            self._conn.close()
        except sqlite3.Error as e:
            raise WriteError(f"Error closing SQLite database {self.db_path}: {e}")
        finally:
            self._conn = None

        self.logger.info(f"SQLite connection closed ({self.db_path})")
