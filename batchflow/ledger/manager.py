"""
Ledger finalization: primary selection, left join and persistence

After a job's Load phase every loader that recorded side effects hands its
ledger over here. A single ledger is written as the job's ledger. Several
ledgers are written one file per loader, then joined on the row uid onto a
primary ledger, and the joined result is written as the job's ledger.
"""
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pandas as pd

from batchflow.common.config import Config
from batchflow.common.logging import get_logger
from batchflow.common.models import LEDGER_UID, JobConfig, Ledger, Schema, UnifiedLedger, loader_ledger_name
from batchflow.storage.base import LedgerStorage, ledger_timestamp
from batchflow.storage.file_storage import create_storage


class LedgerManager:
    """Collects, joins and persists the ledgers of one job run"""

    def __init__(self, config: Config, storage: Optional[LedgerStorage] = None, registry=None):
        """
        Initialize ledger manager

        Args:
            config: Configuration holding the ledger root
            storage: Ledger storage, defaults to the configured `ledger.format`
            registry: LedgerRegistry whose cached copy of a job's ledger is
                dropped once a newer one has been written
        """
        self.config = config
        self.storage = storage or create_storage(config.ledger_format)
        self.registry = registry
        self.logger = get_logger("LedgerManager")

        # Files written by the last finalize() call
        self.paths: List[Path] = []

    def finalize(self, job: JobConfig, loaders: Sequence[Any]) -> Optional[Ledger]:
        """
        Persist the ledgers of a job's loaders

        Args:
            job: Job that just finished its Load phase
            loaders: The job's loaders in declared order

        Returns:
            The job's ledger (a UnifiedLedger when several loaders recorded
            entries), or None when no loader recorded anything
        """
        self.paths = []
        produced: List[Tuple[Any, Ledger]] = [
            (loader, loader.get_ledger()) for loader in loaders if loader.has_ledger()
        ]

        if not produced:
            self.logger.info(f"Job '{job.name}' produced no ledger entries")
            return None

        directory = self.config.job_ledger_dir(job)
        timestamp = ledger_timestamp()

        if len(produced) == 1:
            loader, ledger = produced[0]
            result = Ledger(name=job.name, entries=list(ledger.entries), schema=ledger.schema)
            self.paths.append(self.storage.save_ledger(result, directory, job.name, timestamp))
        else:
            for loader, ledger in produced:
                self.paths.append(self.storage.save_ledger(
                    ledger, directory, loader_ledger_name(job.name, loader.name), timestamp
                ))

            primary_index = self.select_primary(job, [loader for loader, _ in produced])
            primary_loader, primary_ledger = produced[primary_index]
            secondaries = [
                (loader.name, ledger) for i, (loader, ledger) in enumerate(produced)
                if i != primary_index
            ]
            self.logger.info(
                f"Joining {len(secondaries)} ledger(s) onto primary '{primary_loader.name}' "
                f"for job '{job.name}'"
            )

            result = left_join(job.name, primary_loader.name, primary_ledger, secondaries)
            self.paths.append(self.storage.save_ledger(result, directory, job.name, timestamp))

        for loader, _ in produced:
            loader.reset_ledger()

        if self.registry is not None:
            self.registry.unload(job.name)

        return result

    def select_primary(self, job: JobConfig, loaders: Sequence[Any]) -> int:
        """
        Pick the primary ledger among ledger-producing loaders

        An explicit `primary: true` wins, then the loader writing the job's
        entity type, then the first loader.

        Args:
            job: Job being finalized
            loaders: Loaders that produced a ledger, in declared order

        Returns:
            Index of the primary loader
        """
        explicit = [i for i, loader in enumerate(loaders) if loader.primary]
        if explicit:
            if len(explicit) > 1:
                extra = ", ".join(loaders[i].name for i in explicit[1:])
                self.logger.warning(
                    f"Job '{job.name}' marks several loaders as primary; "
                    f"using '{loaders[explicit[0]].name}', ignoring {extra}"
                )
            return explicit[0]

        if job.entity:
            for i, loader in enumerate(loaders):
                if loader.entity_type == job.entity:
                    return i

        return 0


def left_join(
    name: str,
    primary_name: str,
    primary: Ledger,
    secondaries: Sequence[Tuple[str, Ledger]]
) -> UnifiedLedger:
    """
    Left join secondary ledgers onto a primary ledger by uid

    The result holds exactly one entry per primary entry, in primary order,
    with the primary values untouched (None included). Secondary entries are
    de-duplicated by uid (the last one wins). A secondary field whose name is
    already taken is renamed to `<loader>.<field>`. A primary entry with no
    secondary match gets none of that secondary's fields. Secondary entries
    whose uid is not in the primary are dropped.

    Args:
        name: Name of the joined ledger
        primary_name: Loader that produced the primary ledger
        primary: Primary ledger
        secondaries: (loader name, ledger) pairs

    Returns:
        UnifiedLedger
    """
    logger = get_logger("LedgerManager")

    entries = [dict(entry) for entry in primary.entries]
    taken = _field_names(primary.entries)
    schema_fields = list(primary.schema.fields) if primary.schema else []

    positions: Dict[str, List[int]] = {}
    for index, entry in enumerate(entries):
        positions.setdefault(str(entry[LEDGER_UID]), []).append(index)

    for loader_name, ledger in secondaries:
        frame = _frame(ledger.entries).drop_duplicates(subset=LEDGER_UID, keep='last')
        matched = frame[LEDGER_UID].isin(list(positions))

        dropped = int((~matched).sum())
        if dropped:
            logger.warning(
                f"Dropping {dropped} '{loader_name}' ledger entries with no matching "
                f"'{primary_name}' entry while building ledger '{name}'"
            )

        fields = _field_names(ledger.entries)
        renames = {
            field: f"{loader_name}.{field}" for field in fields if field in taken
        }
        if renames:
            logger.debug(f"Renaming colliding '{loader_name}' fields: {renames}")

        # The frame index is the entry's position in the secondary ledger
        for position, uid in frame.loc[matched, LEDGER_UID].items():
            values = {
                renames.get(key, key): value
                for key, value in ledger.entries[position].items()
                if key != LEDGER_UID
            }
            for index in positions[uid]:
                entries[index].update(values)

        taken.update(renames.get(field, field) for field in fields)

        if ledger.schema:
            schema_fields.extend(
                replace(field, name=renames.get(field.name, field.name), nullable=True)
                for field in ledger.schema.fields
                if field.name != LEDGER_UID
            )

    schema = None
    if schema_fields:
        schema = Schema(name=name, fields=schema_fields)

    return UnifiedLedger(
        name=name,
        entries=entries,
        schema=schema,
        primary=primary_name,
        secondaries=[loader_name for loader_name, _ in secondaries],
    )


def _frame(entries: List[Dict[str, Any]]) -> pd.DataFrame:
    if not entries:
        return pd.DataFrame(columns=[LEDGER_UID], dtype=object)

    return pd.DataFrame({LEDGER_UID: [str(entry[LEDGER_UID]) for entry in entries]}, dtype=object)


def _field_names(entries: List[Dict[str, Any]]) -> Set[str]:
    names: Set[str] = set()
    for entry in entries:
        names.update(key for key in entry if key != LEDGER_UID)
    return names
