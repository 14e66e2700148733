"""
StateReconciler - Merges fetched collections into local state by identity.

Records are plain dicts keyed by "id". Merged output carries two metadata
keys: "_provenance" (existing / new / merged) and "_last_merged_at" (merged
entries only). Conflicts between a local and a remote snapshot are reported,
never resolved.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from dateutil import parser as date_parser
from loguru import logger

PROVENANCE_KEY = "_provenance"
MERGED_AT_KEY = "_last_merged_at"
METADATA_KEYS = (PROVENANCE_KEY, MERGED_AT_KEY)

Record = dict[str, Any]


class Provenance(str, Enum):
    EXISTING = "existing"
    NEW = "new"
    MERGED = "merged"


class ConflictKind(str, Enum):
    TIMESTAMP = "timestamp_conflict"
    STATUS = "status_conflict"


@dataclass(frozen=True)
class ConflictDescriptor:
    kind: ConflictKind
    field: str
    local_value: Any
    remote_value: Any


def _strip_metadata(record: Record) -> Record:
    return {k: v for k, v in record.items() if k not in METADATA_KEYS}


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a modification timestamp.

    Numbers are epoch milliseconds, strings are ISO-8601. Naive values are
    taken as UTC. Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class StateReconciler:
    """
    Usage:
        reconciler = StateReconciler()
        tasks = reconciler.merge(tasks, fetched_tasks)
        conflicts = reconciler.detect_conflicts(local_task, remote_task)
    """

    def __init__(
        self,
        id_field: str = "id",
        timestamp_field: str = "modifiedAt",
        status_field: str = "currentStatus",
        timestamp_tolerance: timedelta = timedelta(milliseconds=5000),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.id_field = id_field
        self.timestamp_field = timestamp_field
        self.status_field = status_field
        self.timestamp_tolerance = timestamp_tolerance
        self._clock = clock

    def merge(
        self,
        existing: Iterable[Record] | None,
        incoming: Iterable[Record] | None,
    ) -> list[Record]:
        """
        Merge incoming records into existing ones by id.

        Records only in existing are kept, records only in incoming are
        added, and records in both take existing's fields overlaid with every
        field present in incoming. Records without an id are dropped. Output
        order is not part of the contract.
        """
        merged: dict[Any, Record] = {}

        for record in existing or ():
            record_id = record.get(self.id_field)
            if record_id is None:
                continue
            merged[record_id] = {
                **_strip_metadata(record),
                PROVENANCE_KEY: Provenance.EXISTING.value,
            }

        merged_at = self._clock()
        for record in incoming or ():
            record_id = record.get(self.id_field)
            if record_id is None:
                continue
            current = merged.get(record_id)
            if current is None:
                merged[record_id] = {
                    **_strip_metadata(record),
                    PROVENANCE_KEY: Provenance.NEW.value,
                }
            else:
                merged[record_id] = {
                    **_strip_metadata(current),
                    **_strip_metadata(record),
                    PROVENANCE_KEY: Provenance.MERGED.value,
                    MERGED_AT_KEY: merged_at,
                }

        logger.debug(f"Reconciled {len(merged)} records")
        return list(merged.values())

    def detect_conflicts(
        self,
        local: Record | None,
        remote: Record | None,
    ) -> list[ConflictDescriptor]:
        """Report timestamp and status divergence between two snapshots."""
        conflicts: list[ConflictDescriptor] = []
        if not local or not remote:
            return conflicts

        local_ts = local.get(self.timestamp_field)
        remote_ts = remote.get(self.timestamp_field)
        if local_ts and remote_ts:
            local_time = parse_timestamp(local_ts)
            remote_time = parse_timestamp(remote_ts)
            if (
                local_time is not None
                and remote_time is not None
                and abs(local_time - remote_time) > self.timestamp_tolerance
            ):
                conflicts.append(
                    ConflictDescriptor(
                        kind=ConflictKind.TIMESTAMP,
                        field=self.timestamp_field,
                        local_value=local_ts,
                        remote_value=remote_ts,
                    )
                )

        local_status = local.get(self.status_field)
        remote_status = remote.get(self.status_field)
        if local_status and remote_status and local_status != remote_status:
            conflicts.append(
                ConflictDescriptor(
                    kind=ConflictKind.STATUS,
                    field=self.status_field,
                    local_value=local_status,
                    remote_value=remote_status,
                )
            )

        return conflicts
