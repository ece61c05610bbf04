# partition_advisor/stereotypes.py
"""Recognizes well-known warehouse table shapes from table and column naming.

Each rule is a pure function of the table descriptor and its columns returning a
StereotypeMatch or None. Rules are tried in order and the first match wins.
"""
import re
from typing import Callable, Iterable, List, Optional, Sequence

from loguru import logger

from partition_advisor.catalog import ColumnDescriptor, TableDescriptor
from partition_advisor.schemas import NO_STEREOTYPE, Archetype, Granularity, StereotypeMatch

EFFECTIVE_DATE_COLUMNS = ('EFFECTIVE_DATE', 'EFF_DATE', 'START_DATE')
CURRENT_FLAG_COLUMNS = ('CURRENT_FLAG', 'IS_CURRENT', 'CURRENT_IND')
VALID_FROM_COLUMNS = ('VALID_FROM_DTTM', 'VALID_FROM', 'START_DTTM', 'BEGIN_DTTM', 'VALID_ON', 'DATA_MODIF')
VALID_TO_COLUMNS = ('VALID_TO_DTTM', 'VALID_TO', 'END_DTTM', 'EXPIRY_DTTM')

EVENT_MARKER_COLUMNS = ('EVENT_DTTM', 'EVENT_TIMESTAMP', 'EVENT_DATE', 'EVENT_TIME', 'AUDIT_DTTM', 'CAPTURE_DTTM',
                        'INGESTION_DTTM', 'TRN_DT', 'TXN_DATE', 'TRANSACTION_DATE', 'DATA_TRANZACTIEI', 'LOG_DATE')
EVENT_TABLE_WORDS = ('EVENT', 'AUDIT', 'LOG', 'TRN', 'TRANSACTION')
# Preferred first; the rest keep their ordinal order
EVENT_KEY_PRIORITY = ('EVENT_DTTM', 'EVENT_TIMESTAMP', 'TRANSACTION_DATE', 'TXN_DATE', 'TRN_DT', 'DATA_TRANZACTIEI',
                      'LOG_DATE', 'AUDIT_DTTM', 'CAPTURE_DTTM')
EVENT_KEY_OTHERS = ('EVENT_DATE', 'INGESTION_DTTM', 'CREATED_DTTM', 'INSERT_DTTM')
LONG_RETENTION_WORDS = ('AUDIT', 'COMPLIANCE')

STAGING_PREFIXES = ('STG_', 'STAGING_', 'TEMP_')
STAGING_SUFFIXES = ('_STG', '_STAGING', '_TEMP')
STAGING_KEY_PRIORITY = ('LOAD_DTTM', 'LOAD_DATE', 'LOAD_TIMESTAMP', 'EXTRACTDATE', 'EXTRCT_DATE', 'RUN_DATE',
                        'VAL_DT', 'PURGE_DATE')
STAGING_KEY_OTHERS = ('INSERT_DTTM', 'CREATED_DTTM', 'INGESTION_DTTM', 'CAPTURE_DTTM')

HISTORY_PREFIXES = ('HIST_', 'HISTORY_')
HISTORY_SUFFIXES = ('_HIST', '_HISTORY')
HISTORY_KEY_PRIORITY = ('HIST_DATE', 'HIST_DTTM', 'HIST_MONTH', 'HIST_DATA', 'HISTORY_DATE', 'SNAPSHOT_DATE',
                        'ARCHIVE_DATE', 'CREATED_DATE')
HISTORY_KEY_OTHERS = ('HIST_TIMESTAMP', 'HISTORY_DTTM', 'SNAPSHOT_DTTM', 'ARCHIVE_DTTM', 'CREATED_DTTM',
                      'INSERT_DATE', 'INSERT_DTTM')
HISTORY_KEY_PATTERN = re.compile(r'^(HIST_.*DATE.*|HISTORY_.*DATE.*|SNAPSHOT_.*)$')

StereotypeRule = Callable[[TableDescriptor, Sequence[ColumnDescriptor]], Optional[StereotypeMatch]]


def _temporal(columns: Iterable[ColumnDescriptor]) -> List[ColumnDescriptor]:
    return sorted((c for c in columns if c.is_temporal), key=lambda c: c.ordinal)


def _first_named(columns: Sequence[ColumnDescriptor], names: Sequence[str]) -> Optional[ColumnDescriptor]:
    """First column (by ordinal) whose upper-cased name is in `names`."""
    for column in columns:
        if column.name.upper() in names:
            return column
    return None


def _pick_by_priority(columns: Sequence[ColumnDescriptor], priority: Sequence[str],
                      others: Sequence[str] = ()) -> Optional[ColumnDescriptor]:
    by_name = {c.name.upper(): c for c in columns}
    for name in priority:
        if name in by_name:
            return by_name[name]
    return _first_named(columns, others)


def detect_versioned_record(table: TableDescriptor, columns: Sequence[ColumnDescriptor]) -> Optional[StereotypeMatch]:
    temporal = _temporal(columns)
    all_names = {c.name.upper() for c in columns}

    effective = _first_named(temporal, EFFECTIVE_DATE_COLUMNS)
    current_flag = next((n for n in CURRENT_FLAG_COLUMNS if n in all_names), None)
    if effective and current_flag:
        return StereotypeMatch(
            archetype=Archetype.VERSIONED_RECORD,
            column_name=effective.name,
            rationale=f"Versioned records with {effective.name} and {current_flag} - "
                      f"yearly partitioning for historical tracking",
            granularity=Granularity.YEARLY,
        )

    valid_from = _first_named(temporal, VALID_FROM_COLUMNS)
    valid_to = _first_named(temporal, VALID_TO_COLUMNS)
    if valid_from and valid_to:
        return StereotypeMatch(
            archetype=Archetype.VERSIONED_RECORD,
            column_name=valid_from.name,
            rationale=f"Versioned records with {valid_from.name}/{valid_to.name} validity window - "
                      f"yearly partitioning for historical tracking",
            granularity=Granularity.YEARLY,
        )
    return None


def detect_event_log(table: TableDescriptor, columns: Sequence[ColumnDescriptor]) -> Optional[StereotypeMatch]:
    table_name = table.name.upper()
    has_marker_column = any(c.name.upper() in EVENT_MARKER_COLUMNS for c in columns)
    if not has_marker_column and not any(word in table_name for word in EVENT_TABLE_WORDS):
        return None

    key = _pick_by_priority(_temporal(columns), EVENT_KEY_PRIORITY, EVENT_KEY_OTHERS)
    if key is None:
        return None

    if any(word in table_name for word in LONG_RETENTION_WORDS):
        return StereotypeMatch(
            archetype=Archetype.EVENT_LOG,
            column_name=key.name,
            rationale="Audit/compliance events table - monthly partitioning for long-term retention",
            granularity=Granularity.MONTHLY,
        )
    return StereotypeMatch(
        archetype=Archetype.EVENT_LOG,
        column_name=key.name,
        rationale="Events table - daily partitioning for high-volume event data",
        granularity=Granularity.DAILY,
    )


def is_staging_name(table_name: str) -> bool:
    name = table_name.upper()
    return name.startswith(STAGING_PREFIXES) or name.endswith(STAGING_SUFFIXES)


def detect_staging_area(table: TableDescriptor, columns: Sequence[ColumnDescriptor]) -> Optional[StereotypeMatch]:
    if not is_staging_name(table.name):
        return None

    temporal = _temporal(columns)
    key = _pick_by_priority(temporal, STAGING_KEY_PRIORITY, STAGING_KEY_OTHERS)
    if key is None:
        key = next((c for c in temporal if c.name.upper().startswith('LOAD_')), None)
    if key is None:
        return None

    return StereotypeMatch(
        archetype=Archetype.STAGING_AREA,
        column_name=key.name,
        rationale="Staging table - daily partitioning for easy partition exchange and purging",
        granularity=Granularity.DAILY,
    )


def detect_historical_snapshot(table: TableDescriptor,
                               columns: Sequence[ColumnDescriptor]) -> Optional[StereotypeMatch]:
    name = table.name.upper()
    if not (name.startswith(HISTORY_PREFIXES) or name.endswith(HISTORY_SUFFIXES)):
        return None

    temporal = _temporal(columns)
    key = _pick_by_priority(temporal, HISTORY_KEY_PRIORITY, HISTORY_KEY_OTHERS)
    if key is None:
        key = next((c for c in temporal if HISTORY_KEY_PATTERN.match(c.name.upper())), None)
    if key is None and temporal:
        key = temporal[0]
    if key is None:
        return None

    return StereotypeMatch(
        archetype=Archetype.HISTORICAL_SNAPSHOT,
        column_name=key.name,
        rationale="Historical table - monthly partitioning for snapshot data retention",
        granularity=Granularity.MONTHLY,
    )


STEREOTYPE_RULES: List[StereotypeRule] = [
    detect_versioned_record,
    detect_event_log,
    detect_staging_area,
    detect_historical_snapshot,
]


def detect_stereotype(table: TableDescriptor, columns: Sequence[ColumnDescriptor],
                      rules: Sequence[StereotypeRule] = tuple(STEREOTYPE_RULES)) -> StereotypeMatch:
    for rule in rules:
        match = rule(table, columns)
        if match is not None:
            logger.info(f"{table.full_name}: detected {match.archetype.value} on {match.column_name}")
            return match
    return NO_STEREOTYPE
