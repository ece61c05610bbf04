"""
Pytest configuration and fixtures for the partition advisor tests.

Provides an in-memory catalog and sampler driven by plain column values, a SQLite task
store and a small SQLite warehouse for the SQLAlchemy adapters.
"""
import datetime
from typing import Any, Dict, List, Optional, Sequence

import pytest
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from partition_advisor.catalog import (
    CatalogAdapter, ColumnDescriptor, ConstraintInfo, ConstraintType, IndexInfo, ObjectReference, TableProperties,
    TableRef, TriggerInfo,
)
from partition_advisor.config import AnalyzerConfig
from partition_advisor.database import create_db_and_tables, make_engine
from partition_advisor.errors import CatalogAccessError
from partition_advisor.sampler import DateRangeProbe, MIDNIGHT, NumericRangeProbe, Sampler, as_datetime, clock_of


class FakeCatalog(CatalogAdapter):
    """Catalog facts held in memory."""

    def __init__(self, columns: Sequence[ColumnDescriptor], row_count: Optional[int] = 1000, size_mb: float = 10.0,
                 indexes: Sequence[IndexInfo] = (), constraints: Sequence[ConstraintInfo] = (),
                 triggers: Sequence[TriggerInfo] = (), referencing: Sequence[ConstraintInfo] = (),
                 references: Optional[Dict[str, List[ObjectReference]]] = None,
                 properties: TableProperties = TableProperties(),
                 fail_columns: bool = False, fail_size: bool = False, missing_tables: Sequence[str] = ()):
        self.columns = list(columns)
        self.row_count = row_count
        self.size_mb = size_mb
        self.indexes = list(indexes)
        self.constraints = list(constraints)
        self.triggers = list(triggers)
        self.referencing = list(referencing)
        self.references = references or {}
        self.properties = properties
        self.fail_columns = fail_columns
        self.fail_size = fail_size
        self.missing_tables = set(missing_tables)

    def get_columns(self, table: TableRef) -> List[ColumnDescriptor]:
        if self.fail_columns or table.name in self.missing_tables:
            raise CatalogAccessError(f"Table {table.full_name} does not exist", table=table.full_name)
        return list(self.columns)

    def get_indexes(self, table):
        return list(self.indexes)

    def get_constraints(self, table):
        return list(self.constraints)

    def get_triggers(self, table):
        return list(self.triggers)

    def get_referencing_foreign_keys(self, table):
        return list(self.referencing)

    def find_references(self, table, column):
        return list(self.references.get(column, []))

    def get_row_count_estimate(self, table):
        return self.row_count

    def get_size_estimate(self, table):
        if self.fail_size:
            raise CatalogAccessError("size lookup denied", table=table.full_name)
        return self.size_mb

    def get_table_properties(self, table):
        return self.properties


class FakeSampler(Sampler):
    """Answers probes by computing them over in-memory column values (None is NULL)."""

    def __init__(self, data: Dict[str, List[Any]], failures: Optional[Dict[str, Exception]] = None):
        self.data = data
        self.failures = failures or {}
        self.calls: List[tuple] = []

    def _values(self, probe: str, column: str) -> List[Any]:
        self.calls.append((probe, column))
        if column in self.failures:
            raise self.failures[column]
        return self.data.get(column, [])

    def _present(self, probe: str, column: str, limit: Optional[int] = None) -> List[Any]:
        present = [v for v in self._values(probe, column) if v is not None]
        return present[:limit] if limit is not None else present

    def probe_date_range(self, table, column, parallel_hint=1, year_bounds=None):
        values = self._values("probe_date_range", column)
        present = [as_datetime(v) for v in values if v is not None]
        if year_bounds is not None:
            present = [v for v in present if year_bounds[0] <= v.year <= year_bounds[1]]
        low, high = min(present, default=None), max(present, default=None)
        return DateRangeProbe(low, high, len(values), sum(v is not None for v in values),
                              clock_of(low), clock_of(high))

    def probe_time_sample(self, table, column, limit, parallel_hint=1):
        return any(clock_of(as_datetime(v)) != MIDNIGHT for v in self._present("probe_time_sample", column, limit))

    def probe_distinct_days(self, table, column, parallel_hint=1):
        return len({as_datetime(v).date() for v in self._present("probe_distinct_days", column)})

    def probe_numeric_range(self, table, column, limit, parallel_hint=1):
        present = self._present("probe_numeric_range", column, limit)
        if not present:
            return NumericRangeProbe(None, None, 0)
        return NumericRangeProbe(float(min(present)), float(max(present)), len(present))

    def probe_sample_value(self, table, column):
        present = self._present("probe_sample_value", column)
        return present[0] if present else None

    def probe_format_match(self, table, column, date_format, limit):
        matched = 0
        for value in self._present("probe_format_match", column, limit):
            try:
                datetime.datetime.strptime(str(value).strip(), date_format.strptime)
            except ValueError:
                continue
            matched += 1
        return matched


def make_columns(*specs) -> List[ColumnDescriptor]:
    """make_columns(("ID", "NUMBER"), ("SALE_DATE", "DATE")) -> descriptors with ordinals 1..n"""
    return [ColumnDescriptor(name=name, data_type=data_type, ordinal=i) for i, (name, data_type) in
            enumerate(specs, start=1)]


def primary_key(column: str, table: str = "T") -> ConstraintInfo:
    return ConstraintInfo(name=f"PK_{table}", constraint_type=ConstraintType.PRIMARY_KEY, columns=(column,),
                          table=table)


def day_range(start: datetime.date, days: int, step: int = 1) -> List[datetime.date]:
    return [start + datetime.timedelta(days=d) for d in range(0, days + 1, step)]


@pytest.fixture
def config():
    return AnalyzerConfig(probe_timeout_seconds=None)


@pytest.fixture
def session_factory(tmp_path):
    """Task store on a throwaway SQLite file."""
    engine = make_engine(f"sqlite:///{tmp_path / 'tasks.db'}")
    create_db_and_tables(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def warehouse_engine(tmp_path):
    """A small SQLite warehouse with a fact table, an index, a view, a trigger and a child table."""
    engine = make_engine(f"sqlite:///{tmp_path / 'warehouse.db'}")
    statements = [
        """CREATE TABLE sales (
            id INTEGER PRIMARY KEY,
            sale_date DATE,
            created_ts TIMESTAMP,
            amount NUMERIC(10, 2),
            order_dt INTEGER,
            ship_date_txt VARCHAR(10),
            note TEXT
        )""",
        "CREATE INDEX ix_sales_sale_date ON sales (sale_date)",
        "CREATE VIEW v_recent_sales AS SELECT id, amount FROM sales WHERE sale_date > '2022-01-01'",
        "CREATE TRIGGER trg_sales_audit AFTER INSERT ON sales BEGIN SELECT 1; END",
        "CREATE TABLE sales_lines (id INTEGER PRIMARY KEY, sale_id INTEGER REFERENCES sales(id))",
        "CREATE TABLE empty_table (id INTEGER PRIMARY KEY, happened_on DATE)",
        """INSERT INTO sales VALUES
            (1, '2021-01-15', '2021-01-15 10:30:00', 10.50, 20210115, '2021-01-20', 'a'),
            (2, '2022-06-01', '2022-06-01 00:00:00', 20.00, 20220601, '2022-06-03', 'b'),
            (3, '2023-12-31', '2023-12-31 23:59:59', 30.25, 20231231, '2024-01-02', 'c'),
            (4, NULL, NULL, 5.00, NULL, NULL, 'd')""",
    ]
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    yield engine
    engine.dispose()
