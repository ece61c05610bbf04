"""
Catalog and sampler adapters against a real SQLite database.
"""
import datetime
import threading
import time
from contextlib import contextmanager
from types import SimpleNamespace

import pytest
from sqlalchemy import text

from partition_advisor.analyzer import TableAnalyzer
from partition_advisor.catalog import (
    ColumnDescriptor, ColumnKind, ConstraintType, ReferenceType, SqlAlchemyCatalog, TableRef, classify_data_type,
)
from partition_advisor.errors import AnalysisCancelled, CatalogAccessError, SamplingError
from partition_advisor.nonstandard_dates import TEXT_DATE_FORMATS
from partition_advisor.sampler import BoundedSampler, SqlAlchemySampler
from partition_advisor.schemas import Readiness

SALES = TableRef(None, "sales")


class TestClassifyDataType:
    @pytest.mark.parametrize("data_type, kind", [
        ("DATE", ColumnKind.TEMPORAL),
        ("TIMESTAMP(6) WITH TIME ZONE", ColumnKind.TEMPORAL),
        ("DATETIME2", ColumnKind.TEMPORAL),
        ("NUMBER", ColumnKind.NUMERIC),
        ("NUMBER(8)", ColumnKind.NUMERIC),
        ("NUMERIC(10, 2)", ColumnKind.OTHER),
        ("VARCHAR2(10 CHAR)", ColumnKind.TEXT),
        ("CLOB", ColumnKind.LARGE_OBJECT),
        ("RAW(16)", ColumnKind.OTHER),
        (None, ColumnKind.OTHER),
    ])
    def test_kinds(self, data_type, kind):
        assert classify_data_type(data_type) == kind


class TestSqlAlchemyCatalog:
    def test_columns(self, warehouse_engine):
        columns = SqlAlchemyCatalog(warehouse_engine).get_columns(SALES)
        assert [c.name for c in columns] == ["id", "sale_date", "created_ts", "amount", "order_dt",
                                             "ship_date_txt", "note"]
        assert [c.ordinal for c in columns] == list(range(1, 8))
        kinds = {c.name: c.kind for c in columns}
        assert kinds["sale_date"] == ColumnKind.TEMPORAL
        assert kinds["created_ts"] == ColumnKind.TEMPORAL
        assert kinds["amount"] == ColumnKind.OTHER
        assert kinds["order_dt"] == ColumnKind.NUMERIC
        assert kinds["ship_date_txt"] == ColumnKind.TEXT

    def test_missing_table(self, warehouse_engine):
        with pytest.raises(CatalogAccessError):
            SqlAlchemyCatalog(warehouse_engine).get_columns(TableRef(None, "no_such_table"))

    def test_structure(self, warehouse_engine):
        catalog = SqlAlchemyCatalog(warehouse_engine)

        index_columns = {idx.columns for idx in catalog.get_indexes(SALES)}
        assert ("sale_date",) in index_columns
        assert ("id",) in index_columns

        constraints = catalog.get_constraints(SALES)
        assert [c.columns for c in constraints if c.constraint_type == ConstraintType.PRIMARY_KEY] == [("id",)]

        assert [t.name for t in catalog.get_triggers(SALES)] == ["trg_sales_audit"]

        referencing = catalog.get_referencing_foreign_keys(SALES)
        assert [(fk.table, fk.columns) for fk in referencing] == [("sales_lines", ("sale_id",))]

    def test_view_references(self, warehouse_engine):
        catalog = SqlAlchemyCatalog(warehouse_engine)

        references = catalog.find_references(SALES, "sale_date")
        assert [(r.object_type, r.name) for r in references] == [(ReferenceType.VIEW, "v_recent_sales")]
        assert catalog.find_references(SALES, "created_ts") == []

    def test_statistics_and_properties(self, warehouse_engine):
        catalog = SqlAlchemyCatalog(warehouse_engine)
        assert catalog.get_row_count_estimate(SALES) == 4
        assert catalog.get_size_estimate(SALES) >= 0.0
        properties = catalog.get_table_properties(SALES)
        assert not properties.is_materialized_view
        assert not properties.is_index_organized


class TestSqlAlchemySampler:
    def test_date_range(self, warehouse_engine):
        probe = SqlAlchemySampler(warehouse_engine).probe_date_range(SALES, "sale_date")
        assert probe.min_value == datetime.datetime(2021, 1, 15)
        assert probe.max_value == datetime.datetime(2023, 12, 31)
        assert probe.total_count == 4
        assert probe.non_null_count == 3
        assert probe.clock_min == "00:00:00"

    def test_year_bounds(self, warehouse_engine):
        probe = SqlAlchemySampler(warehouse_engine).probe_date_range(SALES, "sale_date", year_bounds=(2022, 2022))
        assert probe.min_value == probe.max_value == datetime.datetime(2022, 6, 1)

    def test_time_component(self, warehouse_engine):
        sampler = SqlAlchemySampler(warehouse_engine)
        assert sampler.probe_time_sample(SALES, "created_ts", 100)
        assert not sampler.probe_time_sample(SALES, "sale_date", 100)
        assert sampler.probe_distinct_days(SALES, "created_ts") == 3

    def test_numeric_range(self, warehouse_engine):
        probe = SqlAlchemySampler(warehouse_engine).probe_numeric_range(SALES, "order_dt", 1000)
        assert probe.min_value == 20210115.0
        assert probe.max_value == 20231231.0
        assert probe.sampled_count == 3

    def test_text_probes(self, warehouse_engine):
        sampler = SqlAlchemySampler(warehouse_engine)
        assert sampler.probe_sample_value(SALES, "ship_date_txt") == "2021-01-20"
        iso, day_first = TEXT_DATE_FORMATS[0], TEXT_DATE_FORMATS[1]
        assert sampler.probe_format_match(SALES, "ship_date_txt", iso, 100) == 3
        assert sampler.probe_format_match(SALES, "ship_date_txt", day_first, 100) == 0

    def test_unknown_column(self, warehouse_engine):
        with pytest.raises(SamplingError) as excinfo:
            SqlAlchemySampler(warehouse_engine).probe_date_range(SALES, "nope")
        assert excinfo.value.error_class == "InvalidColumn"


class Interruptible(SqlAlchemySampler):
    """Blocks in probe_distinct_days until cancel() is called."""

    def __init__(self):
        super().__init__(engine=None)
        self.interrupted = threading.Event()
        self.finished = threading.Event()

    def probe_distinct_days(self, table, column, parallel_hint=1):
        self.interrupted.wait(5)
        self.finished.set()
        return 0

    def cancel(self):
        self.interrupted.set()


class TestBoundedSampler:
    def test_adapter_errors_become_sampling_errors(self):
        class Broken(SqlAlchemySampler):
            def probe_sample_value(self, table, column):
                raise RuntimeError("connection reset")

        bounded = BoundedSampler(Broken(engine=None))
        with pytest.raises(SamplingError) as excinfo:
            bounded.probe_sample_value(SALES, "x")
        assert excinfo.value.error_class == "RuntimeError"

    def test_timeout_interrupts_the_running_probe(self):
        inner = Interruptible()
        bounded = BoundedSampler(inner, timeout_seconds=0.1)

        with pytest.raises(SamplingError) as excinfo:
            bounded.probe_distinct_days(SALES, "x")

        assert excinfo.value.error_class == "ProbeTimeoutError"
        assert inner.interrupted.is_set()
        assert inner.finished.is_set()

    def test_cancellation_interrupts_the_running_probe(self):
        inner = Interruptible()
        cancel_event = threading.Event()
        bounded = BoundedSampler(inner, cancel_event=cancel_event)
        timer = threading.Timer(0.1, cancel_event.set)
        timer.start()

        with pytest.raises(AnalysisCancelled):
            bounded.probe_distinct_days(SALES, "x")

        assert inner.interrupted.is_set()
        assert inner.finished.is_set()

    def test_sqlite_query_is_interrupted(self, warehouse_engine):
        """A long-running statement is stopped on the connection and the connection is given back."""
        class LongRunning(SqlAlchemySampler):
            def probe_distinct_days(self, table, column, parallel_hint=1):
                counter = text("WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 500000000) "
                               "SELECT count(*) FROM c")
                return self._fetch_scalar(counter, column)

        sampler = LongRunning(warehouse_engine)
        started = time.monotonic()

        with pytest.raises(SamplingError) as excinfo:
            BoundedSampler(sampler, timeout_seconds=0.2).probe_distinct_days(SALES, "x")

        assert excinfo.value.error_class == "ProbeTimeoutError"
        assert time.monotonic() - started < BoundedSampler.CANCEL_GRACE_SECONDS
        assert sampler.active_connections == 0


class TestEndToEnd:
    def test_analyze_sqlite_table(self, warehouse_engine, config):
        analyzer = TableAnalyzer(SqlAlchemyCatalog(warehouse_engine), SqlAlchemySampler(warehouse_engine), config)

        result = analyzer.analyze(SALES)

        assert result.selected_column == "sale_date"
        assert result.recommendation.partition_key == "sale_date"
        assert result.dependencies.trigger_count == 1
        assert result.dependencies.referencing_table_count == 1
        assert result.readiness == Readiness.READY
        profiles = {p.column_name: p for p in result.column_profiles}
        assert profiles["sale_date"].usage_score == 15 + 3
        assert profiles["created_ts"].has_time_component

    def test_empty_table_is_not_partitioned(self, warehouse_engine, config):
        analyzer = TableAnalyzer(SqlAlchemyCatalog(warehouse_engine), SqlAlchemySampler(warehouse_engine), config)

        result = analyzer.analyze(TableRef(None, "empty_table"))

        assert result.column_profiles == ()
        assert not result.recommendation.is_partitioned


class RecordingEngine:
    """Stands in for a server engine: remembers statements and answers every query with one value."""

    def __init__(self, dialect_name, value):
        self.dialect = SimpleNamespace(name=dialect_name)
        self.value = value
        self.statements = []

    @contextmanager
    def connect(self):
        yield self

    def execute(self, statement, params=None):
        self.statements.append(str(statement))
        return SimpleNamespace(scalar=lambda: self.value)


class TestRowStatistics:
    def test_postgresql_reads_planner_statistics(self):
        engine = RecordingEngine("postgresql", 2_500_000_000.0)

        assert SqlAlchemyCatalog(engine).get_row_count_estimate(TableRef("dwh", "sales")) == 2_500_000_000
        assert "pg_class" in engine.statements[0]
        assert not any("count(" in s.lower() for s in engine.statements)

    def test_oracle_reads_dictionary_statistics(self):
        engine = RecordingEngine("oracle", 1200)

        assert SqlAlchemyCatalog(engine).get_row_count_estimate(TableRef("DWH", "SALES")) == 1200
        assert "all_tables" in engine.statements[0]

    def test_never_analyzed_table_has_no_estimate(self):
        catalog = SqlAlchemyCatalog(RecordingEngine("postgresql", -1.0))
        assert catalog.get_row_count_estimate(TableRef("dwh", "sales")) is None

    def test_other_dialects_do_not_touch_the_table(self):
        engine = RecordingEngine("mssql", 10)
        catalog = SqlAlchemyCatalog(engine)

        assert catalog.get_row_count_estimate(SALES) is None
        with pytest.raises(CatalogAccessError):
            catalog.get_size_estimate(SALES)
        assert engine.statements == []

    def test_missing_statistics_become_warnings(self, config):
        engine = RecordingEngine("mssql", None)
        catalog = SqlAlchemyCatalog(engine)
        catalog.get_columns = lambda ref: [ColumnDescriptor("ID", "INTEGER", 1)]

        table, _, warnings = TableAnalyzer(catalog, SqlAlchemySampler(engine), config).describe_table(SALES)

        assert (table.row_count, table.size_mb) == (0, 0.0)
        assert len(warnings) == 2
