# partition_advisor/sampler.py
import datetime
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import pandas as pd
from loguru import logger
from sqlalchemy import MetaData, Table, distinct, extract, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from partition_advisor.catalog import TableRef
from partition_advisor.errors import AnalysisCancelled, ProbeTimeoutError, SamplingError

MIDNIGHT = "00:00:00"


@dataclass(frozen=True)
class DateFormat:
    """A textual date layout: the canonical token stored in results and its strptime equivalent."""
    token: str
    strptime: str


@dataclass(frozen=True)
class DateRangeProbe:
    min_value: Optional[datetime.datetime]
    max_value: Optional[datetime.datetime]
    total_count: int
    non_null_count: int
    clock_min: Optional[str] = None
    clock_max: Optional[str] = None


@dataclass(frozen=True)
class NumericRangeProbe:
    min_value: Optional[float]
    max_value: Optional[float]
    sampled_count: int


def as_datetime(value: Any) -> Optional[datetime.datetime]:
    """Normalizes date/datetime/pandas values to a naive datetime."""
    if value is None or (not isinstance(value, (str, datetime.date)) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime.datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    raise TypeError(f"Unsupported temporal value: {value!r}")


def clock_of(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.strftime("%H:%M:%S") if value is not None else None


class Sampler(ABC):
    """Bounded, read-only probes against live rows.

    Every method receives column names and bounds as plain parameters; building the
    actual query is the adapter's business.
    """

    @abstractmethod
    def probe_date_range(self, table: TableRef, column: str, parallel_hint: int = 1,
                         year_bounds: Optional[Tuple[int, int]] = None) -> DateRangeProbe:
        """MIN/MAX/COUNT(*)/COUNT(col) plus clock of min/max, optionally restricted to years in bounds."""

    @abstractmethod
    def probe_time_sample(self, table: TableRef, column: str, limit: int, parallel_hint: int = 1) -> bool:
        """True if a sampled non-null value differs from its date-truncated form."""

    @abstractmethod
    def probe_distinct_days(self, table: TableRef, column: str, parallel_hint: int = 1) -> int:
        ...

    @abstractmethod
    def probe_numeric_range(self, table: TableRef, column: str, limit: int,
                            parallel_hint: int = 1) -> NumericRangeProbe:
        """MIN/MAX/COUNT over at most `limit` non-null rows."""

    @abstractmethod
    def probe_sample_value(self, table: TableRef, column: str) -> Optional[Any]:
        ...

    @abstractmethod
    def probe_format_match(self, table: TableRef, column: str, date_format: DateFormat, limit: int) -> int:
        """Number of sampled non-null values (at most `limit`) that parse with the format."""

    def cancel(self):
        """Interrupts probes in flight. Adapters that cannot interrupt a running query do nothing."""


class BoundedSampler(Sampler):
    """Wraps a sampler with a per-probe timeout and cooperative cancellation.

    Adapter failures of any kind surface as SamplingError; probes run one at a time. A probe
    that times out or is cancelled is interrupted through the inner sampler's `cancel`.
    """

    POLL_SECONDS = 0.05
    # How long an interrupted probe gets to unwind and release its connection
    CANCEL_GRACE_SECONDS = 2.0

    def __init__(self, inner: Sampler, timeout_seconds: Optional[float] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self.cancel_event = cancel_event

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise AnalysisCancelled("Analysis was cancelled")

    def _run(self, probe_name: str, column: str, fn, *args, **kwargs):
        self._check_cancelled()
        if self.timeout_seconds is None and self.cancel_event is None:
            return self._call(probe_name, column, fn, *args, **kwargs)

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="probe")
        try:
            future = executor.submit(self._call, probe_name, column, fn, *args, **kwargs)
            deadline = None
            if self.timeout_seconds is not None:
                deadline = datetime.datetime.now() + datetime.timedelta(seconds=self.timeout_seconds)
            while True:
                done, _ = wait([future], timeout=self.POLL_SECONDS)
                if done:
                    return future.result()
                if self.cancel_event is not None and self.cancel_event.is_set():
                    self._abandon(future, probe_name, column)
                    raise AnalysisCancelled(f"Analysis was cancelled during {probe_name} on {column}")
                if deadline is not None and datetime.datetime.now() >= deadline:
                    self._abandon(future, probe_name, column)
                    raise ProbeTimeoutError(
                        f"{probe_name} on {column} exceeded {self.timeout_seconds}s",
                        column=column, error_class="ProbeTimeoutError",
                    )
        finally:
            executor.shutdown(wait=False)

    def _abandon(self, future, probe_name: str, column: str):
        """Stops the probe running in `future` and waits briefly for it to unwind."""
        if future.cancel():
            return
        self.inner.cancel()
        done, _ = wait([future], timeout=self.CANCEL_GRACE_SECONDS)
        if not done:
            logger.warning(f"{probe_name} on {column} still running {self.CANCEL_GRACE_SECONDS}s "
                           f"after being interrupted")

    def cancel(self):
        self.inner.cancel()

    @staticmethod
    def _call(probe_name: str, column: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SamplingError:
            raise
        except Exception as e:
            raise SamplingError(f"{probe_name} on {column} failed: {e}", column=column,
                                error_class=type(e).__name__) from e

    def probe_date_range(self, table, column, parallel_hint=1, year_bounds=None):
        return self._run("probe_date_range", column, self.inner.probe_date_range,
                         table, column, parallel_hint, year_bounds)

    def probe_time_sample(self, table, column, limit, parallel_hint=1):
        return self._run("probe_time_sample", column, self.inner.probe_time_sample,
                         table, column, limit, parallel_hint)

    def probe_distinct_days(self, table, column, parallel_hint=1):
        return self._run("probe_distinct_days", column, self.inner.probe_distinct_days,
                         table, column, parallel_hint)

    def probe_numeric_range(self, table, column, limit, parallel_hint=1):
        return self._run("probe_numeric_range", column, self.inner.probe_numeric_range,
                         table, column, limit, parallel_hint)

    def probe_sample_value(self, table, column):
        return self._run("probe_sample_value", column, self.inner.probe_sample_value, table, column)

    def probe_format_match(self, table, column, date_format, limit):
        return self._run("probe_format_match", column, self.inner.probe_format_match,
                         table, column, date_format, limit)


class SqlAlchemySampler(Sampler):
    """Sampler built on SQLAlchemy Core expressions over reflected tables."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._tables: Dict[TableRef, Table] = {}
        self._active = set()
        self._active_lock = threading.Lock()

    @contextmanager
    def _connect(self):
        """Pooled connection whose DBAPI handle is reachable from `cancel` while in use."""
        with self.engine.connect() as conn:
            dbapi_connection = conn.connection.dbapi_connection
            with self._active_lock:
                self._active.add(dbapi_connection)
            try:
                yield conn
            finally:
                with self._active_lock:
                    self._active.discard(dbapi_connection)

    @property
    def active_connections(self) -> int:
        with self._active_lock:
            return len(self._active)

    def cancel(self):
        with self._active_lock:
            connections = list(self._active)
        for dbapi_connection in connections:
            # sqlite3 exposes interrupt(); psycopg and oracledb expose cancel()
            interrupt = getattr(dbapi_connection, 'interrupt', None) or getattr(dbapi_connection, 'cancel', None)
            if interrupt is None:
                logger.debug(f"{type(dbapi_connection).__name__} cannot interrupt a running query")
                continue
            try:
                interrupt()
            except Exception as e:
                logger.warning(f"Could not interrupt probe connection: {type(e).__name__}: {e}")
        if connections:
            logger.info(f"Interrupted {len(connections)} running probe(s)")

    def _table(self, ref: TableRef) -> Table:
        if ref not in self._tables:
            try:
                self._tables[ref] = Table(ref.name, MetaData(), schema=ref.owner, autoload_with=self.engine)
            except SQLAlchemyError as e:
                raise SamplingError(f"Cannot reflect {ref.full_name}: {e}", error_class=type(e).__name__) from e
        return self._tables[ref]

    def _column(self, ref: TableRef, column: str):
        table = self._table(ref)
        if column not in table.c:
            raise SamplingError(f"Invalid column {column} on {ref.full_name}", column=column,
                                error_class="InvalidColumn")
        return table, table.c[column]

    def _with_parallel_hint(self, stmt, table: Table, parallel_hint: int):
        # Only Oracle understands the hint; other dialects ignore it
        if parallel_hint and parallel_hint > 1:
            stmt = stmt.with_hint(table, f"PARALLEL({parallel_hint})", dialect_name="oracle")
        return stmt

    def _fetch_scalar(self, stmt, column: str):
        try:
            with self._connect() as conn:
                return conn.execute(stmt).scalar()
        except SQLAlchemyError as e:
            raise SamplingError(f"Probe on {column} failed: {e}", column=column,
                                error_class=type(e).__name__) from e

    def _fetch_one(self, stmt, column: str):
        try:
            with self._connect() as conn:
                return conn.execute(stmt).one()
        except SQLAlchemyError as e:
            raise SamplingError(f"Probe on {column} failed: {e}", column=column,
                                error_class=type(e).__name__) from e

    def _fetch_values(self, stmt, column: str) -> pd.Series:
        try:
            with self._connect() as conn:
                frame = pd.read_sql(stmt, conn)
        except SQLAlchemyError as e:
            raise SamplingError(f"Probe on {column} failed: {e}", column=column,
                                error_class=type(e).__name__) from e
        return frame.iloc[:, 0] if not frame.empty else pd.Series(dtype=object)

    def probe_date_range(self, table, column, parallel_hint=1, year_bounds=None):
        tbl, col = self._column(table, column)
        stmt = select(func.min(col), func.max(col), func.count(), func.count(col)).select_from(tbl)
        if year_bounds is not None:
            stmt = stmt.where(extract('year', col).between(year_bounds[0], year_bounds[1]))
        stmt = self._with_parallel_hint(stmt, tbl, parallel_hint)

        min_value, max_value, total, non_null = self._fetch_one(stmt, column)
        min_value, max_value = as_datetime(min_value), as_datetime(max_value)
        return DateRangeProbe(
            min_value=min_value,
            max_value=max_value,
            total_count=int(total or 0),
            non_null_count=int(non_null or 0),
            clock_min=clock_of(min_value),
            clock_max=clock_of(max_value),
        )

    def probe_time_sample(self, table, column, limit, parallel_hint=1):
        tbl, col = self._column(table, column)
        stmt = self._with_parallel_hint(select(col).where(col.isnot(None)).limit(limit), tbl, parallel_hint)
        for value in self._fetch_values(stmt, column):
            moment = as_datetime(value)
            if moment is not None and clock_of(moment) != MIDNIGHT:
                return True
        return False

    def probe_distinct_days(self, table, column, parallel_hint=1):
        tbl, col = self._column(table, column)
        day = func.trunc(col) if self.engine.dialect.name == 'oracle' else func.date(col)
        stmt = select(func.count(distinct(day))).select_from(tbl).where(col.isnot(None))
        stmt = self._with_parallel_hint(stmt, tbl, parallel_hint)
        return int(self._fetch_one(stmt, column)[0] or 0)

    def probe_numeric_range(self, table, column, limit, parallel_hint=1):
        tbl, col = self._column(table, column)
        sample = select(col.label('value')).where(col.isnot(None)).limit(limit)
        sample = self._with_parallel_hint(sample, tbl, parallel_hint).subquery()
        stmt = select(func.min(sample.c.value), func.max(sample.c.value), func.count())
        min_value, max_value, count = self._fetch_one(stmt, column)
        return NumericRangeProbe(
            min_value=float(min_value) if min_value is not None else None,
            max_value=float(max_value) if max_value is not None else None,
            sampled_count=int(count or 0),
        )

    def probe_sample_value(self, table, column):
        tbl, col = self._column(table, column)
        stmt = select(col).where(col.isnot(None)).limit(1)
        return self._fetch_scalar(stmt, column)

    def probe_format_match(self, table, column, date_format, limit):
        tbl, col = self._column(table, column)
        values = self._fetch_values(select(col).where(col.isnot(None)).limit(limit), column)
        if values.empty:
            return 0
        parsed = pd.to_datetime(values.astype(str).str.strip(), format=date_format.strptime, errors='coerce')
        matched = int(parsed.notna().sum())
        logger.debug(f"{column}: {matched}/{len(values)} sampled values match {date_format.token}")
        return matched
