# partition_advisor/catalog.py
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from loguru import logger
from sqlalchemy import func, inspect, select, table, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import CompileError, NoSuchTableError, SQLAlchemyError

from partition_advisor.errors import CatalogAccessError


class ColumnKind(str, Enum):
    TEMPORAL = "TEMPORAL"
    NUMERIC = "NUMERIC"
    TEXT = "TEXT"
    LARGE_OBJECT = "LARGE_OBJECT"
    OTHER = "OTHER"


LOB_TYPES = {'CLOB', 'BLOB', 'NCLOB', 'BFILE', 'LONG', 'LONG RAW', 'BYTEA',
             'LONGBLOB', 'LONGTEXT', 'MEDIUMBLOB', 'IMAGE'}
NUMERIC_TYPES = {'NUMBER', 'NUMERIC', 'DECIMAL', 'INTEGER', 'INT', 'BIGINT',
                 'SMALLINT', 'TINYINT', 'MEDIUMINT'}
TEXT_TYPES = {'VARCHAR', 'VARCHAR2', 'NVARCHAR', 'NVARCHAR2', 'CHAR', 'NCHAR',
              'CHARACTER', 'CHARACTER VARYING', 'TEXT', 'STRING'}
DATETIME_TYPES = {'DATETIME', 'DATETIME2', 'SMALLDATETIME', 'DATETIMEOFFSET'}


def classify_data_type(data_type: str) -> ColumnKind:
    """Maps a declared column type to the coarse kind the engine reasons about."""
    declared = (data_type or '').upper().strip()
    base = declared.split('(')[0].strip()

    if base.startswith('TIMESTAMP') or base.startswith('DATE') or base in DATETIME_TYPES:
        return ColumnKind.TEMPORAL
    if base in LOB_TYPES:
        return ColumnKind.LARGE_OBJECT
    if base in NUMERIC_TYPES:
        # NUMBER(10,2) is not an integer encoding
        scale = re.search(r'\(\s*\d+\s*,\s*(\d+)\s*\)', declared)
        if scale and int(scale.group(1)) > 0:
            return ColumnKind.OTHER
        return ColumnKind.NUMERIC
    if base in TEXT_TYPES:
        return ColumnKind.TEXT
    return ColumnKind.OTHER


@dataclass(frozen=True)
class TableRef:
    owner: Optional[str]
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}.{self.name}" if self.owner else self.name


@dataclass(frozen=True)
class TableDescriptor:
    """Snapshot of the analyzed table taken when analysis starts."""
    owner: Optional[str]
    name: str
    row_count: int
    size_mb: float

    @property
    def ref(self) -> TableRef:
        return TableRef(self.owner, self.name)

    @property
    def full_name(self) -> str:
        return self.ref.full_name


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    data_type: str
    ordinal: int
    nullable: bool = True

    @property
    def kind(self) -> ColumnKind:
        return classify_data_type(self.data_type)

    @property
    def is_temporal(self) -> bool:
        return self.kind == ColumnKind.TEMPORAL


@dataclass(frozen=True)
class IndexInfo:
    name: str
    columns: Tuple[str, ...]
    unique: bool = False


class ConstraintType(str, Enum):
    PRIMARY_KEY = "PRIMARY_KEY"
    FOREIGN_KEY = "FOREIGN_KEY"
    UNIQUE = "UNIQUE"
    CHECK = "CHECK"


@dataclass(frozen=True)
class ConstraintInfo:
    name: str
    constraint_type: ConstraintType
    columns: Tuple[str, ...] = ()
    table: Optional[str] = None
    referred_table: Optional[str] = None


@dataclass(frozen=True)
class TriggerInfo:
    name: str
    event: Optional[str] = None


class ReferenceType(str, Enum):
    VIEW = "VIEW"
    ROUTINE = "ROUTINE"


@dataclass(frozen=True)
class ObjectReference:
    """A view or stored routine whose source text mentions a column."""
    object_type: ReferenceType
    name: str
    text: str
    owner: Optional[str] = None


@dataclass(frozen=True)
class TableProperties:
    is_materialized_view: bool = False
    is_index_organized: bool = False


class CatalogAdapter(ABC):
    """Read-only access to table metadata."""

    @abstractmethod
    def get_columns(self, table: TableRef) -> List[ColumnDescriptor]:
        """Columns in ordinal order. Raises CatalogAccessError when the table is not readable."""

    @abstractmethod
    def get_indexes(self, table: TableRef) -> List[IndexInfo]:
        ...

    @abstractmethod
    def get_constraints(self, table: TableRef) -> List[ConstraintInfo]:
        ...

    @abstractmethod
    def get_triggers(self, table: TableRef) -> List[TriggerInfo]:
        ...

    @abstractmethod
    def get_referencing_foreign_keys(self, table: TableRef) -> List[ConstraintInfo]:
        """Foreign keys on other tables that point at this one."""

    @abstractmethod
    def find_references(self, table: TableRef, column: str) -> List[ObjectReference]:
        """Views and routines whose text mentions the column."""

    @abstractmethod
    def get_row_count_estimate(self, table: TableRef) -> Optional[int]:
        ...

    @abstractmethod
    def get_size_estimate(self, table: TableRef) -> float:
        """Approximate size in MB."""

    @abstractmethod
    def get_table_properties(self, table: TableRef) -> TableProperties:
        ...


def _mentions(source: str, word: str) -> bool:
    return re.search(rf'(?<![\w$#]){re.escape(word)}(?![\w$#])', source or '', re.IGNORECASE) is not None


class SqlAlchemyCatalog(CatalogAdapter):
    """Catalog adapter over the SQLAlchemy inspector, with a few dialect specific lookups."""

    ESTIMATED_ROW_SIZE_BYTES = 200
    # Optimizer statistics per dialect; never a scan of the analyzed table
    ROW_STATISTICS = {
        'postgresql': """
            SELECT c.reltuples
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE c.relname = :table_name
            AND (:owner IS NULL OR n.nspname = :owner)
        """,
        'oracle': """
            SELECT num_rows
            FROM all_tables
            WHERE table_name = UPPER(:table_name)
            AND owner = COALESCE(UPPER(:owner), USER)
        """,
    }

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _inspector(self):
        return inspect(self.engine)

    def get_columns(self, table: TableRef) -> List[ColumnDescriptor]:
        try:
            raw_columns = self._inspector().get_columns(table.name, schema=table.owner)
        except NoSuchTableError as e:
            raise CatalogAccessError(f"Table {table.full_name} does not exist", table=table.full_name) from e
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read columns of {table.full_name}: {e}", table=table.full_name) from e

        if not raw_columns:
            raise CatalogAccessError(f"Table {table.full_name} does not exist or has no columns",
                                     table=table.full_name)

        return [
            ColumnDescriptor(
                name=col['name'],
                data_type=self._type_name(col['type']),
                ordinal=position,
                nullable=bool(col.get('nullable', True)),
            )
            for position, col in enumerate(raw_columns, start=1)
        ]

    def _type_name(self, column_type) -> str:
        try:
            return column_type.compile(dialect=self.engine.dialect)
        except CompileError:
            return type(column_type).__name__.upper()

    def get_indexes(self, table: TableRef) -> List[IndexInfo]:
        inspector = self._inspector()
        try:
            indexes = [
                IndexInfo(
                    name=idx['name'],
                    columns=tuple(c for c in idx.get('column_names', []) if c),
                    unique=bool(idx.get('unique')),
                )
                for idx in inspector.get_indexes(table.name, schema=table.owner)
            ]
            pk = inspector.get_pk_constraint(table.name, schema=table.owner) or {}
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read indexes of {table.full_name}: {e}", table=table.full_name) from e

        # Primary keys are backed by an index even where the dialect does not list it
        pk_columns = tuple(pk.get('constrained_columns') or ())
        if pk_columns and not any(idx.columns == pk_columns for idx in indexes):
            indexes.append(IndexInfo(name=pk.get('name') or f"pk_{table.name}", columns=pk_columns, unique=True))
        return indexes

    def get_constraints(self, table: TableRef) -> List[ConstraintInfo]:
        inspector = self._inspector()
        constraints = []
        try:
            pk = inspector.get_pk_constraint(table.name, schema=table.owner) or {}
            if pk.get('constrained_columns'):
                constraints.append(ConstraintInfo(
                    name=pk.get('name') or f"pk_{table.name}",
                    constraint_type=ConstraintType.PRIMARY_KEY,
                    columns=tuple(pk['constrained_columns']),
                    table=table.name,
                ))

            for fk in inspector.get_foreign_keys(table.name, schema=table.owner):
                constraints.append(ConstraintInfo(
                    name=fk.get('name') or f"fk_{table.name}_{fk['referred_table']}",
                    constraint_type=ConstraintType.FOREIGN_KEY,
                    columns=tuple(fk.get('constrained_columns') or ()),
                    table=table.name,
                    referred_table=fk.get('referred_table'),
                ))

            for uq in inspector.get_unique_constraints(table.name, schema=table.owner):
                constraints.append(ConstraintInfo(
                    name=uq.get('name') or f"uq_{table.name}",
                    constraint_type=ConstraintType.UNIQUE,
                    columns=tuple(uq.get('column_names') or ()),
                    table=table.name,
                ))
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read constraints of {table.full_name}: {e}",
                                     table=table.full_name) from e

        try:
            checks = inspector.get_check_constraints(table.name, schema=table.owner)
        except NotImplementedError:
            checks = []
        for ck in checks:
            constraints.append(ConstraintInfo(
                name=ck.get('name') or f"ck_{table.name}",
                constraint_type=ConstraintType.CHECK,
                table=table.name,
            ))

        return constraints

    def get_triggers(self, table: TableRef) -> List[TriggerInfo]:
        if self.dialect == 'sqlite':
            query = text("SELECT name FROM sqlite_master WHERE type = 'trigger' AND tbl_name = :table_name")
            params = {'table_name': table.name}
        elif self.dialect == 'postgresql':
            query = text("""
                SELECT DISTINCT trigger_name, event_manipulation
                FROM information_schema.triggers
                WHERE event_object_table = :table_name
                AND (:owner IS NULL OR event_object_schema = :owner)
            """)
            params = {'table_name': table.name, 'owner': table.owner}
        else:
            logger.debug(f"Trigger lookup is not available for dialect {self.dialect}")
            return []

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read triggers of {table.full_name}: {e}", table=table.full_name) from e

        return [TriggerInfo(name=row[0], event=row[1] if len(row) > 1 else None) for row in rows]

    def get_referencing_foreign_keys(self, table: TableRef) -> List[ConstraintInfo]:
        inspector = self._inspector()
        referencing = []
        try:
            for other in inspector.get_table_names(schema=table.owner):
                if other == table.name:
                    continue
                for fk in inspector.get_foreign_keys(other, schema=table.owner):
                    if (fk.get('referred_table') or '').lower() == table.name.lower():
                        referencing.append(ConstraintInfo(
                            name=fk.get('name') or f"fk_{other}_{table.name}",
                            constraint_type=ConstraintType.FOREIGN_KEY,
                            columns=tuple(fk.get('constrained_columns') or ()),
                            table=other,
                            referred_table=table.name,
                        ))
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read references to {table.full_name}: {e}",
                                     table=table.full_name) from e
        return referencing

    def find_references(self, table: TableRef, column: str) -> List[ObjectReference]:
        inspector = self._inspector()
        references = []
        try:
            for view_name in inspector.get_view_names(schema=table.owner):
                definition = inspector.get_view_definition(view_name, schema=table.owner) or ''
                if _mentions(definition, table.name) and _mentions(definition, column):
                    references.append(ObjectReference(ReferenceType.VIEW, view_name, definition, table.owner))
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read view definitions for {table.full_name}: {e}",
                                     table=table.full_name, column=column) from e

        if self.dialect == 'postgresql':
            query = text("""
                SELECT routine_name, routine_definition
                FROM information_schema.routines
                WHERE routine_definition ILIKE :pattern
                AND (:owner IS NULL OR routine_schema = :owner)
            """)
            try:
                with self.engine.connect() as conn:
                    rows = conn.execute(query, {'pattern': f"%{column}%", 'owner': table.owner}).fetchall()
            except SQLAlchemyError as e:
                raise CatalogAccessError(f"Cannot read routine sources: {e}", table=table.full_name,
                                         column=column) from e
            for name, body in rows:
                if _mentions(body, column):
                    references.append(ObjectReference(ReferenceType.ROUTINE, name, body, table.owner))

        return references

    def _scalar(self, query, params: dict, table: TableRef, what: str):
        try:
            with self.engine.connect() as conn:
                return conn.execute(query, params).scalar()
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read {what} of {table.full_name}: {e}", table=table.full_name) from e

    def get_row_count_estimate(self, table: TableRef) -> Optional[int]:
        """Row count from optimizer statistics; None when the table has never been analyzed.

        SQLite keeps no such statistic, so local databases are counted directly.
        """
        if self.dialect == 'sqlite':
            return int(self._scalar(select(func.count()).select_from(table_clause(table)), {}, table, "row count"))

        query = self.ROW_STATISTICS.get(self.dialect)
        if query is None:
            logger.debug(f"Row statistics are not available for dialect {self.dialect}")
            return None
        rows = self._scalar(text(query), {'table_name': table.name, 'owner': table.owner}, table, "row statistics")
        # PostgreSQL reports -1 for tables that were never vacuumed or analyzed
        if rows is None or rows < 0:
            return None
        return int(rows)

    def get_size_estimate(self, table: TableRef) -> float:
        if self.dialect == 'postgresql':
            query = text("SELECT pg_total_relation_size(CAST(:qualified AS regclass))")
            size_bytes = self._scalar(query, {'qualified': table.full_name}, table, "size")
            return round(float(size_bytes or 0) / 1024 / 1024, 2)
        if self.dialect == 'oracle':
            query = text("""
                SELECT SUM(bytes)
                FROM dba_segments
                WHERE segment_name = UPPER(:table_name)
                AND owner = COALESCE(UPPER(:owner), USER)
            """)
            size_bytes = self._scalar(query, {'table_name': table.name, 'owner': table.owner}, table, "size")
            return round(float(size_bytes or 0) / 1024 / 1024, 2)

        row_count = self.get_row_count_estimate(table)
        if row_count is None:
            raise CatalogAccessError(f"No statistics to estimate the size of {table.full_name}",
                                     table=table.full_name)
        return round(row_count * self.ESTIMATED_ROW_SIZE_BYTES / 1024 / 1024, 2)

    def get_table_properties(self, table: TableRef) -> TableProperties:
        inspector = self._inspector()
        try:
            materialized = table.name in inspector.get_materialized_view_names(schema=table.owner)
        except (NotImplementedError, AttributeError):
            materialized = False
        except SQLAlchemyError as e:
            raise CatalogAccessError(f"Cannot read properties of {table.full_name}: {e}",
                                     table=table.full_name) from e

        index_organized = False
        if self.dialect == 'sqlite':
            query = text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :table_name")
            try:
                with self.engine.connect() as conn:
                    ddl = conn.execute(query, {'table_name': table.name}).scalar()
            except SQLAlchemyError as e:
                raise CatalogAccessError(f"Cannot read definition of {table.full_name}: {e}",
                                         table=table.full_name) from e
            index_organized = bool(ddl) and 'WITHOUT ROWID' in ddl.upper()

        return TableProperties(is_materialized_view=materialized, is_index_organized=index_organized)


def table_clause(ref: TableRef):
    """Lightweight FROM target; identifiers are quoted by SQLAlchemy."""
    return table(ref.name, schema=ref.owner)
