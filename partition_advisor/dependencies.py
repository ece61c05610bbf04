# partition_advisor/dependencies.py
from dataclasses import dataclass
from typing import List, Sequence

from loguru import logger

from partition_advisor.catalog import (
    CatalogAdapter, ConstraintInfo, ConstraintType, IndexInfo, ReferenceType, TableProperties, TableRef, TriggerInfo,
)
from partition_advisor.schemas import BlockingIssue, ColumnDependencies, DependencySummary, Readiness, Severity


@dataclass(frozen=True)
class TableStructure:
    """Structural catalog facts fetched once per analysis."""
    indexes: Sequence[IndexInfo]
    constraints: Sequence[ConstraintInfo]
    triggers: Sequence[TriggerInfo]
    referencing_foreign_keys: Sequence[ConstraintInfo]

    @property
    def foreign_keys(self) -> List[ConstraintInfo]:
        return [c for c in self.constraints if c.constraint_type == ConstraintType.FOREIGN_KEY]

    @property
    def primary_key_columns(self) -> Sequence[str]:
        for constraint in self.constraints:
            if constraint.constraint_type == ConstraintType.PRIMARY_KEY and constraint.columns:
                return constraint.columns
        return ()


def load_structure(catalog: CatalogAdapter, table: TableRef) -> TableStructure:
    return TableStructure(
        indexes=catalog.get_indexes(table),
        constraints=catalog.get_constraints(table),
        triggers=catalog.get_triggers(table),
        referencing_foreign_keys=catalog.get_referencing_foreign_keys(table),
    )


def _contains(columns: Sequence[str], column: str) -> bool:
    return column.upper() in {c.upper() for c in columns}


def column_dependencies(catalog: CatalogAdapter, table: TableRef, structure: TableStructure,
                        column: str) -> ColumnDependencies:
    references = catalog.find_references(table, column)
    return ColumnDependencies(
        column_name=column,
        indexes=tuple(i.name for i in structure.indexes if _contains(i.columns, column)),
        constraints=tuple(
            c.name for c in structure.constraints
            if c.constraint_type != ConstraintType.FOREIGN_KEY and _contains(c.columns, column)
        ),
        foreign_keys=tuple(c.name for c in structure.foreign_keys if _contains(c.columns, column)),
        views=tuple(r.name for r in references if r.object_type == ReferenceType.VIEW),
        routines=tuple(r.name for r in references if r.object_type == ReferenceType.ROUTINE),
    )


def summarize_dependencies(catalog: CatalogAdapter, table: TableRef, structure: TableStructure,
                           columns: Sequence[str] = ()) -> DependencySummary:
    """Counts of dependent objects plus, per analyzed column, the objects that reference it."""
    summary = DependencySummary(
        index_count=len(structure.indexes),
        constraint_count=len(structure.constraints),
        trigger_count=len(structure.triggers),
        referencing_table_count=len({fk.table for fk in structure.referencing_foreign_keys}),
        foreign_key_count=len(structure.foreign_keys),
        columns=tuple(column_dependencies(catalog, table, structure, column) for column in columns),
    )
    logger.debug(
        f"{table.full_name}: {summary.index_count} index(es), {summary.constraint_count} constraint(s), "
        f"{summary.trigger_count} trigger(s), referenced by {summary.referencing_table_count} table(s)"
    )
    return summary


def identify_blocking_issues(properties: TableProperties) -> List[BlockingIssue]:
    issues = []
    if properties.is_materialized_view:
        issues.append(BlockingIssue(
            severity=Severity.ERROR,
            description="Table is a materialized view",
            remedy="Cannot partition materialized views directly",
        ))
    if properties.is_index_organized:
        issues.append(BlockingIssue(
            severity=Severity.ERROR,
            description="Table is an Index-Organized Table",
            remedy="IOT partitioning requires special handling",
        ))
    return issues


def readiness_for(issues: Sequence[BlockingIssue]) -> Readiness:
    return Readiness.BLOCKED if any(issue.is_blocking for issue in issues) else Readiness.READY
