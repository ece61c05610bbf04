# partition_advisor/analyzer.py
from time import time
from typing import List, Optional, Tuple

from loguru import logger

from partition_advisor.catalog import CatalogAdapter, ColumnDescriptor, ColumnKind, TableDescriptor, TableRef
from partition_advisor.config import AnalyzerConfig
from partition_advisor.dependencies import (
    identify_blocking_issues, load_structure, readiness_for, summarize_dependencies,
)
from partition_advisor.errors import CatalogAccessError
from partition_advisor.nonstandard_dates import detect_nonstandard_date
from partition_advisor.profiler import profile_columns, quality_warnings
from partition_advisor.recommender import (
    UserStrategy, average_partition_size, describe, estimate_partition_count, recommend_migration_method,
    recommend_strategy,
)
from partition_advisor.sampler import Sampler
from partition_advisor.schemas import (
    NO_STEREOTYPE, AnalysisResult, Archetype, ColumnProfile, DataQualityWarning, MigrationMethod, Severity,
    StereotypeMatch,
)
from partition_advisor.scoring import (
    calculate_complexity_score, estimate_downtime_minutes, parallel_degree, scored_constraint_count,
)
from partition_advisor.selector import select_candidate, selected_column_warnings
from partition_advisor.stereotypes import detect_stereotype
from partition_advisor.usage import UsageScorer


class TableAnalyzer:
    """Runs the full analysis of one table and returns an immutable AnalysisResult.

    Stages: table facts, stereotype detection, profiling of every temporal column, the
    stereotype quality gate, candidate selection, non-standard date detection (only when
    no temporal candidate exists), recommendation, scores, dependencies and blockers.
    Nothing is persisted here.
    """

    def __init__(self, catalog: CatalogAdapter, sampler: Sampler, config: Optional[AnalyzerConfig] = None):
        self.catalog = catalog
        self.sampler = sampler
        self.config = config or AnalyzerConfig()

    def describe_table(self, ref: TableRef) -> Tuple[TableDescriptor, List[ColumnDescriptor], List[DataQualityWarning]]:
        """Snapshot of the table; a missing row count or size becomes a warning, missing columns are fatal."""
        columns = self.catalog.get_columns(ref)
        if not columns:
            raise CatalogAccessError(f"Table {ref.full_name} has no columns", table=ref.full_name)

        warnings = []
        try:
            row_count = self.catalog.get_row_count_estimate(ref)
        except CatalogAccessError as e:
            logger.warning(f"{ref.full_name}: cannot read row count: {e}")
            row_count = None
        if row_count is None:
            warnings.append(DataQualityWarning(
                severity=Severity.WARNING,
                description="Row count statistic is not available",
                remedy="Verify table exists and gather statistics",
            ))
            row_count = 0

        try:
            size_mb = self.catalog.get_size_estimate(ref)
        except CatalogAccessError as e:
            logger.warning(f"{ref.full_name}: cannot calculate table size: {e}")
            warnings.append(DataQualityWarning(
                severity=Severity.WARNING,
                description=f"Cannot calculate table size: {e}",
            ))
            size_mb = 0.0

        table = TableDescriptor(owner=ref.owner, name=ref.name, row_count=int(row_count), size_mb=float(size_mb or 0))
        return table, columns, warnings

    def _gate_stereotype(self, match: StereotypeMatch, profiles: List[ColumnProfile],
                         excluded: dict) -> Tuple[StereotypeMatch, Optional[ColumnProfile]]:
        """A stereotype survives only if its column profiled cleanly."""
        if match.archetype == Archetype.NONE:
            return NO_STEREOTYPE, None
        profile = next((p for p in profiles if p.column_name == match.column_name), None)
        if profile is None:
            reason = f"probe failed ({excluded[match.column_name]})" if match.column_name in excluded else "no data"
            logger.warning(f"Stereotype {match.archetype.value} rejected: {match.column_name} has {reason}")
            return NO_STEREOTYPE, None
        if profile.has_quality_issue:
            logger.warning(f"Stereotype {match.archetype.value} rejected: {match.column_name} has implausible dates")
            return NO_STEREOTYPE, None
        return match, profile

    def analyze(self, ref: TableRef, user_strategy: Optional[UserStrategy] = None,
                requested_method: Optional[MigrationMethod] = None) -> AnalysisResult:
        start_time = time()
        config = self.config
        logger.info(f"Analyzing table: {ref.full_name}")

        table, columns, warnings = self.describe_table(ref)
        hint = parallel_degree(table, config)
        structure = load_structure(self.catalog, ref)
        properties = self.catalog.get_table_properties(ref)
        logger.info(f"{table.full_name}: {table.row_count} rows, {table.size_mb} MB, {len(columns)} columns, "
                    f"parallel hint {hint}")

        temporal_names = [c.name for c in columns if c.is_temporal]
        usage_scores = UsageScorer(self.catalog, config).scores(ref, temporal_names)

        detected = detect_stereotype(table, columns)
        profiles, excluded = profile_columns(table, columns, self.sampler, config, hint, usage_scores)
        stereotype, stereotype_profile = self._gate_stereotype(detected, profiles, excluded)

        selected = select_candidate(profiles, config)
        chosen = stereotype_profile or selected

        nonstandard = None
        if chosen is None:
            nonstandard = detect_nonstandard_date(table, columns, self.sampler, config, hint)

        primary_key_columns = structure.primary_key_columns
        recommendation = recommend_strategy(
            table, config,
            stereotype=stereotype,
            selected=selected,
            primary_key=primary_key_columns[0] if primary_key_columns else None,
            nonstandard=nonstandard,
            user_strategy=user_strategy,
        )

        for column, error_class in excluded.items():
            warnings.append(DataQualityWarning(
                severity=Severity.WARNING,
                column_name=column,
                description=f"Column {column} excluded from analysis: probe failed ({error_class})",
            ))
        warnings.extend(quality_warnings(profiles, config))
        if chosen is not None and recommendation.key_column == chosen.column_name:
            warnings.extend(selected_column_warnings(chosen, config))

        has_lob = any(c.kind == ColumnKind.LARGE_OBJECT for c in columns)
        complexity = calculate_complexity_score(
            index_count=len(structure.indexes),
            constraint_count=scored_constraint_count(structure.constraints),
            foreign_key_count=len(structure.foreign_keys),
            trigger_count=len(structure.triggers),
            has_lob_columns=has_lob,
        )
        method = recommend_migration_method(stereotype.archetype, bool(primary_key_columns), requested_method)
        downtime = estimate_downtime_minutes(table.size_mb, complexity, method, len(structure.indexes), has_lob)

        analyzed_columns = [p.column_name for p in profiles]
        if nonstandard is not None:
            analyzed_columns.append(nonstandard.column_name)
        dependencies = summarize_dependencies(self.catalog, ref, structure, analyzed_columns)

        blocking_issues = identify_blocking_issues(properties)
        readiness = readiness_for(blocking_issues)

        partitions = estimate_partition_count(recommendation, config, profile=chosen, nonstandard=nonstandard)

        result = AnalysisResult(
            table=table,
            recommendation=recommendation,
            complexity_score=complexity,
            downtime_minutes=downtime,
            migration_method=method,
            readiness=readiness,
            parallel_degree=hint,
            stereotype=stereotype,
            column_profiles=tuple(profiles),
            selected_column=chosen.column_name if chosen is not None else None,
            nonstandard_date=nonstandard,
            dependencies=dependencies,
            blocking_issues=tuple(blocking_issues),
            warnings=tuple(warnings),
            estimated_partitions=partitions,
            avg_partition_size_mb=average_partition_size(table.size_mb, partitions),
            has_lob_columns=has_lob,
            excluded_columns=tuple(excluded.items()),
        )
        logger.success(
            f"{table.full_name}: {describe(recommendation)}, complexity {complexity}, "
            f"downtime {downtime} min, {readiness.value} ({time() - start_time:.2f}s)"
        )
        return result
