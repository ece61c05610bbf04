# partition_advisor/recommender.py
"""Decision tree from the analysis facts to a partitioning strategy.

Order of precedence: a strategy set on the task by the user, a validated stereotype,
the selected temporal column (by date range), HASH on the primary key for large tables
without temporal candidates, then RANGE on a converted non-standard date column.
Every path ends in exactly one Recommendation, possibly with scheme NONE.
"""
import math
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from partition_advisor.catalog import TableDescriptor
from partition_advisor.config import AnalyzerConfig
from partition_advisor.schemas import (
    Archetype, ColumnProfile, ConfidenceSource, Granularity, MigrationMethod, NonStandardDateCandidate,
    PartitionScheme, Recommendation, StereotypeMatch,
)


@dataclass(frozen=True)
class UserStrategy:
    scheme: PartitionScheme
    partition_key: Optional[str] = None
    granularity: Granularity = Granularity.NONE


def _from_user(strategy: UserStrategy, config: AnalyzerConfig) -> Recommendation:
    return Recommendation(
        scheme=strategy.scheme,
        partition_key=strategy.partition_key,
        granularity=strategy.granularity,
        rationale="Strategy specified by user",
        source=ConfidenceSource.USER,
        key_column=strategy.partition_key,
        partition_count=config.hash_partition_count if strategy.scheme == PartitionScheme.HASH else None,
    )


def _from_stereotype(match: StereotypeMatch) -> Recommendation:
    return Recommendation(
        scheme=match.scheme,
        partition_key=match.column_name,
        granularity=match.granularity,
        rationale=f"stereotype: {match.archetype.value} ({match.rationale})",
        source=ConfidenceSource.STEREOTYPE,
        key_column=match.column_name,
    )


def _from_date_range(profile: ColumnProfile, config: AnalyzerConfig) -> Recommendation:
    days = profile.range_days
    column = profile.column_name
    if days > config.multi_year_range_days:
        return Recommendation(
            scheme=PartitionScheme.RANGE, partition_key=column, granularity=Granularity.MONTHLY,
            rationale=f"Date range spans {round(days / 365, 1)} years - monthly interval partitioning recommended",
            source=ConfidenceSource.GENERAL, key_column=column,
        )
    if days > config.monthly_range_days:
        return Recommendation(
            scheme=PartitionScheme.RANGE, partition_key=column, granularity=Granularity.MONTHLY,
            rationale=f"Date range spans {round(days / 30)} months ({round(days / 365, 1)} years) "
                      f"- monthly partitioning recommended",
            source=ConfidenceSource.GENERAL, key_column=column,
        )
    if days > config.static_range_days:
        return Recommendation(
            scheme=PartitionScheme.RANGE, partition_key=column, granularity=Granularity.NONE,
            rationale=f"Date range spans {days} days - range partitioning recommended",
            source=ConfidenceSource.GENERAL, key_column=column,
        )
    return Recommendation(
        scheme=PartitionScheme.NONE, partition_key=None, granularity=Granularity.NONE,
        rationale="Date range too small for effective partitioning",
        source=ConfidenceSource.GENERAL, key_column=column,
    )


def _from_conversion(candidate: NonStandardDateCandidate) -> Recommendation:
    stored_as = "NUMBER" if candidate.is_numeric else "VARCHAR2"
    return Recommendation(
        scheme=PartitionScheme.RANGE,
        partition_key=candidate.expression,
        granularity=Granularity.MONTHLY,
        rationale=f"Date column {candidate.column_name} stored as {stored_as} (format: {candidate.date_format}) "
                  f"- conversion to DATE recommended for partitioning",
        source=ConfidenceSource.GENERAL,
        key_column=candidate.column_name,
        requires_conversion=True,
    )


def recommend_strategy(table: TableDescriptor, config: AnalyzerConfig,
                       stereotype: Optional[StereotypeMatch] = None,
                       selected: Optional[ColumnProfile] = None,
                       primary_key: Optional[str] = None,
                       nonstandard: Optional[NonStandardDateCandidate] = None,
                       user_strategy: Optional[UserStrategy] = None) -> Recommendation:
    """`stereotype` must already have passed the quality gate."""
    if user_strategy is not None:
        recommendation = _from_user(user_strategy, config)
    elif stereotype is not None and stereotype.archetype != Archetype.NONE:
        recommendation = _from_stereotype(stereotype)
    elif selected is not None:
        recommendation = _from_date_range(selected, config)
    elif table.row_count > config.large_table_rows and primary_key:
        recommendation = Recommendation(
            scheme=PartitionScheme.HASH,
            partition_key=primary_key,
            granularity=Granularity.NONE,
            rationale=f"Large table ({table.row_count} rows) without date column - "
                      f"hash partitioning for even distribution",
            source=ConfidenceSource.GENERAL,
            key_column=primary_key,
            partition_count=config.hash_partition_count,
        )
    else:
        recommendation = Recommendation(
            scheme=PartitionScheme.NONE,
            partition_key=None,
            granularity=Granularity.NONE,
            rationale="Table not suitable for partitioning - no date columns and not large enough for hash",
            source=ConfidenceSource.GENERAL,
        )

    if nonstandard is not None and not recommendation.is_partitioned:
        recommendation = _from_conversion(nonstandard)

    logger.info(f"{table.full_name}: {describe(recommendation)} - {recommendation.rationale}")
    return recommendation


def describe(recommendation: Recommendation) -> str:
    """Compact strategy string, e.g. RANGE(SALE_DATE) INTERVAL MONTHLY or HASH(ID) PARTITIONS 16."""
    if not recommendation.is_partitioned:
        return "NONE"
    text = f"{recommendation.scheme.value}({recommendation.partition_key})"
    if recommendation.scheme == PartitionScheme.HASH and recommendation.partition_count:
        return f"{text} PARTITIONS {recommendation.partition_count}"
    if recommendation.granularity != Granularity.NONE:
        return f"{text} INTERVAL {recommendation.granularity.value}"
    return text


def _months_between(low, high) -> float:
    return (high.year - low.year) * 12 + (high.month - low.month) + (high.day - low.day) / 31


def estimate_partition_count(recommendation: Recommendation, config: AnalyzerConfig,
                             profile: Optional[ColumnProfile] = None,
                             nonstandard: Optional[NonStandardDateCandidate] = None,
                             distinct_values: Optional[int] = None) -> Optional[int]:
    """Number of partitions the strategy would create over the observed data."""
    scheme = recommendation.scheme
    if scheme == PartitionScheme.HASH:
        return recommendation.partition_count or config.hash_partition_count
    if scheme == PartitionScheme.LIST:
        return min(distinct_values, config.list_partition_cap) if distinct_values else None
    if scheme != PartitionScheme.RANGE:
        return None

    low = high = None
    if profile is not None and profile.column_name == recommendation.key_column:
        low, high = profile.effective_min, profile.effective_max
    elif nonstandard is not None and recommendation.requires_conversion:
        try:
            low, high = nonstandard.convert(nonstandard.sample_min), nonstandard.convert(nonstandard.sample_max)
        except ValueError as e:
            logger.warning(f"Cannot convert sampled bounds of {nonstandard.column_name}: {e}")
    if low is None or high is None:
        return None

    if recommendation.granularity == Granularity.DAILY:
        buckets = (high.date() - low.date()).days
    elif recommendation.granularity == Granularity.WEEKLY:
        buckets = (high.date() - low.date()).days / 7
    elif recommendation.granularity == Granularity.YEARLY:
        buckets = _months_between(low, high) / 12
    else:
        buckets = _months_between(low, high)
    return max(math.ceil(buckets), 1)


def average_partition_size(size_mb: float, partition_count: Optional[int]) -> Optional[float]:
    if not partition_count:
        return None
    return round(size_mb / partition_count, 2)


def recommend_migration_method(archetype: Archetype, has_primary_key: bool,
                               requested: Optional[MigrationMethod] = None) -> MigrationMethod:
    if requested is not None:
        return requested
    if archetype == Archetype.STAGING_AREA:
        return MigrationMethod.EXCHANGE
    # Online redefinition needs a primary key
    return MigrationMethod.ONLINE if has_primary_key else MigrationMethod.OFFLINE
