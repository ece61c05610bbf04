# partition_advisor/selector.py
from typing import List, Optional, Sequence

from loguru import logger

from partition_advisor.config import AnalyzerConfig
from partition_advisor.schemas import ColumnProfile, DataQualityWarning, Severity


def usage_is_similar(a: int, b: int, ratio: float) -> bool:
    """Usage scores within `ratio` of each other; two zero scores are similar."""
    high, low = max(a, b), min(a, b)
    return high == 0 or low >= high * ratio


def is_better_candidate(challenger: ColumnProfile, best: ColumnProfile, config: AnalyzerConfig) -> bool:
    """Strict precedence: quality flag, NULL percentage, time component, usage, range."""
    if challenger.has_quality_issue != best.has_quality_issue:
        return not challenger.has_quality_issue

    if abs(challenger.null_percentage - best.null_percentage) > config.null_pct_margin:
        return challenger.null_percentage < best.null_percentage

    if challenger.has_time_component != best.has_time_component:
        return not challenger.has_time_component

    if not usage_is_similar(challenger.usage_score, best.usage_score, config.usage_similarity_ratio):
        return challenger.usage_score > best.usage_score

    return challenger.range_days > best.range_days


def select_candidate(profiles: Sequence[ColumnProfile], config: AnalyzerConfig) -> Optional[ColumnProfile]:
    """Picks the best partition key; ties keep the earlier column."""
    best: Optional[ColumnProfile] = None
    for profile in profiles:
        if profile.min_value is None and profile.max_value is None:
            continue
        if best is None or is_better_candidate(profile, best, config):
            best = profile

    if best is not None:
        logger.info(
            f"Selected {best.column_name} (usage score: {best.usage_score}, range: {best.range_days} days, "
            f"nulls: {best.null_percentage}%{', has time component' if best.has_time_component else ''})"
        )
    return best


def selected_column_warnings(profile: ColumnProfile, config: AnalyzerConfig) -> List[DataQualityWarning]:
    warnings = []
    if profile.null_percentage > config.null_warning_pct:
        critical = profile.null_percentage > config.null_critical_pct
        warnings.append(DataQualityWarning(
            severity=Severity.WARNING,
            column_name=profile.column_name,
            description=f"Selected date column {profile.column_name} has {profile.null_percentage}% NULL values",
            remedy="Consider: 1) Choose different date column, 2) Use DEFAULT partition for NULLs, "
                   "3) Populate NULL values before migration",
            critical=critical,
        ))
        if critical:
            logger.warning(f"CRITICAL: {profile.column_name} has >{config.null_critical_pct:g}% NULL values - "
                           f"strongly recommend addressing before migration")

    if profile.has_time_component:
        warnings.append(DataQualityWarning(
            severity=Severity.WARNING,
            column_name=profile.column_name,
            description=f"Selected date column {profile.column_name} contains time component (HH:MI:SS)",
            remedy=f"Partition key must use TRUNC({profile.column_name}) for daily partitions "
                   f"or TO_CHAR({profile.column_name}, 'YYYY-MM') for monthly partitions",
        ))
    return warnings
