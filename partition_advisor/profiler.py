# partition_advisor/profiler.py
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from partition_advisor.catalog import ColumnDescriptor, TableDescriptor
from partition_advisor.config import AnalyzerConfig
from partition_advisor.errors import SamplingError
from partition_advisor.sampler import MIDNIGHT, Sampler
from partition_advisor.schemas import ColumnProfile, DataQualityWarning, Severity


def _out_of_bounds(value, config: AnalyzerConfig) -> bool:
    return value is not None and not (config.min_sane_year <= value.year <= config.max_sane_year)


def profile_column(table: TableDescriptor, column: ColumnDescriptor, sampler: Sampler,
                   config: AnalyzerConfig, parallel_hint: int = 1,
                   usage_score: int = 0) -> Optional[ColumnProfile]:
    """Profiles one temporal column.

    Returns None when the column holds no values at all. Probe failures propagate as
    SamplingError so the caller can exclude the column.
    """
    ref = table.ref
    probe = sampler.probe_date_range(ref, column.name, parallel_hint)
    if probe.min_value is None and probe.max_value is None:
        logger.debug(f"{table.full_name}.{column.name}: no values, skipped")
        return None

    null_count = max(probe.total_count - probe.non_null_count, 0)
    null_percentage = round(null_count / probe.total_count * 100, 2) if probe.total_count else 0.0

    has_quality_issue = _out_of_bounds(probe.min_value, config) or _out_of_bounds(probe.max_value, config)
    filtered_min = filtered_max = None
    if has_quality_issue:
        logger.warning(
            f"{table.full_name}.{column.name}: implausible years "
            f"[{probe.min_value} .. {probe.max_value}], outside {config.min_sane_year}-{config.max_sane_year}"
        )
        filtered = sampler.probe_date_range(ref, column.name, parallel_hint,
                                            year_bounds=(config.min_sane_year, config.max_sane_year))
        filtered_min, filtered_max = filtered.min_value, filtered.max_value

    if has_quality_issue and filtered_min is not None and filtered_max is not None:
        low, high = filtered_min, filtered_max
    else:
        low, high = probe.min_value, probe.max_value
    range_days = (high.date() - low.date()).days if low is not None and high is not None else 0

    has_time = probe.clock_min not in (None, MIDNIGHT) or probe.clock_max not in (None, MIDNIGHT)
    if not has_time:
        has_time = sampler.probe_time_sample(ref, column.name, config.time_sample_rows, parallel_hint)

    distinct_days = sampler.probe_distinct_days(ref, column.name, parallel_hint) if has_time else None

    return ColumnProfile(
        column_name=column.name,
        data_type=column.data_type,
        ordinal=column.ordinal,
        min_value=probe.min_value,
        max_value=probe.max_value,
        range_days=max(range_days, 0),
        total_count=probe.total_count,
        non_null_count=probe.non_null_count,
        null_count=null_count,
        null_percentage=null_percentage,
        has_time_component=has_time,
        distinct_days=distinct_days,
        usage_score=usage_score,
        has_quality_issue=has_quality_issue,
        filtered_min=filtered_min,
        filtered_max=filtered_max,
    )


def profile_columns(table: TableDescriptor, columns: Sequence[ColumnDescriptor], sampler: Sampler,
                    config: AnalyzerConfig, parallel_hint: int = 1,
                    usage_scores: Optional[Dict[str, int]] = None) -> Tuple[List[ColumnProfile], Dict[str, str]]:
    """Profiles every temporal column in ordinal order.

    Returns the usable profiles and a mapping of excluded column -> originating error class.
    """
    usage_scores = usage_scores or {}
    profiles: List[ColumnProfile] = []
    excluded: Dict[str, str] = {}

    for column in sorted(columns, key=lambda c: c.ordinal):
        if not column.is_temporal:
            continue
        try:
            profile = profile_column(table, column, sampler, config, parallel_hint,
                                     usage_scores.get(column.name, 0))
        except SamplingError as e:
            logger.warning(f"{table.full_name}.{column.name}: excluded from candidacy ({e.error_class}): {e}")
            excluded[column.name] = e.error_class
            continue
        if profile is not None:
            profiles.append(profile)

    logger.info(f"{table.full_name}: profiled {len(profiles)} temporal column(s), {len(excluded)} excluded")
    return profiles, excluded


def quality_warnings(profiles: Sequence[ColumnProfile], config: AnalyzerConfig) -> List[DataQualityWarning]:
    warnings = []
    for profile in profiles:
        if not profile.has_quality_issue:
            continue
        warnings.append(DataQualityWarning(
            severity=Severity.WARNING,
            column_name=profile.column_name,
            description=(
                f"{profile.column_name} has values outside {config.min_sane_year}-{config.max_sane_year} "
                f"(min {profile.min_value}, max {profile.max_value})"
            ),
            remedy="Clean up implausible dates or choose another partition key",
        ))
    return warnings
