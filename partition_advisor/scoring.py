# partition_advisor/scoring.py
import math
from typing import Sequence

from partition_advisor.catalog import ConstraintInfo, ConstraintType, TableDescriptor
from partition_advisor.config import AnalyzerConfig
from partition_advisor.schemas import MigrationMethod

MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 10
SCORED_CONSTRAINTS = {ConstraintType.FOREIGN_KEY, ConstraintType.CHECK, ConstraintType.UNIQUE}


def scored_constraint_count(constraints: Sequence[ConstraintInfo]) -> int:
    """Foreign key, check and unique constraints; primary keys do not add complexity."""
    return sum(1 for c in constraints if c.constraint_type in SCORED_CONSTRAINTS)


def calculate_complexity_score(index_count: int, constraint_count: int, foreign_key_count: int,
                               trigger_count: int, has_lob_columns: bool) -> int:
    score = 1.0
    score += min(index_count * 0.5, 3)
    score += min(constraint_count * 0.3, 2)
    if foreign_key_count > 0:
        score += 2
    score += trigger_count
    if has_lob_columns:
        score += 1
    # Round half up, then clamp
    return max(MIN_COMPLEXITY, min(MAX_COMPLEXITY, math.floor(score + 0.5)))


def estimate_downtime_minutes(size_mb: float, complexity: int, method: MigrationMethod,
                              index_count: int, has_lob_columns: bool) -> float:
    size_gb = max(size_mb, 0.0) / 1024
    minutes = size_gb * 60 * method.downtime_multiplier * (complexity / 5)
    minutes += index_count * size_gb * 10
    if has_lob_columns:
        minutes *= 1.5
    return round(max(minutes, 0.0), 2)


def parallel_degree(table: TableDescriptor, config: AnalyzerConfig) -> int:
    """Opaque fan-out budget handed to the sampler; small tables get none."""
    if table.row_count < config.parallel_small_rows and table.size_mb < config.parallel_small_mb:
        return 1
    if table.row_count < config.parallel_medium_rows:
        degree = 4
    elif table.row_count < config.parallel_large_rows:
        degree = 8
    else:
        degree = 16
    return min(degree, config.max_parallel_degree)
