# partition_advisor/nonstandard_dates.py
"""Finds dates hidden in numeric or character columns.

Numeric columns are tested against integer encodings (YYYYMMDD, Unix epoch seconds,
YYMMDD) using a bounded MIN/MAX sample; character columns are tested against an
ordered list of textual layouts. The first column with a hit wins.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from loguru import logger

from partition_advisor.catalog import ColumnDescriptor, ColumnKind, TableDescriptor
from partition_advisor.config import AnalyzerConfig
from partition_advisor.errors import SamplingError
from partition_advisor.sampler import DateFormat, NumericRangeProbe, Sampler
from partition_advisor.schemas import NonStandardDateCandidate

DATE_LIKE_NAME = re.compile(r'(DATE|TIME|DTTM|TIMESTAMP)|DT$')
DATE_LIKE_EXACT = {'EFFECTIVE_DT', 'VALID_FROM', 'VALID_TO', 'START_DT', 'END_DT'}

TEXT_DATE_FORMATS = (
    DateFormat('YYYY-MM-DD', '%Y-%m-%d'),
    DateFormat('DD/MM/YYYY', '%d/%m/%Y'),
    DateFormat('MM/DD/YYYY', '%m/%d/%Y'),
    DateFormat('YYYYMMDD', '%Y%m%d'),
    DateFormat('YYYY-MM-DD HH24:MI:SS', '%Y-%m-%d %H:%M:%S'),
)


@dataclass(frozen=True)
class NumericEncoding:
    token: str
    low: int
    high: int
    matches_digits: Callable[[int], bool]
    strptime: Optional[str]


NUMERIC_ENCODINGS = (
    NumericEncoding('YYYYMMDD', 19000101, 21001231, lambda digits: digits == 8, '%Y%m%d'),
    # 2000-01-01 .. 2038-01-19
    NumericEncoding('UNIX_TIMESTAMP', 946684800, 2147483647, lambda digits: digits >= 10, None),
    NumericEncoding('YYMMDD', 101, 991231, lambda digits: digits == 6, '%y%m%d'),
)


def is_date_like_name(name: str) -> bool:
    upper = name.upper()
    return upper in DATE_LIKE_EXACT or DATE_LIKE_NAME.search(upper) is not None


def conversion_expression(column_name: str, date_format: str, is_numeric: bool) -> str:
    """SQL expression that turns the raw column into a DATE."""
    if date_format == 'UNIX_TIMESTAMP':
        return f"TO_DATE('1970-01-01', 'YYYY-MM-DD') + ({column_name} / 86400)"
    if is_numeric:
        return f"TO_DATE(TO_CHAR({column_name}), '{date_format}')"
    return f"TO_DATE({column_name}, '{date_format}')"


def classify_numeric_range(probe: NumericRangeProbe) -> Optional[NumericEncoding]:
    if not probe.sampled_count or probe.min_value is None or probe.max_value is None:
        return None
    digits = len(str(abs(int(probe.min_value))))
    for encoding in NUMERIC_ENCODINGS:
        if probe.min_value >= encoding.low and probe.max_value <= encoding.high and encoding.matches_digits(digits):
            return encoding
    return None


def _candidates(columns: Sequence[ColumnDescriptor], kind: ColumnKind) -> List[ColumnDescriptor]:
    return [c for c in sorted(columns, key=lambda c: c.ordinal) if c.kind == kind and is_date_like_name(c.name)]


def detect_numeric_date(table: TableDescriptor, columns: Sequence[ColumnDescriptor], sampler: Sampler,
                        config: AnalyzerConfig, parallel_hint: int = 1) -> Optional[NonStandardDateCandidate]:
    for column in _candidates(columns, ColumnKind.NUMERIC):
        try:
            probe = sampler.probe_numeric_range(table.ref, column.name, config.numeric_sample_rows, parallel_hint)
        except SamplingError as e:
            logger.warning(f"{table.full_name}.{column.name}: numeric date probe failed ({e.error_class}): {e}")
            continue

        encoding = classify_numeric_range(probe)
        if encoding is None:
            continue
        logger.info(f"{table.full_name}.{column.name}: numeric date encoding {encoding.token} "
                    f"[{probe.min_value:.0f} .. {probe.max_value:.0f}]")
        return NonStandardDateCandidate(
            column_name=column.name,
            data_type=column.data_type,
            date_format=encoding.token,
            expression=conversion_expression(column.name, encoding.token, is_numeric=True),
            is_numeric=True,
            strptime=encoding.strptime,
            sample_min=int(probe.min_value),
            sample_max=int(probe.max_value),
            sample_count=probe.sampled_count,
        )
    return None


def detect_text_date(table: TableDescriptor, columns: Sequence[ColumnDescriptor], sampler: Sampler,
                     config: AnalyzerConfig) -> Optional[NonStandardDateCandidate]:
    for column in _candidates(columns, ColumnKind.TEXT):
        try:
            sample = sampler.probe_sample_value(table.ref, column.name)
        except SamplingError as e:
            logger.warning(f"{table.full_name}.{column.name}: sample probe failed ({e.error_class}): {e}")
            continue
        if sample is None:
            continue

        for date_format in TEXT_DATE_FORMATS:
            try:
                matched = sampler.probe_format_match(table.ref, column.name, date_format, config.format_sample_rows)
            except SamplingError as e:
                logger.debug(f"{table.full_name}.{column.name}: {date_format.token} probe failed ({e.error_class})")
                continue
            if matched > 0:
                logger.info(f"{table.full_name}.{column.name}: textual date format {date_format.token} "
                            f"({matched} sampled value(s) parse)")
                return NonStandardDateCandidate(
                    column_name=column.name,
                    data_type=column.data_type,
                    date_format=date_format.token,
                    expression=conversion_expression(column.name, date_format.token, is_numeric=False),
                    is_numeric=False,
                    strptime=date_format.strptime,
                    sample_min=str(sample),
                    sample_count=matched,
                )
    return None


def detect_nonstandard_date(table: TableDescriptor, columns: Sequence[ColumnDescriptor], sampler: Sampler,
                            config: AnalyzerConfig, parallel_hint: int = 1) -> Optional[NonStandardDateCandidate]:
    """Numeric pass first, then the textual pass."""
    candidate = detect_numeric_date(table, columns, sampler, config, parallel_hint)
    if candidate is None:
        candidate = detect_text_date(table, columns, sampler, config)
    return candidate
