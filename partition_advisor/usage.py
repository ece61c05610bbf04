# partition_advisor/usage.py
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

import sqlparse
from loguru import logger
from sqlparse.sql import Comparison, Identifier, Parenthesis, Where

from partition_advisor.catalog import CatalogAdapter, IndexInfo, ObjectReference, ReferenceType, TableRef
from partition_advisor.config import AnalyzerConfig
from partition_advisor.errors import CatalogAccessError


@dataclass(frozen=True)
class ColumnUsage:
    column_name: str
    index_count: int = 0
    view_where_count: int = 0
    view_join_count: int = 0
    routine_where_count: int = 0
    routine_join_count: int = 0

    def score(self, config: AnalyzerConfig) -> int:
        return (self.index_count * config.usage_index_weight
                + (self.view_where_count + self.routine_where_count) * config.usage_where_weight
                + (self.view_join_count + self.routine_join_count) * config.usage_join_weight)


class UsageScorer:
    """Weights how strongly indexes, views and routines rely on a column.

    Filter/join detection is a keyword-proximity heuristic over the object text, helped by
    sqlparse's WHERE parsing where the text is a plain query.
    """

    def __init__(self, catalog: CatalogAdapter, config: AnalyzerConfig):
        self.catalog = catalog
        self.config = config
        self._indexes: Dict[TableRef, List[IndexInfo]] = {}

    def _table_indexes(self, table: TableRef) -> List[IndexInfo]:
        if table not in self._indexes:
            try:
                self._indexes[table] = self.catalog.get_indexes(table)
            except CatalogAccessError as e:
                logger.warning(f"{table.full_name}: index lookup failed, index usage counts as zero: {e}")
                self._indexes[table] = []
        return self._indexes[table]

    def column_usage(self, table: TableRef, column: str) -> ColumnUsage:
        wanted = column.upper()
        index_count = sum(1 for idx in self._table_indexes(table) if wanted in {c.upper() for c in idx.columns})

        try:
            references = self.catalog.find_references(table, column)
        except CatalogAccessError as e:
            logger.warning(f"{table.full_name}.{column}: reference lookup failed, counts as zero: {e}")
            references = []

        counts = {ReferenceType.VIEW: [0, 0], ReferenceType.ROUTINE: [0, 0]}
        for reference in references:
            text = normalize_sql(reference.text)
            if is_filter_reference(text, wanted):
                counts[reference.object_type][0] += 1
            if is_join_reference(text, wanted):
                counts[reference.object_type][1] += 1

        return ColumnUsage(
            column_name=column,
            index_count=index_count,
            view_where_count=counts[ReferenceType.VIEW][0],
            view_join_count=counts[ReferenceType.VIEW][1],
            routine_where_count=counts[ReferenceType.ROUTINE][0],
            routine_join_count=counts[ReferenceType.ROUTINE][1],
        )

    def score(self, table: TableRef, column: str) -> int:
        usage = self.column_usage(table, column)
        score = usage.score(self.config)
        logger.debug(f"{table.full_name}.{column}: usage score {score} ({usage})")
        return score

    def scores(self, table: TableRef, columns: Sequence[str]) -> Dict[str, int]:
        return {column: self.score(table, column) for column in columns}


def normalize_sql(text: Optional[str]) -> str:
    if not text:
        return ""
    formatted = sqlparse.format(text, strip_comments=True, keyword_case='upper')
    return re.sub(r'\s+', ' ', formatted).upper()


def extract_filter_columns(text: str) -> Set[str]:
    """Column names compared inside WHERE clauses of every statement in the text."""
    columns: Set[str] = set()

    def process_tokens(tokens):
        for token in tokens:
            if isinstance(token, Comparison):
                for sub_token in token.tokens:
                    if isinstance(sub_token, Identifier):
                        columns.add(sub_token.get_real_name().upper())
            elif isinstance(token, (Where, Parenthesis)) or token.is_group:
                process_tokens(token.tokens)

    for statement in sqlparse.parse(text):
        for token in statement.tokens:
            if isinstance(token, Where):
                process_tokens(token.tokens)
    return columns


def is_filter_reference(text: str, column: str) -> bool:
    name = re.escape(column)
    if re.search(rf'\bWHERE\b.*\b{name}\b', text):
        return True
    if re.search(rf'\b{name}\s*(=|>|<|\bBETWEEN\b|\bIN\b)', text):
        return True
    return column in extract_filter_columns(text)


def is_join_reference(text: str, column: str) -> bool:
    name = re.escape(column)
    if re.search(rf'\bJOIN\b.*\bON\b.*\b{name}\b', text):
        return True
    return re.search(rf'\bON\b.*\b{name}\s*=', text) is not None
