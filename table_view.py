"""
Table View Pipeline
Merges the threads / non-threads tables, then filters, sorts, paginates and
highlights the combined rows
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from csv_codec import ParsedTable

logger = logging.getLogger(__name__)

ROWS_PER_PAGE = 50
ANOMALY_SCORE_COLUMN = 'AnomalyScore'
ANOMALY_THRESHOLD = 0.5

SOURCE_THREAD = 'thread'
SOURCE_NON_THREAD = 'non-thread'

DATASET_THREADS = 'threads'
DATASET_NON_THREADS = 'non-threads'
DATASETS = (DATASET_THREADS, DATASET_NON_THREADS)


class SortDirection(str, Enum):
    ASCENDING = 'ascending'
    DESCENDING = 'descending'


class Highlight(str, Enum):
    RED = 'red'
    GREEN = 'green'
    NONE = 'none'


@dataclass
class CombinedRow:
    """A merged row; ``source`` is only used for chart bucketing"""
    key: str
    source: str
    values: Dict[str, str] = field(default_factory=dict)

    def get(self, column: str, default: Any = None) -> Any:
        return self.values.get(column, default)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "source": self.source, "values": self.values}


@dataclass
class MergedTable:
    headers: List[str] = field(default_factory=list)
    rows: List[CombinedRow] = field(default_factory=list)

    def find(self, key: str) -> Optional[CombinedRow]:
        for row in self.rows:
            if row.key == key:
                return row
        return None


@dataclass(frozen=True)
class SortSpec:
    key: str
    direction: SortDirection = SortDirection.ASCENDING

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "direction": self.direction.value}


# --- Merge -----------------------------------------------------------------

def _tag_rows(table: Optional[ParsedTable], source: str) -> List[CombinedRow]:
    if table is None:
        return []
    return [
        CombinedRow(key=f"{source}-{index}", source=source, values=dict(row))
        for index, row in enumerate(table.rows)
    ]


def merge_tables(threads: Optional[ParsedTable],
                 non_threads: Optional[ParsedTable]) -> Optional[MergedTable]:
    """Union the headers (first seen wins) and concatenate the rows, threads first"""
    if threads is None and non_threads is None:
        return None

    headers: List[str] = []
    for table in (threads, non_threads):
        if table is None:
            continue
        for header in table.headers:
            if header not in headers:
                headers.append(header)

    rows = _tag_rows(threads, SOURCE_THREAD) + _tag_rows(non_threads, SOURCE_NON_THREAD)
    return MergedTable(headers=headers, rows=rows)


# --- Filter / sort / paginate ---------------------------------------------

def row_matches(row: CombinedRow, global_pattern: str,
                column_patterns: Mapping[str, str]) -> bool:
    if global_pattern:
        needle = global_pattern.lower()
        if not any(needle in str(value).lower() for value in row.values.values()):
            return False

    for column, pattern in column_patterns.items():
        if not pattern:
            continue
        # Missing columns never match a column filter
        if column not in row.values:
            return False
        if pattern.lower() not in str(row.values[column]).lower():
            return False
    return True


def filter_rows(rows: Sequence[CombinedRow], global_pattern: str = '',
                column_patterns: Optional[Mapping[str, str]] = None) -> List[CombinedRow]:
    column_patterns = column_patterns or {}
    return [row for row in rows if row_matches(row, global_pattern, column_patterns)]


def sort_rows(rows: Sequence[CombinedRow], spec: Optional[SortSpec]) -> List[CombinedRow]:
    """Stable sort on the raw cell strings; missing cells sort as empty"""
    if spec is None:
        return list(rows)
    return sorted(
        rows,
        key=lambda row: row.values.get(spec.key) or '',
        reverse=spec.direction == SortDirection.DESCENDING,
    )


def request_sort(current: Optional[SortSpec], key: str) -> SortSpec:
    """Same key flips the direction, a new key starts ascending"""
    if current is not None and current.key == key and current.direction == SortDirection.ASCENDING:
        return SortSpec(key=key, direction=SortDirection.DESCENDING)
    return SortSpec(key=key, direction=SortDirection.ASCENDING)


def total_pages(count: int, page_size: int = ROWS_PER_PAGE) -> int:
    return math.ceil(count / page_size) if page_size > 0 else 0


def paginate(rows: Sequence[Any], page: int, page_size: int = ROWS_PER_PAGE) -> List[Any]:
    """1-indexed page slice; pages outside the data give an empty list"""
    if page < 1 or page_size < 1:
        return []
    start = (page - 1) * page_size
    return list(rows[start:start + page_size])


# --- Highlighting ----------------------------------------------------------

def parse_score(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        score = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(score):
        return None
    return score


def classify_score(value: Any) -> Highlight:
    score = parse_score(value)
    if score is None:
        return Highlight.NONE
    return Highlight.RED if score > ANOMALY_THRESHOLD else Highlight.GREEN


def highlight_rows(rows: Sequence[CombinedRow], enabled: bool) -> Dict[str, Highlight]:
    """Classify every merged row by its AnomalyScore, keyed by row key"""
    if not enabled:
        return {}
    return {row.key: classify_score(row.values.get(ANOMALY_SCORE_COLUMN)) for row in rows}


def highlights_for_page(page_rows: Sequence[CombinedRow],
                        highlight_map: Mapping[str, Highlight]) -> List[Highlight]:
    return [highlight_map.get(row.key, Highlight.NONE) for row in page_rows]


# --- Chart data ------------------------------------------------------------

def source_counts(threads: Optional[ParsedTable],
                  non_threads: Optional[ParsedTable]) -> List[Dict[str, Any]]:
    counts = [
        {"name": "Threads", "value": threads.row_count if threads else 0},
        {"name": "Non-Threads", "value": non_threads.row_count if non_threads else 0},
    ]
    return [entry for entry in counts if entry["value"] > 0]


def has_anomaly_scores(rows: Sequence[CombinedRow]) -> bool:
    return any(row.values.get(ANOMALY_SCORE_COLUMN) for row in rows)


def anomaly_score_histogram(rows: Sequence[CombinedRow]) -> List[Dict[str, Any]]:
    """Ten 0.1-wide bins over [0, 1], split by provenance"""
    bins = [
        {"name": f"{i * 0.1:.1f}-{(i + 1) * 0.1:.1f}", "threads": 0, "nonThreads": 0}
        for i in range(10)
    ]
    for row in rows:
        score = parse_score(row.values.get(ANOMALY_SCORE_COLUMN))
        if score is None or score < 0 or score > 1:
            continue
        index = min(math.floor(score * 10), 9)
        if row.source == SOURCE_THREAD:
            bins[index]["threads"] += 1
        else:
            bins[index]["nonThreads"] += 1
    return bins


def row_details(merged: Optional[MergedTable], key: str) -> Optional[List[Dict[str, str]]]:
    if merged is None:
        return None
    row = merged.find(key)
    if row is None:
        return None
    return [
        {"header": header, "value": str(row.values.get(header, ''))}
        for header in merged.headers
    ]


# --- Per-user view state ---------------------------------------------------

class ViewSession:
    """Everything one user's dashboard shows, held in memory"""

    def __init__(self, page_size: int = ROWS_PER_PAGE, highlight_mode: str = 'score'):
        self.page_size = page_size
        self.highlight_mode = highlight_mode
        self.tables: Dict[str, Optional[ParsedTable]] = {name: None for name in DATASETS}
        self.global_filter = ''
        self.column_filters: Dict[str, str] = {}
        self.sort_spec: Optional[SortSpec] = None
        self.page = 1
        self.highlight_enabled = False
        self.last_access = time.time()
        self._merged: Optional[MergedTable] = None
        self._merged_stale = True
        self._highlights: Dict[str, Highlight] = {}
        self._highlights_stale = True
        self.lock = threading.RLock()

    def touch(self) -> None:
        self.last_access = time.time()

    # data

    def set_dataset(self, name: str, table: Optional[ParsedTable]) -> None:
        if name not in self.tables:
            raise KeyError(f"Unknown dataset: {name}")
        self.tables[name] = table
        self.page = 1
        self._invalidate()
        logger.info(f"Dataset '{name}' set ({table.row_count if table else 0} rows)")

    def clear(self) -> None:
        for name in self.tables:
            self.tables[name] = None
        self.page = 1
        self._invalidate()

    def _invalidate(self) -> None:
        self._merged_stale = True
        self._highlights_stale = True

    @property
    def merged(self) -> Optional[MergedTable]:
        if self._merged_stale:
            self._merged = merge_tables(self.tables[DATASET_THREADS], self.tables[DATASET_NON_THREADS])
            self._merged_stale = False
        return self._merged

    @property
    def has_data(self) -> bool:
        return self.merged is not None and len(self.merged.rows) > 0

    # view controls

    def set_filters(self, global_filter: str = '', column_filters: Optional[Mapping[str, str]] = None) -> None:
        self.global_filter = global_filter or ''
        self.column_filters = {k: v for k, v in (column_filters or {}).items() if v}
        self.page = 1

    def sort_by(self, key: str) -> SortSpec:
        self.sort_spec = request_sort(self.sort_spec, key)
        return self.sort_spec

    def set_page(self, page: int) -> None:
        self.page = page

    def set_highlighting(self, enabled: bool) -> None:
        if enabled != self.highlight_enabled:
            self.highlight_enabled = enabled
            self._highlights_stale = True

    @property
    def needs_highlight_refresh(self) -> bool:
        return self._highlights_stale

    @property
    def highlight_map(self) -> Dict[str, Highlight]:
        """Score-threshold classification, recomputed when data or the flag changes.

        In 'ai' mode the map is whatever ``store_highlights`` last received.
        """
        if self._highlights_stale and self.highlight_mode == 'score':
            rows = self.merged.rows if self.merged else []
            self._highlights = highlight_rows(rows, self.highlight_enabled)
            self._highlights_stale = False
        if not self.highlight_enabled:
            return {}
        return self._highlights

    def store_highlights(self, classifications: Sequence[Highlight]) -> None:
        rows = self.merged.rows if self.merged else []
        self._highlights = {row.key: value for row, value in zip(rows, classifications)}
        self._highlights_stale = False

    def reset_highlights(self) -> None:
        self.highlight_enabled = False
        self._highlights = {}
        self._highlights_stale = False

    # derived rows

    def visible_rows(self) -> List[CombinedRow]:
        """Filtered and sorted rows across all pages"""
        if self.merged is None:
            return []
        filtered = filter_rows(self.merged.rows, self.global_filter, self.column_filters)
        return sort_rows(filtered, self.sort_spec)

    def page_rows(self, rows: Optional[List[CombinedRow]] = None) -> List[CombinedRow]:
        rows = self.visible_rows() if rows is None else rows
        return paginate(rows, self.page, self.page_size)

    def snapshot(self) -> Dict[str, Any]:
        """Current page as a JSON-ready dict"""
        visible = self.visible_rows()
        page_rows = self.page_rows(visible)
        highlights = highlights_for_page(page_rows, self.highlight_map)
        merged = self.merged
        return {
            "headers": merged.headers if merged else [],
            "rows": [
                dict(row.to_dict(), highlight=highlight.value)
                for row, highlight in zip(page_rows, highlights)
            ],
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": total_pages(len(visible), self.page_size),
            "filtered_rows": len(visible),
            "total_rows": len(merged.rows) if merged else 0,
            "sort": self.sort_spec.to_dict() if self.sort_spec else None,
            "global_filter": self.global_filter,
            "column_filters": self.column_filters,
            "highlight_enabled": self.highlight_enabled,
        }

    def chart_data(self) -> Dict[str, Any]:
        rows = self.merged.rows if self.merged else []
        return {
            "sources": source_counts(self.tables[DATASET_THREADS], self.tables[DATASET_NON_THREADS]),
            "has_anomaly_scores": has_anomaly_scores(rows),
            "anomaly_scores": anomaly_score_histogram(rows),
        }
