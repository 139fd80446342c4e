"""
Pivot Layout Builder

Turns aggregated cells into a row-major matrix for tabular rendering.

Headers hold only the row and column keys actually present in the cells, never
the full cross-product of dimension values. A (row, column) pair without
facts is the NO_DATA marker, which renders differently from a zero.

Header ordering per key component:
- month dimensions: fiscal position (Jan, Fev, Mar, Abr...), never alphabetical
- year dimensions: numeric
- everything else: numbers, then dates, then text; "Unknown" always last
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from portfolio_pivot.core.catalog import Catalog, DimensionDescriptor, DimensionOrdering, get_catalog
from portfolio_pivot.core.fiscal_calendar import FiscalCalendar, get_fiscal_calendar
from portfolio_pivot.tools.aggregation import UNKNOWN_VALUE, AggregatedCell, Key

logger = logging.getLogger(__name__)


class _NoData:
    """Marker for a row/column pair with zero contributing facts."""

    def __repr__(self) -> str:
        return "NO_DATA"

    def __bool__(self) -> bool:
        return False


NO_DATA = _NoData()

MatrixCell = Union[AggregatedCell, _NoData]


@dataclass
class PivotMatrix:
    """Row/column pivot ready for rendering or export."""
    row_headers: List[Key]
    column_headers: List[Key]
    matrix: List[List[MatrixCell]]
    # Portfolio-wide cell when neither rows nor columns are selected
    total: Optional[AggregatedCell] = None
    row_dimensions: List[str] = field(default_factory=list)
    column_dimensions: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.matrix and self.total is None

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.row_headers), len(self.column_headers)

    def cell(self, row_key: Key, column_key: Key) -> MatrixCell:
        try:
            i = self.row_headers.index(tuple(row_key))
            j = self.column_headers.index(tuple(column_key))
        except ValueError:
            return NO_DATA
        return self.matrix[i][j]

    def values(self, metric_id: str) -> List[List[Any]]:
        """Matrix of one metric's values, keeping NO_DATA markers."""
        return [
            [c.value(metric_id) if isinstance(c, AggregatedCell) else NO_DATA for c in row]
            for row in self.matrix
        ]

    def to_dataframe(self, metric_id: str) -> pd.DataFrame:
        """
        One metric as a DataFrame.

        Multi-component keys become a MultiIndex named after the dimensions;
        NO_DATA becomes NaN. Without row and column dimensions the frame has a
        single "Total" row.
        """
        if self.total is not None and not self.matrix:
            label = self.total.row_key[0]
            return pd.DataFrame({metric_id: [_to_float(self.total.value(metric_id))]}, index=[label])
        if not self.matrix:
            return pd.DataFrame()

        data = np.array(
            [[_to_float(v) for v in row] for row in self.values(metric_id)],
            dtype=float,
        )
        return pd.DataFrame(
            data,
            index=_make_index(self.row_headers, self.row_dimensions),
            columns=_make_index(self.column_headers, self.column_dimensions),
        )

    def to_records(self, metric_ids: Sequence[str] = None) -> List[Dict[str, Any]]:
        """JSON-serialisable rows, one per matrix position."""
        records = []
        if self.total is not None and not self.matrix:
            records.append(_record({}, {}, self.total, metric_ids))
            return records
        for i, row_key in enumerate(self.row_headers):
            row_labels = _labels(self.row_dimensions, row_key)
            for j, column_key in enumerate(self.column_headers):
                column_labels = _labels(self.column_dimensions, column_key)
                records.append(_record(row_labels, column_labels, self.matrix[i][j], metric_ids))
        return records


def _to_float(value: Any) -> float:
    if value is NO_DATA or value is None:
        return np.nan
    return float(value)


def _json_value(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _labels(dimension_ids: List[str], key: Key) -> Dict[str, Any]:
    if not dimension_ids:
        return {}
    return {dim: _json_value(part) for dim, part in zip(dimension_ids, key)}


def _record(row: Dict[str, Any], column: Dict[str, Any], cell: MatrixCell, metric_ids) -> Dict[str, Any]:
    if not isinstance(cell, AggregatedCell):
        return {"row": row, "column": column, "no_data": True, "source_count": 0, "metrics": {}}
    metrics = cell.metrics if metric_ids is None else {m: cell.metrics.get(m) for m in metric_ids}
    return {
        "row": row,
        "column": column,
        "no_data": False,
        "source_count": cell.source_count,
        "metrics": dict(metrics),
        "fallback_metrics": list(cell.fallback_metrics),
    }


def _make_index(headers: List[Key], dimension_ids: List[str]) -> pd.Index:
    if headers and len(headers[0]) > 1:
        return pd.MultiIndex.from_tuples(headers, names=dimension_ids)
    name = dimension_ids[0] if dimension_ids else None
    return pd.Index([h[0] for h in headers], name=name)


# =============================================================================
# ORDERING
# =============================================================================

def _component_sort_key(value: Any, dimension: DimensionDescriptor, calendar: FiscalCalendar) -> Tuple:
    if value == UNKNOWN_VALUE:
        return (9, "")
    if dimension.ordering == DimensionOrdering.MONTH:
        return calendar.month_sort_key(value)
    if dimension.ordering == DimensionOrdering.YEAR:
        try:
            return (0, int(value))
        except (TypeError, ValueError):
            return (1, str(value))
    if isinstance(value, (bool, int, float)):
        return (0, value)
    if isinstance(value, date):
        return (1, value)
    return (2, str(value))


def sort_keys(
    keys: Sequence[Key],
    dimensions: Sequence[DimensionDescriptor],
    calendar: FiscalCalendar = None,
) -> List[Key]:
    """Order composite keys component by component."""
    if not dimensions:
        return list(keys)
    calendar = calendar or get_fiscal_calendar()
    return sorted(
        keys,
        key=lambda k: tuple(
            _component_sort_key(part, dim, calendar) for part, dim in zip(k, dimensions)
        ),
    )


def build_matrix(
    cells: Sequence[AggregatedCell],
    row_dimensions: Sequence[str],
    column_dimensions: Sequence[str],
    catalog: Catalog = None,
    calendar: FiscalCalendar = None,
) -> PivotMatrix:
    """
    Lay aggregated cells out as a matrix.

    Args:
        cells: Output of aggregate() for the same dimensions
        row_dimensions: Row dimension ids
        column_dimensions: Column dimension ids
        catalog: Catalog used to resolve each dimension's ordering
        calendar: Fiscal calendar used to order months

    Returns:
        PivotMatrix. With no dimensions at all it carries only `total`;
        with no cells everything is empty.
    """
    catalog = catalog or get_catalog()
    row_dims = catalog.dimensions(row_dimensions)
    col_dims = catalog.dimensions(column_dimensions)

    if not cells:
        logger.info("Layout: no cells, returning empty matrix")
        return PivotMatrix(
            row_headers=[],
            column_headers=[],
            matrix=[],
            row_dimensions=list(row_dimensions),
            column_dimensions=list(column_dimensions),
        )

    if not row_dims and not col_dims:
        return PivotMatrix(
            row_headers=[],
            column_headers=[],
            matrix=[],
            total=cells[0],
            row_dimensions=[],
            column_dimensions=[],
        )

    by_key: Dict[Tuple[Key, Key], AggregatedCell] = {}
    row_keys: Dict[Key, None] = {}
    column_keys: Dict[Key, None] = {}
    for cell in cells:
        by_key[(cell.row_key, cell.column_key)] = cell
        row_keys.setdefault(cell.row_key)
        column_keys.setdefault(cell.column_key)

    row_headers = sort_keys(list(row_keys), row_dims, calendar)
    column_headers = sort_keys(list(column_keys), col_dims, calendar)

    matrix = [
        [by_key.get((row_key, column_key), NO_DATA) for column_key in column_headers]
        for row_key in row_headers
    ]

    logger.info(f"Layout: {len(row_headers)} rows x {len(column_headers)} columns from {len(cells)} cells")
    return PivotMatrix(
        row_headers=row_headers,
        column_headers=column_headers,
        matrix=matrix,
        row_dimensions=list(row_dimensions),
        column_dimensions=list(column_dimensions),
    )
