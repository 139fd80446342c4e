"""
Filter Engine

Applies a conjunction of filter criteria to a fact collection.

- equals:   exact match on a field (case-sensitive unless told otherwise)
- in:       membership in an operand list; OR across its values
- range:    min <= value <= max, inclusive, for numbers or dates
- contains: case-insensitive substring, OR'ed across several text dimensions

A fact is kept only if every criterion passes. "No restriction" is the ALL
sentinel, never an omitted criterion. Criteria are validated before any fact
is examined, so a bad operand fails the whole call instead of producing a
partial result.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from portfolio_pivot.core.catalog import Catalog, DimensionOrdering, get_catalog
from portfolio_pivot.core.error_taxonomy import InvalidFilterOperandError, UnknownDimensionError
from portfolio_pivot.core.fiscal_calendar import canonical_month_label
from portfolio_pivot.core.models import FactRecord

logger = logging.getLogger(__name__)


class _AllSentinel:
    """Operand meaning "no restriction"."""

    def __repr__(self) -> str:
        return "ALL"

    def __reduce__(self):
        return "ALL"


ALL = _AllSentinel()

# Literal option the UI dropdowns send for "no restriction"
ALL_OPTION = "all"


def is_all(value: Any) -> bool:
    """True only for the ALL sentinel; a real field value "All" is data."""
    return value is ALL


def is_all_option(value: Any) -> bool:
    """True for the UI's literal 'all' option; used when reading UI payloads."""
    return isinstance(value, str) and value.strip().lower() == ALL_OPTION


class FilterOperator(Enum):
    """Supported filter operators."""
    EQUALS = "equals"
    IN = "in"
    RANGE = "range"
    CONTAINS = "contains"


@dataclass(frozen=True)
class FilterCriterion:
    """
    One predicate over a fact.

    field_id names the dimension or metric tested by equals/in/range;
    field_ids names the text dimensions a contains search spans (all
    searchable dimensions of the catalog when empty).
    """
    operator: FilterOperator
    field_id: Optional[str] = None
    operand: Any = ALL
    field_ids: Tuple[str, ...] = ()
    case_sensitive: bool = True

    @classmethod
    def equals(cls, field_id: str, value: Any, case_sensitive: bool = True) -> "FilterCriterion":
        return cls(FilterOperator.EQUALS, field_id, value, case_sensitive=case_sensitive)

    @classmethod
    def is_in(cls, field_id: str, values: Iterable[Any]) -> "FilterCriterion":
        if is_all(values) or isinstance(values, str):
            return cls(FilterOperator.IN, field_id, values)
        return cls(FilterOperator.IN, field_id, tuple(values))

    @classmethod
    def between(cls, field_id: str, minimum: Any = None, maximum: Any = None) -> "FilterCriterion":
        return cls(FilterOperator.RANGE, field_id, (minimum, maximum))

    @classmethod
    def contains(cls, text: str, field_ids: Sequence[str] = ()) -> "FilterCriterion":
        return cls(FilterOperator.CONTAINS, None, text, field_ids=tuple(field_ids), case_sensitive=False)

    @property
    def is_unrestricted(self) -> bool:
        if is_all(self.operand):
            return True
        if self.operator == FilterOperator.IN:
            return any(is_all(v) for v in self.operand)
        if self.operator == FilterOperator.CONTAINS:
            return isinstance(self.operand, str) and not self.operand.strip()
        if self.operator == FilterOperator.RANGE:
            return tuple(self.operand) == (None, None)
        return False

    def describe(self) -> str:
        if self.is_unrestricted:
            target = self.field_id or ", ".join(self.field_ids) or "any field"
            return f"{target}: all"
        if self.operator == FilterOperator.EQUALS:
            return f"{self.field_id} == {self.operand!r}"
        if self.operator == FilterOperator.IN:
            return f"{self.field_id} in {list(self.operand)}"
        if self.operator == FilterOperator.RANGE:
            low, high = self.operand
            return f"{self.field_id} between {low} and {high}"
        fields = ", ".join(self.field_ids) or "searchable fields"
        return f"{fields} contains {self.operand!r}"


@dataclass(frozen=True)
class FilterSet:
    """Conjunction (logical AND) of filter criteria."""
    criteria: Tuple[FilterCriterion, ...] = ()

    @classmethod
    def all_of(cls, *criteria: FilterCriterion) -> "FilterSet":
        return cls(tuple(criteria))

    @classmethod
    def from_selections(cls, selections: Dict[str, Any], search: str = "") -> "FilterSet":
        """
        Build a filter set from dropdown selections.

        {"area": ["all"], "status": ["Em Andamento", "Em Atraso"]} gives one
        `in` criterion per dimension; a scalar selection gives `equals`. The
        dropdowns' "all" option becomes the ALL sentinel here.
        """
        criteria = []
        for field_id, selection in selections.items():
            if isinstance(selection, (list, tuple, set, frozenset)):
                if any(is_all_option(v) for v in selection):
                    selection = ALL
                criteria.append(FilterCriterion.is_in(field_id, selection))
            elif is_all_option(selection):
                criteria.append(FilterCriterion.equals(field_id, ALL))
            else:
                criteria.append(FilterCriterion.equals(field_id, selection))
        criteria.append(FilterCriterion.contains(search or ""))
        return cls(tuple(criteria))

    def with_criterion(self, criterion: FilterCriterion) -> "FilterSet":
        return FilterSet(self.criteria + (criterion,))

    def __len__(self) -> int:
        return len(self.criteria)

    def __iter__(self):
        return iter(self.criteria)


@dataclass
class FilterResult:
    """Result of a filtering operation."""
    data: List[FactRecord]
    original_count: int
    filtered_count: int
    filters_applied: List[str] = field(default_factory=list)

    @property
    def filter_summary(self) -> str:
        return f"Filtered {self.original_count} -> {self.filtered_count} rows ({len(self.filters_applied)} filters)"


Predicate = Callable[[FactRecord], bool]


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class FilterEngine:
    """
    Compiles and evaluates filter sets against fact records.

    Usage:
        engine = FilterEngine(catalog)
        result = engine.apply_filters(facts, FilterSet.all_of(
            FilterCriterion.is_in("area", ["TI", "Marketing"]),
            FilterCriterion.between("year", 2023, 2024),
        ))
    """

    def __init__(self, catalog: Catalog = None):
        self.catalog = catalog or get_catalog()

    def _check_field(self, field_id: Optional[str]) -> str:
        if not field_id:
            raise InvalidFilterOperandError("Filter criterion has no field", field_id, None)
        if not self.catalog.is_field(field_id):
            raise UnknownDimensionError(field_id, self.catalog.dimension_ids + self.catalog.metric_ids)
        return field_id

    def compile(self, criterion: FilterCriterion) -> Optional[Predicate]:
        """
        Validate a criterion and turn it into a predicate.

        Returns None for unrestricted criteria (ALL), which always pass.
        """
        if not isinstance(criterion.operator, FilterOperator):
            raise InvalidFilterOperandError(
                f"Unknown filter operator: {criterion.operator!r}", criterion.field_id, criterion.operand
            )

        if criterion.operator == FilterOperator.CONTAINS:
            return self._compile_contains(criterion)

        field_id = self._check_field(criterion.field_id)
        if criterion.operator == FilterOperator.EQUALS:
            return self._compile_equals(field_id, criterion)
        if criterion.operator == FilterOperator.IN:
            return self._compile_in(field_id, criterion)
        return self._compile_range(field_id, criterion)

    def _canonical_operand(self, field_id: str, value: Any) -> Any:
        """Month operands are compared in the spelling FactRecord stores ("Jan")."""
        if not self.catalog.has_dimension(field_id):
            return value
        if self.catalog.dimension(field_id).ordering != DimensionOrdering.MONTH:
            return value
        label = canonical_month_label(value)
        return label if label is not None else value

    def _compile_equals(self, field_id: str, criterion: FilterCriterion) -> Optional[Predicate]:
        if is_all(criterion.operand):
            return None
        operand = self._canonical_operand(field_id, criterion.operand)
        value_of = self.catalog.field_value
        if not criterion.case_sensitive and isinstance(operand, str):
            folded = operand.casefold()
            return lambda fact: isinstance(value_of(fact, field_id), str) and value_of(fact, field_id).casefold() == folded
        return lambda fact: value_of(fact, field_id) == operand

    def _compile_in(self, field_id: str, criterion: FilterCriterion) -> Optional[Predicate]:
        operand = criterion.operand
        if is_all(operand):
            return None
        if isinstance(operand, (str, bytes)) or not isinstance(operand, Iterable):
            raise InvalidFilterOperandError(
                f"'in' filter on {field_id} needs a list of values, got {operand!r}", field_id, operand
            )
        values = list(operand)
        if not values:
            raise InvalidFilterOperandError(
                f"'in' filter on {field_id} has an empty value list; use ALL for no restriction",
                field_id, operand,
            )
        if any(is_all(v) for v in values):
            return None
        values = [self._canonical_operand(field_id, v) for v in values]
        value_of = self.catalog.field_value
        if not criterion.case_sensitive:
            members = {v.casefold() if isinstance(v, str) else v for v in values}
            def predicate(fact: FactRecord) -> bool:
                value = value_of(fact, field_id)
                return (value.casefold() if isinstance(value, str) else value) in members
            return predicate
        members = set(values)
        return lambda fact: value_of(fact, field_id) in members

    def _compile_range(self, field_id: str, criterion: FilterCriterion) -> Optional[Predicate]:
        operand = criterion.operand
        if is_all(operand):
            return None
        if isinstance(operand, dict):
            bounds = (operand.get("min"), operand.get("max"))
        elif isinstance(operand, (list, tuple)) and len(operand) == 2:
            bounds = tuple(operand)
        else:
            raise InvalidFilterOperandError(
                f"'range' filter on {field_id} needs (min, max), got {operand!r}", field_id, operand
            )

        low, high = bounds
        if low is None and high is None:
            return None

        present = [b for b in bounds if b is not None]
        if all(_is_number(b) for b in present):
            kind = "number"
        elif all(_as_date(b) is not None for b in present):
            kind = "date"
            low, high = _as_date(low) if low is not None else None, _as_date(high) if high is not None else None
        else:
            raise InvalidFilterOperandError(
                f"'range' filter on {field_id} needs numeric or date bounds, got {operand!r}",
                field_id, operand,
            )
        if low is not None and high is not None and low > high:
            raise InvalidFilterOperandError(
                f"'range' filter on {field_id} has min {low} greater than max {high}", field_id, operand
            )

        value_of = self.catalog.field_value

        def predicate(fact: FactRecord) -> bool:
            value = value_of(fact, field_id)
            if kind == "number":
                if not _is_number(value):
                    return False
            else:
                value = _as_date(value)
                if value is None:
                    return False
            if low is not None and value < low:
                return False
            if high is not None and value > high:
                return False
            return True

        return predicate

    def _compile_contains(self, criterion: FilterCriterion) -> Optional[Predicate]:
        operand = criterion.operand
        if is_all(operand):
            return None
        if not isinstance(operand, str):
            raise InvalidFilterOperandError(
                f"'contains' filter needs text, got {operand!r}", None, operand
            )
        needle = operand.strip().casefold()
        if not needle:
            return None

        if criterion.field_ids:
            dimensions = self.catalog.dimensions(criterion.field_ids)
        else:
            dimensions = self.catalog.searchable_dimensions()

        def predicate(fact: FactRecord) -> bool:
            for dimension in dimensions:
                value = dimension.value(fact)
                if value is not None and needle in str(value).casefold():
                    return True
            return False

        return predicate

    def apply_filters(self, facts: Sequence[FactRecord], filters: FilterSet) -> FilterResult:
        """
        Apply every criterion of a filter set (logical AND).

        Args:
            facts: Fact records; never modified
            filters: Criteria to apply

        Returns:
            FilterResult with a new list of the facts that pass
        """
        compiled = []
        applied = []
        for criterion in filters:
            predicate = self.compile(criterion)
            if predicate is not None:
                compiled.append(predicate)
                applied.append(criterion.describe())

        if compiled:
            result = [fact for fact in facts if all(p(fact) for p in compiled)]
        else:
            result = list(facts)

        logger.info(f"Filter: {len(facts)} -> {len(result)} rows ({len(applied)} active criteria)")
        for desc in applied:
            logger.debug(f"  filter {desc}")

        return FilterResult(
            data=result,
            original_count=len(facts),
            filtered_count=len(result),
            filters_applied=applied,
        )


def apply_filters(
    facts: Sequence[FactRecord], filters: FilterSet, catalog: Catalog = None
) -> FilterResult:
    """Functional form of FilterEngine.apply_filters."""
    return FilterEngine(catalog).apply_filters(facts, filters)
