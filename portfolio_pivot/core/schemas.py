"""
Input Boundary Schemas

Pydantic models validating the raw dicts the data layer and the UI hand to
the engine. Loosely-typed source rows become closed FactRecord values here,
so nothing past this module accesses record fields by arbitrary string key.
"""
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from portfolio_pivot.core.error_taxonomy import RecordValidationError
from portfolio_pivot.core.fiscal_calendar import canonical_month_label, get_fiscal_calendar
from portfolio_pivot.core.models import FactKind, FactRecord

logger = logging.getLogger(__name__)

# Dimension attributes of FactRecord; every other numeric key is a metric
_DIMENSION_KEYS = {
    "project_id", "id", "project_name", "name", "kind", "area", "status", "month",
    "fiscal_year", "year", "responsible", "leader", "category", "country",
    "currency", "critical", "is_critical", "date",
}


class FactRecordModel(BaseModel):
    """Schema for one raw fact row."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_id: str = Field(..., min_length=1, alias="id")
    currency: str = Field(..., min_length=3, max_length=12)
    fiscal_year: Optional[int] = Field(None, alias="year")
    kind: FactKind = FactKind.PROJECT_MONTH
    project_name: Optional[str] = Field(None, alias="name")
    area: Optional[str] = None
    status: Optional[str] = None
    month: Optional[str] = None
    responsible: Optional[str] = Field(None, alias="leader")
    category: Optional[str] = None
    country: Optional[str] = None
    critical: bool = Field(False, alias="is_critical")
    metrics: Dict[str, Optional[float]] = Field(default_factory=dict)
    # Transaction rows carry a date instead of fiscal year and month
    entry_date: Optional[date] = Field(None, alias="date")

    @field_validator("project_id", mode="before")
    @classmethod
    def coerce_project_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("month", mode="before")
    @classmethod
    def validate_month(cls, v):
        if v is None or v == "":
            return None
        label = canonical_month_label(v)
        if label is None:
            raise ValueError(f"Unrecognized month: {v!r}")
        return label

    @model_validator(mode="after")
    def fill_period_from_date(self):
        """Derive fiscal year and month from the entry date when they are missing."""
        if self.entry_date is None:
            return self
        calendar = get_fiscal_calendar()
        if self.fiscal_year is None:
            self.fiscal_year = calendar.get_fiscal_year_for_date(self.entry_date)
        if self.month is None:
            self.month = calendar.month_label_for_date(self.entry_date)
        return self

    def to_fact(self) -> FactRecord:
        return FactRecord(
            project_id=self.project_id,
            currency=self.currency,
            fiscal_year=self.fiscal_year,
            metrics=self.metrics,
            kind=self.kind,
            project_name=self.project_name,
            area=self.area,
            status=self.status,
            month=self.month,
            responsible=self.responsible,
            category=self.category,
            country=self.country,
            critical=self.critical,
        )


class FilterCriterionModel(BaseModel):
    """Schema for one filter as sent by the UI."""
    field_id: Optional[str] = None
    field_ids: List[str] = Field(default_factory=list)
    operator: str = "equals"
    operand: Any = None
    case_sensitive: bool = True


class PivotConfigurationModel(BaseModel):
    """Schema for the UI's pivot configuration snapshot."""
    row_dimensions: List[str] = Field(default_factory=list)
    column_dimensions: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)
    filters: List[FilterCriterionModel] = Field(default_factory=list)
    target_currency: str = "BRL"
    target_year: Optional[int] = None
    include_totals: bool = True

    @field_validator("target_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


def _split_flat_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Accept flat rows where metrics sit next to dimensions.

    {"id": "P1", "area": "TI", "target": 1000, "currency": "BRL"} becomes
    {"id": "P1", "area": "TI", "currency": "BRL", "metrics": {"target": 1000}}.
    """
    if "metrics" in raw:
        return raw
    row = {}
    metrics = {}
    for key, value in raw.items():
        if key in _DIMENSION_KEYS:
            row[key] = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            metrics[key] = value
        elif value is None:
            metrics[key] = None
    row["metrics"] = metrics
    return row


def parse_fact(raw: Dict[str, Any]) -> FactRecord:
    """Validate a raw row and build a FactRecord."""
    try:
        model = FactRecordModel.model_validate(_split_flat_row(raw))
    except ValidationError as e:
        raise RecordValidationError(
            f"Invalid fact record: {e.error_count()} error(s)",
            context={"record": raw, "errors": e.errors(include_url=False)},
        ) from e
    return model.to_fact()


def parse_facts(rows: Iterable[Dict[str, Any]]) -> List[FactRecord]:
    """Validate a collection of raw rows; the first invalid row aborts."""
    facts = [parse_fact(row) for row in rows]
    logger.info(f"Validated {len(facts)} fact records")
    return facts
