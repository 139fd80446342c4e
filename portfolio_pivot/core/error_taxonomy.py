"""
Error Taxonomy for the Pivot Pipeline

Provides systematic classification of failure modes with:
- Error categories aligned to pipeline stages
- Recoverability indicators
- Suggested recovery actions
- Structured warnings for degraded-but-usable results
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import logging
import traceback

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Systematic classification of failure modes."""
    # Stage 0: Configuration
    UNKNOWN_DIMENSION = auto()
    UNKNOWN_METRIC = auto()
    INVALID_PIVOT_CONFIGURATION = auto()
    INVALID_FILTER_OPERAND = auto()

    # Stage 1: Input boundary
    INVALID_RECORD = auto()
    NO_MATCHING_DATA = auto()

    # Stage 2: Currency normalization
    MISSING_RATE = auto()
    RATE_FALLBACK = auto()

    # Stage 3: Aggregation
    WEIGHT_FALLBACK = auto()
    CALCULATION_ERROR = auto()

    # System Errors
    CONFIGURATION_ERROR = auto()
    UNKNOWN_ERROR = auto()


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class RecoveryAction:
    """Suggested action to recover from an error."""
    action_type: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def fallback(fallback_method: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="fallback",
            description=f"Use fallback: {fallback_method}",
            parameters={"method": fallback_method}
        )

    @staticmethod
    def fix_configuration(message: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="fix_configuration",
            description="Correct the pivot or rate configuration",
            parameters={"message": message}
        )

    @staticmethod
    def abort(reason: str) -> "RecoveryAction":
        return RecoveryAction(
            action_type="abort",
            description=f"Abort operation: {reason}",
            parameters={"reason": reason}
        )


@dataclass
class ClassifiedError:
    """A classified error with full context."""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    recoverable: bool
    recovery_actions: List[RecoveryAction]

    original_exception: Optional[Exception] = None
    pipeline_phase: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    user_message: Optional[str] = None

    def __post_init__(self):
        if self.original_exception and not self.stack_trace:
            self.stack_trace = ''.join(traceback.format_exception(
                type(self.original_exception),
                self.original_exception,
                self.original_exception.__traceback__
            ))

        if not self.user_message:
            self.user_message = self._generate_user_message()

    def _generate_user_message(self) -> str:
        """Generate a user-facing error message."""
        if self.category == ErrorCategory.MISSING_RATE:
            year = self.context.get("fiscal_year")
            if year is not None:
                return f"Exchange rates unavailable for year {year}."
            return "Exchange rates unavailable for the selected year."
        messages = {
            ErrorCategory.UNKNOWN_DIMENSION: "The report references a dimension that does not exist.",
            ErrorCategory.UNKNOWN_METRIC: "The report references a metric that does not exist.",
            ErrorCategory.INVALID_PIVOT_CONFIGURATION: "The selected rows and columns are not a valid layout.",
            ErrorCategory.INVALID_FILTER_OPERAND: "One of the filters has an invalid value.",
            ErrorCategory.INVALID_RECORD: "A record supplied by the data layer is malformed.",
            ErrorCategory.NO_MATCHING_DATA: "No data found matching your criteria.",
            ErrorCategory.RATE_FALLBACK: "Some amounts were converted with a fallback rate of 1.",
            ErrorCategory.WEIGHT_FALLBACK: "Some ratios were averaged without weights.",
        }
        return messages.get(self.category, f"An error occurred: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "severity": self.severity.value,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "recovery_actions": [
                {"type": a.action_type, "description": a.description}
                for a in self.recovery_actions
            ],
            "pipeline_phase": self.pipeline_phase,
            "context": self.context,
        }


@dataclass(frozen=True)
class EngineWarning:
    """
    A degraded-but-recoverable condition.

    Returned next to the result so the UI can render the best-effort
    numbers with a visible caveat.
    """
    category: ErrorCategory
    message: str
    context: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    # What the engine did instead, e.g. RecoveryAction.fallback("rate 1")
    recovery: Optional[RecoveryAction] = field(default=None, hash=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "message": self.message,
            "context": dict(self.context),
            "recovery": self.recovery.description if self.recovery else None,
        }


class PivotError(Exception):
    """Base exception for pivot engine errors with classification."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = False,
        recovery_actions: List[RecoveryAction] = None,
        context: Dict[str, Any] = None,
    ):
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.recoverable = recoverable
        self.recovery_actions = recovery_actions or []
        self.context = context or {}

    def classify(self) -> ClassifiedError:
        return ClassifiedError(
            category=self.category,
            severity=self.severity,
            message=str(self),
            recoverable=self.recoverable,
            recovery_actions=self.recovery_actions,
            original_exception=self,
            context=dict(self.context),
        )


class MissingRateError(PivotError):
    """Raised when a fiscal year (or, in strict mode, a currency) has no rate."""

    def __init__(self, fiscal_year: int, currency: Optional[str] = None):
        if currency:
            message = f"No exchange rate for {currency} in fiscal year {fiscal_year}"
        else:
            message = f"No exchange rates configured for fiscal year {fiscal_year}"
        super().__init__(
            message,
            category=ErrorCategory.MISSING_RATE,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            recovery_actions=[RecoveryAction.fix_configuration(
                f"Add exchange rates for fiscal year {fiscal_year}"
            )],
            context={"fiscal_year": fiscal_year, "currency": currency},
        )
        self.fiscal_year = fiscal_year
        self.currency = currency


class UnknownDimensionError(PivotError):
    """Raised when a dimension id is not registered in the catalog."""

    def __init__(self, dimension_id: str, available: List[str] = None):
        available = sorted(available or [])
        super().__init__(
            f"Unknown dimension: {dimension_id!r}. Available: {available}",
            category=ErrorCategory.UNKNOWN_DIMENSION,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.fix_configuration(
                f"Use one of {available}"
            )],
            context={"dimension_id": dimension_id},
        )
        self.dimension_id = dimension_id


class UnknownMetricError(PivotError):
    """Raised when a metric id is not registered in the catalog."""

    def __init__(self, metric_id: str, available: List[str] = None):
        available = sorted(available or [])
        super().__init__(
            f"Unknown metric: {metric_id!r}. Available: {available}",
            category=ErrorCategory.UNKNOWN_METRIC,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.fix_configuration(
                f"Use one of {available}"
            )],
            context={"metric_id": metric_id},
        )
        self.metric_id = metric_id


class InvalidFilterOperandError(PivotError):
    """Raised when a filter criterion cannot be evaluated."""

    def __init__(self, message: str, field_id: str = None, operand: Any = None):
        super().__init__(
            message,
            category=ErrorCategory.INVALID_FILTER_OPERAND,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.fix_configuration(message)],
            context={"field_id": field_id, "operand": repr(operand)},
        )
        self.field_id = field_id
        self.operand = operand


class InvalidPivotConfigurationError(PivotError):
    """Raised when row/column dimensions are duplicated or overlap."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.INVALID_PIVOT_CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.fix_configuration(message)],
            context=context,
        )


class RecordValidationError(PivotError):
    """Raised when a raw record from the data layer fails validation."""

    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(
            message,
            category=ErrorCategory.INVALID_RECORD,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.abort("Malformed input record")],
            context=context,
        )


def classify_error(
    exception: Exception,
    pipeline_phase: str = None,
    context: Dict[str, Any] = None,
) -> ClassifiedError:
    """Classify an exception into a structured error."""
    context = context or {}

    if isinstance(exception, PivotError):
        classified = exception.classify()
        classified.pipeline_phase = pipeline_phase
        classified.context.update(context)
        return classified

    if isinstance(exception, ZeroDivisionError):
        return ClassifiedError(
            category=ErrorCategory.CALCULATION_ERROR,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            recovery_actions=[],
            original_exception=exception,
            pipeline_phase=pipeline_phase,
            context=context,
        )

    if isinstance(exception, (FileNotFoundError, KeyError, ValueError)):
        return ClassifiedError(
            category=ErrorCategory.CONFIGURATION_ERROR,
            severity=ErrorSeverity.HIGH,
            message=str(exception),
            recoverable=False,
            recovery_actions=[RecoveryAction.fix_configuration(str(exception))],
            original_exception=exception,
            pipeline_phase=pipeline_phase,
            context=context,
        )

    # Default
    return ClassifiedError(
        category=ErrorCategory.UNKNOWN_ERROR,
        severity=ErrorSeverity.HIGH,
        message=str(exception),
        recoverable=False,
        recovery_actions=[],
        original_exception=exception,
        pipeline_phase=pipeline_phase,
        context=context,
    )
