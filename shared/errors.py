"""
Shared error handling for the Decision Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class DecisionLayerException(Exception):
    """Base exception for Decision Layer components."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(DecisionLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationError(DecisionLayerException):
    """Rule configuration documents that cannot be compiled."""

    def __init__(self, message: str = "Invalid rule configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class InvalidRuleError(DecisionLayerException):
    """Rule definitions that violate rule set invariants."""

    def __init__(self, message: str = "Invalid rule", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_RULE", message, details)


class RuleNotFoundError(DecisionLayerException):
    """Lookup of a rule name that is not part of a rule set."""

    def __init__(self, rule_name: str, rule_set: Optional[str] = None):
        super().__init__(
            "RULE_NOT_FOUND",
            f"Rule '{rule_name}' not found",
            {"rule": rule_name, "rule_set": rule_set}
        )


class RuleSetNotFoundError(DecisionLayerException):
    """Evaluation against a rule set name the engine does not know."""

    def __init__(self, rule_set: str):
        super().__init__(
            "RULE_SET_NOT_FOUND",
            f"Rule set '{rule_set}' not found",
            {"rule_set": rule_set}
        )


class UnknownStrategyError(DecisionLayerException):
    """Strategy identifiers outside the built-in set."""

    def __init__(self, strategy: Any):
        super().__init__(
            "UNKNOWN_STRATEGY",
            f"Unknown evaluation strategy: {strategy!r}",
            {"strategy": str(strategy)}
        )


class ConditionEvaluationError(DecisionLayerException):
    """A rule condition raised while being evaluated."""

    def __init__(self, rule_name: str, cause: BaseException):
        super().__init__(
            "CONDITION_EVALUATION_ERROR",
            f"Condition of rule '{rule_name}' failed: {cause}",
            {"rule": rule_name, "error_type": type(cause).__name__}
        )


class OutcomeProductionError(DecisionLayerException):
    """An outcome producer raised after its rule matched."""

    def __init__(self, rule_name: str, cause: BaseException):
        super().__init__(
            "OUTCOME_PRODUCTION_ERROR",
            f"Outcome production for rule '{rule_name}' failed: {cause}",
            {"rule": rule_name, "error_type": type(cause).__name__}
        )


class TransactionError(DecisionLayerException):
    """Any failure inside a transactional evaluation."""

    def __init__(self, transaction_id: str, cause: BaseException):
        super().__init__(
            "TRANSACTION_ERROR",
            f"Transaction {transaction_id} failed: {cause}",
            {"transaction_id": transaction_id, "error_type": type(cause).__name__}
        )
        self.transaction_id = transaction_id


class HandlerError(DecisionLayerException):
    """A handler raised while processing an outcome."""

    def __init__(self, handler_name: str, outcome_kind: str, cause: BaseException):
        super().__init__(
            "HANDLER_ERROR",
            f"Handler '{handler_name}' failed to process outcome '{outcome_kind}': {cause}",
            {"handler": handler_name, "outcome": outcome_kind, "error_type": type(cause).__name__}
        )
