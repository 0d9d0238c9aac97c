"""
Structured logging for the Decision Layer.

Every log line emitted while a rule set is being evaluated carries the
rule set, subject and transaction it belongs to, so one decision can be
followed across the engine, the strategies, the transaction manager and
the dispatcher.
"""

import sys
import structlog
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, TextIO
from contextvars import ContextVar

from opentelemetry import trace

# Correlation ids for the decision in progress
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
subject_id_var: ContextVar[Optional[str]] = ContextVar('subject_id', default=None)
transaction_id_var: ContextVar[Optional[str]] = ContextVar('transaction_id', default=None)
rule_set_var: ContextVar[Optional[str]] = ContextVar('rule_set', default=None)

_CORRELATION_VARS = (
    ("request_id", request_id_var),
    ("subject_id", subject_id_var),
    ("transaction_id", transaction_id_var),
    ("rule_set", rule_set_var),
)

LOG_FORMATS = ("json", "console")


def configure_logging(service_name: str, log_level: str = "info", log_format: str = "json",
                      stream: Optional[TextIO] = None) -> None:
    """Configure structured logging for a service.

    ``log_format`` selects JSON lines or structlog's console renderer.
    Logs go to ``stream`` (stdout by default).
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}: {log_format!r}")

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_trace_context,
            add_correlation_context,
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )
    structlog.get_logger("decisions.logging").debug(
        "Logging configured", service=service_name, log_format=log_format
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Derive the service from a dotted logger name."""
    # "decisions.dispatcher" -> service "decisions", component "dispatcher"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        service, component = logger_name.split(".", 1)
        event_dict["service"] = service
        event_dict.setdefault("component", component)

    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add trace context to log events."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation ids; fields bound on the event itself win."""
    for key, var in _CORRELATION_VARS:
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value

    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_subject_context(subject_id: Optional[Any] = None, transaction_id: Optional[str] = None):
    """Set the subject and transaction being evaluated in logging context."""
    if subject_id is not None:
        subject_id_var.set(str(subject_id))
    if transaction_id:
        transaction_id_var.set(transaction_id)


@contextmanager
def evaluation_scope(rule_set: str, subject_id: Optional[Any] = None) -> Iterator[None]:
    """Tag logs with the rule set (and subject) for the duration of the block.

    Previous values are restored on exit, so nested evaluations of other
    rule sets do not leak their names into the caller's logs.
    """
    tokens = [(rule_set_var, rule_set_var.set(rule_set))]
    if subject_id is not None:
        tokens.append((subject_id_var, subject_id_var.set(str(subject_id))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_context():
    """Clear all context variables."""
    for _, var in _CORRELATION_VARS:
        var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
