"""
Outcome dispatcher.

Routes outcomes to every registered handler that claims them. Handler
failures are recorded per (outcome, handler) pair and never stop the rest
of the dispatch.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple, Union

from shared.errors import HandlerError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..rules.models import Outcome


def handler_name(handler: Any) -> str:
    return getattr(handler, "name", None) or type(handler).__name__


@dataclass
class DispatchResult:
    """Outcome of one handler invocation."""
    outcome: Outcome
    handler: Any
    result: Any = None
    error: Optional[HandlerError] = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self):
        return {
            "outcome_id": self.outcome.id,
            "outcome": self.outcome.kind.value,
            "handler": handler_name(self.handler),
            "result": self.result,
            "error": self.error.message if self.error else None,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


class OutcomeDispatcher:
    """Routes outcomes to handlers.

    The handler list is an immutable tuple swapped under a lock, so a
    dispatch always iterates a consistent snapshot while registrations
    happen concurrently.
    """

    def __init__(self, logger=None, metrics: Optional[MetricsCollector] = None, max_workers: int = 4):
        self.logger = logger or get_logger("decisions.dispatcher")
        self.metrics = metrics
        self.max_workers = max_workers
        self._handlers: Tuple[Any, ...] = ()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    @property
    def handlers(self) -> List[Any]:
        """Snapshot of registered handlers in registration order."""
        return list(self._handlers)

    def register_handler(self, handler: Any) -> "OutcomeDispatcher":
        """Register a handler; registering the same instance twice is a no-op."""
        if not callable(getattr(handler, "can_handle", None)) or not callable(getattr(handler, "handle", None)):
            raise ValidationError(
                "Handler must provide can_handle(outcome) and handle(outcome)",
                {"handler": type(handler).__name__}
            )

        with self._lock:
            if any(existing is handler for existing in self._handlers):
                return self
            self._handlers = self._handlers + (handler,)

        self.logger.debug("Handler registered", handler=handler_name(handler))
        return self

    def register_handlers(self, *handlers: Any) -> "OutcomeDispatcher":
        """Register several handlers in order."""
        for handler in handlers:
            self.register_handler(handler)
        return self

    def unregister_handler(self, handler: Any) -> bool:
        """Remove a handler by identity; returns whether it was registered."""
        with self._lock:
            remaining = tuple(existing for existing in self._handlers if existing is not handler)
            removed = len(remaining) != len(self._handlers)
            self._handlers = remaining
        return removed

    def clear_handlers(self) -> "OutcomeDispatcher":
        """Remove every handler."""
        with self._lock:
            self._handlers = ()
        return self

    def handler_count(self) -> int:
        """Number of registered handlers."""
        return len(self._handlers)

    def handlers_for(self, outcome: Outcome) -> List[Any]:
        """Registered handlers claiming ``outcome``, in registration order.

        A handler whose ``can_handle`` raises is not included.
        """
        matching = []
        for handler in self._handlers:
            try:
                if handler.can_handle(outcome):
                    matching.append(handler)
            except Exception as exc:
                self.logger.error("Handler can_handle failed", handler=handler_name(handler), error=str(exc))
        return matching

    def dispatch(self, outcomes: Union[Outcome, Iterable[Outcome], None]) -> List[DispatchResult]:
        """Invoke matching handlers for each outcome.

        Results are ordered by outcome, then by handler registration order.
        A raising ``can_handle`` is recorded as a failed result for that
        handler. Outcomes nobody claims are logged and skipped.
        """
        if outcomes is None:
            return []
        if isinstance(outcomes, Outcome):
            outcomes = [outcomes]

        handlers = self._handlers
        results: List[DispatchResult] = []
        for outcome in outcomes:
            if not isinstance(outcome, Outcome):
                self.logger.warning("Skipping non-outcome value", value_type=type(outcome).__name__)
                continue

            outcome_results = []
            for handler in handlers:
                start_time = time.time()
                try:
                    claimed = handler.can_handle(outcome)
                except Exception as exc:
                    outcome_results.append(
                        self._failure(handler, outcome, exc, start_time, "Handler can_handle failed")
                    )
                    continue
                if claimed:
                    outcome_results.append(self._invoke(handler, outcome))

            if not outcome_results:
                self.logger.warning("No handlers found for outcome", outcome=outcome.kind.value,
                                    outcome_id=outcome.id)
            results.extend(outcome_results)

        return results

    def dispatch_async(self, outcomes: Union[Outcome, Iterable[Outcome], None]) -> "Future[List[DispatchResult]]":
        """Run ``dispatch`` on the dispatcher's worker pool.

        The future resolves to the same results ``dispatch`` would return.
        """
        if outcomes is not None and not isinstance(outcomes, Outcome):
            outcomes = list(outcomes)

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="outcome-dispatch"
                )
            executor = self._executor

        return executor.submit(self.dispatch, outcomes)

    def close(self, wait: bool = True):
        """Shut down the worker pool; a later ``dispatch_async`` starts a new one."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            self.logger.debug("Dispatch workers stopped")

    def __enter__(self) -> "OutcomeDispatcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _failure(self, handler: Any, outcome: Outcome, exc: Exception, start_time: float,
                 event: str) -> DispatchResult:
        name = handler_name(handler)
        self.logger.error(
            event,
            handler=name,
            outcome=outcome.kind.value,
            outcome_id=outcome.id,
            error=str(exc),
            exc_info=True
        )
        if self.metrics:
            self.metrics.record_dispatch(name, "error")
            self.metrics.record_error("handler_error")
        return DispatchResult(
            outcome=outcome,
            handler=handler,
            error=HandlerError(name, outcome.kind.value, exc),
            duration_ms=(time.time() - start_time) * 1000
        )

    def _invoke(self, handler: Any, outcome: Outcome) -> DispatchResult:
        name = handler_name(handler)
        start_time = time.time()
        try:
            result = handler.handle(outcome)
        except Exception as exc:
            return self._failure(handler, outcome, exc, start_time, "Handler failed to process outcome")

        if self.metrics:
            self.metrics.record_dispatch(name, "success")
        return DispatchResult(
            outcome=outcome,
            handler=handler,
            result=result,
            duration_ms=(time.time() - start_time) * 1000
        )

    def __repr__(self) -> str:
        return f"OutcomeDispatcher(handlers={self.handler_count()})"
