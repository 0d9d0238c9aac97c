"""
Transaction bookkeeping around rule evaluations.
"""

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from shared.errors import TransactionError
from shared.logging import get_logger, transaction_id_var
from shared.metrics import MetricsCollector
from shared.tracing import add_span_event

T = TypeVar("T")


@dataclass
class Transaction:
    """Active transaction record."""
    id: str
    started_at: datetime = field(default_factory=datetime.now)
    outcomes: List[Any] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


class TransactionManager:
    """Scopes evaluations in begin/commit/rollback bookkeeping.

    Transactions are re-entrant by id: a call with an id that is already
    active runs inside the existing record instead of opening a new one.
    """

    def __init__(self, logger=None, metrics: Optional[MetricsCollector] = None):
        self.logger = logger or get_logger("decisions.transactions")
        self.metrics = metrics
        self._transactions: Dict[str, Transaction] = {}
        self._lock = threading.RLock()

    def execute_in_transaction(self, func: Callable[[], T], transaction_id: Optional[str] = None) -> T:
        """Run ``func`` inside the transaction ``transaction_id``.

        Any exception from a new transaction's body rolls it back and is
        re-raised as ``TransactionError`` with the original as its cause.
        """
        transaction_id = transaction_id or str(uuid.uuid4())

        with self._lock:
            nested = transaction_id in self._transactions
            if not nested:
                self._transactions[transaction_id] = Transaction(id=transaction_id)
                self._update_gauge()

        if nested:
            self.logger.debug("Joining active transaction", transaction_id=transaction_id)
            return func()

        with self._scope(transaction_id) as transaction:
            try:
                result = func()
            except Exception as exc:
                self._rollback(transaction, exc)
                raise TransactionError(transaction_id, exc) from exc
            self._commit(transaction)
            return result

    @contextmanager
    def _scope(self, transaction_id: str):
        """Yield the registered record and always drop it on exit."""
        token = transaction_id_var.set(transaction_id)
        try:
            with self._lock:
                transaction = self._transactions[transaction_id]
            self.logger.debug("Transaction started", transaction_id=transaction_id)
            yield transaction
        finally:
            with self._lock:
                self._transactions.pop(transaction_id, None)
                self._update_gauge()
            transaction_id_var.reset(token)

    def _commit(self, transaction: Transaction):
        self.logger.info(
            "Transaction committed",
            transaction_id=transaction.id,
            outcomes=len(transaction.outcomes)
        )
        add_span_event("transaction.committed", transaction_id=transaction.id)
        if self.metrics:
            self.metrics.record_transaction("committed")

    def _rollback(self, transaction: Transaction, error: BaseException):
        self.add_error(transaction.id, error)
        self.logger.error(
            "Transaction rolled back",
            transaction_id=transaction.id,
            outcomes=len(transaction.outcomes),
            errors=len(transaction.errors),
            error=str(error)
        )
        add_span_event("transaction.rolled_back", transaction_id=transaction.id, error=str(error))
        if self.metrics:
            self.metrics.record_transaction("rolled_back")

    def _update_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("active_transactions", len(self._transactions))

    def add_outcome(self, transaction_id: str, outcome: Any) -> bool:
        """Attach an outcome to an active transaction."""
        return self.add_outcomes(transaction_id, [outcome])

    def add_outcomes(self, transaction_id: str, outcomes: Iterable[Any]) -> bool:
        """Attach several outcomes to an active transaction."""
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                return False
            transaction.outcomes.extend(outcomes)
            return True

    def add_error(self, transaction_id: str, error: BaseException) -> bool:
        """Record an error against an active transaction."""
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None:
                return False
            transaction.errors.append({
                "message": str(error),
                "error_type": type(error).__name__,
                "timestamp": datetime.now(),
            })
            return True

    def outcomes_for(self, transaction_id: str) -> List[Any]:
        """Get the outcomes recorded on a transaction."""
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            return list(transaction.outcomes) if transaction else []

    def errors_for(self, transaction_id: str) -> List[Dict[str, Any]]:
        """Get the errors recorded on a transaction."""
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            return list(transaction.errors) if transaction else []

    def is_active(self, transaction_id: str) -> bool:
        """Check whether a transaction is in progress."""
        with self._lock:
            return transaction_id in self._transactions

    def active_count(self) -> int:
        """Get the number of transactions in progress."""
        with self._lock:
            return len(self._transactions)

    def clear_all(self):
        """Forget every active transaction."""
        with self._lock:
            self._transactions.clear()
            self._update_gauge()
