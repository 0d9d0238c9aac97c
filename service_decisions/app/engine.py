"""
Rule engine facade.

Composes rule sets, strategy resolution, the transaction manager and the
outcome dispatcher. This is the entry point callers use.
"""

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from shared.config import DecisionSettings, get_config
from shared.errors import RuleSetNotFoundError, ValidationError
from shared.logging import evaluation_scope, get_logger
from shared.metrics import MetricsCollector
from shared.tracing import add_span_attributes, trace_operation
from .dispatch.dispatcher import DispatchResult, OutcomeDispatcher
from .rules.loader import ConfigurationLoader
from .rules.models import EvaluationContext, Outcome, StrategyName
from .rules.rule import RuleSet
from .rules.strategies import EvaluationStrategy, resolve_strategy
from .transactions import TransactionManager

StrategySpec = Union[EvaluationStrategy, StrategyName, str, None]


@dataclass
class EvaluationReport:
    """Outcomes of one evaluation plus their dispatch results."""
    outcomes: List[Outcome]
    dispatch_results: Optional[List[DispatchResult]] = None

    @property
    def dispatched(self) -> bool:
        return self.dispatch_results is not None

    @property
    def failed_dispatches(self) -> List[DispatchResult]:
        return [result for result in self.dispatch_results or [] if not result.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"outcomes": [outcome.to_dict() for outcome in self.outcomes]}
        if self.dispatch_results is not None:
            data["dispatch_results"] = [result.to_dict() for result in self.dispatch_results]
        return data


class RuleEngine:
    """Evaluates registered rule sets and dispatches their outcomes."""

    def __init__(self, rule_sets: Union[Iterable[RuleSet], Mapping[str, RuleSet], None] = None,
                 dispatcher: Optional[OutcomeDispatcher] = None,
                 transaction_manager: Optional[TransactionManager] = None,
                 logger=None, metrics: Optional[MetricsCollector] = None,
                 lenient_strategy_names: bool = False):
        self.logger = logger or get_logger("decisions.rule_engine")
        self.metrics = metrics
        self.dispatcher = dispatcher or OutcomeDispatcher(metrics=metrics)
        self.transaction_manager = transaction_manager or TransactionManager(metrics=metrics)
        self.lenient_strategy_names = lenient_strategy_names
        self._rule_sets: Dict[str, RuleSet] = {}
        self._lock = threading.RLock()

        if isinstance(rule_sets, Mapping):
            rule_sets = rule_sets.values()
        for rule_set in rule_sets or []:
            self.add_rule_set(rule_set)

    @classmethod
    def from_settings(cls, settings: Optional[DecisionSettings] = None,
                      metrics: Optional[MetricsCollector] = None) -> "RuleEngine":
        """Build an engine from settings, loading the configured rules file."""
        settings = settings or get_config()
        engine = cls(metrics=metrics, lenient_strategy_names=settings.lenient_strategy_names)
        if settings.rules_config_path:
            engine.load_from_config(settings.rules_config_path, loader=ConfigurationLoader(
                default_strategy=settings.default_strategy,
                lenient_strategy_names=settings.lenient_strategy_names
            ))
        return engine

    def add_rule_set(self, rule_set: RuleSet) -> "RuleEngine":
        """Register a rule set, replacing any set with the same name."""
        if not isinstance(rule_set, RuleSet):
            raise ValidationError("rule_set must be a RuleSet", {"type": type(rule_set).__name__})

        with self._lock:
            replaced = rule_set.name in self._rule_sets
            self._rule_sets[rule_set.name] = rule_set

        if replaced:
            self.logger.warning("Rule set replaced", rule_set=rule_set.name)
        self.logger.info("Rule set added", rule_set=rule_set.name, rules=len(rule_set))
        return self

    def remove_rule_set(self, name: str) -> bool:
        """Remove a rule set by name."""
        with self._lock:
            removed = self._rule_sets.pop(str(name), None)
        if removed is not None:
            self.logger.info("Rule set removed", rule_set=removed.name)
            return True
        return False

    def find_rule_set(self, name: str) -> Optional[RuleSet]:
        """Find a rule set by name."""
        with self._lock:
            return self._rule_sets.get(str(name))

    def get_rule_set(self, name: str) -> RuleSet:
        """Get a rule set by name, raising when it is absent."""
        rule_set = self.find_rule_set(name)
        if rule_set is None:
            raise RuleSetNotFoundError(str(name))
        return rule_set

    def rule_set_names(self) -> List[str]:
        """Get registered rule set names."""
        with self._lock:
            return list(self._rule_sets)

    def evaluate(self, rule_set_name: str, context: EvaluationContext,
                 strategy: StrategySpec = None, transaction_id: Optional[str] = None) -> List[Outcome]:
        """Evaluate a rule set against a context.

        ``strategy`` may be a strategy instance or a built-in name; ``None``
        uses the rule set's default. With ``transaction_id`` the evaluation
        runs inside that transaction and failures surface as
        ``TransactionError``.
        """
        rule_set = self.get_rule_set(rule_set_name)
        if not isinstance(context, EvaluationContext):
            raise ValidationError("context must be an EvaluationContext", {"type": type(context).__name__})

        resolved = resolve_strategy(
            strategy,
            default=rule_set.default_strategy,
            lenient=self.lenient_strategy_names,
            logger=self.logger
        )
        log = self.logger.bind(rule_set=rule_set.name, strategy=resolved.name, context_id=context.id)

        with evaluation_scope(rule_set.name, context.subject_id), \
                trace_operation("rule_engine.evaluate", rule_set=rule_set.name, strategy=resolved.name,
                                context_kind=context.kind, transaction_id=transaction_id):
            start_time = time.time()
            try:
                if transaction_id:
                    outcomes = self.transaction_manager.execute_in_transaction(
                        lambda: self._run(resolved, rule_set, context, transaction_id),
                        transaction_id
                    )
                else:
                    outcomes = self._run(resolved, rule_set, context, None)
            except Exception as exc:
                duration = time.time() - start_time
                log.error("Rule set evaluation failed", error=str(exc), error_type=type(exc).__name__)
                if self.metrics:
                    self.metrics.record_evaluation(rule_set.name, resolved.name, "error", duration)
                    self.metrics.record_error(type(exc).__name__)
                raise

            duration = time.time() - start_time
            add_span_attributes(outcomes=len(outcomes))
            log.debug(
                "Rule set evaluated",
                outcomes=len(outcomes),
                evaluation_time_ms=duration * 1000
            )
            if self.metrics:
                self.metrics.record_evaluation(rule_set.name, resolved.name, "success", duration)
                for outcome in outcomes:
                    self.metrics.record_outcome(outcome.kind.value)

        return outcomes

    def _run(self, strategy: EvaluationStrategy, rule_set: RuleSet, context: EvaluationContext,
             transaction_id: Optional[str]) -> List[Outcome]:
        outcomes = strategy.run(rule_set.build_chain(), context)
        if transaction_id:
            self.transaction_manager.add_outcomes(transaction_id, outcomes)
        return outcomes

    def evaluate_and_dispatch(self, rule_set_name: str, context: EvaluationContext,
                              strategy: StrategySpec = None, transaction_id: Optional[str] = None,
                              dispatch: bool = True) -> EvaluationReport:
        """Evaluate, then hand the outcomes to the dispatcher unless ``dispatch`` is False."""
        outcomes = self.evaluate(rule_set_name, context, strategy=strategy, transaction_id=transaction_id)
        if not dispatch:
            return EvaluationReport(outcomes=outcomes)
        return EvaluationReport(outcomes=outcomes, dispatch_results=self.dispatcher.dispatch(outcomes))

    def register_handlers(self, *handlers: Any) -> "RuleEngine":
        """Register handlers with the dispatcher."""
        self.dispatcher.register_handlers(*handlers)
        return self

    def load_from_config(self, config_path: Union[str, Path],
                         loader: Optional[ConfigurationLoader] = None) -> "RuleEngine":
        """Compile a YAML/JSON rules file and register its rule sets."""
        loader = loader or ConfigurationLoader(lenient_strategy_names=self.lenient_strategy_names)
        for rule_set in loader.load_from_file(config_path):
            self.add_rule_set(rule_set)
        return self

    def stats(self) -> Dict[str, int]:
        """Counts describing the engine; reading them changes nothing."""
        with self._lock:
            rule_sets = list(self._rule_sets.values())
        return {
            "rule_sets_count": len(rule_sets),
            "total_rules": sum(len(rule_set) for rule_set in rule_sets),
            "enabled_rules": sum(len(rule_set.enabled_rules()) for rule_set in rule_sets),
            "handlers_count": self.dispatcher.handler_count(),
            "active_transactions": self.transaction_manager.active_count(),
        }

    def __repr__(self) -> str:
        return f"RuleEngine(rule_sets={self.rule_set_names()!r})"
