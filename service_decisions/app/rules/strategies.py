"""
Evaluation strategies.

Every strategy walks a chain built by ``RuleSet.build_chain`` and decides
when to stop. ``CollectAll`` and ``FirstMatch`` delegate to
``ChainLink.evaluate``; ``StopOnOutcome`` and ``LimitOutcomes`` walk rule
by rule so they can stop in the middle of a rule's outcome producers.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Type, Union

from shared.errors import UnknownStrategyError, ValidationError
from shared.logging import get_logger
from .models import EvaluationContext, Outcome, OutcomeKind, StrategyName, parse_strategy_name
from .rule import ChainLink, RuleSet


class EvaluationStrategy(ABC):
    """Policy controlling how far a chain is walked."""

    name = "custom"

    def __init__(self, logger=None):
        self.logger = logger or get_logger("decisions.strategy")

    @abstractmethod
    def run(self, chain: Optional[ChainLink], context: EvaluationContext) -> List[Outcome]:
        """Evaluate a built chain against a context."""

    def evaluate(self, rule_set: RuleSet, context: EvaluationContext) -> List[Outcome]:
        """Build a fresh chain for the rule set and run it."""
        return self.run(rule_set.build_chain(), context)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class CollectAll(EvaluationStrategy):
    """Every matching rule contributes its outcomes."""

    name = StrategyName.COLLECT_ALL.value

    def run(self, chain, context):
        if chain is None:
            return []
        return chain.evaluate(context, mode=StrategyName.COLLECT_ALL, collected=[], logger=self.logger)


class FirstMatch(EvaluationStrategy):
    """Only the highest-priority matching rule contributes outcomes."""

    name = StrategyName.FIRST_MATCH.value

    def run(self, chain, context):
        if chain is None:
            return []
        return chain.evaluate(context, mode=StrategyName.FIRST_MATCH, collected=[], logger=self.logger)


class StopOnOutcome(EvaluationStrategy):
    """Stop as soon as an outcome of the target kind is produced."""

    name = "stop_on_outcome"

    def __init__(self, target: Union[OutcomeKind, str, Type[Outcome]], logger=None):
        super().__init__(logger)
        if target is Outcome:
            raise ValidationError(
                "Target must be a concrete outcome type, not Outcome",
                {"field": "target", "value": "Outcome"}
            )
        if isinstance(target, type) and issubclass(target, Outcome):
            target = target.kind
        try:
            self.target = OutcomeKind(target)
        except ValueError:
            raise ValidationError(
                f"Unknown outcome kind: {target!r}",
                {"field": "target", "value": str(target)}
            ) from None

    def run(self, chain, context):
        collected: List[Outcome] = []
        if chain is None:
            return collected

        for rule in chain:
            if not rule.enabled or not rule.matches(context, self.logger):
                continue
            for outcome in rule.iter_outcomes(context):
                collected.append(outcome)
                if outcome.kind is self.target:
                    self.logger.debug("Target outcome produced", rule=rule.name, kind=self.target.value)
                    return collected

        return collected

    def __repr__(self) -> str:
        return f"StopOnOutcome({self.target.value!r})"


class LimitOutcomes(EvaluationStrategy):
    """Collect outcomes until ``max_count`` is reached."""

    name = "limit_outcomes"

    def __init__(self, max_count: int, logger=None):
        super().__init__(logger)
        if isinstance(max_count, bool) or not isinstance(max_count, int) or max_count < 0:
            raise ValidationError(
                "max_count must be a non-negative integer",
                {"field": "max_count", "value": str(max_count)}
            )
        self.max_count = max_count

    def run(self, chain, context):
        collected: List[Outcome] = []
        if chain is None or self.max_count == 0:
            return collected

        for rule in chain:
            if not rule.enabled or not rule.matches(context, self.logger):
                continue
            # Producers past the cap are never invoked
            for outcome in rule.iter_outcomes(context):
                collected.append(outcome)
                if len(collected) >= self.max_count:
                    self.logger.debug("Outcome limit reached", rule=rule.name, max_count=self.max_count)
                    return collected

        return collected

    def __repr__(self) -> str:
        return f"LimitOutcomes({self.max_count})"


BUILTIN_STRATEGIES = {
    StrategyName.COLLECT_ALL: CollectAll,
    StrategyName.FIRST_MATCH: FirstMatch,
}


def resolve_strategy(strategy: Union[EvaluationStrategy, StrategyName, str, None],
                     default: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                     lenient: bool = False, logger=None) -> EvaluationStrategy:
    """Turn a strategy instance, name or ``None`` into a strategy instance.

    Unknown names raise ``UnknownStrategyError``; with ``lenient=True`` they
    fall back to ``CollectAll`` and a warning is logged.
    """
    if isinstance(strategy, EvaluationStrategy):
        return strategy

    if strategy is None:
        strategy = default

    try:
        name = parse_strategy_name(strategy)
    except UnknownStrategyError:
        if not lenient:
            raise
        (logger or get_logger("decisions.strategy")).warning(
            "Unknown strategy, falling back to collect_all",
            strategy=str(strategy)
        )
        name = StrategyName.COLLECT_ALL

    return BUILTIN_STRATEGIES[name](logger=logger)
