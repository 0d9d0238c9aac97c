"""
Rules, rule chains and rule sets.

A chain is an immutable linked sequence of ``ChainLink`` nodes built from
a rule set's enabled rules on every call to ``RuleSet.build_chain``. Rules
never hold successor pointers, so any number of evaluations of the same
rule set can walk their own chains concurrently.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from shared.errors import (
    ConditionEvaluationError, InvalidRuleError, OutcomeProductionError, RuleNotFoundError
)
from shared.logging import get_logger
from .models import (
    EvaluationContext, Outcome, StrategyName, freeze_mapping, parse_strategy_name
)

Condition = Callable[[EvaluationContext], Any]
OutcomeProducer = Callable[[EvaluationContext], Optional[Outcome]]

_logger = get_logger("decisions.rules")


@dataclass(eq=False)
class Rule:
    """Named, prioritized condition with ordered outcome producers."""
    name: str
    condition: Condition
    outcomes: Sequence[OutcomeProducer] = field(default_factory=tuple)
    priority: int = 0
    enabled: bool = True
    metadata: Mapping[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self):
        self.name = str(self.name)
        try:
            self.priority = int(self.priority)
        except (TypeError, ValueError):
            raise InvalidRuleError(
                f"Rule '{self.name}' priority must be an integer",
                {"rule": self.name, "priority": str(self.priority)}
            ) from None
        if not callable(self.condition):
            raise InvalidRuleError(f"Rule '{self.name}' condition must be callable", {"rule": self.name})
        if callable(self.outcomes):
            self.outcomes = (self.outcomes,)
        self.outcomes = tuple(self.outcomes)
        for producer in self.outcomes:
            if not callable(producer):
                raise InvalidRuleError(f"Rule '{self.name}' outcome producers must be callable", {"rule": self.name})
        self.metadata = freeze_mapping(self.metadata)

    @property
    def disabled(self) -> bool:
        return not self.enabled

    def enable(self) -> "Rule":
        """Enable the rule."""
        self.enabled = True
        return self

    def disable(self) -> "Rule":
        """Disable the rule."""
        self.enabled = False
        return self

    def matches(self, context: EvaluationContext, logger=None) -> bool:
        """Evaluate the condition; a raising condition counts as no match."""
        try:
            return bool(self.condition(context))
        except Exception as exc:
            error = ConditionEvaluationError(self.name, exc)
            (logger or _logger).error(
                "Condition evaluation failed",
                rule=self.name,
                error=str(exc),
                error_code=error.code,
                context_id=context.id if isinstance(context, EvaluationContext) else None,
                exc_info=True
            )
            return False

    def iter_outcomes(self, context: EvaluationContext) -> Iterator[Outcome]:
        """Run outcome producers lazily, in declaration order, skipping ``None``."""
        for producer in self.outcomes:
            try:
                outcome = producer(context)
            except Exception as exc:
                raise OutcomeProductionError(self.name, exc) from exc
            if outcome is not None:
                yield outcome

    def produce(self, context: EvaluationContext) -> List[Outcome]:
        """Run every producer and return the outcomes."""
        return list(self.iter_outcomes(context))

    def evaluate(self, context: EvaluationContext,
                 mode: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                 collected: Optional[List[Outcome]] = None, logger=None) -> List[Outcome]:
        """Evaluate this rule alone, appending to ``collected``."""
        return ChainLink(self).evaluate(context, mode=mode, collected=collected, logger=logger)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "enabled": self.enabled,
            "metadata": dict(self.metadata),
            "outcomes_count": len(self.outcomes),
        }


@dataclass(frozen=True, eq=False)
class ChainLink:
    """One node of an evaluation chain."""
    rule: Rule
    next: Optional["ChainLink"] = None

    def __iter__(self) -> Iterator[Rule]:
        link = self
        while link is not None:
            yield link.rule
            link = link.next

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def evaluate(self, context: EvaluationContext,
                 mode: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                 collected: Optional[List[Outcome]] = None, logger=None) -> List[Outcome]:
        """Walk this link and its successors.

        Disabled rules pass through. Matching rules append every non-``None``
        outcome; under ``first_match`` the walk ends at the first match.
        Outcome producer errors propagate as ``OutcomeProductionError``.
        """
        mode = parse_strategy_name(mode)
        if collected is None:
            collected = []

        for rule in self:
            if not rule.enabled:
                continue
            if not rule.matches(context, logger):
                continue
            collected.extend(rule.iter_outcomes(context))
            if mode is StrategyName.FIRST_MATCH:
                break

        return collected


def link_rules(rules: Sequence[Rule]) -> Optional[ChainLink]:
    """Link already-ordered rules into a chain and return its head."""
    head = None
    for rule in reversed(rules):
        head = ChainLink(rule, head)
    return head


class RuleSet:
    """Collection of rules evaluated together under a default strategy."""

    def __init__(self, name: str, rules: Optional[Sequence[Rule]] = None,
                 default_strategy: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                 metadata: Optional[Mapping[str, Any]] = None, logger=None):
        self.name = str(name)
        self.default_strategy = parse_strategy_name(default_strategy)
        self.metadata = freeze_mapping(metadata)
        self.logger = logger or get_logger("decisions.rule_set")
        self._rules: List[Rule] = []
        self._lock = threading.RLock()

        if isinstance(rules, Rule):
            rules = [rules]
        for rule in rules or []:
            self.add_rule(rule)

    @property
    def rules(self) -> List[Rule]:
        """Rules in insertion order."""
        with self._lock:
            return list(self._rules)

    def add_rule(self, rule: Rule) -> "RuleSet":
        """Add a rule; names must be unique within the set."""
        if not isinstance(rule, Rule):
            raise InvalidRuleError("RuleSet only accepts Rule instances", {"rule_set": self.name})

        with self._lock:
            if any(existing.name == rule.name for existing in self._rules):
                raise InvalidRuleError(
                    f"Duplicate rule name '{rule.name}' in rule set '{self.name}'",
                    {"rule": rule.name, "rule_set": self.name}
                )
            self._rules.append(rule)

        self.logger.debug("Rule added", rule_set=self.name, rule=rule.name, priority=rule.priority)
        return self

    def remove_rule(self, rule_name: str) -> bool:
        """Remove a rule by name."""
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.name == str(rule_name):
                    del self._rules[index]
                    self.logger.debug("Rule removed", rule_set=self.name, rule=rule.name)
                    return True
        return False

    def find_rule(self, rule_name: str) -> Optional[Rule]:
        """Find a rule by name."""
        with self._lock:
            for rule in self._rules:
                if rule.name == str(rule_name):
                    return rule
        return None

    def get_rule(self, rule_name: str) -> Rule:
        """Get a rule by name, raising when it is absent."""
        rule = self.find_rule(rule_name)
        if rule is None:
            raise RuleNotFoundError(str(rule_name), self.name)
        return rule

    def enable_rule(self, rule_name: str) -> Optional[Rule]:
        """Enable a rule by name."""
        rule = self.find_rule(rule_name)
        if rule is not None:
            rule.enable()
        return rule

    def disable_rule(self, rule_name: str) -> Optional[Rule]:
        """Disable a rule by name."""
        rule = self.find_rule(rule_name)
        if rule is not None:
            rule.disable()
        return rule

    def enable_all(self) -> "RuleSet":
        """Enable every rule."""
        for rule in self.rules:
            rule.enable()
        return self

    def disable_all(self) -> "RuleSet":
        """Disable every rule."""
        for rule in self.rules:
            rule.disable()
        return self

    def enabled_rules(self) -> List[Rule]:
        """Get enabled rules."""
        return [rule for rule in self.rules if rule.enabled]

    def disabled_rules(self) -> List[Rule]:
        """Get disabled rules."""
        return [rule for rule in self.rules if not rule.enabled]

    def build_chain(self) -> Optional[ChainLink]:
        """Build a fresh chain of enabled rules, highest priority first.

        ``sorted`` is stable, so rules of equal priority keep insertion order.
        """
        ordered = sorted(self.enabled_rules(), key=lambda rule: -rule.priority)
        return link_rules(ordered)

    def evaluate(self, context: EvaluationContext) -> List[Outcome]:
        """Evaluate with the rule set's default strategy."""
        chain = self.build_chain()
        if chain is None:
            return []
        return chain.evaluate(context, mode=self.default_strategy, collected=[], logger=self.logger)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __contains__(self, rule_name: object) -> bool:
        return self.find_rule(str(rule_name)) is not None

    @property
    def empty(self) -> bool:
        return len(self) == 0

    def to_dict(self) -> Dict[str, Any]:
        rules = self.rules
        return {
            "name": self.name,
            "strategy": self.default_strategy.value,
            "rules_count": len(rules),
            "enabled_rules_count": len([rule for rule in rules if rule.enabled]),
            "metadata": dict(self.metadata),
        }

    def __repr__(self) -> str:
        return f"RuleSet(name={self.name!r}, rules={len(self)}, strategy={self.default_strategy.value!r})"
