"""
Fluent builders for rules and rule sets.

    rule_set = (
        RuleSetBuilder("fraud", strategy="collect_all")
        .rule("severe_fraud", priority=100)
            .when(all_of(kind_is("fraud"), severity_at_least(8)))
            .suspend_account(reason="Severe fraud")
            .notify_support(priority="high")
            .done()
        .build()
    )
"""

from typing import Any, Callable, List, Mapping, Optional, Union

from shared.errors import InvalidRuleError
from .models import (
    AddPenalty, BlockAction, CustomOutcome, EvaluationContext, LogLevel, LogViolation,
    NotificationChannel, NotifySupport, NotifyUser, Outcome, StrategyName, SupportPriority, SuspendAccount
)
from .rule import Condition, OutcomeProducer, Rule, RuleSet


class RuleBuilder:
    """Collects a condition and outcome producers for one rule."""

    def __init__(self, name: str, priority: int = 0, enabled: bool = True,
                 metadata: Optional[Mapping[str, Any]] = None, description: Optional[str] = None,
                 parent: Optional["RuleSetBuilder"] = None):
        self.name = name
        self.priority = priority
        self.enabled = enabled
        self.metadata = dict(metadata or {})
        self.description = description
        self.condition: Optional[Condition] = None
        self.outcomes: List[OutcomeProducer] = []
        self._parent = parent

    def when(self, condition: Condition) -> "RuleBuilder":
        self.condition = condition
        return self

    def then(self, producer: OutcomeProducer) -> "RuleBuilder":
        self.outcomes.append(producer)
        return self

    def _emit(self, outcome_cls, **fields) -> "RuleBuilder":
        metadata = {"rule_name": self.name}
        # Field values are validated when the rule is defined
        outcome_cls(None, **fields)

        def producer(context: EvaluationContext) -> Outcome:
            return outcome_cls(context, metadata=metadata, **fields)

        return self.then(producer)

    def add_penalty(self, points: int, reason: Optional[str] = None) -> "RuleBuilder":
        return self._emit(AddPenalty, points=points, reason=reason)

    def suspend_account(self, duration: Union[int, str, None] = None,
                        reason: Optional[str] = None) -> "RuleBuilder":
        return self._emit(SuspendAccount, duration=duration, reason=reason)

    def notify_support(self, priority: Union[SupportPriority, str] = SupportPriority.MEDIUM,
                       message: Optional[str] = None) -> "RuleBuilder":
        return self._emit(NotifySupport, priority=priority, message=message)

    def notify_user(self, message: str,
                    channel: Union[NotificationChannel, str] = NotificationChannel.EMAIL) -> "RuleBuilder":
        return self._emit(NotifyUser, message=message, channel=channel)

    def log_violation(self, level: Union[LogLevel, str] = LogLevel.INFO, details: Any = None) -> "RuleBuilder":
        return self._emit(LogViolation, level=level, details=details)

    def block_action(self, action_type: str, reason: Optional[str] = None) -> "RuleBuilder":
        return self._emit(BlockAction, action_type=action_type, reason=reason)

    def custom_outcome(self, name: str, payload: Any = None) -> "RuleBuilder":
        return self._emit(CustomOutcome, name=name, payload=payload)

    def build(self) -> Rule:
        if self.condition is None:
            raise InvalidRuleError(f"Rule '{self.name}' must have a condition", {"rule": self.name})
        if not self.outcomes:
            raise InvalidRuleError(f"Rule '{self.name}' must have at least one outcome", {"rule": self.name})

        return Rule(
            name=self.name,
            condition=self.condition,
            outcomes=list(self.outcomes),
            priority=self.priority,
            enabled=self.enabled,
            metadata=self.metadata,
            description=self.description
        )

    def done(self) -> "RuleSetBuilder":
        """Finish this rule and return to the enclosing rule set builder."""
        if self._parent is None:
            raise InvalidRuleError(f"Rule '{self.name}' is not part of a rule set builder", {"rule": self.name})
        self._parent.add(self.build())
        return self._parent


class RuleSetBuilder:
    """Collects rules for one rule set."""

    def __init__(self, name: str, strategy: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                 metadata: Optional[Mapping[str, Any]] = None):
        self.name = name
        self.strategy = strategy
        self.metadata = dict(metadata or {})
        self.rules: List[Rule] = []

    def rule(self, name: str, priority: int = 0, enabled: bool = True,
             metadata: Optional[Mapping[str, Any]] = None, description: Optional[str] = None) -> RuleBuilder:
        """Start a rule; call ``done()`` on the returned builder to add it."""
        return RuleBuilder(name, priority=priority, enabled=enabled, metadata=metadata,
                           description=description, parent=self)

    def add(self, rule: Rule) -> "RuleSetBuilder":
        self.rules.append(rule)
        return self

    def build(self) -> RuleSet:
        return RuleSet(
            name=self.name,
            rules=self.rules,
            default_strategy=self.strategy,
            metadata=self.metadata
        )


def define_rule(name: str, condition: Condition, *producers: OutcomeProducer,
                priority: int = 0, enabled: bool = True,
                metadata: Optional[Mapping[str, Any]] = None) -> Rule:
    """Build a rule in one call."""
    builder = RuleBuilder(name, priority=priority, enabled=enabled, metadata=metadata).when(condition)
    for producer in producers:
        builder.then(producer)
    return builder.build()


def define_rule_set(name: str, configure: Callable[[RuleSetBuilder], Any],
                    strategy: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                    metadata: Optional[Mapping[str, Any]] = None) -> RuleSet:
    """Build a rule set by letting ``configure`` populate a builder."""
    builder = RuleSetBuilder(name, strategy=strategy, metadata=metadata)
    configure(builder)
    return builder.build()
