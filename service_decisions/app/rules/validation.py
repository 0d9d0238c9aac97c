"""
Static checks on rule sets before they are registered.
"""

from collections import Counter
from typing import Iterable, List

from .rule import Rule, RuleSet


def validate_rule(rule: Rule) -> List[str]:
    errors = []
    if not callable(rule.condition):
        errors.append("Rule condition must be callable")
    if not rule.outcomes:
        errors.append("Rule must have at least one outcome")
    return errors


def validate_rules(rules: Iterable[Rule]) -> List[str]:
    """Problems across a sequence of rules, including duplicate names."""
    rules = list(rules)
    errors = []
    for rule in rules:
        errors.extend(f"Rule '{rule.name}': {error}" for error in validate_rule(rule))

    counts = Counter(rule.name for rule in rules)
    errors.extend(f"Duplicate rule name: {name}" for name, count in counts.items() if count > 1)
    return errors


def validate_rule_set(rule_set: RuleSet) -> List[str]:
    """Human readable problems with a rule set; empty when it is sound."""
    errors = []
    if rule_set.empty:
        errors.append("Rule set must have at least one rule")
    elif not rule_set.enabled_rules():
        errors.append("Rule set has no enabled rules")
    errors.extend(validate_rules(rule_set.rules))
    return errors
