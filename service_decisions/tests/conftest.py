"""
Shared fixtures for Decision service tests.
"""

import pytest

from service_decisions.app.rules.conditions import all_of, kind_is, severity_at_least, severity_between
from service_decisions.app.rules.models import (
    AddPenalty, EvaluationContext, NotifySupport, SupportPriority, SuspendAccount
)
from service_decisions.app.rules.rule import Rule, RuleSet
from shared.metrics import MetricsCollector


def fraud_rules():
    """Three fraud rules banded by severity, highest priority first."""
    return [
        Rule(
            name="severe_fraud",
            priority=100,
            condition=all_of(kind_is("fraud"), severity_at_least(8)),
            outcomes=[
                lambda ctx: SuspendAccount(ctx, reason="Severe fraud"),
                lambda ctx: NotifySupport(ctx, priority=SupportPriority.HIGH),
            ],
        ),
        Rule(
            name="moderate_fraud",
            priority=50,
            condition=all_of(kind_is("fraud"), severity_between(5, 7)),
            outcomes=[lambda ctx: AddPenalty(ctx, points=50)],
        ),
        Rule(
            name="minor_fraud",
            priority=10,
            condition=lambda ctx: ctx.kind == "fraud" and ctx.severity < 5,
            outcomes=[lambda ctx: AddPenalty(ctx, points=10)],
        ),
    ]


@pytest.fixture
def fraud_rule_set():
    """Fraud rule set using collect_all."""
    return RuleSet("fraud_rules", fraud_rules())


@pytest.fixture
def severe_fraud():
    return EvaluationContext(kind="fraud", severity=9, subject_id="user-1")


@pytest.fixture
def moderate_fraud():
    return EvaluationContext(kind="fraud", severity=6, subject_id="user-2")


@pytest.fixture
def spam_context():
    return EvaluationContext(kind="spam", severity=8, subject_id="user-3")


@pytest.fixture
def metrics():
    """Metrics collector with its own registry."""
    return MetricsCollector("decisions-test")
