"""
Unit tests for rules, chains and rule sets.
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from service_decisions.app.rules.models import (
    AddPenalty, BlockAction, EvaluationContext, LogViolation, NotifySupport, StrategyName, SuspendAccount
)
from service_decisions.app.rules.rule import ChainLink, Rule, RuleSet, link_rules
from shared.errors import InvalidRuleError, OutcomeProductionError, RuleNotFoundError


def _summary(outcomes):
    """Comparable view of outcomes, ignoring ids and timestamps."""
    return [(outcome.kind, outcome.to_dict().get("points")) for outcome in outcomes]


def _penalty_rule(name, points, priority=0, condition=None):
    return Rule(
        name=name,
        priority=priority,
        condition=condition or (lambda ctx: True),
        outcomes=[lambda ctx: AddPenalty(ctx, points=points)],
    )


class TestRule:
    """Test cases for Rule."""

    @pytest.fixture
    def context(self):
        return EvaluationContext(kind="fraud", severity=5)

    def test_condition_must_be_callable(self):
        """Test non-callable conditions are rejected."""
        with pytest.raises(InvalidRuleError):
            Rule(name="broken", condition="severity > 5")

    def test_priority_must_be_integer(self):
        """Test non-integer priorities are rejected."""
        with pytest.raises(InvalidRuleError):
            Rule(name="broken", condition=lambda ctx: True, priority="high")

    def test_producers_must_be_callable(self):
        """Test non-callable producers are rejected."""
        with pytest.raises(InvalidRuleError):
            Rule(name="broken", condition=lambda ctx: True, outcomes=["penalty"])

    def test_single_producer_accepted(self, context):
        """Test a lone producer is wrapped into a tuple."""
        rule = Rule(name="single", condition=lambda ctx: True, outcomes=lambda ctx: AddPenalty(ctx, points=1))

        assert len(rule.outcomes) == 1
        assert len(rule.produce(context)) == 1

    def test_enable_disable(self):
        """Test toggling the enabled flag."""
        rule = _penalty_rule("toggle", 5)

        assert rule.disable() is rule
        assert rule.disabled is True
        rule.enable()
        assert rule.enabled is True

    def test_matches_swallows_condition_errors(self, context):
        """Test a raising condition counts as no match and is logged."""
        rule = Rule(name="exploding", condition=lambda ctx: 1 / 0, outcomes=[lambda ctx: AddPenalty(ctx, points=1)])

        with capture_logs() as logs:
            assert rule.matches(context) is False

        failures = [entry for entry in logs if entry["event"] == "Condition evaluation failed"]
        assert len(failures) == 1
        assert failures[0]["rule"] == "exploding"
        assert failures[0]["error_code"] == "CONDITION_EVALUATION_ERROR"
        assert failures[0]["log_level"] == "error"

    def test_matches_uses_injected_logger(self, context):
        """Test the injected logger receives condition failures."""
        logger = MagicMock()
        rule = Rule(name="exploding", condition=lambda ctx: {}["missing"])

        assert rule.matches(context, logger) is False
        logger.error.assert_called_once()
        assert logger.error.call_args.kwargs["rule"] == "exploding"

    def test_none_outcomes_skipped(self, context):
        """Test producers returning None contribute nothing."""
        rule = Rule(
            name="sparse",
            condition=lambda ctx: True,
            outcomes=[lambda ctx: None, lambda ctx: LogViolation(ctx)],
        )

        outcomes = rule.evaluate(context)

        assert [outcome.kind.value for outcome in outcomes] == ["log_violation"]

    def test_producer_errors_propagate(self, context):
        """Test a raising producer surfaces as OutcomeProductionError."""
        rule = Rule(name="faulty", condition=lambda ctx: True, outcomes=[lambda ctx: AddPenalty(ctx, points=-1)])

        with pytest.raises(OutcomeProductionError) as exc_info:
            rule.evaluate(context)

        assert exc_info.value.code == "OUTCOME_PRODUCTION_ERROR"
        assert exc_info.value.details["rule"] == "faulty"
        assert exc_info.value.__cause__ is not None

    def test_evaluate_appends_to_collected(self, context):
        """Test evaluation extends an existing accumulator."""
        existing = [LogViolation(context)]
        rule = _penalty_rule("append", 3)

        result = rule.evaluate(context, collected=existing)

        assert result is existing
        assert len(existing) == 2

    def test_to_dict(self):
        """Test dictionary representation."""
        rule = _penalty_rule("described", 3, priority=7)

        assert rule.to_dict() == {
            "name": "described",
            "priority": 7,
            "enabled": True,
            "metadata": {},
            "outcomes_count": 1,
        }


class TestChain:
    """Test cases for ChainLink."""

    def test_link_rules(self):
        """Test linking keeps the given order."""
        rules = [_penalty_rule("a", 1), _penalty_rule("b", 2), _penalty_rule("c", 3)]

        head = link_rules(rules)

        assert isinstance(head, ChainLink)
        assert [rule.name for rule in head] == ["a", "b", "c"]
        assert len(head) == 3
        assert link_rules([]) is None

    def test_first_match_stops_after_first_matching_rule(self):
        """Test first_match ignores later rules."""
        context = EvaluationContext(kind="fraud", severity=5)
        later = MagicMock(return_value=True)
        head = link_rules([
            _penalty_rule("no", 1, condition=lambda ctx: False),
            _penalty_rule("yes", 2),
            _penalty_rule("later", 3, condition=later),
        ])

        outcomes = head.evaluate(context, mode=StrategyName.FIRST_MATCH)

        assert _summary(outcomes) == [(AddPenalty.kind, 2)]
        later.assert_not_called()

    def test_disabled_rules_pass_through(self):
        """Test disabled links are skipped without evaluating their condition."""
        context = EvaluationContext(kind="fraud", severity=5)
        condition = MagicMock(return_value=True)
        disabled = _penalty_rule("disabled", 1, condition=condition).disable()
        head = link_rules([disabled, _penalty_rule("enabled", 2)])

        outcomes = head.evaluate(context, mode="first_match")

        assert _summary(outcomes) == [(AddPenalty.kind, 2)]
        condition.assert_not_called()


class TestRuleSet:
    """Test cases for RuleSet."""

    def test_fraud_severity_nine(self, fraud_rule_set, severe_fraud):
        """Test severe fraud yields a suspension and a support notification only."""
        outcomes = fraud_rule_set.evaluate(severe_fraud)

        assert len(outcomes) == 2
        assert isinstance(outcomes[0], SuspendAccount)
        assert isinstance(outcomes[1], NotifySupport)
        assert not any(isinstance(outcome, AddPenalty) for outcome in outcomes)

    def test_fraud_severity_six(self, fraud_rule_set, moderate_fraud):
        """Test moderate fraud yields a single 50 point penalty."""
        outcomes = fraud_rule_set.evaluate(moderate_fraud)

        assert len(outcomes) == 1
        assert isinstance(outcomes[0], AddPenalty)
        assert outcomes[0].points == 50

    def test_spam_matches_nothing(self, fraud_rule_set, spam_context):
        """Test a spam event does not match fraud rules."""
        assert fraud_rule_set.evaluate(spam_context) == []

    def test_outcomes_carry_context(self, fraud_rule_set, severe_fraud):
        """Test producers receive the evaluated context."""
        outcomes = fraud_rule_set.evaluate(severe_fraud)

        assert all(outcome.context is severe_fraud for outcome in outcomes)

    def test_collect_all_counts_every_matching_rule(self):
        """Test collect_all returns every producer's outcome of every matching rule."""
        context = EvaluationContext(kind="fraud", severity=5)
        rule_set = RuleSet("counts", [
            Rule(name="two", condition=lambda ctx: True,
                 outcomes=[lambda ctx: AddPenalty(ctx, points=1), lambda ctx: LogViolation(ctx)]),
            Rule(name="none", condition=lambda ctx: False, outcomes=[lambda ctx: AddPenalty(ctx, points=2)]),
            Rule(name="one", condition=lambda ctx: True, outcomes=[lambda ctx: BlockAction(ctx, action_type="post")]),
        ])

        assert len(rule_set.evaluate(context)) == 3

    def test_priority_order_with_stable_ties(self):
        """Test higher priority first and insertion order among equal priorities."""
        context = EvaluationContext(kind="fraud", severity=5)
        rule_set = RuleSet("ties", [
            _penalty_rule("low", 1, priority=1),
            _penalty_rule("tie_first", 2, priority=10),
            _penalty_rule("tie_second", 3, priority=10),
            _penalty_rule("high", 4, priority=99),
        ])

        assert [rule.name for rule in rule_set.build_chain()] == ["high", "tie_first", "tie_second", "low"]
        assert [outcome.points for outcome in rule_set.evaluate(context)] == [4, 2, 3, 1]

    def test_first_match_picks_first_of_tied_rules(self):
        """Test first_match honours insertion order among equal priorities."""
        context = EvaluationContext(kind="fraud", severity=5)
        rule_set = RuleSet("ties", [
            _penalty_rule("tie_first", 2, priority=10),
            _penalty_rule("tie_second", 3, priority=10),
        ], default_strategy="first_match")

        assert [outcome.points for outcome in rule_set.evaluate(context)] == [2]

    def test_raising_condition_treated_as_false(self):
        """Test a raising rule behaves like a non-matching one."""
        context = EvaluationContext(kind="fraud", severity=5)
        working = _penalty_rule("working", 7)
        raising = RuleSet("raising", [
            Rule(name="exploding", priority=10, condition=lambda ctx: ctx.attributes["absent"] > 1,
                 outcomes=[lambda ctx: AddPenalty(ctx, points=1)]),
            working,
        ])
        falsy = RuleSet("falsy", [
            _penalty_rule("never", 1, priority=10, condition=lambda ctx: False),
            _penalty_rule("working", 7),
        ])

        assert _summary(raising.evaluate(context)) == _summary(falsy.evaluate(context))

    def test_condition_errors_swallowed_but_producer_errors_raised(self):
        """Test the asymmetry between condition and producer failures."""
        context = EvaluationContext(kind="fraud", severity=5)

        def failing_producer(ctx):
            raise RuntimeError("downstream unavailable")

        rule_set = RuleSet("asymmetric", [
            Rule(name="bad_condition", priority=10, condition=lambda ctx: 1 / 0,
                 outcomes=[lambda ctx: AddPenalty(ctx, points=1)]),
            Rule(name="bad_producer", priority=5, condition=lambda ctx: True,
                 outcomes=[failing_producer]),
        ])

        with pytest.raises(OutcomeProductionError) as exc_info:
            rule_set.evaluate(context)

        assert exc_info.value.details["rule"] == "bad_producer"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_disable_enable_round_trip(self, fraud_rule_set, severe_fraud):
        """Test disabling then re-enabling restores evaluation results."""
        before = _summary(fraud_rule_set.evaluate(severe_fraud))

        fraud_rule_set.disable_rule("severe_fraud")
        assert [rule.name for rule in fraud_rule_set.build_chain()] == ["moderate_fraud", "minor_fraud"]
        assert fraud_rule_set.evaluate(severe_fraud) == []

        fraud_rule_set.enable_rule("severe_fraud")
        assert _summary(fraud_rule_set.evaluate(severe_fraud)) == before

    def test_enabled_and_disabled_rules(self, fraud_rule_set):
        """Test rule listings by state."""
        fraud_rule_set.disable_rule("minor_fraud")

        assert [rule.name for rule in fraud_rule_set.enabled_rules()] == ["severe_fraud", "moderate_fraud"]
        assert [rule.name for rule in fraud_rule_set.disabled_rules()] == ["minor_fraud"]

        fraud_rule_set.disable_all()
        assert fraud_rule_set.build_chain() is None
        fraud_rule_set.enable_all()
        assert len(fraud_rule_set.build_chain()) == 3

    def test_unknown_rule_toggles_return_none(self, fraud_rule_set):
        """Test enabling or disabling a missing rule."""
        assert fraud_rule_set.enable_rule("missing") is None
        assert fraud_rule_set.disable_rule("missing") is None

    def test_duplicate_names_rejected(self, fraud_rule_set):
        """Test rule names are unique within a set."""
        with pytest.raises(InvalidRuleError) as exc_info:
            fraud_rule_set.add_rule(_penalty_rule("severe_fraud", 1))

        assert exc_info.value.details == {"rule": "severe_fraud", "rule_set": "fraud_rules"}
        assert len(fraud_rule_set) == 3

    def test_add_rule_rejects_non_rules(self, fraud_rule_set):
        """Test only Rule instances are accepted."""
        with pytest.raises(InvalidRuleError):
            fraud_rule_set.add_rule(lambda ctx: True)

    def test_find_get_remove(self, fraud_rule_set):
        """Test lookup and removal by name."""
        assert fraud_rule_set.find_rule("moderate_fraud").priority == 50
        assert fraud_rule_set.find_rule("missing") is None
        assert "moderate_fraud" in fraud_rule_set

        with pytest.raises(RuleNotFoundError):
            fraud_rule_set.get_rule("missing")

        assert fraud_rule_set.remove_rule("moderate_fraud") is True
        assert fraud_rule_set.remove_rule("moderate_fraud") is False
        assert "moderate_fraud" not in fraud_rule_set

    def test_empty_rule_set(self, severe_fraud):
        """Test an empty rule set evaluates to nothing."""
        rule_set = RuleSet("empty")

        assert rule_set.empty is True
        assert rule_set.build_chain() is None
        assert rule_set.evaluate(severe_fraud) == []

    def test_chains_are_built_per_call(self, fraud_rule_set):
        """Test each call returns a new chain and rules hold no links."""
        first = fraud_rule_set.build_chain()
        second = fraud_rule_set.build_chain()

        assert first is not second
        assert [rule.name for rule in first] == [rule.name for rule in second]
        assert not hasattr(fraud_rule_set.find_rule("severe_fraud"), "next")

    def test_concurrent_evaluations(self, fraud_rule_set):
        """Test many threads evaluating one rule set see consistent results."""
        contexts = [
            EvaluationContext(kind="fraud", severity=9 if index % 2 else 6, subject_id=f"user-{index}")
            for index in range(200)
        ]

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(fraud_rule_set.evaluate, contexts))

        for context, outcomes in zip(contexts, results):
            if context.severity == 9:
                assert [type(outcome) for outcome in outcomes] == [SuspendAccount, NotifySupport]
            else:
                assert [(type(outcome), outcome.points) for outcome in outcomes] == [(AddPenalty, 50)]
            assert all(outcome.context is context for outcome in outcomes)

    def test_to_dict(self, fraud_rule_set):
        """Test dictionary representation."""
        fraud_rule_set.disable_rule("minor_fraud")

        data = fraud_rule_set.to_dict()

        assert data["name"] == "fraud_rules"
        assert data["strategy"] == "collect_all"
        assert data["rules_count"] == 3
        assert data["enabled_rules_count"] == 2
