"""
Unit tests for the rule configuration loader.
"""

import json

import pytest
from structlog.testing import capture_logs

from service_decisions.app.rules.loader import ConfigurationLoader
from service_decisions.app.rules.models import (
    AddPenalty, BlockAction, EvaluationContext, LogLevel, LogViolation, NotifySupport, NotifyUser,
    StrategyName, SupportPriority, SuspendAccount
)
from shared.errors import ConfigurationError

FRAUD_DOCUMENT = {
    "fraud_rules": {
        "strategy": "collect_all",
        "metadata": {"owner": "trust"},
        "rules": [
            {
                "name": "severe_fraud",
                "priority": 100,
                "condition": {
                    "type": "and",
                    "conditions": [
                        {"type": "field_equals", "field": "kind", "value": "fraud"},
                        {"type": "not", "condition": {"type": "field_less_than", "field": "severity", "value": 8}},
                    ],
                },
                "outcomes": [
                    {"type": "suspend_account", "reason": "Severe fraud"},
                    {"type": "notify_support", "priority": "high"},
                ],
            },
            {
                "name": "moderate_fraud",
                "priority": 50,
                "condition": {
                    "type": "and",
                    "conditions": [
                        {"type": "field_equals", "field": "kind", "value": "fraud"},
                        {"type": "field_greater_than", "field": "severity", "value": 4},
                        {"type": "field_less_than", "field": "severity", "value": 8},
                    ],
                },
                "outcomes": [{"type": "add_penalty", "points": 50}],
            },
            {
                "name": "minor_fraud",
                "priority": 10,
                "condition": {
                    "type": "and",
                    "conditions": [
                        {"type": "field_equals", "field": "kind", "value": "fraud"},
                        {"type": "field_less_than", "field": "severity", "value": 5},
                    ],
                },
                "outcomes": [{"type": "add_penalty", "points": 10}],
            },
        ],
    }
}


def _single_rule(condition, outcomes=None, **rule_fields):
    rule = {"name": "rule", "condition": condition, "outcomes": outcomes or [{"type": "log_violation"}]}
    rule.update(rule_fields)
    return {"rules_under_test": {"rules": [rule]}}


class TestConfigurationLoader:
    """Test cases for ConfigurationLoader."""

    @pytest.fixture
    def loader(self):
        return ConfigurationLoader()

    def _matches(self, loader, condition, context):
        rule_set = loader.load_from_dict(_single_rule(condition))[0]
        return bool(rule_set.evaluate(context))

    def test_fraud_document(self, loader):
        """Test the compiled fraud rules reproduce the severity bands."""
        rule_set = loader.load_from_dict(FRAUD_DOCUMENT)[0]

        severe = rule_set.evaluate(EvaluationContext(kind="fraud", severity=9))
        moderate = rule_set.evaluate(EvaluationContext(kind="fraud", severity=6))
        spam = rule_set.evaluate(EvaluationContext(kind="spam", severity=8))

        assert [type(outcome) for outcome in severe] == [SuspendAccount, NotifySupport]
        assert severe[1].priority is SupportPriority.HIGH
        assert [(type(outcome), outcome.points) for outcome in moderate] == [(AddPenalty, 50)]
        assert spam == []

    def test_rule_set_attributes(self, loader):
        """Test rule and rule set fields are carried over."""
        rule_set = loader.load_from_dict(FRAUD_DOCUMENT)[0]

        assert rule_set.name == "fraud_rules"
        assert rule_set.default_strategy is StrategyName.COLLECT_ALL
        assert dict(rule_set.metadata) == {"owner": "trust"}
        assert [rule.priority for rule in rule_set.rules] == [100, 50, 10]

    def test_outcomes_tagged_with_rule_name(self, loader):
        """Test compiled outcomes record the rule that produced them."""
        rule_set = loader.load_from_dict(FRAUD_DOCUMENT)[0]

        outcomes = rule_set.evaluate(EvaluationContext(kind="fraud", severity=9))

        assert {outcome.metadata["rule_name"] for outcome in outcomes} == {"severe_fraud"}

    def test_load_yaml_file(self, loader, tmp_path):
        """Test YAML documents on disk."""
        path = tmp_path / "rules.yml"
        path.write_text(
            "spam_rules:\n"
            "  strategy: first_match\n"
            "  rules:\n"
            "    - name: block_spammer\n"
            "      priority: 5\n"
            "      enabled: false\n"
            "      condition: {type: field_equals, field: kind, value: spam}\n"
            "      outcomes:\n"
            "        - {type: block_action, action_type: post}\n"
        )

        rule_set = loader.load_from_file(path)[0]

        assert rule_set.default_strategy is StrategyName.FIRST_MATCH
        assert rule_set.find_rule("block_spammer").enabled is False

    def test_load_json_file(self, loader, tmp_path):
        """Test JSON documents on disk."""
        path = tmp_path / "rules.json"
        path.write_text(json.dumps(FRAUD_DOCUMENT))

        assert [rule_set.name for rule_set in loader.load_from_file(str(path))] == ["fraud_rules"]

    def test_missing_file(self, loader, tmp_path):
        """Test missing files are reported."""
        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_from_file(tmp_path / "absent.yaml")

        assert "File not found" in exc_info.value.message

    def test_unsupported_extension(self, loader, tmp_path):
        """Test unknown file formats are rejected."""
        path = tmp_path / "rules.toml"
        path.write_text("")

        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_from_file(path)

        assert "Unsupported file format" in exc_info.value.message

    def test_invalid_yaml(self, loader):
        """Test YAML syntax errors are wrapped."""
        with pytest.raises(ConfigurationError):
            loader.load_from_yaml("fraud_rules: [unclosed")

    def test_invalid_json(self, loader):
        """Test JSON syntax errors are wrapped."""
        with pytest.raises(ConfigurationError):
            loader.load_from_json("{not json")

    def test_empty_document(self, loader):
        """Test an empty document compiles to no rule sets."""
        assert loader.load_from_yaml("") == []

    def test_document_must_be_mapping(self, loader):
        """Test top-level lists are rejected."""
        with pytest.raises(ConfigurationError):
            loader.load_from_yaml("- fraud_rules\n")

    def test_rule_schema_errors(self, loader):
        """Test missing required rule fields are reported."""
        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_from_dict({"broken": {"rules": [{"priority": 1}]}})

        assert exc_info.value.details["rule_set"] == "broken"
        assert exc_info.value.details["errors"]

    def test_duplicate_rule_names(self, loader):
        """Test duplicate rule names fail compilation."""
        rule = {"name": "dup", "condition": {"type": "field_equals", "field": "kind", "value": "x"},
                "outcomes": [{"type": "log_violation"}]}

        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_from_dict({"dups": {"rules": [rule, dict(rule)]}})

        assert exc_info.value.details["rule"] == "dup"

    def test_or_and_field_in(self, loader):
        """Test disjunction and membership conditions."""
        condition = {
            "type": "or",
            "conditions": [
                {"type": "field_in", "field": "kind", "values": ["spam", "phishing"]},
                {"type": "field_greater_than", "field": "severity", "value": 8},
            ],
        }

        assert self._matches(loader, condition, EvaluationContext(kind="phishing", severity=1))
        assert self._matches(loader, condition, EvaluationContext(kind="fraud", severity=9))
        assert not self._matches(loader, condition, EvaluationContext(kind="fraud", severity=3))

    def test_attribute_and_nested_fields(self, loader):
        """Test attribute and dotted-path lookups."""
        flat = {"type": "field_equals", "field": "country", "value": "NZ"}
        nested = {"type": "field_greater_than", "field": "account.age_days", "value": 30}
        context = EvaluationContext(kind="fraud", severity=1,
                                    attributes={"country": "NZ", "account": {"age_days": 90}})

        assert self._matches(loader, flat, context)
        assert self._matches(loader, nested, context)

    def test_missing_field_is_false(self, loader):
        """Test comparisons on absent fields do not match or raise."""
        condition = {"type": "field_greater_than", "field": "previous_violations", "value": 2}

        with capture_logs() as logs:
            assert not self._matches(loader, condition, EvaluationContext(kind="spam", severity=1))

        assert not any(entry["event"] == "Condition evaluation failed" for entry in logs)

    @pytest.mark.parametrize("condition", [
        {"type": "regex", "field": "kind", "value": ".*"},
        {"type": "custom", "code": "context.severity > 5"},
        {"type": "and", "conditions": []},
        {"type": "field_equals", "value": "fraud"},
        {"type": "field_equals", "field": "kind"},
        {"type": "field_in", "field": "kind", "values": "spam"},
        {"type": "not"},
        "severity > 5",
    ])
    def test_invalid_conditions(self, loader, condition):
        """Test unsupported or incomplete conditions fail compilation."""
        with pytest.raises(ConfigurationError):
            loader.load_from_dict(_single_rule(condition))

    @pytest.mark.parametrize("outcome", [
        {"type": "teleport_user"},
        {"type": "custom", "name": "x"},
        {"type": "add_penalty", "points": 0},
        {"type": "add_penalty"},
        {"type": "notify_support", "priority": "urgent"},
        {"type": "block_action"},
        "add_penalty",
    ])
    def test_invalid_outcomes(self, loader, outcome):
        """Test outcome specifications are validated at compile time."""
        condition = {"type": "field_equals", "field": "kind", "value": "fraud"}

        with pytest.raises(ConfigurationError):
            loader.load_from_dict(_single_rule(condition, outcomes=[outcome]))

    def test_every_outcome_type(self, loader):
        """Test the full outcome vocabulary compiles."""
        outcomes = [
            {"type": "add_penalty", "points": 5, "reason": "r"},
            {"type": "suspend_account", "duration": 3},
            {"type": "notify_support", "message": "m"},
            {"type": "notify_user", "message": "hello", "channel": "sms"},
            {"type": "log_violation", "level": "error", "details": {"a": 1}},
            {"type": "block_action", "action_type": "login"},
        ]
        condition = {"type": "field_equals", "field": "kind", "value": "fraud"}
        rule_set = loader.load_from_dict(_single_rule(condition, outcomes=outcomes))[0]

        produced = rule_set.evaluate(EvaluationContext(kind="fraud", severity=1))

        assert [type(outcome) for outcome in produced] == [
            AddPenalty, SuspendAccount, NotifySupport, NotifyUser, LogViolation, BlockAction
        ]
        assert produced[4].level is LogLevel.ERROR

    def test_unknown_strategy(self, loader):
        """Test unknown strategies fail compilation by default."""
        document = {"odd": {"strategy": "weighted", "rules": []}}

        with pytest.raises(ConfigurationError) as exc_info:
            loader.load_from_dict(document)

        assert exc_info.value.details["rule_set"] == "odd"

    def test_lenient_unknown_strategy(self):
        """Test lenient loaders fall back to collect_all."""
        loader = ConfigurationLoader(lenient_strategy_names=True)

        with capture_logs() as logs:
            rule_set = loader.load_from_dict({"odd": {"strategy": "weighted", "rules": []}})[0]

        assert rule_set.default_strategy is StrategyName.COLLECT_ALL
        assert any(entry["log_level"] == "warning" for entry in logs)

    def test_default_strategy(self):
        """Test rule sets without a strategy use the loader default."""
        loader = ConfigurationLoader(default_strategy="first_match")

        rule_set = loader.load_from_dict({"plain": {"rules": []}})[0]

        assert rule_set.default_strategy is StrategyName.FIRST_MATCH
