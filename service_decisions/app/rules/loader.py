"""
Configuration compiler: YAML/JSON rule documents to RuleSet objects.

Document shape::

    fraud_rules:
      strategy: collect_all
      rules:
        - name: severe_fraud
          priority: 100
          condition:
            type: and
            conditions:
              - {type: field_equals, field: kind, value: fraud}
              - {type: not, condition: {type: field_less_than, field: severity, value: 8}}
          outcomes:
            - {type: suspend_account, reason: Severe fraud}
            - {type: notify_support, priority: high}

The condition and outcome vocabularies are closed; unknown types fail
compilation with ``ConfigurationError``.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from shared.errors import ConfigurationError, InvalidRuleError, UnknownStrategyError, ValidationError
from shared.logging import get_logger
from . import conditions
from .models import OUTCOME_TYPES, EvaluationContext, Outcome, OutcomeKind, StrategyName, parse_strategy_name
from .rule import Rule, RuleSet


class RuleConfig(BaseModel):
    """One rule entry of a rule set document."""
    name: str = Field(..., description="Rule name, unique within the rule set")
    priority: int = Field(0, description="Higher priorities are evaluated first")
    enabled: bool = Field(True, description="Whether the rule takes part in evaluation")
    description: Optional[str] = Field(None, description="Rule description")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Opaque rule metadata")
    condition: Dict[str, Any] = Field(..., description="Condition tree")
    outcomes: List[Dict[str, Any]] = Field(default_factory=list, description="Outcome specifications")


class RuleSetConfig(BaseModel):
    """One named rule set of a document."""
    strategy: Optional[str] = Field(None, description="collect_all or first_match")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Opaque rule set metadata")
    rules: List[RuleConfig] = Field(default_factory=list, description="Rules of the set")


OUTCOME_FIELDS = {
    OutcomeKind.ADD_PENALTY: ("points", "reason"),
    OutcomeKind.SUSPEND_ACCOUNT: ("duration", "reason"),
    OutcomeKind.NOTIFY_SUPPORT: ("priority", "message"),
    OutcomeKind.NOTIFY_USER: ("message", "channel"),
    OutcomeKind.LOG_VIOLATION: ("level", "details"),
    OutcomeKind.BLOCK_ACTION: ("action_type", "reason"),
}

SUPPORTED_EXTENSIONS = (".yaml", ".yml", ".json")


class ConfigurationLoader:
    """Compiles rule documents into rule sets."""

    def __init__(self, default_strategy: Union[StrategyName, str] = StrategyName.COLLECT_ALL,
                 lenient_strategy_names: bool = False, logger=None):
        self.default_strategy = parse_strategy_name(default_strategy)
        self.lenient_strategy_names = lenient_strategy_names
        self.logger = logger or get_logger("decisions.loader")

    def load_from_file(self, file_path: Union[str, Path]) -> List[RuleSet]:
        path = Path(file_path).expanduser().resolve()
        if not path.exists():
            raise ConfigurationError(f"File not found: {path}", {"path": str(path)})

        extension = path.suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise ConfigurationError(
                f"Unsupported file format: {extension}. Supported formats: .yaml, .yml, .json",
                {"path": str(path)}
            )

        content = path.read_text(encoding="utf-8")
        self.logger.info("Loading rule configuration", path=str(path))
        if extension == ".json":
            return self.load_from_json(content)
        return self.load_from_yaml(content)

    def load_from_yaml(self, content: str) -> List[RuleSet]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML: {exc}") from exc
        return self.load_from_dict(data)

    def load_from_json(self, content: str) -> List[RuleSet]:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON: {exc}") from exc
        return self.load_from_dict(data)

    def load_from_dict(self, data: Optional[Mapping[str, Any]]) -> List[RuleSet]:
        if data is None:
            return []
        if not isinstance(data, Mapping):
            raise ConfigurationError("Rule configuration must map rule set names to rule sets")

        rule_sets = [self.build_rule_set(str(name), config or {}) for name, config in data.items()]
        self.logger.info(
            "Rule configuration compiled",
            rule_sets=len(rule_sets),
            rules=sum(len(rule_set) for rule_set in rule_sets)
        )
        return rule_sets

    def build_rule_set(self, name: str, config: Mapping[str, Any]) -> RuleSet:
        try:
            parsed = RuleSetConfig.model_validate(config)
        except PydanticValidationError as exc:
            raise ConfigurationError(
                f"Invalid rule set '{name}'",
                {"rule_set": name, "errors": exc.errors(include_url=False)}
            ) from exc

        rules = [self.build_rule(rule_config, name) for rule_config in parsed.rules]
        try:
            return RuleSet(
                name=name,
                rules=rules,
                default_strategy=self._strategy(parsed.strategy, name),
                metadata=parsed.metadata
            )
        except InvalidRuleError as exc:
            raise ConfigurationError(exc.message, exc.details) from exc

    def build_rule(self, config: RuleConfig, rule_set_name: str = "") -> Rule:
        location = {"rule_set": rule_set_name, "rule": config.name}
        condition = self.build_condition(config.condition, location)
        producers = [self.build_outcome(spec, config.name, location) for spec in config.outcomes]

        return Rule(
            name=config.name,
            condition=condition,
            outcomes=producers,
            priority=config.priority,
            enabled=config.enabled,
            metadata=config.metadata,
            description=config.description
        )

    def build_condition(self, spec: Any, location: Optional[Dict[str, Any]] = None) -> conditions.Predicate:
        location = location or {}
        if not isinstance(spec, Mapping):
            raise ConfigurationError(f"Invalid condition configuration: {spec!r}", location)

        condition_type = spec.get("type")

        if condition_type in ("and", "or"):
            children = spec.get("conditions")
            if not isinstance(children, list) or not children:
                raise ConfigurationError(
                    f"Condition '{condition_type}' requires a non-empty 'conditions' list", location
                )
            compiled = [self.build_condition(child, location) for child in children]
            combine = conditions.all_of if condition_type == "and" else conditions.any_of
            return combine(*compiled)

        if condition_type == "not":
            return conditions.negate(self.build_condition(spec.get("condition"), location))

        if condition_type in ("field_equals", "field_greater_than", "field_less_than"):
            field = self._field(spec, condition_type, location)
            if "value" not in spec:
                raise ConfigurationError(f"Condition '{condition_type}' requires 'value'", location)
            factory = getattr(conditions, condition_type)
            return factory(field, spec["value"])

        if condition_type == "field_in":
            field = self._field(spec, condition_type, location)
            values = spec.get("values")
            if not isinstance(values, list):
                raise ConfigurationError("Condition 'field_in' requires a 'values' list", location)
            return conditions.field_in(field, values)

        if condition_type == "custom":
            raise ConfigurationError("Custom code conditions are not supported", location)

        raise ConfigurationError(f"Unknown condition type: {condition_type}", location)

    def build_outcome(self, spec: Any, rule_name: str,
                      location: Optional[Dict[str, Any]] = None) -> Callable[[EvaluationContext], Outcome]:
        location = location or {}
        if not isinstance(spec, Mapping):
            raise ConfigurationError(f"Invalid outcome configuration: {spec!r}", location)

        outcome_type = spec.get("type")
        try:
            kind = OutcomeKind(outcome_type)
        except ValueError:
            kind = None
        if kind is None or kind not in OUTCOME_FIELDS:
            raise ConfigurationError(f"Unknown outcome type: {outcome_type}", location)

        outcome_cls = OUTCOME_TYPES[kind]
        fields = {key: spec[key] for key in OUTCOME_FIELDS[kind] if key in spec}
        metadata = {"rule_name": rule_name}

        try:
            outcome_cls(None, **fields)
        except ValidationError as exc:
            raise ConfigurationError(exc.message, {**location, **exc.details}) from exc
        except TypeError as exc:
            raise ConfigurationError(f"Outcome '{outcome_type}' is missing fields: {exc}", location) from exc

        def producer(context: EvaluationContext) -> Outcome:
            return outcome_cls(context, metadata=metadata, **fields)

        return producer

    def _field(self, spec: Mapping[str, Any], condition_type: str, location: Dict[str, Any]) -> str:
        field = spec.get("field")
        if not isinstance(field, str) or not field:
            raise ConfigurationError(f"Condition '{condition_type}' requires 'field'", location)
        return field

    def _strategy(self, strategy: Optional[str], rule_set_name: str) -> StrategyName:
        if strategy is None:
            return self.default_strategy
        try:
            return parse_strategy_name(strategy)
        except UnknownStrategyError as exc:
            if not self.lenient_strategy_names:
                raise ConfigurationError(exc.message, {"rule_set": rule_set_name, **exc.details}) from exc
            self.logger.warning(
                "Unknown strategy, falling back to collect_all",
                rule_set=rule_set_name,
                strategy=strategy
            )
            return StrategyName.COLLECT_ALL
