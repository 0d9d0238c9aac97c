#!/usr/bin/env python3
"""
Evaluate a single event against a rules document.

Loads a YAML/JSON rules file, builds an evaluation context from the command
line, evaluates the named rule set and dispatches the outcomes through the
reference handlers. Prints a JSON summary of outcomes and handler results.

    python scripts/evaluate_context.py service_decisions/config/violation_rules.yaml \
        --rule-set fraud_rules --kind fraud --severity 9 --subject user-42 --attr ip=10.0.0.1
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List

import yaml

from service_decisions.app.dispatch.handlers import default_handlers
from service_decisions.app.engine import RuleEngine
from service_decisions.app.rules.loader import ConfigurationLoader
from service_decisions.app.rules.models import EvaluationContext
from shared.config import DecisionSettings, get_config
from shared.errors import ConfigurationError, DecisionLayerException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id, set_subject_context
from shared.metrics import get_metrics_collector
from shared.tracing import configure_tracing


def _parse_attributes(pairs: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into attributes; values are parsed as YAML scalars."""
    attributes: Dict[str, Any] = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator or not key:
            raise argparse.ArgumentTypeError(f"Attributes must look like key=value: {pair!r}")
        attributes[key] = yaml.safe_load(value) if value else None
    return attributes


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate an event against a rules document.")
    parser.add_argument("rules_file", type=Path, nargs="?", default=None, help="YAML or JSON rules document (defaults to DECISIONS_RULES_CONFIG_PATH)")
    parser.add_argument("--rule-set", required=True, help="Rule set to evaluate")
    parser.add_argument("--kind", required=True, help="Event kind, e.g. fraud or spam")
    parser.add_argument("--severity", type=int, required=True, help="Event severity")
    parser.add_argument("--subject", default=None, help="Subject identifier")
    parser.add_argument("--attr", action="append", default=[], help="Context attribute as key=value (repeatable)")
    parser.add_argument("--strategy", default=None, help="collect_all or first_match (defaults to the rule set's)")
    parser.add_argument("--transaction-id", default=None, help="Evaluate inside this transaction")
    parser.add_argument("--no-dispatch", action="store_true", help="Evaluate only; do not invoke handlers")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args(argv)


def run(args: argparse.Namespace, settings: DecisionSettings) -> Dict[str, Any]:
    """Evaluate and dispatch once and return the summary."""
    rules_file = args.rules_file or settings.rules_config_path
    if not rules_file:
        raise ConfigurationError("No rules file given and DECISIONS_RULES_CONFIG_PATH is unset")

    metrics = get_metrics_collector(settings.service_name)
    if settings.metrics_port:
        metrics.start_metrics_server(settings.metrics_port)
    engine = RuleEngine(metrics=metrics, lenient_strategy_names=settings.lenient_strategy_names)
    engine.load_from_config(rules_file, loader=ConfigurationLoader(
        default_strategy=settings.default_strategy,
        lenient_strategy_names=settings.lenient_strategy_names
    ))
    engine.register_handlers(*default_handlers())

    context = EvaluationContext(
        kind=args.kind,
        severity=args.severity,
        subject_id=args.subject,
        attributes=_parse_attributes(args.attr)
    )
    set_subject_context(args.subject, args.transaction_id)

    report = engine.evaluate_and_dispatch(
        args.rule_set,
        context,
        strategy=args.strategy,
        transaction_id=args.transaction_id,
        dispatch=not args.no_dispatch
    )

    summary = report.to_dict()
    summary["rule_set"] = args.rule_set
    summary["context"] = context.to_dict()
    summary["stats"] = engine.stats()
    return summary


def main(argv=None) -> int:
    args = _parse_args(argv)
    settings = get_config()
    # stdout carries the JSON summary
    configure_logging(settings.service_name, settings.log_level, settings.log_format, stream=sys.stderr)
    if settings.enable_tracing:
        configure_tracing(settings.service_name, enable_console=settings.enable_console_tracing)
    set_request_id()
    logger = get_logger("decisions.cli")

    try:
        summary = run(args, settings)
    except KeyboardInterrupt:
        return 130
    except DecisionLayerException as exc:
        logger.error("Evaluation failed", error_code=exc.code, error=exc.message)
        print(exc.to_response().model_dump_json(indent=2), file=sys.stderr)
        return 1
    except argparse.ArgumentTypeError as exc:
        print(f"[evaluate] {exc}", file=sys.stderr)
        return 2
    finally:
        clear_context()

    output = json.dumps(summary, indent=2, default=str)
    print(output)

    if args.output:
        args.output.write_text(output)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
