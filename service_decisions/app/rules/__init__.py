"""
Rules package.

Defines the evaluation context, the closed outcome vocabulary, rules and
rule sets, and the strategies deciding how far a rule chain is walked.

Modules of interest:
- models: EvaluationContext and the Outcome variants.
- rule: Rule, ChainLink and RuleSet.
- strategies: CollectAll, FirstMatch, StopOnOutcome, LimitOutcomes.
- conditions / builder: Helpers for defining rules in code.
- loader: Compiles YAML/JSON rule documents.
- validation: Static checks on rule sets.
"""
