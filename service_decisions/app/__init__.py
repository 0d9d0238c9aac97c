"""
Decision service package.

Evaluates prioritized rules against incoming events and turns the
resulting outcomes into side effects. It provides:

- app.rules: Contexts, outcomes, rules, rule sets, strategies and the
  configuration compiler.
- app.transactions: Begin/commit/rollback bookkeeping around evaluations.
- app.dispatch: Handler protocol, reference handlers and the dispatcher.
- app.engine: The RuleEngine facade tying the pieces together.

Guidelines:
- Evaluation is deterministic for a given rule set and context.
- Rule sets may be evaluated concurrently; chains are built per call.
- Keep evaluation observable (metrics + logs + spans).
"""
