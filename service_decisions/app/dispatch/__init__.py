"""
Outcome dispatch package.

- dispatcher: OutcomeDispatcher and per-invocation DispatchResult records.
- handlers: ActionHandler base plus log-only reference handlers.
"""
