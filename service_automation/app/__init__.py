"""
Automation Service package.

Matches business entities (orders, users, products) against stored
condition sets and dispatches actions on a match. It provides:

- app.main: API surface for triggers, definitions, manual test runs and
  execution history.
- app.conditions: dot-path lookup and the left-to-right condition fold.
- app.actions: handler registry, dispatcher and built-in handlers.
- app.engine: the execution orchestrator.
- app.persistence: definition stores and audit sinks (memory, PostgreSQL).
- app.cache: Redis cache of eligible definitions.
"""
