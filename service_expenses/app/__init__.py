"""
Expenses service package.

A small web service whose requests are authorized by a policy-based
decision engine:

- app.main: API surface, service wiring, and health/metrics routes.
- app.domain: Actor and resource entities plus API models.
- app.authz: Type registry, policy loader, rule evaluator, decision service.
- app.auth: Authentication/authorization request pipeline.
- app.persistence: Entity store (in-memory and PostgreSQL).

Guidelines:
- Authorization fails closed; any fault is a deny.
- The policy is loaded once at startup; a bad policy stops the service.
- Rule evaluation is synchronous and performs no I/O.
"""
