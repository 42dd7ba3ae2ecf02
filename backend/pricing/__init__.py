"""
Rule-based pricing core.

Deterministic, no I/O. Given a CalculationContext, a base price and a rule
catalog snapshot, produce a fully traceable RuleExecutionResult.
"""
