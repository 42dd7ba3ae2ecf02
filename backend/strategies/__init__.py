"""
Service-family pricing strategies.

Each strategy computes a base price from the context (volume/distance,
labour, or a preset price) and hands it to the RuleEngine.
"""
