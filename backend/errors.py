"""
Typed failures of the quotation core.

ValidationError and StrategyNotFoundError reach the caller. RuleConditionError
and CatalogUnavailableError are caught by the rule engine and turned into
diagnostics on the result (a bad catalog entry never aborts a quote).
"""

from typing import List, Optional


class QuotingError(Exception):
    """Base class for every error raised by the pricing core."""


class ValidationError(QuotingError):
    """Malformed or out-of-range input. The calculation is not attempted."""

    def __init__(self, message: str, field: Optional[str] = None,
                 errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.errors = errors or [message]

    def to_dict(self) -> dict:
        return {"error": "validation_error", "message": self.message,
                "field": self.field, "errors": self.errors}


class StrategyNotFoundError(QuotingError):
    """No pricing strategy registered for the requested service type."""

    def __init__(self, service_type: str, available: Optional[List[str]] = None):
        self.service_type = service_type
        self.available = available or []
        super().__init__(
            f"No pricing strategy registered for service type: {service_type}. "
            f"Available: {self.available}"
        )


class RuleConditionError(QuotingError):
    """A single rule's predicate raised while being evaluated."""

    def __init__(self, rule_id: str, rule_name: str, cause: Exception):
        self.rule_id = rule_id
        self.rule_name = rule_name
        self.cause = cause
        super().__init__(f"Condition of rule '{rule_name}' ({rule_id}) failed: {cause!r}")


class CatalogUnavailableError(QuotingError):
    """The rule catalog collaborator could not provide rules."""
