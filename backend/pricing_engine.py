"""
Pricing Engine — request-level orchestrator.

Request dict → CalculationContext → Strategy (base price) → RuleEngine
(rules, inference, floor) → ResultFormatter.

Pure computation apart from the rule catalog lookup, which happens once per
request through the catalog collaborator.
"""

import logging
from typing import Any, Dict, Optional

from .config import settings as default_settings
from .errors import CatalogUnavailableError, ValidationError
from .pricing.catalog import InMemoryRuleCatalog, default_rules
from .pricing.context import ADDRESSES, CONTEXT_FIELDS, CalculationContext
from .pricing.formatter import ResultFormatter
from .strategies.registry import StrategyRegistry, build_default_registry

logger = logging.getLogger(__name__)

# request key -> context key
FIELD_ALIASES = {
    "serviceType": "service_type",
    "scheduledDate": "scheduled_date",
    "defaultPrice": "preset_price",
    "default_price": "preset_price",
    "basePrice": "preset_price",
    "base_price": "preset_price",
    "presetPrice": "preset_price",
    "autoDetection": "auto_detection",
    "globalSelections": "global_selections",
    "pickupSelections": "pickup_selections",
    "deliverySelections": "delivery_selections",
}

ADDRESS_ALIASES = {
    "floor": "floor",
    "elevator": "elevator",
    "carryDistance": "carry_distance",
    "carry_distance": "carry_distance",
    "address": "address",
    "selections": "selections",
}


class PricingEngine:
    """
    Entry point used by the HTTP layer and by direct callers.
    Holds only immutable collaborators; safe to share between requests.
    """

    def __init__(self, registry: Optional[StrategyRegistry] = None, catalog=None,
                 settings=None, formatter: Optional[ResultFormatter] = None):
        self.settings = settings or default_settings
        self.registry = registry or build_default_registry(self.settings)
        self.catalog = catalog if catalog is not None else InMemoryRuleCatalog(default_rules())
        self.formatter = formatter or ResultFormatter(currency=self.settings.CURRENCY)

    @staticmethod
    def build_context(request: Dict[str, Any]) -> CalculationContext:
        """
        Build a validated context from a request dict (camelCase or snake_case keys).

        Address blocks ({"pickup": {...}, "delivery": {...}}) are flattened to
        pickup_floor, pickup_elevator, ... Unset (None) values are ignored.
        """
        data = {}
        for key, value in request.items():
            if value is not None:
                data[FIELD_ALIASES.get(key, key)] = value
        service_type = data.pop("service_type", None)
        if service_type is None:
            raise ValidationError("service_type is required", field="service_type")

        context = CalculationContext(service_type)
        for address in ADDRESSES:
            block = data.pop(address, None) or {}
            if not isinstance(block, dict):
                raise ValidationError(f"{address} must be an object", field=address)
            for key, value in block.items():
                if key not in ADDRESS_ALIASES:
                    raise ValidationError(f"Unknown {address} field: {key}", field=f"{address}.{key}")
                context.set_value(f"{address}_{ADDRESS_ALIASES[key]}", value)

        for key, value in data.items():
            if key not in CONTEXT_FIELDS:
                raise ValidationError(f"Unknown request field: {key}", field=key)
            if key == "options" and not value:
                continue
            context.set_value(key, value)
        return context

    def _catalog_for(self, catalog, service_type):
        """Per-request snapshot when the catalog supports it."""
        if not hasattr(catalog, "snapshot"):
            return catalog
        try:
            return catalog.snapshot(service_type)
        except CatalogUnavailableError as e:
            logger.warning(f"Catalog snapshot failed for {service_type.value}: {e}")
            return catalog

    def calculate(self, request: Dict[str, Any], catalog=None) -> dict:
        """
        Price one request.

        Raises:
            ValidationError: malformed request (nothing is priced)
            StrategyNotFoundError: no strategy for the service type
        """
        context = self.build_context(request)
        strategy = self.registry.get(context.service_type)
        source = catalog if catalog is not None else self.catalog
        rules = self._catalog_for(source, context.service_type)

        execution = strategy.execute(context, rules)
        components = strategy.price_components(context)
        quote = strategy.build_quote(execution, components)

        response = self.formatter.format(
            execution, context, components=components,
            name_resolver=getattr(source, "resolve_names", None),
        )
        response["quote"] = quote.to_dict()
        return response
