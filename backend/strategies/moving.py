"""
Moving — volume/distance-driven base price.

base = volume × MOVING_VOLUME_RATE + distance × MOVING_DISTANCE_RATE
       + per-address floor adjustments
"""

from decimal import Decimal
from typing import Dict

from ..pricing.context import CalculationContext, ServiceType
from ..pricing.rules import to_money
from .base import BaseStrategy, _rate


class MovingStrategy(BaseStrategy):

    SERVICE_TYPE = ServiceType.MOVING

    OPTION_PRICES = {
        "packing_materials": 80.0,
        "storage": 120.0,
        "cleaning": 150.0,
    }

    def price_components(self, context: CalculationContext) -> Dict[str, Decimal]:
        volume = context.get_value("volume", Decimal(0))
        components = {
            "volume_cost": to_money(volume * _rate(self.settings.MOVING_VOLUME_RATE)),
            "travel_cost": self.travel_cost(context, self.settings.MOVING_DISTANCE_RATE),
        }
        components.update(self.address_adjustments(context))
        return components
