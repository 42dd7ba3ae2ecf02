"""
Preset-priced services (cleaning, delivery): the base price is the submitted
preset price. The rule pass and the floor still apply.
"""

from decimal import Decimal
from typing import Dict

from ..pricing.context import CalculationContext, ServiceType
from ..pricing.rules import to_money
from .base import BaseStrategy


class PresetStrategy(BaseStrategy):

    def price_components(self, context: CalculationContext) -> Dict[str, Decimal]:
        return {"preset_price": to_money(context.get_value("preset_price", Decimal(0)))}


class CleaningStrategy(PresetStrategy):

    SERVICE_TYPE = ServiceType.CLEANING

    OPTION_PRICES = {
        "windows": 40.0,
        "oven": 30.0,
    }


class DeliveryStrategy(PresetStrategy):

    SERVICE_TYPE = ServiceType.DELIVERY
