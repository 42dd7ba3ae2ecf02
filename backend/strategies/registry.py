"""
Strategy registry — maps service types to strategy instances.

Built once at startup (build_default_registry) and passed to whoever needs it.
"""

from typing import Dict, List, Optional

from ..config import settings as default_settings
from ..errors import StrategyNotFoundError
from ..pricing.context import ServiceType
from ..pricing.engine import RuleEngine
from .base import BaseStrategy
from .moving import MovingStrategy
from .packing import PackingStrategy
from .preset import CleaningStrategy, DeliveryStrategy

DEFAULT_STRATEGIES = (MovingStrategy, PackingStrategy, CleaningStrategy, DeliveryStrategy)


def _key(service_type) -> str:
    if isinstance(service_type, ServiceType):
        return service_type.value
    return str(service_type).strip().upper()


class StrategyRegistry:

    def __init__(self):
        self._strategies: Dict[str, BaseStrategy] = {}

    def register(self, strategy: BaseStrategy) -> None:
        self._strategies[_key(strategy.SERVICE_TYPE)] = strategy

    def get(self, service_type) -> BaseStrategy:
        """Returns the strategy for a service type, or raises StrategyNotFoundError."""
        key = _key(service_type)
        if key not in self._strategies:
            raise StrategyNotFoundError(key, self.list())
        return self._strategies[key]

    def has(self, service_type) -> bool:
        return _key(service_type) in self._strategies

    def list(self) -> List[str]:
        return sorted(self._strategies)


def build_default_registry(settings=None, engine: Optional[RuleEngine] = None) -> StrategyRegistry:
    """One shared RuleEngine for every strategy; the engine keeps no per-call state."""
    settings = settings or default_settings
    engine = engine or RuleEngine.from_settings(settings)

    registry = StrategyRegistry()
    for strategy_cls in DEFAULT_STRATEGIES:
        registry.register(strategy_cls(engine=engine, settings=settings))
    return registry
