"""
CalculationContext — typed, validated key/value store for one quotation request.

Every write goes through set_value(), which validates and coerces the value
according to the key's category (numeric / boolean / elevator / date /
selection / options / raw). The rule engine only reads the context, inside
read_only(); any write during evaluation is a programming error.
"""

import enum
import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Dict, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)


class ServiceType(str, enum.Enum):
    MOVING = "MOVING"
    PACKING = "PACKING"
    CLEANING = "CLEANING"
    DELIVERY = "DELIVERY"


ADDRESSES = ("pickup", "delivery")

# key -> (min, max, integer only)
NUMERIC_FIELDS = {
    "volume": (0, 150, False),
    "distance": (0, 1000, False),
    "duration": (1, 48, False),
    "workers": (1, 10, True),
    "preset_price": (0, 100000, False),
    "pickup_floor": (0, 100, True),
    "delivery_floor": (0, 100, True),
    "pickup_carry_distance": (0, 1000, False),
    "delivery_carry_distance": (0, 1000, False),
}

BOOLEAN_FIELDS = {"auto_detection"}
ELEVATOR_FIELDS = {"pickup_elevator", "delivery_elevator"}
ELEVATOR_VALUES = ("no", "small", "medium", "large")
DATE_FIELDS = {"scheduled_date"}
SELECTION_FIELDS = {"pickup_selections", "delivery_selections", "global_selections"}
OPTIONS_FIELD = "options"

# every key a request may set
CONTEXT_FIELDS = frozenset(
    set(NUMERIC_FIELDS) | BOOLEAN_FIELDS | ELEVATOR_FIELDS | DATE_FIELDS | SELECTION_FIELDS
    | {OPTIONS_FIELD} | {f"{address}_address" for address in ADDRESSES}
)

REQUIRED_FIELDS = {
    ServiceType.MOVING: ("volume", "distance"),
    ServiceType.PACKING: ("workers", "duration", "distance"),
    ServiceType.CLEANING: ("preset_price",),
    ServiceType.DELIVERY: ("preset_price",),
}

TRUE_STRINGS = {"true", "1", "yes", "y", "oui", "on"}
FALSE_STRINGS = {"false", "0", "no", "n", "non", "off", ""}


def parse_service_type(value) -> ServiceType:
    if isinstance(value, ServiceType):
        return value
    try:
        return ServiceType(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown service type: {value!r}. "
            f"Expected one of {[t.value for t in ServiceType]}",
            field="service_type",
        )


def coerce_number(key: str, value, low, high, integer: bool = False):
    """Coerce to Decimal (or int for integer fields) inside [low, high]."""
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number, got a boolean", field=key)
    raw = value.strip().replace(",", ".") if isinstance(value, str) else value
    try:
        number = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number, got {value!r}", field=key)
    if not number.is_finite():
        raise ValidationError(f"{key} must be a finite number, got {value!r}", field=key)
    if integer:
        if number != number.to_integral_value():
            raise ValidationError(f"{key} must be an integer, got {value!r}", field=key)
        number = int(number)
    if number < low or number > high:
        raise ValidationError(f"{key} must be between {low} and {high}, got {value!r}", field=key)
    return number


def coerce_bool(key: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in TRUE_STRINGS:
        return True
    if isinstance(value, str) and value.strip().lower() in FALSE_STRINGS:
        return False
    raise ValidationError(f"{key} must be a boolean, got {value!r}", field=key)


def coerce_elevator(key: str, value) -> str:
    """Elevator category. Booleans map to no/medium (a plain 'yes' is a usable elevator)."""
    if isinstance(value, bool):
        return "medium" if value else "no"
    text = str(value).strip().lower()
    if text in ELEVATOR_VALUES:
        return text
    if text in ("none", "false", "0", "non", ""):
        return "no"
    if text in ("true", "yes", "oui"):
        return "medium"
    raise ValidationError(f"{key} must be one of {list(ELEVATOR_VALUES)}, got {value!r}", field=key)


def coerce_date(key: str, value) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            pass
    raise ValidationError(f"{key} must be an ISO date or datetime, got {value!r}", field=key)


def coerce_selection(key: str, value):
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    raise ValidationError(
        f"{key} must be a list of ids, a map of id -> bool or a grouped map, got {type(value).__name__}",
        field=key,
    )


class CalculationContext:
    """Inputs of one calculation. Created per request, discarded afterwards."""

    def __init__(self, service_type, values: Optional[Dict[str, Any]] = None):
        self._service_type = parse_service_type(service_type)
        self._values: Dict[str, Any] = {}
        self._read_only_depth = 0
        for key, value in (values or {}).items():
            self.set_value(key, value)

    @property
    def service_type(self) -> ServiceType:
        return self._service_type

    def set_value(self, key: str, value) -> None:
        if self._read_only_depth:
            raise RuntimeError(f"Context is read-only during rule evaluation (write to {key!r})")
        if value is None:
            self._values.pop(key, None)
            return
        self._values[key] = self._coerce(key, value)

    def _coerce(self, key: str, value):
        if key in NUMERIC_FIELDS:
            low, high, integer = NUMERIC_FIELDS[key]
            return coerce_number(key, value, low, high, integer)
        if key in BOOLEAN_FIELDS:
            return coerce_bool(key, value)
        if key in ELEVATOR_FIELDS:
            return coerce_elevator(key, value)
        if key in DATE_FIELDS:
            return coerce_date(key, value)
        if key in SELECTION_FIELDS:
            return coerce_selection(key, value)
        if key == OPTIONS_FIELD:
            if not isinstance(value, dict):
                raise ValidationError("options must be a map of option name -> bool", field=key)
            return {str(name): coerce_bool(f"options.{name}", flag) for name, flag in value.items()}
        return value

    def get_value(self, key: str, default=None):
        return self._values.get(key, default)

    def has_value(self, key: str) -> bool:
        return key in self._values

    def validate(self) -> None:
        """Raise ValidationError listing every field the service type needs but lacks."""
        missing = [f for f in REQUIRED_FIELDS[self._service_type] if f not in self._values]
        if missing:
            raise ValidationError(
                f"Missing required field(s) for {self._service_type.value}: {', '.join(missing)}",
                field=missing[0],
                errors=[f"Missing required field: {f}" for f in missing],
            )

    def values(self):
        return MappingProxyType(self._values)

    @contextmanager
    def read_only(self):
        self._read_only_depth += 1
        try:
            yield self
        finally:
            self._read_only_depth -= 1

    def option(self, name: str) -> bool:
        return bool(self._values.get(OPTIONS_FIELD, {}).get(name, False))

    def address_fields(self, address: str) -> Dict[str, Any]:
        """Per-address fields with defaults (ground floor, no elevator, no carry)."""
        return {
            "floor": self._values.get(f"{address}_floor", 0),
            "elevator": self._values.get(f"{address}_elevator", "no"),
            "carry_distance": self._values.get(f"{address}_carry_distance", Decimal("0")),
            "address": self._values.get(f"{address}_address"),
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly echo of the normalized inputs."""
        echo: Dict[str, Any] = {"service_type": self._service_type.value}
        for key in sorted(self._values):
            echo[key] = _jsonable(self._values[key])
        return echo


def _jsonable(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value
