"""
ScopeResolver — normalizes constraint/service selections and decides against
which address slice(s) a rule is evaluated.

Accepted selection shapes (per pickup / delivery / global input):
  - flat list of ids:        ["<uuid>", ...]
  - flat map:                {"<uuid>": true, ...}
  - grouped map:             {"addressConstraints": {...}, "addressServices": {...},
                              "globalServices": {...}}

Everything is reduced to three frozensets of lowercase ids (pickup, delivery,
global) before the engine sees it.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from ..errors import ValidationError
from .context import ADDRESSES, CalculationContext
from .rules import Rule, Scope

logger = logging.getLogger(__name__)

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

GLOBAL = "global"

# grouped-map keys -> logical bucket ("address" means the address the input belongs to)
GROUP_KEYS = {
    "addressConstraints": "address",
    "address_constraints": "address",
    "addressServices": "address",
    "address_services": "address",
    "globalServices": GLOBAL,
    "global_services": GLOBAL,
    "globalConstraints": GLOBAL,
    "global_constraints": GLOBAL,
}

FALSY_FLAGS = {"false", "0", "no", "non", "off", ""}

# Context fields copied into every slice
SHARED_FIELDS = ("volume", "distance", "duration", "workers", "preset_price")


@dataclass(frozen=True)
class Selections:
    pickup: FrozenSet[str] = frozenset()
    delivery: FrozenSet[str] = frozenset()
    global_: FrozenSet[str] = frozenset()

    def for_address(self, address: str) -> FrozenSet[str]:
        if address == GLOBAL:
            return self.global_
        return getattr(self, address)

    def all_ids(self) -> FrozenSet[str]:
        return self.pickup | self.delivery | self.global_


@dataclass(frozen=True)
class ContextSlice:
    """What a rule condition sees: one address (or the merged view) of the context."""
    address: str
    fields: Mapping
    selection: FrozenSet[str] = field(default_factory=frozenset)


def _is_selected(flag) -> bool:
    if flag is None or flag is False:
        return False
    if isinstance(flag, str):
        return flag.strip().lower() not in FALSY_FLAGS
    if isinstance(flag, (int, float)) and not isinstance(flag, bool):
        return flag != 0
    return True


class ScopeResolver:

    def __init__(self, max_ids_per_bucket: int = 50):
        self.max_ids_per_bucket = max_ids_per_bucket

    # --- Normalization ---

    def normalize(self, raw, address: str) -> Dict[str, FrozenSet[str]]:
        """
        Normalize one raw selection input submitted for `address`
        ("pickup", "delivery" or "global").

        Returns {"<address>": ids, "global": ids}.
        """
        buckets: Dict[str, set] = {address: set(), GLOBAL: set()}
        if raw is None:
            return {k: frozenset(v) for k, v in buckets.items()}

        if isinstance(raw, Mapping) and raw and any(k in GROUP_KEYS for k in raw):
            for key, group in raw.items():
                if key not in GROUP_KEYS:
                    raise ValidationError(
                        f"Unknown selection group {key!r}. Expected one of {sorted(set(GROUP_KEYS))}",
                        field=f"{address}_selections",
                    )
                target = address if GROUP_KEYS[key] == "address" else GLOBAL
                buckets[target].update(self._ids(group, address))
        else:
            buckets[address].update(self._ids(raw, address))

        return {k: frozenset(v) for k, v in buckets.items()}

    def _ids(self, group, address: str) -> List[str]:
        if group is None:
            return []
        if isinstance(group, Mapping):
            candidates = [k for k, flag in group.items() if _is_selected(flag)]
        elif isinstance(group, (list, tuple, set, frozenset)):
            candidates = list(group)
        else:
            raise ValidationError(
                f"Selections for {address} must be a list or a map, got {type(group).__name__}",
                field=f"{address}_selections",
            )
        return [self._check_id(c, address) for c in candidates]

    def _check_id(self, candidate, address: str) -> str:
        if not isinstance(candidate, str) or not UUID_RE.match(candidate.strip()):
            raise ValidationError(
                f"Malformed constraint/service id for {address}: {candidate!r}",
                field=f"{address}_selections",
            )
        return candidate.strip().lower()

    def resolve_selections(self, context: CalculationContext) -> Selections:
        """Collect and normalize every selection input carried by the context."""
        per_bucket: Dict[str, set] = {"pickup": set(), "delivery": set(), GLOBAL: set()}
        for address in ADDRESSES:
            normalized = self.normalize(context.get_value(f"{address}_selections"), address)
            for bucket, ids in normalized.items():
                per_bucket[bucket].update(ids)
        global_raw = context.get_value("global_selections")
        if global_raw is not None:
            normalized = self.normalize(global_raw, GLOBAL)
            per_bucket[GLOBAL].update(normalized[GLOBAL])

        for bucket, ids in per_bucket.items():
            if len(ids) > self.max_ids_per_bucket:
                raise ValidationError(
                    f"Too many ids selected for {bucket}: {len(ids)} "
                    f"(maximum {self.max_ids_per_bucket})",
                    field=f"{bucket}_selections",
                )

        return Selections(
            pickup=frozenset(per_bucket["pickup"]),
            delivery=frozenset(per_bucket["delivery"]),
            global_=frozenset(per_bucket[GLOBAL]),
        )

    def classify(self, selections: Selections) -> Dict[str, Scope]:
        """Map each selected id to where it was declared."""
        classified = {}
        for rule_id in sorted(selections.all_ids()):
            at_pickup = rule_id in selections.pickup
            at_delivery = rule_id in selections.delivery
            if at_pickup and at_delivery:
                classified[rule_id] = Scope.BOTH
            elif at_pickup:
                classified[rule_id] = Scope.PICKUP
            elif at_delivery:
                classified[rule_id] = Scope.DELIVERY
            else:
                classified[rule_id] = Scope.GLOBAL
        return classified

    # --- Slices ---

    def build_slices(self, context: CalculationContext, selections: Selections,
                     inferred: Optional[Mapping[str, Iterable[str]]] = None) -> Dict[str, ContextSlice]:
        """
        Build the pickup, delivery and global slices.

        Address slices see their own declared ids plus what inference added
        there. The global slice sees the union of everything.
        """
        inferred = inferred or {}
        shared = self._shared_fields(context)

        slices = {}
        union = set(selections.global_)
        for address in ADDRESSES:
            fields = dict(shared)
            fields.update(context.address_fields(address))
            selected = set(selections.for_address(address)) | set(inferred.get(address, ()))
            union |= selected
            slices[address] = ContextSlice(address, fields, frozenset(selected))

        slices[GLOBAL] = ContextSlice(GLOBAL, shared, frozenset(union))
        return slices

    def _shared_fields(self, context: CalculationContext) -> Dict:
        fields = {}
        for name in SHARED_FIELDS:
            if context.has_value(name):
                fields[name] = context.get_value(name)

        fields["max_floor"] = max(
            context.address_fields(address)["floor"] for address in ADDRESSES
        )

        scheduled = context.get_value("scheduled_date")
        if scheduled is not None:
            fields["scheduled_weekday"] = scheduled.weekday()
            fields["scheduled_hour"] = scheduled.hour
            fields["scheduled_month"] = scheduled.month

        for name, flag in context.get_value("options", {}).items():
            fields[f"option.{name}"] = flag
        return fields

    def instances(self, rule: Rule, slices: Mapping[str, ContextSlice]) -> List[ContextSlice]:
        """The slices a rule is evaluated against, in pickup-then-delivery order."""
        if rule.scope == Scope.GLOBAL:
            return [slices[GLOBAL]]
        if rule.scope == Scope.PICKUP:
            return [slices["pickup"]]
        if rule.scope == Scope.DELIVERY:
            return [slices["delivery"]]
        return [slices["pickup"], slices["delivery"]]
