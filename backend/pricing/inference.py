"""
InferenceEngine — equipment and constraint detection, constraint consumption.

Per address, decides whether a furniture lift is mandatory from the declared
signals (floor, elevator, access difficulties, bulky/heavy items), even when
the client did not select it, and whether the carry distance between the
truck and the entrance calls for the long-carry constraint. When an equipment
rule fires at an address, the constraints it subsumes at that address are
consumed: they are not charged, and they are reported with the equipment that
absorbed them.

Thresholds and id sets are business heuristics kept as literal constants.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from . import rule_ids
from .context import ADDRESSES, CalculationContext
from .results import ConsumedConstraint, DECLARED, INFERRED
from .rules import Rule, RuleKind, Scope
from .scope import ContextSlice, Selections

logger = logging.getLogger(__name__)

FURNITURE_LIFT_FLOOR_THRESHOLD = 3

LONG_CARRY_DISTANCE_THRESHOLD = 30  # metres

USABLE_ELEVATORS = ("medium", "large")

ELEVATOR_ISSUE_IDS = frozenset({
    rule_ids.ELEVATOR_TOO_SMALL,
    rule_ids.ELEVATOR_UNAVAILABLE,
    rule_ids.ELEVATOR_FORBIDDEN,
})

ACCESS_DIFFICULTY_IDS = frozenset({
    rule_ids.NARROW_STAIRS,
    rule_ids.NARROW_CORRIDORS,
    rule_ids.INDIRECT_EXIT,
})

BULKY_ITEM_IDS = frozenset({
    rule_ids.BULKY_FURNITURE,
    rule_ids.HEAVY_ITEMS,
})

# equipment rule id -> constraint ids it makes redundant at the same address
SUBSUMPTION_TABLE: Dict[str, Tuple[str, ...]] = {
    rule_ids.FURNITURE_LIFT: (
        rule_ids.NARROW_STAIRS,
        rule_ids.NARROW_CORRIDORS,
        rule_ids.ELEVATOR_TOO_SMALL,
        rule_ids.HEAVY_ITEMS,
        rule_ids.ELEVATOR_UNAVAILABLE,
        rule_ids.ELEVATOR_FORBIDDEN,
    ),
}

ADDRESS_SCOPES = {
    "pickup": (Scope.PICKUP, Scope.BOTH),
    "delivery": (Scope.DELIVERY, Scope.BOTH),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class InferenceDecision:
    address: str
    required: bool
    reason: str
    allowed: bool
    traceability: Optional[str]     # declared | inferred | None when not required
    timestamp: str
    rule_id: str = rule_ids.FURNITURE_LIFT   # equipment or constraint decided on

    @property
    def inferred(self) -> bool:
        return self.required and self.traceability == INFERRED

    def to_dict(self) -> dict:
        return {
            "required": self.required,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "allowed": self.allowed,
            "rule_id": self.rule_id,
            "traceability": self.traceability,
        }


class InferenceEngine:

    def __init__(self, floor_threshold: int = FURNITURE_LIFT_FLOOR_THRESHOLD,
                 enabled: bool = True,
                 clock: Optional[Callable[[], datetime]] = None,
                 subsumption: Optional[Mapping[str, Iterable[str]]] = None,
                 carry_threshold=LONG_CARRY_DISTANCE_THRESHOLD):
        self.floor_threshold = floor_threshold
        self.carry_threshold = Decimal(str(carry_threshold))
        self.enabled = enabled
        self.clock = clock or _utcnow
        self.subsumption = {
            k: tuple(v) for k, v in (subsumption if subsumption is not None else SUBSUMPTION_TABLE).items()
        }

    # --- Furniture lift policy ---

    def lift_policy(self, floor: int, elevator: str, declared: FrozenSet[str]) -> Tuple[bool, str]:
        """
        Returns (required, reason) for one address.

        Not required with a usable (medium/large) elevator and no declared
        elevator issue. Otherwise required only when an access difficulty is
        declared and either bulky/heavy items go up at least one floor, or
        the floor is above the threshold.
        """
        issues = declared & ELEVATOR_ISSUE_IDS
        if elevator in USABLE_ELEVATORS and not issues:
            return False, f"Usable {elevator} elevator without declared issue"

        difficulties = declared & ACCESS_DIFFICULTY_IDS
        if not difficulties:
            return False, f"Floor {floor} with {elevator} elevator but no access difficulty declared"

        has_bulky = bool(declared & BULKY_ITEM_IDS)
        elevator_desc = f"{elevator} elevator" + (" with declared issue" if issues else "")
        if has_bulky and floor >= 1:
            return True, (f"Bulky or heavy items at floor {floor}, {elevator_desc}, "
                          f"{len(difficulties)} access difficulty(ies)")
        if not has_bulky and floor > self.floor_threshold:
            return True, (f"Floor {floor} above threshold {self.floor_threshold}, {elevator_desc}, "
                          f"{len(difficulties)} access difficulty(ies)")
        return False, f"Floor {floor} does not require a furniture lift"

    def decide(self, address: str, fields: Mapping, declared: FrozenSet[str],
               allowed: bool) -> InferenceDecision:
        timestamp = self.clock().isoformat()
        equipment = rule_ids.FURNITURE_LIFT

        if equipment in declared:
            return InferenceDecision(address, True, "Furniture lift selected by the client",
                                     allowed, DECLARED, timestamp)
        if not allowed:
            return InferenceDecision(address, False, "Automatic detection disabled",
                                     False, None, timestamp)

        required, reason = self.lift_policy(fields["floor"], fields["elevator"], declared)
        logger.debug(f"Lift inference at {address}: required={required} ({reason})")
        return InferenceDecision(address, required, reason, True,
                                 INFERRED if required else None, timestamp)

    def infer(self, context: CalculationContext, selections: Selections) -> Dict[str, InferenceDecision]:
        allowed = self.enabled and context.get_value("auto_detection", True)
        return {
            address: self.decide(address, context.address_fields(address),
                                 selections.for_address(address), allowed)
            for address in ADDRESSES
        }

    # --- Long carry distance ---

    def decide_carry(self, address: str, fields: Mapping, declared: FrozenSet[str],
                     allowed: bool) -> InferenceDecision:
        timestamp = self.clock().isoformat()
        constraint = rule_ids.LONG_CARRY_DISTANCE

        if constraint in declared:
            return InferenceDecision(address, True, "Long carry distance selected by the client",
                                     allowed, DECLARED, timestamp, constraint)
        if not allowed:
            return InferenceDecision(address, False, "Automatic detection disabled",
                                     False, None, timestamp, constraint)

        distance = fields["carry_distance"]
        if distance > self.carry_threshold:
            reason = f"Carry distance {distance} m above threshold {self.carry_threshold} m"
            required = True
        else:
            reason = f"Carry distance {distance} m within {self.carry_threshold} m"
            required = False
        logger.debug(f"Carry inference at {address}: required={required} ({reason})")
        return InferenceDecision(address, required, reason, True,
                                 INFERRED if required else None, timestamp, constraint)

    def infer_carry(self, context: CalculationContext,
                    selections: Selections) -> Dict[str, InferenceDecision]:
        allowed = self.enabled and context.get_value("auto_detection", True)
        return {
            address: self.decide_carry(address, context.address_fields(address),
                                       selections.for_address(address), allowed)
            for address in ADDRESSES
        }

    @staticmethod
    def inferred_ids(*decision_maps: Mapping[str, InferenceDecision]) -> Dict[str, FrozenSet[str]]:
        """address -> ids added by inference, across every decision map given."""
        inferred: Dict[str, FrozenSet[str]] = {address: frozenset() for address in ADDRESSES}
        for decisions in decision_maps:
            for address, d in decisions.items():
                if d.inferred:
                    inferred[address] = inferred.get(address, frozenset()) | {d.rule_id}
        return inferred

    # --- Consumption ---

    def consume(self, view: ContextSlice, rules: Iterable[Rule]) -> List[ConsumedConstraint]:
        """
        Constraints absorbed by equipment firing at this address slice.

        A subsumed constraint is consumed when it is selected at the address
        or when its own rule would match there.
        """
        address = view.address
        scopes = ADDRESS_SCOPES[address]
        candidates = [r for r in rules if r.scope in scopes]
        by_id: Dict[str, List[Rule]] = {}
        for rule in candidates:
            by_id.setdefault(rule.id, []).append(rule)

        consumed: Dict[str, ConsumedConstraint] = {}
        for equipment in sorted(candidates, key=lambda r: r.sort_key):
            if equipment.kind != RuleKind.EQUIPMENT or equipment.id not in self.subsumption:
                continue
            if not equipment.evaluate(view).matched:
                continue
            for constraint_id in self.subsumption[equipment.id]:
                if constraint_id in consumed:
                    continue
                constraint_rules = by_id.get(constraint_id, [])
                charged = constraint_id in view.selection or any(
                    r.evaluate(view).matched for r in constraint_rules
                )
                if not charged:
                    continue
                name = constraint_rules[0].name if constraint_rules else constraint_id
                consumed[constraint_id] = ConsumedConstraint(
                    id=constraint_id,
                    name=name,
                    consumed_by=equipment.id,
                    address=address,
                    reason=f"Covered by {equipment.name}",
                )
                logger.info(f"Constraint {name} consumed by {equipment.name} at {address}")
        return list(consumed.values())
