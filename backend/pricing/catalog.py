"""
Rule catalog — where the engine gets its rules from.

The engine only depends on the RuleCatalog query contract. Two implementations:
  - InMemoryRuleCatalog: an immutable snapshot (tests, per-request snapshots)
  - DatabaseRuleCatalog: reads BusinessRule rows through SQLAlchemy

default_rules() is the catalog seeded on first run.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models
from ..errors import CatalogUnavailableError, ValidationError
from . import rule_ids as ids
from .conditions import AllOf, AnyOf, Compare, IsSelected, condition_from_dict
from .context import ServiceType, parse_service_type
from .rules import Category, Rule, RuleKind, Scope

logger = logging.getLogger(__name__)


class RuleCatalog(Protocol):

    def list_active_rules(self, service_type: ServiceType, scope: Scope) -> List[Rule]:
        ...

    def resolve_names(self, rule_ids: Iterable[str]) -> List[str]:
        ...


class InMemoryRuleCatalog:
    """
    Immutable snapshot of rules. Safe to share between concurrent calculations.

    At most one active MINIMUM rule per service type. A strict catalog rejects
    a second one; a lenient one (database snapshots) keeps the first by
    (priority, id) and drops the others with a warning.
    """

    def __init__(self, rules: Iterable[Rule], strict: bool = True):
        ordered = sorted(rules, key=lambda r: (r.service_type.value,) + r.sort_key)
        self._rules = tuple(self._check_minimums(ordered, strict))
        self._names: Dict[str, str] = {}
        for rule in self._rules:
            self._names.setdefault(rule.id, rule.name)

    @staticmethod
    def _check_minimums(rules: List[Rule], strict: bool) -> List[Rule]:
        seen = {}
        kept = []
        for rule in rules:
            if rule.is_minimum and rule.is_active:
                if rule.service_type in seen:
                    message = (f"More than one MINIMUM rule for {rule.service_type.value}: "
                               f"{seen[rule.service_type]} and {rule.id}")
                    if strict:
                        raise ValidationError(message, field="category")
                    logger.warning(f"{message}, keeping {seen[rule.service_type]}")
                    continue
                seen[rule.service_type] = rule.id
            kept.append(rule)
        return kept

    def list_active_rules(self, service_type, scope) -> List[Rule]:
        service_type = parse_service_type(service_type)
        scope = Scope(scope)
        return [
            r for r in self._rules
            if r.is_active and r.service_type == service_type and r.scope == scope
        ]

    def resolve_names(self, rule_ids: Iterable[str]) -> List[str]:
        return [self._names.get(str(i).lower(), i) for i in rule_ids]

    def all_rules(self, service_type=None) -> List[Rule]:
        if service_type is None:
            return list(self._rules)
        service_type = parse_service_type(service_type)
        return [r for r in self._rules if r.service_type == service_type]

    def __len__(self):
        return len(self._rules)


def rule_from_row(row: models.BusinessRule) -> Rule:
    return Rule(
        id=row.id,
        name=row.name,
        service_type=row.service_type,
        value=Decimal(str(row.value)),
        is_percentage=bool(row.is_percentage),
        scope=row.scope or Scope.GLOBAL,
        category=row.category or Category.SURCHARGE,
        kind=row.kind or RuleKind.CONSTRAINT,
        condition=condition_from_dict(row.condition_json),
        priority=row.priority if row.priority is not None else 100,
        is_active=bool(row.is_active),
    )


def rule_to_row(rule: Rule) -> models.BusinessRule:
    return models.BusinessRule(
        id=rule.id,
        name=rule.name,
        service_type=rule.service_type.value,
        value=float(rule.value),
        is_percentage=rule.is_percentage,
        scope=rule.scope.value,
        category=rule.category.value,
        kind=rule.kind.value,
        condition_json=rule.condition.to_dict(),
        priority=rule.priority,
        is_active=rule.is_active,
    )


class DatabaseRuleCatalog:
    """Reads rules from the business_rules table. Database errors become CatalogUnavailableError."""

    def __init__(self, db: Session):
        self.db = db

    def _rows(self, service_type: ServiceType, scope: Optional[Scope] = None):
        query = self.db.query(models.BusinessRule).filter(
            models.BusinessRule.service_type == service_type.value,
            models.BusinessRule.is_active == True,  # noqa: E712
        )
        if scope is not None:
            query = query.filter(models.BusinessRule.scope == scope.value)
        try:
            return query.all()
        except SQLAlchemyError as e:
            raise CatalogUnavailableError(f"Could not load rules for {service_type.value}: {e}") from e

    def _to_rules(self, rows) -> List[Rule]:
        rules = []
        for row in rows:
            try:
                rules.append(rule_from_row(row))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Ignoring malformed catalog rule {row.id}: {e}")
        return rules

    def list_active_rules(self, service_type, scope) -> List[Rule]:
        return self._to_rules(self._rows(parse_service_type(service_type), Scope(scope)))

    def snapshot(self, service_type) -> InMemoryRuleCatalog:
        """All active rules of one service type, frozen for one calculation."""
        rows = self._rows(parse_service_type(service_type))
        return InMemoryRuleCatalog(self._to_rules(rows), strict=False)

    def resolve_names(self, rule_ids: Iterable[str]) -> List[str]:
        wanted = [str(i).lower() for i in rule_ids]
        try:
            rows = self.db.query(models.BusinessRule.id, models.BusinessRule.name).filter(
                models.BusinessRule.id.in_(wanted)
            ).all()
        except SQLAlchemyError as e:
            raise CatalogUnavailableError(f"Could not resolve rule names: {e}") from e
        names = {row.id: row.name for row in rows}
        return [names.get(i, i) for i in wanted]


# --- Default catalog ---

MOVING = ServiceType.MOVING
PACKING = ServiceType.PACKING
CLEANING = ServiceType.CLEANING
DELIVERY = ServiceType.DELIVERY

WEEKEND = Compare("scheduled_weekday", "in", [5, 6])
OFF_PEAK = Compare("scheduled_weekday", "in", [1, 2])

# (id, name, value, service types, options)
DEFAULT_RULE_TABLE = [
    # Address access constraints, charged per address where selected
    (ids.NARROW_STAIRS, "Escalier étroit ou difficile", 8.5, (MOVING, PACKING, DELIVERY),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.NARROW_CORRIDORS, "Couloirs étroits", 6.5, (MOVING, PACKING),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.INDIRECT_EXIT, "Sortie indirecte", 5.0, (MOVING,),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.ELEVATOR_TOO_SMALL, "Ascenseur trop petit", 7.5, (MOVING,),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.ELEVATOR_UNAVAILABLE, "Ascenseur en panne ou hors service", 5.0, (MOVING, DELIVERY),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.ELEVATOR_FORBIDDEN, "Ascenseur interdit aux déménagements", 5.0, (MOVING,),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.MULTILEVEL_ACCESS, "Accès multi-niveaux", 9.5, (MOVING,),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.STAIRS_WITHOUT_ELEVATOR, "Escaliers sans ascenseur", 6.0, (MOVING,),
     dict(scope=Scope.BOTH, condition=AnyOf(
         IsSelected(),
         AllOf(Compare("elevator", "eq", "no"), Compare("floor", "gte", 5)),
     ))),
    (ids.RESTRICTED_PARKING, "Stationnement réglementé", 40.0, (MOVING, DELIVERY),
     dict(scope=Scope.BOTH, is_percentage=False, condition=IsSelected())),
    (ids.PEDESTRIAN_ZONE, "Zone piétonne", 60.0, (MOVING, DELIVERY),
     dict(scope=Scope.BOTH, is_percentage=False, condition=IsSelected())),
    (ids.LONG_CARRY_DISTANCE, "Distance de portage longue", 50.0, (MOVING, PACKING, DELIVERY),
     dict(scope=Scope.BOTH, is_percentage=False, condition=IsSelected())),
    (ids.BULKY_FURNITURE, "Meubles encombrants", 5.0, (MOVING,),
     dict(scope=Scope.BOTH, condition=IsSelected())),
    (ids.HEAVY_ITEMS, "Objets très lourds", 7.0, (MOVING, DELIVERY),
     dict(scope=Scope.BOTH, condition=IsSelected())),

    # Global constraints
    (ids.COMPLEX_TRAFFIC, "Circulation complexe", 6.5, (MOVING, DELIVERY),
     dict(condition=IsSelected())),
    (ids.DIFFICULT_PARKING, "Stationnement difficile", 7.5, (MOVING, CLEANING, DELIVERY),
     dict(condition=IsSelected())),
    (ids.WEEKEND_SERVICE, "Intervention le week-end", 10.0, (MOVING, PACKING, CLEANING, DELIVERY),
     dict(condition=WEEKEND, priority=50)),

    # Additional services
    (ids.FURNITURE_DISASSEMBLY, "Démontage de meubles", 80.0, (MOVING,),
     dict(scope=Scope.BOTH, kind=RuleKind.SERVICE, is_percentage=False, condition=IsSelected())),
    (ids.FURNITURE_REASSEMBLY, "Remontage de meubles", 80.0, (MOVING,),
     dict(scope=Scope.BOTH, kind=RuleKind.SERVICE, is_percentage=False, condition=IsSelected())),
    (ids.PROFESSIONAL_PACKING, "Emballage professionnel", 120.0, (MOVING,),
     dict(kind=RuleKind.SERVICE, is_percentage=False, condition=IsSelected())),
    (ids.PIANO_TRANSPORT, "Transport de piano", 200.0, (MOVING, DELIVERY),
     dict(kind=RuleKind.SERVICE, is_percentage=False, condition=IsSelected())),
    (ids.INSURANCE_PREMIUM, "Assurance complémentaire", 3.0, (MOVING, DELIVERY),
     dict(kind=RuleKind.SERVICE, condition=IsSelected())),

    # Equipment
    (ids.FURNITURE_LIFT, "Monte-meubles", 150.0, (MOVING,),
     dict(scope=Scope.BOTH, kind=RuleKind.EQUIPMENT, is_percentage=False,
          condition=IsSelected(), priority=10)),

    # Reductions
    (ids.LOYAL_CUSTOMER, "Client fidèle", -10.0, (MOVING, PACKING, CLEANING, DELIVERY),
     dict(category=Category.REDUCTION, condition=IsSelected())),
    (ids.LONG_DURATION, "Longue durée", -8.0, (MOVING,),
     dict(category=Category.REDUCTION, condition=IsSelected())),
    (ids.LONG_DURATION, "Longue durée", -8.0, (PACKING, CLEANING),
     dict(category=Category.REDUCTION, condition=AnyOf(IsSelected(), Compare("duration", "gte", 8)))),
    (ids.OFF_PEAK_WEEKDAY, "Jour creux (mardi, mercredi)", -5.0, (MOVING,),
     dict(category=Category.REDUCTION, condition=OFF_PEAK)),

    # Minimum price per service type
    (ids.MINIMUM_MOVING, "Prix minimum déménagement", 150.0, (MOVING,),
     dict(category=Category.MINIMUM, is_percentage=False)),
    (ids.MINIMUM_PACKING, "Prix minimum emballage", 100.0, (PACKING,),
     dict(category=Category.MINIMUM, is_percentage=False)),
    (ids.MINIMUM_CLEANING, "Prix minimum ménage", 80.0, (CLEANING,),
     dict(category=Category.MINIMUM, is_percentage=False)),
    (ids.MINIMUM_DELIVERY, "Prix minimum livraison", 50.0, (DELIVERY,),
     dict(category=Category.MINIMUM, is_percentage=False)),
]


def default_rules() -> List[Rule]:
    rules = []
    for rule_id, name, value, service_types, options in DEFAULT_RULE_TABLE:
        for service_type in service_types:
            rules.append(Rule(id=rule_id, name=name, service_type=service_type,
                              value=Decimal(str(value)), **options))
    return rules


def seed_default_rules(db: Session) -> int:
    """Seed the default catalog when the table is empty. Returns the number of rows added."""
    if db.query(models.BusinessRule).count() > 0:
        return 0
    rules = default_rules()
    for rule in rules:
        db.add(rule_to_row(rule))
    db.commit()
    logger.info(f"Seeded {len(rules)} default business rules")
    return len(rules)
