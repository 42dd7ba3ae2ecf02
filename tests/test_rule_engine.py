"""
RuleEngine tests.

Reference scenarios:
A.  GLOBAL surcharges +6.5% and +7.5% on 1229 € -> 1401.07 €
B.  PICKUP constraints +6.5% / +7.5% / +8.5% on 1429 € with an inferred
    furniture lift (150 €): the lift consumes the corridor, elevator and stairs
    surcharges, leaving 150 € at pickup -> 1579 €. Without the lift the three
    surcharges are 92.89 + 107.18 + 121.47 = 321.54 €.
C.  Reductions -10% / -8% on 1000 € -> raw 820 €, clamped to the 900 € floor
D.  BOTH rule +9.5% on 1582.65 € matching both addresses -> two items of
    150.35 €, one per address

Plus evaluation order, floor, determinism, fail-open and catalog fallback.
"""

from decimal import Decimal

import pytest

from backend.errors import CatalogUnavailableError, ValidationError
from backend.pricing import rule_ids as ids
from backend.pricing.catalog import InMemoryRuleCatalog
from backend.pricing.conditions import Always, Compare, IsSelected
from backend.pricing.context import CalculationContext
from backend.pricing.inference import SUBSUMPTION_TABLE
from backend.pricing.rules import Category, Rule, RuleKind, Scope


# --- Test fixtures ---

def _rule(rule_id, name, value, scope=Scope.GLOBAL, **kwargs):
    kwargs.setdefault("condition", IsSelected())
    return Rule(id=rule_id, name=name, service_type="MOVING", value=Decimal(str(value)),
                scope=scope, **kwargs)


def _lift():
    return _rule(ids.FURNITURE_LIFT, "Monte-meubles", 150, Scope.BOTH,
                 is_percentage=False, kind=RuleKind.EQUIPMENT, priority=10)


def _context(**values):
    base = {"volume": 30, "distance": 89.5}
    base.update(values)
    return CalculationContext("MOVING", base)


def _catalog(*rules):
    return InMemoryRuleCatalog(rules)


class _UnavailableCatalog:
    calls = 0

    def list_active_rules(self, service_type, scope):
        self.calls += 1
        raise CatalogUnavailableError("rules database unreachable")

    def resolve_names(self, rule_ids):
        raise CatalogUnavailableError("rules database unreachable")


class _RecordingCatalog:
    def __init__(self, rules=()):
        self.inner = InMemoryRuleCatalog(rules)
        self.calls = 0

    def list_active_rules(self, service_type, scope):
        self.calls += 1
        return self.inner.list_active_rules(service_type, scope)


# --- Scenarios ---

class TestScenarios:

    def test_scenario_a_two_global_surcharges(self, rule_engine):
        catalog = _catalog(
            _rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 6.5),
            _rule(ids.DIFFICULT_PARKING, "Stationnement difficile", 7.5),
        )
        ctx = _context(global_selections=[ids.COMPLEX_TRAFFIC, ids.DIFFICULT_PARKING])
        result = rule_engine.execute(ctx, Decimal("1229"), catalog)

        assert result.final_price == Decimal("1401.07")
        assert [a.impact for a in result.applied_rules] == [Decimal("79.89"), Decimal("92.18")]
        assert all(a.address == "global" for a in result.applied_rules)
        assert not result.minimum_price_applied

    def test_scenario_b_inferred_lift_consumes_pickup_constraints(self, rule_engine):
        catalog = _catalog(
            _rule(ids.NARROW_CORRIDORS, "Couloirs étroits", 6.5, Scope.PICKUP),
            _rule(ids.ELEVATOR_TOO_SMALL, "Ascenseur trop petit", 7.5, Scope.PICKUP),
            _rule(ids.NARROW_STAIRS, "Escalier étroit", 8.5, Scope.PICKUP),
            _lift(),
        )
        ctx = _context(
            pickup_floor=4, pickup_elevator="small",
            pickup_selections=[ids.NARROW_CORRIDORS, ids.ELEVATOR_TOO_SMALL, ids.NARROW_STAIRS],
        )
        result = rule_engine.execute(ctx, Decimal("1429"), catalog)

        assert result.pickup_costs.constraints == []

        [lift] = result.pickup_costs.equipment
        assert lift.impact == Decimal("150.00")
        assert lift.traceability == "inferred"

        assert {c.id for c in result.consumed_constraints} == {
            ids.NARROW_CORRIDORS, ids.ELEVATOR_TOO_SMALL, ids.NARROW_STAIRS,
        }
        assert result.pickup_costs.total == Decimal("150.00")
        assert result.final_price == Decimal("1579.00")
        assert result.delivery_costs.total == Decimal("0")

    def test_scenario_b_without_lift_charges_all_three_constraints(self, rule_engine):
        catalog = _catalog(
            _rule(ids.NARROW_CORRIDORS, "Couloirs étroits", 6.5, Scope.PICKUP),
            _rule(ids.ELEVATOR_TOO_SMALL, "Ascenseur trop petit", 7.5, Scope.PICKUP),
            _rule(ids.NARROW_STAIRS, "Escalier étroit", 8.5, Scope.PICKUP),
            _lift(),
        )
        ctx = _context(
            pickup_floor=4, pickup_elevator="small", auto_detection=False,
            pickup_selections=[ids.NARROW_CORRIDORS, ids.ELEVATOR_TOO_SMALL, ids.NARROW_STAIRS],
        )
        result = rule_engine.execute(ctx, Decimal("1429"), catalog)

        assert sorted(a.impact for a in result.applied_rules) == [
            Decimal("92.89"), Decimal("107.18"), Decimal("121.47"),
        ]
        assert result.pickup_costs.total == Decimal("321.54")
        assert result.consumed_constraints == []
        assert result.inference_metadata["pickup"]["allowed"] is False

    def test_scenario_c_reductions_are_clamped_to_floor(self, rule_engine):
        catalog = _catalog(
            _rule(ids.LOYAL_CUSTOMER, "Client fidèle", -10, category=Category.REDUCTION),
            _rule(ids.LONG_DURATION, "Longue durée", -8, category=Category.REDUCTION),
        )
        ctx = _context(global_selections=[ids.LOYAL_CUSTOMER, ids.LONG_DURATION])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)

        assert result.raw_total == Decimal("820.00")
        assert result.final_price == Decimal("900.00")
        assert result.floor_price == Decimal("900.00")
        assert result.minimum_price_applied
        assert [a.impact for a in result.global_costs.reductions] == [Decimal("-100.00"), Decimal("-80.00")]

    def test_scenario_d_both_rule_charged_once_per_address(self, rule_engine):
        catalog = _catalog(_rule(ids.MULTILEVEL_ACCESS, "Accès multi-niveaux", 9.5, Scope.BOTH))
        ctx = _context(pickup_selections=[ids.MULTILEVEL_ACCESS],
                       delivery_selections=[ids.MULTILEVEL_ACCESS])
        result = rule_engine.execute(ctx, Decimal("1582.65"), catalog)

        assert [(a.address, a.impact) for a in result.applied_rules] == [
            ("pickup", Decimal("150.35")),
            ("delivery", Decimal("150.35")),
        ]
        assert result.final_price == Decimal("1883.35")


# --- Scope semantics ---

class TestScopes:

    def test_global_rule_contributes_one_item_whatever_the_addresses(self, rule_engine):
        catalog = _catalog(_rule(ids.DIFFICULT_PARKING, "Stationnement difficile", 7.5))
        ctx = _context(pickup_selections=[ids.DIFFICULT_PARKING],
                       delivery_selections=[ids.DIFFICULT_PARKING])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert len(result.applied_rules) == 1
        assert result.applied_rules[0].address == "global"

    def test_both_rule_matching_one_address(self, rule_engine):
        catalog = _catalog(_rule(ids.MULTILEVEL_ACCESS, "Accès multi-niveaux", 9.5, Scope.BOTH))
        ctx = _context(delivery_selections=[ids.MULTILEVEL_ACCESS])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert [a.address for a in result.applied_rules] == ["delivery"]

    def test_both_rule_with_field_condition(self, rule_engine):
        rule = _rule(ids.STAIRS_WITHOUT_ELEVATOR, "Escaliers sans ascenseur", 5, Scope.BOTH,
                     condition=Compare("floor", "gte", 3))
        ctx = _context(pickup_floor=5, delivery_floor=3)
        result = rule_engine.execute(ctx, Decimal("1000"), _catalog(rule))
        assert [a.address for a in result.applied_rules] == ["pickup", "delivery"]
        assert all(a.traceability == "declared" for a in result.applied_rules)

    def test_pickup_rule_ignores_delivery_selection(self, rule_engine):
        catalog = _catalog(_rule(ids.NARROW_STAIRS, "Escalier étroit", 8.5, Scope.PICKUP))
        ctx = _context(delivery_selections=[ids.NARROW_STAIRS])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert result.applied_rules == []


# --- Evaluation order ---

class TestOrder:

    def test_percentages_use_subtotal_at_start_of_their_step(self, rule_engine):
        catalog = _catalog(
            _rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 10),
            _rule(ids.NARROW_STAIRS, "Escalier étroit", 10, Scope.PICKUP),
            _rule(ids.MULTILEVEL_ACCESS, "Accès multi-niveaux", 10, Scope.BOTH),
        )
        ctx = _context(
            global_selections=[ids.COMPLEX_TRAFFIC],
            pickup_selections=[ids.NARROW_STAIRS, ids.MULTILEVEL_ACCESS],
        )
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert [(a.id, a.step_base, a.impact) for a in result.applied_rules] == [
            (ids.COMPLEX_TRAFFIC, Decimal("1000.00"), Decimal("100.00")),
            (ids.NARROW_STAIRS, Decimal("1100.00"), Decimal("110.00")),
            (ids.MULTILEVEL_ACCESS, Decimal("1210.00"), Decimal("121.00")),
        ]

    def test_reductions_run_last_on_the_surcharged_subtotal(self, rule_engine):
        catalog = _catalog(
            _rule(ids.LOYAL_CUSTOMER, "Client fidèle", -10, category=Category.REDUCTION, priority=1),
            _rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 20, priority=99),
        )
        ctx = _context(global_selections=[ids.LOYAL_CUSTOMER, ids.COMPLEX_TRAFFIC])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert [a.id for a in result.applied_rules] == [ids.COMPLEX_TRAFFIC, ids.LOYAL_CUSTOMER]
        assert result.applied_rules[1].impact == Decimal("-120.00")
        assert result.final_price == Decimal("1080.00")

    def test_fixed_amounts_ignore_the_subtotal(self, rule_engine):
        catalog = _catalog(_rule(ids.PIANO_TRANSPORT, "Transport de piano", 200,
                                 is_percentage=False, kind=RuleKind.SERVICE))
        ctx = _context(global_selections=[ids.PIANO_TRANSPORT])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog, options_price=Decimal("80"))
        assert result.global_costs.additional_services[0].impact == Decimal("200.00")
        assert result.final_price == Decimal("1280.00")

    def test_options_join_the_first_step_base(self, rule_engine):
        catalog = _catalog(_rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 10))
        ctx = _context(global_selections=[ids.COMPLEX_TRAFFIC])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog, options_price=Decimal("200"))
        assert result.applied_rules[0].impact == Decimal("120.00")

    def test_rules_within_a_step_sorted_by_priority_then_id(self, rule_engine):
        catalog = _catalog(
            _rule(ids.DIFFICULT_PARKING, "Stationnement difficile", 5, priority=20),
            _rule(ids.WEEKEND_SERVICE, "Week-end", 5, priority=10),
            _rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 5, priority=20),
        )
        ctx = _context(global_selections=[ids.DIFFICULT_PARKING, ids.WEEKEND_SERVICE, ids.COMPLEX_TRAFFIC])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        # equal priority: DIFFICULT_PARKING (76d5...) sorts before COMPLEX_TRAFFIC (d85f...)
        assert [a.id for a in result.applied_rules] == [
            ids.WEEKEND_SERVICE, ids.DIFFICULT_PARKING, ids.COMPLEX_TRAFFIC,
        ]

    def test_positive_reduction_values_are_applied_as_reductions(self, rule_engine):
        catalog = _catalog(_rule(ids.LOYAL_CUSTOMER, "Client fidèle", 10, category=Category.REDUCTION))
        ctx = _context(global_selections=[ids.LOYAL_CUSTOMER])
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert result.final_price == Decimal("900.00")
        assert result.applied_rules[0].impact == Decimal("-100.00")


# --- Floor ---

class TestFloor:

    @pytest.mark.parametrize("reductions", [[], [-5], [-10, -8], [-30, -40, -50]])
    def test_final_price_never_below_ninety_percent_of_base(self, rule_engine, reductions):
        rule_set = [
            _rule(f"00000000-0000-4000-8000-00000000000{i}", f"Remise {i}", value,
                  category=Category.REDUCTION, condition=Always())
            for i, value in enumerate(reductions)
        ]
        base = Decimal("1234.56")
        result = rule_engine.execute(_context(), base, _catalog(*rule_set))
        assert result.final_price >= base * Decimal("0.9")

    def test_minimum_rule_raises_the_floor(self, rule_engine):
        catalog = _catalog(_rule(ids.MINIMUM_MOVING, "Prix minimum", 150,
                                 is_percentage=False, category=Category.MINIMUM))
        result = rule_engine.execute(_context(), Decimal("100"), catalog)
        assert result.final_price == Decimal("150.00")
        assert result.minimum_rule_id == ids.MINIMUM_MOVING
        assert result.minimum_price_applied
        assert result.applied_rules == []

    def test_minimum_rule_below_ratio_floor_has_no_effect(self, rule_engine):
        catalog = _catalog(_rule(ids.MINIMUM_MOVING, "Prix minimum", 150,
                                 is_percentage=False, category=Category.MINIMUM))
        result = rule_engine.execute(_context(), Decimal("1000"), catalog)
        assert result.final_price == Decimal("1000.00")
        assert not result.minimum_price_applied


# --- Consumption and traceability ---

class TestConsumption:

    def test_equipment_removes_every_subsumed_constraint_at_that_address(self, rule_engine):
        subsumed = SUBSUMPTION_TABLE[ids.FURNITURE_LIFT]
        constraints = [
            _rule(cid, f"Contrainte {n}", 5, Scope.BOTH) for n, cid in enumerate(subsumed)
        ]
        catalog = _catalog(_lift(), *constraints)
        ctx = _context(
            pickup_selections=[ids.FURNITURE_LIFT, *subsumed],
            delivery_selections=list(subsumed),
        )
        result = rule_engine.execute(ctx, Decimal("1000"), catalog)

        pickup_charged = {a.id for a in result.rules_at("pickup")}
        assert pickup_charged == {ids.FURNITURE_LIFT}
        assert {c.id for c in result.consumed_constraints} == set(subsumed)
        assert all(c.address == "pickup" for c in result.consumed_constraints)
        # no equipment at delivery: everything is charged there
        assert {a.id for a in result.rules_at("delivery")} == set(subsumed)

    def test_every_applied_rule_is_attributed_and_traced(self, rule_engine, default_catalog):
        ctx = _context(
            pickup_floor=5,
            pickup_selections=[ids.NARROW_STAIRS, ids.BULKY_FURNITURE, ids.FURNITURE_DISASSEMBLY],
            delivery_selections=[ids.MULTILEVEL_ACCESS],
            global_selections=[ids.COMPLEX_TRAFFIC, ids.LOYAL_CUSTOMER],
        )
        result = rule_engine.execute(ctx, Decimal("1500"), default_catalog)
        assert result.applied_rules
        for applied in result.applied_rules:
            assert applied.address in ("pickup", "delivery", "global")
            assert applied.traceability in ("declared", "inferred")


class TestLongCarry:

    @pytest.mark.parametrize("address,other", [("pickup", "delivery"), ("delivery", "pickup")])
    def test_long_carry_is_inferred_and_charged_once(self, rule_engine, default_catalog,
                                                     address, other):
        ctx = _context(**{f"{address}_carry_distance": 45})
        result = rule_engine.execute(ctx, Decimal("1000"), default_catalog)

        [carry] = [a for a in result.rules_at(address) if a.id == ids.LONG_CARRY_DISTANCE]
        assert carry.impact == Decimal("50.00")
        assert carry.traceability == "inferred"
        assert not [a for a in result.rules_at(other) if a.id == ids.LONG_CARRY_DISTANCE]
        assert ids.LONG_CARRY_DISTANCE in result.inferred_constraints[address]
        assert result.final_price == Decimal("1050.00")

        metadata = result.inference_metadata[address]["long_carry"]
        assert metadata["required"] is True
        assert "Carry distance 45" in metadata["reason"]
        assert metadata["timestamp"]

    def test_short_carry_adds_nothing(self, rule_engine, default_catalog):
        ctx = _context(pickup_carry_distance=30, delivery_carry_distance=10)
        result = rule_engine.execute(ctx, Decimal("1000"), default_catalog)
        assert result.applied_rules == []
        assert result.final_price == Decimal("1000.00")
        assert result.inference_metadata["pickup"]["long_carry"]["required"] is False

    def test_declared_long_carry_is_not_charged_twice(self, rule_engine, default_catalog):
        ctx = _context(pickup_carry_distance=45, pickup_selections=[ids.LONG_CARRY_DISTANCE])
        result = rule_engine.execute(ctx, Decimal("1000"), default_catalog)
        [carry] = result.rules_at("pickup")
        assert carry.traceability == "declared"
        assert result.final_price == Decimal("1050.00")


# --- Determinism ---

def test_identical_inputs_give_identical_results(rule_engine, default_catalog):
    def run():
        ctx = _context(
            pickup_floor=4, pickup_elevator="no", delivery_floor=2,
            pickup_selections={ids.NARROW_STAIRS: True, ids.NARROW_CORRIDORS: True},
            delivery_selections=[ids.MULTILEVEL_ACCESS],
            global_selections=[ids.COMPLEX_TRAFFIC, ids.LOYAL_CUSTOMER],
            scheduled_date="2024-06-15T09:00:00",
        )
        return rule_engine.execute(ctx, Decimal("1429"), default_catalog).to_dict()

    assert run() == run()


# --- Failures ---

class TestFailures:

    def test_invalid_context_fails_before_any_rule_runs(self, rule_engine):
        catalog = _RecordingCatalog()
        ctx = CalculationContext("MOVING", {"volume": 30})
        with pytest.raises(ValidationError):
            rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert catalog.calls == 0

    def test_malformed_selection_fails_before_any_rule_runs(self, rule_engine):
        catalog = _RecordingCatalog()
        ctx = _context(pickup_selections=["not-a-uuid"])
        with pytest.raises(ValidationError):
            rule_engine.execute(ctx, Decimal("1000"), catalog)
        assert catalog.calls == 0

    def test_negative_base_price_raises(self, rule_engine):
        with pytest.raises(ValidationError):
            rule_engine.execute(_context(), Decimal("-1"), _catalog())

    def test_failing_condition_skips_only_that_rule(self, rule_engine):
        broken = _rule(ids.NARROW_STAIRS, "Escalier étroit", 8.5, Scope.PICKUP,
                       condition=Compare("floor", "gt", "third"))
        healthy = _rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 6.5)
        ctx = _context(global_selections=[ids.COMPLEX_TRAFFIC])
        result = rule_engine.execute(ctx, Decimal("1229"), _catalog(broken, healthy))

        assert [a.id for a in result.applied_rules] == [ids.COMPLEX_TRAFFIC]
        assert len(result.skipped_rules) == 1
        assert result.skipped_rules[0].id == ids.NARROW_STAIRS
        assert result.skipped_rules[0].address == "pickup"
        assert result.final_price == Decimal("1308.89")

    def test_unavailable_catalog_falls_back_to_base_price(self, rule_engine):
        result = rule_engine.execute(_context(), Decimal("1229"), _UnavailableCatalog())
        assert result.catalog_fallback
        assert result.applied_rules == []
        assert result.final_price == Decimal("1229.00")

    def test_context_is_writable_again_after_execution(self, rule_engine):
        ctx = _context()
        rule_engine.execute(ctx, Decimal("1000"), _catalog())
        ctx.set_value("volume", 40)

    def test_total_rules_evaluated_counts_instances(self, rule_engine):
        catalog = _catalog(
            _rule(ids.MULTILEVEL_ACCESS, "Accès multi-niveaux", 9.5, Scope.BOTH),
            _rule(ids.COMPLEX_TRAFFIC, "Circulation complexe", 6.5),
        )
        result = rule_engine.execute(_context(), Decimal("1000"), catalog)
        assert result.total_rules_evaluated == 3
