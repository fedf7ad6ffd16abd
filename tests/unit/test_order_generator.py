import re
from datetime import datetime
from types import SimpleNamespace
from sgst.services.replenishment.order_generator import ReplenishmentOrderGenerator
from sgst.services.replenishment.risk_evaluator import StockoutRiskEvaluator

NOW = datetime(2026, 10, 18, 9, 30)


def make_rule(rule_id, **overrides):
    values = dict(
        id=rule_id,
        product_id=100 + rule_id,
        warehouse_id=1,
        min_level=50,
        max_level=300,
        reorder_point=100,
        lead_time_days=10,
        economic_order_quantity=None,
        replenish_quantity=0,
        preferred_supplier_id=7,
        last_cost=5
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def build_alerts():
    evaluator = StockoutRiskEvaluator(window_days=7)
    return [
        evaluator.evaluate(make_rule(1), 120, [10] * 7),   # medium, 12 days
        evaluator.evaluate(make_rule(2), 90, [10] * 7),    # high, 9 days
        evaluator.evaluate(make_rule(3), 30, [10] * 7),    # critical
        evaluator.evaluate(make_rule(4), 60, [10] * 7),    # high, 6 days
    ]


def test_only_high_and_critical_become_drafts():
    drafts = ReplenishmentOrderGenerator(clock=lambda: NOW).generate(build_alerts())

    assert [d.rule_id for d in drafts] == [3, 4, 2]
    assert [d.risk_level for d in drafts] == ['critical', 'high', 'high']


def test_priority_follows_urgency():
    drafts = ReplenishmentOrderGenerator(clock=lambda: NOW).generate(build_alerts())

    assert drafts[0].urgency == 'immediate'
    assert drafts[0].priority == 'urgent'
    assert drafts[1].urgency == 'normal'
    assert drafts[1].priority == 'high'


def test_draft_carries_costs_and_delivery():
    draft = ReplenishmentOrderGenerator(clock=lambda: NOW).generate(build_alerts())[0]

    assert draft.quantity == 270
    assert draft.unit_cost == 5.0
    assert draft.estimated_cost == 1350.0
    assert draft.supplier_id == 7
    assert draft.expected_delivery == datetime(2026, 10, 28, 9, 30)
    assert draft.auto_generated is True


def test_order_numbers_are_unique_and_dated():
    drafts = ReplenishmentOrderGenerator(clock=lambda: NOW).generate(build_alerts())
    numbers = [d.order_number for d in drafts]

    assert len(set(numbers)) == len(numbers)
    assert all(re.fullmatch(r"REP-20261018-[0-9a-f]{6}", n) for n in numbers)


def test_no_alerts_no_drafts():
    assert ReplenishmentOrderGenerator().generate([]) == []


def test_draft_serialises_delivery_date():
    draft = ReplenishmentOrderGenerator(clock=lambda: NOW).generate(build_alerts())[0]
    assert draft.to_dict()['expected_delivery'] == '2026-10-28T09:30:00'
