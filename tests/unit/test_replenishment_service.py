import pytest
from datetime import date, timedelta
from decimal import Decimal
from sqlalchemy import select
from sgst.models.database import AlertLog, Product
from sgst.models.purchasing import PurchaseOrder
from sgst.models.replenishment import ReplenishmentRule, DemandForecast
from sgst.services.replenishment.replenishment_service import ReplenishmentService


@pytest.fixture
def add_forecast(db_session):
    """Store a flat daily forecast for the next ``days`` days"""
    async def _add_forecast(product_id, warehouse_id, daily, days=7):
        today = date.today()
        db_session.add_all([
            DemandForecast(
                product_id=product_id,
                warehouse_id=warehouse_id,
                forecast_date=today + timedelta(days=i),
                predicted_demand=daily,
                confidence=0.8,
                algorithm='baseline_seasonal_trend',
                model_version='test',
                run_id='fixture-run'
            )
            for i in range(1, days + 1)
        ])
        await db_session.commit()

    return _add_forecast


@pytest.fixture
async def second_product_rule(db_session, sample_warehouse):
    """Rule without a preferred supplier"""
    product = Product(sku="TEST-NOSUP", name="No supplier", unit_cost=Decimal("4.00"))
    db_session.add(product)
    await db_session.commit()

    rule = ReplenishmentRule(
        product_id=product.id,
        warehouse_id=sample_warehouse.id,
        min_level=10,
        max_level=100,
        reorder_point=20,
        lead_time_days=3
    )
    db_session.add(rule)
    await db_session.commit()
    return rule


async def test_check_stockout_risks(db_session, sample_rule, set_stock, add_forecast):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 40)
    await add_forecast(sample_rule.product_id, sample_rule.warehouse_id, 10)

    alerts = await ReplenishmentService(db_session).check_stockout_risks()

    assert len(alerts) == 1
    assert alerts[0].risk_level == 'critical'
    assert alerts[0].predicted_demand == 70
    assert alerts[0].suggested_action.quantity == 260
    assert alerts[0].suggested_action.unit_cost == 12.5


async def test_missing_forecast_counts_as_no_demand(db_session, sample_rule, set_stock):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 60)

    alerts = await ReplenishmentService(db_session).check_stockout_risks()
    assert alerts == []


async def test_inactive_rules_are_ignored(db_session, sample_rule, set_stock):
    sample_rule.is_active = False
    await db_session.commit()
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 0)

    assert await ReplenishmentService(db_session).check_stockout_risks() == []


async def test_alerts_sorted_by_severity(db_session, sample_rule, second_product_rule, set_stock, add_forecast):
    # sample rule: 60 units / 15 a day = 4 days <= 5 day lead time -> high
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 60)
    await add_forecast(sample_rule.product_id, sample_rule.warehouse_id, 15)
    await set_stock(second_product_rule.product_id, second_product_rule.warehouse_id, 5)

    alerts = await ReplenishmentService(db_session).check_stockout_risks()

    assert [a.risk_level for a in alerts] == ['critical', 'high']


async def test_generate_orders_is_read_only_by_default(db_session, sample_rule, set_stock, add_forecast):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 40)
    await add_forecast(sample_rule.product_id, sample_rule.warehouse_id, 10)

    result = await ReplenishmentService(db_session).generate_replenishment_orders()

    assert len(result['orders']) == 1
    assert result['summary']['urgent_orders'] == 1
    assert result['purchase_orders'] == []
    orders = (await db_session.execute(select(PurchaseOrder))).scalars().all()
    assert orders == []


async def test_generate_orders_persist_skips_missing_supplier(
    db_session, sample_rule, second_product_rule, set_stock, add_forecast
):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 40)
    await set_stock(second_product_rule.product_id, second_product_rule.warehouse_id, 5)

    result = await ReplenishmentService(db_session).generate_replenishment_orders(persist=True)

    assert len(result['orders']) == 2
    assert len(result['purchase_orders']) == 1
    assert result['skipped'][0]['reason'] == 'no_supplier'

    order = result['purchase_orders'][0]
    assert order.status == 'draft'
    assert order.auto_generated is True
    assert order.replenishment_rule_id == sample_rule.id
    assert order.order_number.startswith('REP-')
    assert order.items[0].quantity_ordered == 260


async def test_sweep_records_alerts_and_submits(db_session, sample_rule, set_stock, add_forecast):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 40)
    await add_forecast(sample_rule.product_id, sample_rule.warehouse_id, 10)

    summary = await ReplenishmentService(db_session).run_replenishment_sweep(submit=True)

    assert summary['alerts'] == 1
    assert summary['orders_created'] == 1
    assert summary['orders_approved'] == 1
    assert summary['estimated_cost'] == 3250.0
    assert summary['errors'] == []

    alerts = (await db_session.execute(
        select(AlertLog).where(AlertLog.alert_type == 'stockout_risk')
    )).scalars().all()
    assert len(alerts) == 1
    assert alerts[0].severity == 'critical'


async def test_sweep_with_nothing_to_do(db_session, sample_rule, set_stock):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 250)

    summary = await ReplenishmentService(db_session).run_replenishment_sweep()

    assert summary['alerts'] == 0
    assert summary['orders_created'] == 0
