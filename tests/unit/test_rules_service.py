import pytest
from sgst.services.replenishment.rules_service import ReplenishmentRuleService
from sgst.exceptions import ValidationError, NotFoundError, ConflictError


@pytest.fixture
def rule_data(sample_product, sample_warehouse, sample_supplier):
    return {
        'product_id': sample_product.id,
        'warehouse_id': sample_warehouse.id,
        'min_level': 20,
        'max_level': 200,
        'reorder_point': 60,
        'lead_time_days': 4,
        'abc_classification': 'A',
        'velocity_category': 'fast',
        'preferred_supplier_id': sample_supplier.id
    }


async def test_create_and_get_rule(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)

    fetched = await service.get_rule(rule.id)
    assert fetched.reorder_point == 60
    assert fetched.is_active is True
    assert fetched.to_dict()['abc_classification'] == 'A'


async def test_rule_levels_must_be_ordered(db_session, rule_data):
    rule_data['reorder_point'] = 500

    with pytest.raises(ValidationError) as exc:
        await ReplenishmentRuleService(db_session).create_rule(rule_data)
    assert exc.value.details['errors']


async def test_negative_levels_rejected(db_session, rule_data):
    rule_data['lead_time_days'] = -1

    with pytest.raises(ValidationError):
        await ReplenishmentRuleService(db_session).create_rule(rule_data)


async def test_duplicate_rule_conflicts(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)
    await service.create_rule(rule_data)

    with pytest.raises(ConflictError):
        await service.create_rule(dict(rule_data))


async def test_update_revalidates_merged_rule(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)

    updated = await service.update_rule(rule.id, {'max_level': 400, 'reorder_point': 80})
    assert updated.max_level == 400

    with pytest.raises(ValidationError):
        await service.update_rule(rule.id, {'min_level': 90})


async def test_product_and_warehouse_are_immutable(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)

    with pytest.raises(ValidationError):
        await service.update_rule(rule.id, {'warehouse_id': 999})


async def test_rule_must_reference_known_records(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)

    with pytest.raises(ValidationError) as exc:
        await service.create_rule({**rule_data, 'warehouse_id': 999, 'preferred_supplier_id': 888})
    assert exc.value.details['errors'] == ["Warehouse 999 not found", "Supplier 888 not found"]

    with pytest.raises(ValidationError):
        await service.create_rule({**rule_data, 'product_id': 777})

    rule = await service.create_rule(rule_data)
    with pytest.raises(ValidationError):
        await service.update_rule(rule.id, {'preferred_supplier_id': 888})

    cleared = await service.update_rule(rule.id, {'preferred_supplier_id': None})
    assert cleared.preferred_supplier_id is None


async def test_update_rejects_null_for_required_fields(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)

    with pytest.raises(ValidationError) as exc:
        await service.update_rule(rule.id, {'is_active': None, 'lead_time_days': None})
    assert exc.value.details['fields'] == ['is_active', 'lead_time_days']

    fetched = await service.get_rule(rule.id)
    assert fetched.is_active is True
    assert fetched.lead_time_days == 4


async def test_missing_rule(db_session):
    with pytest.raises(NotFoundError):
        await ReplenishmentRuleService(db_session).get_rule(12345)


async def test_delete_without_open_orders(db_session, rule_data):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)

    result = await service.delete_rule(rule.id)
    assert result['deleted'] is True

    with pytest.raises(NotFoundError):
        await service.get_rule(rule.id)


async def test_delete_with_open_order_deactivates(db_session, rule_data, make_order):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)
    await make_order(replenishment_rule_id=rule.id)

    result = await service.delete_rule(rule.id)

    assert result == {'rule_id': rule.id, 'deleted': False, 'deactivated': True, 'open_orders': 1}
    assert (await service.get_rule(rule.id)).is_active is False


async def test_bulk_upsert_reports_each_entry(db_session, rule_data, sample_warehouse):
    from sgst.models.database import Product
    from decimal import Decimal

    other = Product(sku="TEST-002", name="Other", unit_cost=Decimal("3.00"))
    db_session.add(other)
    await db_session.commit()

    service = ReplenishmentRuleService(db_session)
    await service.create_rule(rule_data)

    results = await service.bulk_upsert_rules(sample_warehouse.id, [
        {'product_id': rule_data['product_id'], 'changes': {'lead_time_days': 9}},
        {'product_id': other.id, 'changes': {'min_level': 5, 'reorder_point': 10, 'max_level': 50}},
        {'product_id': other.id, 'changes': {'min_level': 90}},
    ])

    assert [r['status'] for r in results] == ['updated', 'created', 'error']
    assert results[0]['rule']['lead_time_days'] == 9
    assert results[2]['error']['error'] == 'ValidationError'


async def test_stats(db_session, rule_data, sample_warehouse):
    service = ReplenishmentRuleService(db_session)
    rule = await service.create_rule(rule_data)
    await service.update_rule(rule.id, {'is_active': False})

    stats = await service.get_stats(sample_warehouse.id)

    assert stats['total_rules'] == 1
    assert stats['active_rules'] == 0
    assert stats['average_lead_time'] == 4.0
    assert stats['average_eoq'] is None
