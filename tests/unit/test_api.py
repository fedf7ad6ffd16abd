import pytest
from httpx import AsyncClient, ASGITransport
from sgst.api.routes import app
from sgst.database import get_db

API = "/api/v1"


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()['status'] == 'healthy'
    assert response.json()['database'] == 'connected'

    response = await client.get("/")
    assert response.json()['api'] == API


async def test_rule_crud(client, sample_product, sample_warehouse, sample_supplier):
    response = await client.post(f"{API}/replenishment/rules", json={
        'product_id': sample_product.id,
        'warehouse_id': sample_warehouse.id,
        'min_level': 10,
        'max_level': 100,
        'reorder_point': 30,
        'preferred_supplier_id': sample_supplier.id
    })
    assert response.status_code == 201
    rule_id = response.json()['id']

    response = await client.put(f"{API}/replenishment/rules/{rule_id}", json={'lead_time_days': 12})
    assert response.status_code == 200
    assert response.json()['lead_time_days'] == 12

    response = await client.get(f"{API}/replenishment/rules", params={'warehouse_id': sample_warehouse.id})
    assert response.json()['count'] == 1

    response = await client.delete(f"{API}/replenishment/rules/{rule_id}")
    assert response.json()['deleted'] is True


async def test_invalid_rule_returns_400(client, sample_product, sample_warehouse):
    response = await client.post(f"{API}/replenishment/rules", json={
        'product_id': sample_product.id,
        'warehouse_id': sample_warehouse.id,
        'min_level': 50,
        'max_level': 40,
        'reorder_point': 45
    })

    assert response.status_code == 400
    body = response.json()
    assert body['error'] == 'ValidationError'
    assert body['details']['errors']


async def test_missing_rule_returns_404(client):
    response = await client.get(f"{API}/replenishment/rules/999")

    assert response.status_code == 404
    assert response.json()['error'] == 'NotFoundError'


async def test_bulk_update_reports_summary(client, sample_rule):
    response = await client.post(f"{API}/replenishment/rules/bulk-update", json={
        'warehouse_id': sample_rule.warehouse_id,
        'updates': [
            {'product_id': sample_rule.product_id, 'changes': {'safety_stock': 30}},
            {'product_id': sample_rule.product_id, 'changes': {'min_level': 900}}
        ]
    })

    assert response.status_code == 200
    assert response.json()['summary'] == {'total': 2, 'updated': 1, 'created': 0, 'errors': 1}


async def test_alerts_and_generated_orders(client, sample_rule, set_stock):
    await set_stock(sample_rule.product_id, sample_rule.warehouse_id, 10)

    response = await client.get(f"{API}/replenishment/alerts")
    assert response.status_code == 200
    assert response.json()['summary']['critical_alerts'] == 1

    response = await client.post(f"{API}/replenishment/generate-orders", json={'persist': True})
    body = response.json()
    assert len(body['orders']) == 1
    assert body['purchase_orders'][0]['status'] == 'draft'


async def test_forecast_endpoint(client, sample_product, sample_warehouse):
    response = await client.post(f"{API}/replenishment/forecast", json={
        'product_id': sample_product.id,
        'warehouse_id': sample_warehouse.id,
        'horizon_days': 5
    })

    assert response.status_code == 200
    body = response.json()
    assert len(body['forecasts']) == 5
    assert body['run_id'] is not None

    response = await client.post(f"{API}/replenishment/forecast", json={
        'product_id': sample_product.id,
        'warehouse_id': sample_warehouse.id,
        'horizon_days': 0
    })
    assert response.status_code == 400


async def test_purchase_order_approval_flow(client, sample_supplier, sample_product, sample_warehouse, sample_workflow):
    response = await client.post(f"{API}/purchase-orders", json={
        'supplier_id': sample_supplier.id,
        'warehouse_id': sample_warehouse.id,
        'requested_by': 'buyer-paulo',
        'items': [{'product_id': sample_product.id, 'quantity': 60000, 'unit_price': 10}],
        'submit': True
    })
    assert response.status_code == 201
    order = response.json()
    assert order['status'] == 'pending_approval'

    response = await client.get(f"{API}/approvals/pending", params={'approver_user_id': 'finance-ana'})
    assert response.json()['count'] == 1

    for approver in ('finance-ana', 'finance-joao'):
        response = await client.post(f"{API}/purchase-orders/{order['id']}/approvals", json={
            'approver_user_id': approver,
            'decision': 'approved'
        })
        assert response.status_code == 200
    assert response.json()['next_level_approvers'] == ['director-maria']

    response = await client.post(f"{API}/purchase-orders/{order['id']}/approvals", json={
        'approver_user_id': 'director-maria',
        'decision': 'approved'
    })
    assert response.json()['purchase_order']['status'] == 'approved'

    response = await client.get(f"{API}/purchase-orders/{order['id']}/approval-history")
    assert [a['status'] for a in response.json()['approvals']] == ['approved'] * 3

    response = await client.get(f"{API}/notifications", params={'recipient': 'buyer-paulo'})
    notification = response.json()['notifications'][0]
    assert notification['alert_type'] == 'order_approved'

    response = await client.post(
        f"{API}/notifications/{notification['id']}/acknowledge", json={'user': 'buyer-paulo'}
    )
    assert response.json()['acknowledged'] is True


async def test_repeated_decision_returns_409(client, make_order, sample_workflow):
    order = await make_order(quantity=60000, unit_price=10)
    await client.post(f"{API}/purchase-orders/{order.id}/submit")

    payload = {'approver_user_id': 'finance-ana', 'decision': 'rejected', 'comments': 'no budget'}
    first = await client.post(f"{API}/purchase-orders/{order.id}/approvals", json=payload)
    assert first.json()['purchase_order']['status'] == 'rejected'

    second = await client.post(f"{API}/purchase-orders/{order.id}/approvals", json=payload)
    assert second.status_code == 409
    assert second.json()['code'] == 'approval_processed'


async def test_receive_and_cancel_transitions(client, make_order, sample_product):
    order = await make_order(quantity=5)

    response = await client.post(f"{API}/purchase-orders/{order.id}/order")
    assert response.status_code == 409
    assert response.json()['code'] == 'invalid_transition'

    await client.post(f"{API}/purchase-orders/{order.id}/submit")
    await client.post(f"{API}/purchase-orders/{order.id}/order")
    response = await client.post(f"{API}/purchase-orders/{order.id}/receive", json={
        'items_received': [{'product_id': sample_product.id, 'quantity': 5}]
    })
    assert response.json()['status'] == 'completed'

    response = await client.post(f"{API}/purchase-orders/{order.id}/cancel", json={'reason': 'late'})
    assert response.status_code == 409


async def test_order_request_validation(client, sample_supplier, sample_product):
    response = await client.post(f"{API}/purchase-orders", json={
        'supplier_id': sample_supplier.id,
        'items': [{'product_id': sample_product.id, 'quantity': 0}]
    })
    assert response.status_code == 422


async def test_workflow_endpoints(client, two_level_rules):
    response = await client.post(f"{API}/approval-workflows", json={
        'name': 'Gap in levels',
        'rules': [dict(two_level_rules[1])]
    })
    assert response.status_code == 400
    assert any('contiguous' in e for e in response.json()['details']['errors'])

    response = await client.post(f"{API}/approval-workflows", json={'name': 'Finance', 'rules': two_level_rules})
    assert response.status_code == 201
    workflow_id = response.json()['id']

    response = await client.patch(f"{API}/approval-workflows/{workflow_id}", json={'is_active': False})
    assert response.json()['is_active'] is False

    response = await client.get(f"{API}/approval-workflows", params={'active_only': True})
    assert response.json()['count'] == 0

    response = await client.patch(f"{API}/approval-workflows/{workflow_id}", json={
        'name': 'Finance only',
        'rules': two_level_rules[:1]
    })
    assert response.json()['name'] == 'Finance only'
    assert len(response.json()['rules']) == 1

    response = await client.delete(f"{API}/approval-workflows/{workflow_id}")
    assert response.json()['deleted'] is True
    response = await client.get(f"{API}/approval-workflows/{workflow_id}")
    assert response.status_code == 404


async def test_rule_update_rejects_explicit_null(client, sample_rule):
    response = await client.put(f"{API}/replenishment/rules/{sample_rule.id}", json={'is_active': None})
    assert response.status_code == 400
    assert response.json()['details']['fields'] == ['is_active']

    response = await client.get(f"{API}/replenishment/rules/{sample_rule.id}")
    assert response.json()['is_active'] is True


async def test_rule_with_unknown_supplier_returns_400(client, sample_product, sample_warehouse):
    response = await client.post(f"{API}/replenishment/rules", json={
        'product_id': sample_product.id,
        'warehouse_id': sample_warehouse.id,
        'min_level': 10,
        'max_level': 100,
        'reorder_point': 30,
        'preferred_supplier_id': 404
    })
    assert response.status_code == 400
    assert response.json()['details']['errors'] == ["Supplier 404 not found"]


async def test_approval_limit_endpoints(client):
    response = await client.post(f"{API}/approval-limits", json={
        'user_id': 'finance-ana',
        'role': 'finance',
        'max_amount': 150000
    })
    assert response.status_code == 201
    limit = response.json()
    assert limit['currency'] == 'AOA'

    response = await client.post(f"{API}/approval-limits", json={'user_id': 'finance-joao', 'max_amount': -1})
    assert response.status_code == 422

    response = await client.put(f"{API}/approval-limits/{limit['id']}", json={'max_amount': 300000})
    assert response.json()['max_amount'] == 300000.0

    response = await client.get(f"{API}/approval-limits", params={'user_id': 'finance-ana'})
    assert response.json()['count'] == 1

    response = await client.delete(f"{API}/approval-limits/{limit['id']}")
    assert response.json() == {'limit_id': limit['id'], 'deleted': True}

    response = await client.put(f"{API}/approval-limits/{limit['id']}", json={'max_amount': 1})
    assert response.status_code == 404


async def test_global_approval_history_and_pending_filters(client, make_order, sample_workflow):
    urgent = await make_order(quantity=60000, unit_price=10, priority='urgent', department_id='logistics')
    await make_order(quantity=60000, unit_price=10)
    await client.post(f"{API}/purchase-orders/{urgent.id}/submit")

    response = await client.get(f"{API}/approvals/pending", params={'priority': 'urgent'})
    assert response.json()['count'] == 2
    response = await client.get(f"{API}/approvals/pending", params={'department_id': 'sales'})
    assert response.json()['count'] == 0

    await client.post(f"{API}/purchase-orders/{urgent.id}/approvals", json={
        'approver_user_id': 'finance-ana',
        'decision': 'approved'
    })

    response = await client.get(f"{API}/approval-history", params={'page': 1, 'limit': 10})
    body = response.json()
    assert body['total'] == 1
    assert body['total_pages'] == 1
    assert body['history'][0]['approver_user_id'] == 'finance-ana'

    response = await client.get(f"{API}/approval-history", params={'start_date': '2999-01-01T00:00:00'})
    assert response.json()['total'] == 0
