import re
import pytest
from decimal import Decimal
from sgst.services.purchasing.purchase_order_service import PurchaseOrderService
from sgst.services.inventory.inventory_service import InventoryService
from sgst.services.purchasing.order_status import can_transition, ensure_transition
from sgst.exceptions import ValidationError, NotFoundError, ConflictError


@pytest.fixture
def service(db_session):
    return PurchaseOrderService(db_session)


async def test_create_order_totals_lines(service, sample_supplier, sample_product, sample_warehouse):
    order = await service.create_order({
        'supplier_id': sample_supplier.id,
        'warehouse_id': sample_warehouse.id,
        'department_id': 'logistics',
        'items': [
            {'product_id': sample_product.id, 'quantity': 10, 'unit_price': 2.5},
            {'product_id': sample_product.id, 'quantity': 3},
        ]
    })

    assert order.status == 'draft'
    assert order.total_amount == Decimal('55.00')
    assert [item.line_total for item in order.items] == [Decimal('25.0'), Decimal('30.00')]
    assert re.fullmatch(r"PO-\d{8}-[0-9A-F]{8}", order.order_number)
    assert order.expected_delivery_date is not None


async def test_create_order_validates_items(service, sample_supplier, sample_product):
    with pytest.raises(ValidationError):
        await service.create_order({'supplier_id': sample_supplier.id, 'items': []})

    with pytest.raises(ValidationError) as exc:
        await service.create_order({
            'supplier_id': sample_supplier.id,
            'items': [
                {'product_id': sample_product.id, 'quantity': 0},
                {'product_id': 999, 'quantity': 1},
                {'product_id': sample_product.id, 'quantity': 1, 'unit_price': -1},
            ]
        })
    assert len(exc.value.details['errors']) == 3


async def test_create_order_requires_known_supplier(service, sample_product):
    with pytest.raises(ValidationError):
        await service.create_order({'supplier_id': 999, 'items': [{'product_id': sample_product.id, 'quantity': 1}]})


async def test_create_order_rejects_unknown_priority(service, sample_supplier, sample_product):
    with pytest.raises(ValidationError):
        await service.create_order({
            'supplier_id': sample_supplier.id,
            'priority': 'asap',
            'items': [{'product_id': sample_product.id, 'quantity': 1}]
        })


async def test_create_and_submit(service, make_order):
    order = await make_order()
    submitted = await service.submit_for_approval(order.id)
    assert submitted.status == 'approved'


async def test_full_receipt_updates_stock(db_session, service, make_order, sample_product, sample_warehouse, set_stock):
    await set_stock(sample_product.id, sample_warehouse.id, 40, reserved=5)
    order = await make_order(quantity=100)
    await service.submit_for_approval(order.id)
    await service.mark_ordered(order.id)

    partial = await service.receive_order(order.id, [{'product_id': sample_product.id, 'quantity': 60}])
    assert partial.status == 'partially_received'
    assert partial.items[0].quantity_received == 60

    done = await service.receive_order(order.id, [{'product_id': sample_product.id, 'quantity': 40}])
    assert done.status == 'completed'
    assert done.completed_at is not None

    stock = await InventoryService(db_session).get_current_stock(sample_product.id, sample_warehouse.id)
    assert stock == 135


async def test_receipt_creates_missing_inventory_row(db_session, service, make_order, sample_product, sample_warehouse):
    order = await make_order(quantity=10)
    await service.submit_for_approval(order.id)
    await service.mark_ordered(order.id)

    await service.receive_order(order.id, [
        {'product_id': sample_product.id, 'quantity': 4},
        {'product_id': sample_product.id, 'quantity': 6},
    ])

    inventory = InventoryService(db_session)
    assert await inventory.get_current_stock(sample_product.id, sample_warehouse.id) == 10


async def test_over_receipt_rejected(service, make_order, sample_product):
    order = await make_order(quantity=10)
    await service.submit_for_approval(order.id)
    await service.mark_ordered(order.id)

    with pytest.raises(ValidationError):
        await service.receive_order(order.id, [{'product_id': sample_product.id, 'quantity': 11}])


async def test_receive_before_ordering_conflicts(service, make_order, sample_product):
    order = await make_order(quantity=10)

    with pytest.raises(ConflictError) as exc:
        await service.receive_order(order.id, [{'product_id': sample_product.id, 'quantity': 1}])
    assert exc.value.code == 'invalid_transition'
    assert exc.value.details['current_status'] == 'draft'


async def test_cannot_order_a_draft(service, make_order):
    order = await make_order()
    with pytest.raises(ConflictError):
        await service.mark_ordered(order.id)


async def test_cancel_from_draft_records_reason(service, make_order):
    order = await make_order()
    cancelled = await service.cancel_order(order.id, reason='wrong supplier', user='buyer-paulo')

    assert cancelled.status == 'cancelled'
    assert cancelled.cancellation_reason == 'wrong supplier'

    with pytest.raises(ConflictError):
        await service.cancel_order(order.id)


async def test_cannot_cancel_after_ordering(service, make_order):
    order = await make_order()
    await service.submit_for_approval(order.id)
    await service.mark_ordered(order.id)

    with pytest.raises(ConflictError):
        await service.cancel_order(order.id)


async def test_version_increases_on_each_transition(service, make_order):
    order = await make_order()
    assert order.version_id == 1

    await service.submit_for_approval(order.id)
    ordered = await service.mark_ordered(order.id)
    assert ordered.version_id == 3


async def test_list_and_filter_orders(service, make_order):
    first = await make_order(priority='urgent', department_id='sales')
    await make_order(priority='low')
    await service.submit_for_approval(first.id)

    assert [o.id for o in await service.list_orders(priority='urgent')] == [first.id]
    assert [o.id for o in await service.list_orders(status_filter='approved')] == [first.id]
    assert len(await service.list_orders(requested_by='buyer-paulo')) == 2
    assert await service.list_orders(department_id='finance') == []


async def test_get_missing_order(service):
    with pytest.raises(NotFoundError):
        await service.get_order(31337)


def test_transition_table():
    assert can_transition('draft', 'pending_approval')
    assert can_transition('partially_received', 'completed')
    assert not can_transition('rejected', 'cancelled')
    assert not can_transition('ordered', 'cancelled')
    assert not can_transition('completed', 'draft')


def test_ensure_transition_raises_with_context():
    class Order:
        id = 5
        status = 'completed'

    with pytest.raises(ConflictError) as exc:
        ensure_transition(Order(), 'ordered')
    assert exc.value.details == {
        'purchase_order_id': 5,
        'current_status': 'completed',
        'attempted_status': 'ordered'
    }
