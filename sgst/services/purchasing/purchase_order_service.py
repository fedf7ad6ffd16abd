import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sgst.models.database import Product, Supplier, Warehouse
from sgst.models.purchasing import PurchaseOrder, PurchaseOrderItem
from sgst.services.approval.workflow_engine import ApprovalWorkflowEngine, moot_pending_approvals
from sgst.services.inventory.inventory_service import InventoryService
from sgst.services.notifications.notification_service import NotificationService
from sgst.services.purchasing import order_status as status
from sgst.exceptions import ValidationError, NotFoundError
import logging

logger = logging.getLogger(__name__)


class PurchaseOrderService:
    """Purchase order lifecycle from draft to receipt"""

    def __init__(
        self,
        db_session: AsyncSession,
        notifier: Optional[NotificationService] = None,
        approval_engine: Optional[ApprovalWorkflowEngine] = None
    ):
        self.db = db_session
        self.notifier = notifier or NotificationService(db_session)
        self.approvals = approval_engine or ApprovalWorkflowEngine(db_session, self.notifier)
        self.inventory = InventoryService(db_session)

    @staticmethod
    def _generate_order_number() -> str:
        # Format: PO-YYYYMMDD-XXXXXXXX
        return f"PO-{datetime.utcnow().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"

    async def _build_items(self, items: List[Dict]) -> List[PurchaseOrderItem]:
        if not items:
            raise ValidationError("A purchase order needs at least one item")

        errors = []
        order_items = []
        for index, item in enumerate(items):
            product_id = item.get('product_id')
            quantity = item.get('quantity')

            product = await self.db.get(Product, product_id) if product_id is not None else None
            if product is None:
                errors.append(f"item {index}: product {product_id} not found")
                continue
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                errors.append(f"item {index}: quantity must be a positive integer")
                continue

            try:
                unit_price = Decimal(str(item.get('unit_price', product.unit_cost)))
            except InvalidOperation:
                errors.append(f"item {index}: invalid unit_price")
                continue
            if unit_price < 0:
                errors.append(f"item {index}: unit_price cannot be negative")
                continue

            order_items.append(PurchaseOrderItem(
                product_id=product.id,
                quantity_ordered=quantity,
                quantity_received=0,
                unit_price=unit_price,
                line_total=unit_price * quantity
            ))

        if errors:
            raise ValidationError("Invalid purchase order items", details={'errors': errors})

        return order_items

    async def create_order(self, data: Dict, submit: bool = False) -> PurchaseOrder:
        """
        Create a draft purchase order, optionally submitting it straight away

        Items format: [{'product_id': 1, 'quantity': 100, 'unit_price': 12.5}, ...]
        where unit_price defaults to the product's unit cost.
        """
        supplier_id = data.get('supplier_id')
        supplier = await self.db.get(Supplier, supplier_id) if supplier_id is not None else None
        if supplier is None:
            raise ValidationError(
                f"Supplier {supplier_id} not found",
                details={'supplier_id': supplier_id}
            )

        warehouse_id = data.get('warehouse_id')
        if warehouse_id is not None and await self.db.get(Warehouse, warehouse_id) is None:
            raise ValidationError(
                f"Warehouse {warehouse_id} not found",
                details={'warehouse_id': warehouse_id}
            )

        priority = data.get('priority') or 'normal'
        if priority not in status.PRIORITIES:
            raise ValidationError(
                f"Unknown priority '{priority}'",
                details={'allowed': list(status.PRIORITIES)}
            )

        items = await self._build_items(data.get('items') or [])
        total_amount = sum((item.line_total for item in items), Decimal('0.00'))

        expected_delivery = data.get('expected_delivery_date')
        if expected_delivery is None and supplier.lead_time_days:
            expected_delivery = datetime.utcnow() + timedelta(days=supplier.lead_time_days)

        order = PurchaseOrder(
            order_number=data.get('order_number') or self._generate_order_number(),
            supplier_id=supplier.id,
            warehouse_id=warehouse_id,
            replenishment_rule_id=data.get('replenishment_rule_id'),
            status=status.DRAFT,
            priority=priority,
            department_id=data.get('department_id'),
            budget_code=data.get('budget_code'),
            requested_by=data.get('requested_by') or 'system',
            notes=data.get('notes'),
            total_amount=total_amount,
            auto_approval_enabled=bool(data.get('auto_approval_enabled', False)),
            auto_approval_max_amount=data.get('auto_approval_max_amount'),
            auto_generated=bool(data.get('auto_generated', False)),
            expected_delivery_date=expected_delivery,
            current_approval_level=0,
            items=items,
            approvals=[]
        )

        self.db.add(order)
        await self.db.commit()

        logger.info(
            f"Created purchase order {order.order_number} for supplier {supplier.name} "
            f"({float(total_amount):.2f})"
        )

        if submit:
            return await self.submit_for_approval(order.id)
        return order

    async def submit_for_approval(self, order_id: int) -> PurchaseOrder:
        return await self.approvals.submit(order_id)

    async def cancel_order(self, order_id: int, reason: Optional[str] = None, user: Optional[str] = None) -> PurchaseOrder:
        """Cancel an order that has not been placed with the supplier; pending approvals become moot"""
        order = await self.approvals.load_order_for_update(order_id)
        status.ensure_transition(order, status.CANCELLED)

        mooted = moot_pending_approvals(order)
        order.status = status.CANCELLED
        order.cancelled_at = datetime.utcnow()
        order.cancellation_reason = reason

        await self.approvals.commit_transition(order)

        logger.info(
            f"Purchase order {order.order_number} cancelled by {user or 'unknown'}"
            f" ({mooted} pending approvals mooted)"
        )
        await self.notifier.order_status_changed(order, reason)
        return order

    async def mark_ordered(self, order_id: int) -> PurchaseOrder:
        """Record that an approved order was placed with the supplier"""
        order = await self.approvals.load_order_for_update(order_id)
        status.ensure_transition(order, status.ORDERED)

        order.status = status.ORDERED
        order.ordered_at = datetime.utcnow()
        await self.approvals.commit_transition(order)

        logger.info(f"Purchase order {order.order_number} placed with supplier {order.supplier_id}")
        return order

    async def receive_order(self, order_id: int, items_received: List[Dict]) -> PurchaseOrder:
        """
        Book received quantities into stock

        items_received format: [{'product_id': 1, 'quantity': 95}, ...]
        Stock goes to the order's warehouse. Receiving more than is
        outstanding for a line is rejected.
        """
        order = await self.approvals.load_order_for_update(order_id)
        status.ensure_transition(order, status.COMPLETED)

        if order.warehouse_id is None:
            raise ValidationError(
                f"Purchase order {order.id} has no receiving warehouse",
                details={'purchase_order_id': order.id}
            )
        if not items_received:
            raise ValidationError("No received items given")

        lines = {item.product_id: item for item in order.items}
        errors = []
        totals = {}
        for index, received in enumerate(items_received):
            product_id = received.get('product_id')
            quantity = received.get('quantity')
            if product_id not in lines:
                errors.append(f"item {index}: product {product_id} is not on this order")
            elif not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                errors.append(f"item {index}: quantity must be a positive integer")
            else:
                totals[product_id] = totals.get(product_id, 0) + quantity

        for product_id, quantity in totals.items():
            outstanding = lines[product_id].quantity_outstanding
            if quantity > outstanding:
                errors.append(
                    f"product {product_id}: received {quantity} but only {outstanding} outstanding"
                )
        if errors:
            raise ValidationError("Invalid receipt", details={'errors': errors})

        for product_id, quantity in totals.items():
            line = lines[product_id]
            line.quantity_received = (line.quantity_received or 0) + quantity
            await self.inventory.receive_stock(product_id, order.warehouse_id, quantity)

        if all(line.quantity_outstanding == 0 for line in order.items):
            order.status = status.COMPLETED
            order.completed_at = datetime.utcnow()
        else:
            order.status = status.PARTIALLY_RECEIVED

        await self.approvals.commit_transition(order)

        logger.info(f"Purchase order {order.order_number} received; now {order.status}")
        return order

    async def get_order(self, order_id: int) -> PurchaseOrder:
        order = await self.db.get(PurchaseOrder, order_id)
        if order is None:
            raise NotFoundError(
                f"Purchase order {order_id} not found",
                details={'purchase_order_id': order_id}
            )
        return order

    async def list_orders(
        self,
        status_filter: Optional[str] = None,
        supplier_id: Optional[int] = None,
        department_id: Optional[str] = None,
        priority: Optional[str] = None,
        requested_by: Optional[str] = None,
        limit: int = 200
    ) -> List[PurchaseOrder]:
        query = select(PurchaseOrder)
        if status_filter is not None:
            query = query.where(PurchaseOrder.status == status_filter)
        if supplier_id is not None:
            query = query.where(PurchaseOrder.supplier_id == supplier_id)
        if department_id is not None:
            query = query.where(PurchaseOrder.department_id == department_id)
        if priority is not None:
            query = query.where(PurchaseOrder.priority == priority)
        if requested_by is not None:
            query = query.where(PurchaseOrder.requested_by == requested_by)
        query = query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
