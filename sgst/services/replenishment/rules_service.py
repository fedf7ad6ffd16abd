from typing import List, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, func, case
from sgst.models.database import Product, Supplier, Warehouse
from sgst.models.replenishment import ReplenishmentRule
from sgst.models.purchasing import PurchaseOrder
from sgst.services.purchasing.order_status import OPEN_STATUSES
from sgst.exceptions import ValidationError, NotFoundError, ConflictError
import logging

logger = logging.getLogger(__name__)

RULE_FIELDS = {
    'product_id', 'warehouse_id', 'min_level', 'max_level', 'reorder_point',
    'replenish_quantity', 'economic_order_quantity', 'safety_stock', 'lead_time_days',
    'abc_classification', 'velocity_category', 'preferred_supplier_id', 'last_cost',
    'is_active', 'created_by'
}
IMMUTABLE_FIELDS = {'product_id', 'warehouse_id'}
NULLABLE_FIELDS = {'economic_order_quantity', 'preferred_supplier_id', 'last_cost', 'created_by'}
ABC_CLASSES = {'A', 'B', 'C'}
VELOCITY_CATEGORIES = {'fast', 'medium', 'slow'}


def validate_rule_values(values: Dict) -> None:
    """
    Check stock-level invariants on a complete set of rule values

    Raises ValidationError listing every violation found.
    """
    errors = []

    for name in ('min_level', 'max_level', 'reorder_point'):
        if values.get(name) is None:
            errors.append(f"{name} is required")

    for name in ('min_level', 'max_level', 'reorder_point', 'replenish_quantity',
                 'economic_order_quantity', 'safety_stock', 'lead_time_days'):
        value = values.get(name)
        if value is not None and value < 0:
            errors.append(f"{name} must not be negative")

    min_level = values.get('min_level')
    reorder_point = values.get('reorder_point')
    max_level = values.get('max_level')
    if None not in (min_level, reorder_point, max_level):
        if not min_level <= reorder_point <= max_level:
            errors.append("min_level <= reorder_point <= max_level must hold")

    abc = values.get('abc_classification')
    if abc is not None and abc not in ABC_CLASSES:
        errors.append(f"abc_classification must be one of {sorted(ABC_CLASSES)}")

    velocity = values.get('velocity_category')
    if velocity is not None and velocity not in VELOCITY_CATEGORIES:
        errors.append(f"velocity_category must be one of {sorted(VELOCITY_CATEGORIES)}")

    if errors:
        raise ValidationError(
            "Invalid replenishment rule",
            details={'errors': errors, 'values': {k: values.get(k) for k in ('min_level', 'reorder_point', 'max_level')}}
        )


class ReplenishmentRuleService:
    """Create, update and retire per-(product, warehouse) stock policies"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def create_rule(self, data: Dict) -> ReplenishmentRule:
        # None on a defaulted column means "use the default"
        values = {
            k: v for k, v in data.items()
            if k in RULE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
        }
        for name in ('product_id', 'warehouse_id'):
            if values.get(name) is None:
                raise ValidationError(f"{name} is required", details={'field': name})

        validate_rule_values(values)
        await self._check_references(values)

        existing = await self._find_rule(values['product_id'], values['warehouse_id'])
        if existing is not None:
            raise ConflictError(
                "A replenishment rule already exists for this product and warehouse",
                details={
                    'rule_id': existing.id,
                    'product_id': values['product_id'],
                    'warehouse_id': values['warehouse_id']
                }
            )

        rule = ReplenishmentRule(**values)
        self.db.add(rule)
        await self.db.commit()

        logger.info(
            f"Created replenishment rule {rule.id} for product {rule.product_id} "
            f"in warehouse {rule.warehouse_id}"
        )
        return rule

    async def get_rule(self, rule_id: int) -> ReplenishmentRule:
        rule = await self.db.get(ReplenishmentRule, rule_id)
        if rule is None:
            raise NotFoundError(
                f"Replenishment rule {rule_id} not found",
                details={'rule_id': rule_id}
            )
        return rule

    async def list_rules(
        self,
        warehouse_id: Optional[int] = None,
        active_only: bool = False
    ) -> List[ReplenishmentRule]:
        query = select(ReplenishmentRule)
        if warehouse_id is not None:
            query = query.where(ReplenishmentRule.warehouse_id == warehouse_id)
        if active_only:
            query = query.where(ReplenishmentRule.is_active == True)  # noqa: E712
        query = query.order_by(ReplenishmentRule.created_at.desc(), ReplenishmentRule.id.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_rule(self, rule_id: int, changes: Dict) -> ReplenishmentRule:
        """Apply a partial update; the merged rule must still satisfy the invariants"""
        rule = await self.get_rule(rule_id)

        immutable = IMMUTABLE_FIELDS & set(changes)
        if immutable:
            raise ValidationError(
                "Product and warehouse of a rule cannot change",
                details={'rule_id': rule_id, 'fields': sorted(immutable)}
            )

        changes = {k: v for k, v in changes.items() if k in RULE_FIELDS}
        nulls = sorted(k for k, v in changes.items() if v is None and k not in NULLABLE_FIELDS)
        if nulls:
            raise ValidationError(
                "Fields cannot be null",
                details={'rule_id': rule_id, 'fields': nulls}
            )

        merged = {name: getattr(rule, name) for name in RULE_FIELDS}
        merged.update(changes)
        validate_rule_values(merged)
        if changes.get('preferred_supplier_id') is not None:
            await self._check_references({'preferred_supplier_id': changes['preferred_supplier_id']})

        for name, value in changes.items():
            setattr(rule, name, value)

        await self.db.commit()
        logger.info(f"Updated replenishment rule {rule_id}: {sorted(changes)}")
        return rule

    async def delete_rule(self, rule_id: int) -> Dict:
        """
        Delete a rule, or deactivate it while open purchase orders reference it
        """
        rule = await self.get_rule(rule_id)

        query = select(func.count(PurchaseOrder.id)).where(
            and_(
                PurchaseOrder.replenishment_rule_id == rule_id,
                PurchaseOrder.status.in_(OPEN_STATUSES)
            )
        )
        open_orders = (await self.db.execute(query)).scalar() or 0

        if open_orders:
            rule.is_active = False
            await self.db.commit()
            logger.info(
                f"Deactivated replenishment rule {rule_id}; referenced by {open_orders} open orders"
            )
            return {'rule_id': rule_id, 'deleted': False, 'deactivated': True, 'open_orders': open_orders}

        await self.db.delete(rule)
        await self.db.commit()
        logger.info(f"Deleted replenishment rule {rule_id}")
        return {'rule_id': rule_id, 'deleted': True, 'deactivated': False, 'open_orders': 0}

    async def bulk_upsert_rules(self, warehouse_id: int, updates: List[Dict]) -> List[Dict]:
        """Update the warehouse rule of each product, creating it when missing"""
        results = []

        for update in updates:
            product_id = update.get('product_id')
            changes = dict(update.get('changes') or {})
            try:
                existing = await self._find_rule(product_id, warehouse_id)
                if existing is not None:
                    rule = await self.update_rule(existing.id, changes)
                    results.append({'product_id': product_id, 'status': 'updated', 'rule': rule.to_dict()})
                else:
                    changes.update({'product_id': product_id, 'warehouse_id': warehouse_id})
                    rule = await self.create_rule(changes)
                    results.append({'product_id': product_id, 'status': 'created', 'rule': rule.to_dict()})
            except (ValidationError, ConflictError) as e:
                logger.warning(f"Bulk rule update failed for product {product_id}: {e}")
                results.append({'product_id': product_id, 'status': 'error', 'error': e.to_dict()})

        return results

    async def get_stats(self, warehouse_id: Optional[int] = None) -> Dict:
        query = select(
            func.count(ReplenishmentRule.id),
            func.sum(case((ReplenishmentRule.is_active == True, 1), else_=0)),  # noqa: E712
            func.avg(ReplenishmentRule.lead_time_days),
            func.avg(ReplenishmentRule.economic_order_quantity)
        )
        if warehouse_id is not None:
            query = query.where(ReplenishmentRule.warehouse_id == warehouse_id)

        total, active, avg_lead_time, avg_eoq = (await self.db.execute(query)).one()

        return {
            'total_rules': total or 0,
            'active_rules': active or 0,
            'average_lead_time': round(float(avg_lead_time), 2) if avg_lead_time is not None else None,
            'average_eoq': round(float(avg_eoq), 2) if avg_eoq is not None else None
        }

    async def _check_references(self, values: Dict) -> None:
        """Referenced product, warehouse and supplier must exist"""
        errors = []
        for name, model in (('product_id', Product), ('warehouse_id', Warehouse),
                            ('preferred_supplier_id', Supplier)):
            value = values.get(name)
            if value is not None and await self.db.get(model, value) is None:
                errors.append(f"{model.__name__} {value} not found")

        if errors:
            raise ValidationError(
                "Replenishment rule references unknown records",
                details={'errors': errors}
            )

    async def _find_rule(self, product_id: int, warehouse_id: int) -> Optional[ReplenishmentRule]:
        query = select(ReplenishmentRule).where(
            and_(
                ReplenishmentRule.product_id == product_id,
                ReplenishmentRule.warehouse_id == warehouse_id
            )
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()
