from datetime import date
from typing import List, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sgst.services.inventory.inventory_service import InventoryService
from sgst.services.forecasting.demand_forecaster import ForecastingService
from sgst.services.replenishment.rules_service import ReplenishmentRuleService
from sgst.services.replenishment.risk_evaluator import (
    StockoutRiskEvaluator, StockoutAlert, RISK_ORDER, RISK_CRITICAL, RISK_HIGH, RISK_MEDIUM
)
from sgst.services.replenishment.order_generator import ReplenishmentOrderGenerator, DraftPurchaseOrder
from sgst.services.purchasing.purchase_order_service import PurchaseOrderService
from sgst.services.notifications.notification_service import NotificationService
from sgst.exceptions import ReplenishmentError
import logging

logger = logging.getLogger(__name__)


def summarize_alerts(alerts: List[StockoutAlert]) -> Dict:
    return {
        'total_alerts': len(alerts),
        'critical_alerts': sum(1 for a in alerts if a.risk_level == RISK_CRITICAL),
        'high_alerts': sum(1 for a in alerts if a.risk_level == RISK_HIGH),
        'medium_alerts': sum(1 for a in alerts if a.risk_level == RISK_MEDIUM),
        'total_value': round(sum(a.suggested_action.estimated_cost for a in alerts), 2)
    }


def summarize_drafts(drafts: List[DraftPurchaseOrder]) -> Dict:
    return {
        'total_orders': len(drafts),
        'urgent_orders': sum(1 for d in drafts if d.priority == 'urgent'),
        'total_value': round(sum(d.estimated_cost for d in drafts), 2),
        'average_lead_time': (
            round(sum(d.lead_time_days for d in drafts) / len(drafts)) if drafts else 0
        )
    }


class ReplenishmentService:
    """Stock-out detection and replenishment order proposals across warehouses"""

    def __init__(
        self,
        db_session: AsyncSession,
        evaluator: Optional[StockoutRiskEvaluator] = None,
        generator: Optional[ReplenishmentOrderGenerator] = None,
        notifier: Optional[NotificationService] = None
    ):
        self.db = db_session
        self.evaluator = evaluator or StockoutRiskEvaluator()
        self.generator = generator or ReplenishmentOrderGenerator()
        self.notifier = notifier or NotificationService(db_session)
        self.inventory = InventoryService(db_session)
        self.forecasting = ForecastingService(db_session)
        self.rules = ReplenishmentRuleService(db_session)
        self.purchase_orders = PurchaseOrderService(db_session, notifier=self.notifier)

    async def check_stockout_risks(
        self,
        warehouse_id: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> List[StockoutAlert]:
        """
        Evaluate every active rule against live stock and stored forecasts

        Pairs without a stored forecast for the window are evaluated with
        zero predicted demand, so only a breach of the minimum raises an alert.
        """
        rules = await self.rules.list_rules(warehouse_id=warehouse_id, active_only=True)
        logger.info(f"Checking stock-out risk for {len(rules)} active rules")

        snapshot = await self.inventory.get_stock_snapshot(
            (rule.product_id, rule.warehouse_id) for rule in rules
        )

        alerts = []
        for rule in rules:
            window = await self.forecasting.get_forecast_window(
                rule.product_id, rule.warehouse_id, days=self.evaluator.window_days, as_of=as_of
            )
            alert = self.evaluator.evaluate(
                rule, snapshot[(rule.product_id, rule.warehouse_id)], window
            )
            if alert is not None:
                alerts.append(alert)

        alerts.sort(key=lambda a: (RISK_ORDER[a.risk_level], a.days_remaining))

        if alerts:
            logger.warning(
                f"Found {len(alerts)} stock-out risks "
                f"({sum(1 for a in alerts if a.risk_level == RISK_CRITICAL)} critical)"
            )
        return alerts

    async def generate_replenishment_orders(
        self,
        warehouse_id: Optional[int] = None,
        persist: bool = False
    ) -> Dict:
        """Draft orders for high and critical risks; stored as draft purchase orders only when ``persist``"""
        alerts = await self.check_stockout_risks(warehouse_id)
        drafts = self.generator.generate(alerts)

        result = {
            'orders': drafts,
            'summary': summarize_drafts(drafts),
            'purchase_orders': [],
            'skipped': [],
            'errors': []
        }

        if persist and drafts:
            result.update(await self.create_orders_from_drafts(drafts))

        logger.info(f"Generated {len(drafts)} replenishment drafts (persist={persist})")
        return result

    async def create_orders_from_drafts(
        self,
        drafts: List[DraftPurchaseOrder],
        submit: bool = False
    ) -> Dict:
        """Persist drafts as purchase orders, one per draft; failures are collected, not raised"""
        created = []
        skipped = []
        errors = []

        for draft in drafts:
            if draft.supplier_id is None:
                logger.warning(
                    f"Skipping draft {draft.order_number}: rule {draft.rule_id} has no preferred supplier"
                )
                skipped.append({
                    'order_number': draft.order_number,
                    'product_id': draft.product_id,
                    'warehouse_id': draft.warehouse_id,
                    'reason': 'no_supplier'
                })
                continue

            try:
                order = await self.purchase_orders.create_order({
                    'order_number': draft.order_number,
                    'supplier_id': draft.supplier_id,
                    'warehouse_id': draft.warehouse_id,
                    'replenishment_rule_id': draft.rule_id,
                    'priority': draft.priority,
                    'requested_by': 'system',
                    'notes': draft.reason,
                    'auto_generated': True,
                    'expected_delivery_date': draft.expected_delivery,
                    'items': [{
                        'product_id': draft.product_id,
                        'quantity': draft.quantity,
                        'unit_price': draft.unit_cost
                    }]
                }, submit=submit)
                created.append(order)

            except ReplenishmentError as e:
                logger.error(f"Failed to create purchase order from draft {draft.order_number}: {e}")
                errors.append({
                    'order_number': draft.order_number,
                    'product_id': draft.product_id,
                    'error': e.to_dict()
                })

        return {'purchase_orders': created, 'skipped': skipped, 'errors': errors}

    async def run_replenishment_sweep(
        self,
        warehouse_id: Optional[int] = None,
        submit: bool = False
    ) -> Dict:
        """
        Full automated pass: evaluate risk, record alerts, create draft orders
        and optionally submit each one for approval
        """
        logger.info(f"Starting replenishment sweep (warehouse={warehouse_id or 'all'})")

        alerts = await self.check_stockout_risks(warehouse_id)
        if alerts:
            await self.notifier.stockout_alerts(alerts)

        drafts = self.generator.generate(alerts)
        outcome = await self.create_orders_from_drafts(drafts, submit=submit)
        orders = outcome['purchase_orders']

        summary = {
            'alerts': len(alerts),
            'drafts': len(drafts),
            'orders_created': len(orders),
            'orders_pending_approval': sum(1 for o in orders if o.status == 'pending_approval'),
            'orders_approved': sum(1 for o in orders if o.status == 'approved'),
            'skipped': outcome['skipped'],
            'errors': outcome['errors'],
            'estimated_cost': round(sum(d.estimated_cost for d in drafts), 2),
            'purchase_order_ids': [o.id for o in orders]
        }

        logger.info(
            f"Replenishment sweep completed: {summary['orders_created']} orders, "
            f"{len(summary['skipped'])} skipped, {len(summary['errors'])} failed"
        )
        return summary
