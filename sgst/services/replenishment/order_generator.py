import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Dict, Any
from sgst.services.replenishment.risk_evaluator import (
    StockoutAlert, RISK_CRITICAL, RISK_HIGH, RISK_ORDER, URGENCY_IMMEDIATE
)


@dataclass
class DraftPurchaseOrder:
    """Replenishment proposal for one alert; persisted only on request"""
    order_number: str
    product_id: int
    warehouse_id: int
    rule_id: Optional[int]
    supplier_id: Optional[int]
    quantity: int
    unit_cost: float
    estimated_cost: float
    urgency: str
    priority: str
    risk_level: str
    reason: str
    lead_time_days: int
    expected_delivery: datetime
    auto_generated: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['expected_delivery'] = self.expected_delivery.isoformat()
        return data


class ReplenishmentOrderGenerator:
    """Turns high and critical stock-out alerts into draft orders"""

    def __init__(self, clock=None):
        self.clock = clock or datetime.utcnow

    @staticmethod
    def make_order_number(now: datetime) -> str:
        # Format: REP-YYYYMMDD-xxxxxx
        return f"REP-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:6]}"

    def generate(self, alerts: Sequence[StockoutAlert]) -> List[DraftPurchaseOrder]:
        """
        One draft per qualifying alert, most severe first

        Alerts for the same supplier are not consolidated into one order.
        """
        qualifying = [a for a in alerts if a.risk_level in (RISK_CRITICAL, RISK_HIGH)]
        qualifying.sort(key=lambda a: (RISK_ORDER[a.risk_level], a.days_remaining))

        now = self.clock()
        drafts = []
        for alert in qualifying:
            action = alert.suggested_action
            drafts.append(DraftPurchaseOrder(
                order_number=self.make_order_number(now),
                product_id=alert.product_id,
                warehouse_id=alert.warehouse_id,
                rule_id=alert.rule_id,
                supplier_id=alert.supplier_id,
                quantity=action.quantity,
                unit_cost=action.unit_cost,
                estimated_cost=action.estimated_cost,
                urgency=action.urgency,
                priority='urgent' if action.urgency == URGENCY_IMMEDIATE else 'high',
                risk_level=alert.risk_level,
                reason=alert.message,
                lead_time_days=alert.lead_time_days,
                expected_delivery=now + timedelta(days=alert.lead_time_days)
            ))

        return drafts
