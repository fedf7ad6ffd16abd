from dataclasses import dataclass, asdict
from typing import Optional, Sequence, Union, Dict, Any
from config.settings import settings

RISK_CRITICAL = 'critical'
RISK_HIGH = 'high'
RISK_MEDIUM = 'medium'
RISK_LOW = 'low'

RISK_ORDER = {RISK_CRITICAL: 0, RISK_HIGH: 1, RISK_MEDIUM: 2, RISK_LOW: 3}

URGENCY_IMMEDIATE = 'immediate'
URGENCY_NORMAL = 'normal'


@dataclass
class SuggestedAction:
    action: str
    quantity: int
    urgency: str
    unit_cost: float
    estimated_cost: float


@dataclass
class StockoutAlert:
    """Stock-out risk for one (product, warehouse); derived, never stored"""
    product_id: int
    warehouse_id: int
    rule_id: Optional[int]
    supplier_id: Optional[int]
    lead_time_days: int
    current_stock: int
    minimum_stock: int
    maximum_stock: int
    predicted_demand: float
    daily_demand: float
    days_remaining: float
    risk_level: str
    message: str
    suggested_action: SuggestedAction

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['predicted_demand'] = round(self.predicted_demand)
        data['daily_demand'] = round(self.daily_demand, 2)
        data['days_remaining'] = round(self.days_remaining)
        return data


def _demand_value(point: Union[int, float, Any]) -> float:
    if isinstance(point, (int, float)):
        return float(point)
    return float(point.predicted_demand)


class StockoutRiskEvaluator:
    """
    Classifies stock-out risk from live stock, a demand forecast window and a rule

    Pure function of its inputs; it reads nothing and writes nothing.
    """

    def __init__(
        self,
        window_days: Optional[int] = None,
        medium_multiplier: Optional[float] = None,
        no_demand_days: Optional[int] = None,
        default_unit_cost: Optional[float] = None
    ):
        self.window_days = window_days or settings.STOCKOUT_WINDOW_DAYS
        self.medium_multiplier = medium_multiplier or settings.MEDIUM_RISK_LEAD_TIME_MULTIPLIER
        self.no_demand_days = no_demand_days or settings.NO_DEMAND_DAYS_REMAINING
        self.default_unit_cost = (
            default_unit_cost if default_unit_cost is not None else settings.DEFAULT_UNIT_COST
        )

    def days_remaining(self, current_stock: float, daily_demand: float) -> float:
        if daily_demand <= 0:
            return float(self.no_demand_days)
        return current_stock / daily_demand

    def classify(self, rule, current_stock: float, daily_demand: float) -> str:
        """First match wins: critical, high, medium, otherwise low"""
        if current_stock <= rule.min_level:
            return RISK_CRITICAL

        days = self.days_remaining(current_stock, daily_demand)
        if days <= rule.lead_time_days:
            return RISK_HIGH
        if days <= rule.lead_time_days * self.medium_multiplier:
            return RISK_MEDIUM
        return RISK_LOW

    def suggest_action(
        self,
        rule,
        current_stock: int,
        predicted_demand: float,
        unit_cost: Optional[float] = None
    ) -> SuggestedAction:
        base_quantity = rule.economic_order_quantity or predicted_demand
        quantity = int(round(max(rule.max_level - current_stock, base_quantity)))
        # An alert always suggests something orderable
        quantity = max(quantity, rule.replenish_quantity or 0, 1)

        if unit_cost is None:
            unit_cost = float(rule.last_cost) if rule.last_cost is not None else self.default_unit_cost

        return SuggestedAction(
            action='create_purchase_order',
            quantity=quantity,
            urgency=URGENCY_IMMEDIATE if current_stock <= rule.min_level else URGENCY_NORMAL,
            unit_cost=float(unit_cost),
            estimated_cost=round(quantity * float(unit_cost), 2)
        )

    def evaluate(
        self,
        rule,
        current_stock: int,
        forecast_window: Sequence,
        unit_cost: Optional[float] = None
    ) -> Optional[StockoutAlert]:
        """
        Risk alert for the rule's (product, warehouse), or None when risk is low

        ``forecast_window`` holds daily predictions (numbers or forecast rows)
        starting tomorrow; only the first ``window_days`` entries count.
        """
        window = list(forecast_window)[:self.window_days]
        predicted_demand = sum(_demand_value(p) for p in window)
        daily_demand = predicted_demand / self.window_days
        days = self.days_remaining(current_stock, daily_demand)

        risk_level = self.classify(rule, current_stock, daily_demand)
        if risk_level == RISK_LOW:
            return None

        if risk_level == RISK_CRITICAL:
            message = f"Stock below minimum ({current_stock} <= {rule.min_level})"
        elif risk_level == RISK_HIGH:
            message = f"Stock insufficient for supplier lead time ({round(days)} days remaining)"
        else:
            message = f"Low stock, replenish soon ({round(days)} days remaining)"

        return StockoutAlert(
            product_id=rule.product_id,
            warehouse_id=rule.warehouse_id,
            rule_id=rule.id,
            supplier_id=rule.preferred_supplier_id,
            lead_time_days=rule.lead_time_days,
            current_stock=current_stock,
            minimum_stock=rule.min_level,
            maximum_stock=rule.max_level,
            predicted_demand=predicted_demand,
            daily_demand=daily_demand,
            days_remaining=days,
            risk_level=risk_level,
            message=message,
            suggested_action=self.suggest_action(rule, current_stock, predicted_demand, unit_cost)
        )
