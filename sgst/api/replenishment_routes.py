"""
Replenishment API Routes

Demand forecasts, replenishment rules, stock-out alerts and order generation.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from pydantic import BaseModel, Field
import logging

from config.settings import settings
from sgst.database import get_db
from sgst.services.forecasting.demand_forecaster import ForecastingService, DemandForecaster
from sgst.services.replenishment.rules_service import ReplenishmentRuleService
from sgst.services.replenishment.replenishment_service import (
    ReplenishmentService, summarize_alerts
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{settings.API_PREFIX}/replenishment", tags=["Replenishment"])


# ============================================================================
# Request Models
# ============================================================================

class ForecastRequest(BaseModel):
    product_id: int = Field(..., description="Product to forecast")
    warehouse_id: int = Field(..., description="Warehouse the demand is drawn from")
    horizon_days: int = Field(
        settings.FORECAST_HORIZON_DAYS, description="Days to forecast (1-365)"
    )


class ActualDemandRequest(BaseModel):
    actual_demand: int = Field(..., description="Observed demand for the forecast day")


class RuleCreate(BaseModel):
    product_id: int
    warehouse_id: int
    min_level: int = Field(..., ge=0)
    max_level: int = Field(..., ge=0)
    reorder_point: int = Field(..., ge=0)
    replenish_quantity: int = Field(0, ge=0)
    economic_order_quantity: Optional[int] = Field(None, ge=0)
    safety_stock: int = Field(0, ge=0)
    lead_time_days: int = Field(7, ge=0)
    abc_classification: str = Field('C', description="A, B or C")
    velocity_category: str = Field('medium', description="fast, medium or slow")
    preferred_supplier_id: Optional[int] = None
    last_cost: Optional[float] = Field(None, ge=0)
    is_active: bool = True
    created_by: Optional[str] = None


class RuleUpdate(BaseModel):
    min_level: Optional[int] = None
    max_level: Optional[int] = None
    reorder_point: Optional[int] = None
    replenish_quantity: Optional[int] = None
    economic_order_quantity: Optional[int] = None
    safety_stock: Optional[int] = None
    lead_time_days: Optional[int] = None
    abc_classification: Optional[str] = None
    velocity_category: Optional[str] = None
    preferred_supplier_id: Optional[int] = None
    last_cost: Optional[float] = None
    is_active: Optional[bool] = None


class BulkRuleItem(BaseModel):
    product_id: int
    changes: RuleUpdate


class BulkRuleUpdateRequest(BaseModel):
    warehouse_id: int
    updates: List[BulkRuleItem] = Field(..., min_length=1)


class GenerateOrdersRequest(BaseModel):
    warehouse_id: Optional[int] = None
    persist: bool = Field(False, description="Store the drafts as draft purchase orders")


# ============================================================================
# Forecast Endpoints
# ============================================================================

@router.post("/forecast")
async def generate_forecast(
    request: ForecastRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Generate and store a daily demand forecast for a product in a warehouse
    """
    service = ForecastingService(db)
    records = await service.generate_forecast(
        product_id=request.product_id,
        warehouse_id=request.warehouse_id,
        horizon_days=request.horizon_days
    )

    return {
        'product_id': request.product_id,
        'warehouse_id': request.warehouse_id,
        'run_id': records[0].run_id if records else None,
        'forecasts': [r.to_dict() for r in records],
        'summary': DemandForecaster.summarize(records)
    }


@router.get("/forecasts")
async def list_forecasts(
    product_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    db: AsyncSession = Depends(get_db)
):
    service = ForecastingService(db)
    forecasts = await service.list_forecasts(product_id, warehouse_id, limit)
    return {'forecasts': [f.to_dict() for f in forecasts], 'count': len(forecasts)}


@router.get("/forecasts/{forecast_id}")
async def get_forecast(forecast_id: int, db: AsyncSession = Depends(get_db)):
    service = ForecastingService(db)
    forecast = await service.get_forecast(forecast_id)
    return forecast.to_dict()


@router.post("/forecasts/{forecast_id}/actual")
async def record_actual_demand(
    forecast_id: int,
    request: ActualDemandRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Record the observed demand for a forecast day (once per forecast)
    """
    service = ForecastingService(db)
    forecast = await service.record_actual_demand(forecast_id, request.actual_demand)
    return forecast.to_dict()


@router.get("/forecast-accuracy")
async def get_forecast_accuracy(
    product_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    service = ForecastingService(db)
    return await service.get_forecast_accuracy(product_id, warehouse_id)


# ============================================================================
# Rule Endpoints
# ============================================================================

@router.post("/rules", status_code=201)
async def create_rule(request: RuleCreate, db: AsyncSession = Depends(get_db)):
    service = ReplenishmentRuleService(db)
    rule = await service.create_rule(request.model_dump())
    return rule.to_dict()


@router.get("/rules")
async def list_rules(
    warehouse_id: Optional[int] = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    service = ReplenishmentRuleService(db)
    rules = await service.list_rules(warehouse_id=warehouse_id, active_only=active_only)
    return {'rules': [r.to_dict() for r in rules], 'count': len(rules)}


@router.get("/rules/{rule_id}")
async def get_rule(rule_id: int, db: AsyncSession = Depends(get_db)):
    service = ReplenishmentRuleService(db)
    rule = await service.get_rule(rule_id)
    return rule.to_dict()


@router.put("/rules/{rule_id}")
async def update_rule(
    rule_id: int,
    request: RuleUpdate,
    db: AsyncSession = Depends(get_db)
):
    service = ReplenishmentRuleService(db)
    rule = await service.update_rule(rule_id, request.model_dump(exclude_unset=True))
    return rule.to_dict()


@router.delete("/rules/{rule_id}")
async def delete_rule(rule_id: int, db: AsyncSession = Depends(get_db)):
    """
    Delete a rule, or deactivate it while open purchase orders still reference it
    """
    service = ReplenishmentRuleService(db)
    return await service.delete_rule(rule_id)


@router.post("/rules/bulk-update")
async def bulk_update_rules(
    request: BulkRuleUpdateRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Create or update many rules in one warehouse; each entry reports its own outcome
    """
    service = ReplenishmentRuleService(db)
    results = await service.bulk_upsert_rules(
        request.warehouse_id,
        [
            {'product_id': item.product_id, 'changes': item.changes.model_dump(exclude_unset=True)}
            for item in request.updates
        ]
    )

    return {
        'results': results,
        'summary': {
            'total': len(results),
            'updated': sum(1 for r in results if r['status'] == 'updated'),
            'created': sum(1 for r in results if r['status'] == 'created'),
            'errors': sum(1 for r in results if r['status'] == 'error')
        }
    }


@router.get("/stats")
async def get_stats(
    warehouse_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    service = ReplenishmentRuleService(db)
    return await service.get_stats(warehouse_id)


# ============================================================================
# Alert & Order Generation Endpoints
# ============================================================================

@router.get("/alerts")
async def get_stockout_alerts(
    warehouse_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Current stock-out risks, most severe first
    """
    service = ReplenishmentService(db)
    alerts = await service.check_stockout_risks(warehouse_id)

    return {
        'alerts': [a.to_dict() for a in alerts],
        'summary': summarize_alerts(alerts)
    }


@router.post("/generate-orders")
async def generate_orders(
    request: GenerateOrdersRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Propose replenishment orders for high and critical risks

    - **persist**: when true the drafts are stored as draft purchase orders
    """
    service = ReplenishmentService(db)
    result = await service.generate_replenishment_orders(
        warehouse_id=request.warehouse_id,
        persist=request.persist
    )

    return {
        'orders': [d.to_dict() for d in result['orders']],
        'summary': result['summary'],
        'purchase_orders': [o.to_dict(include_approvals=False) for o in result['purchase_orders']],
        'skipped': result['skipped'],
        'errors': result['errors']
    }
