"""
Celery tasks for replenishment background processing

Tasks only run when invoked; no beat schedule is registered.
"""
import asyncio
from celery import Celery
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

# Initialize Celery
celery_app = Celery(
    "sgst_replenishment",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

# Celery configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max
    task_soft_time_limit=3300,  # 55 minutes soft limit
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)


def run_async(coro):
    """Helper to run async functions in Celery tasks"""
    return asyncio.run(coro)


@celery_app.task(name="tasks.generate_demand_forecasts")
def generate_demand_forecasts(
    product_id: int = None,
    warehouse_id: int = None,
    horizon_days: int = None
):
    """
    Forecast demand for every (product, warehouse) pair with an active rule

    Args:
        product_id: Restrict to one product
        warehouse_id: Restrict to one warehouse
        horizon_days: Days to forecast, defaults to FORECAST_HORIZON_DAYS
    """
    logger.info(
        f"Starting demand forecasts for product_id={product_id}, warehouse_id={warehouse_id}"
    )

    async def _forecast():
        from sgst.database import AsyncSessionLocal
        from sgst.services.forecasting.demand_forecaster import ForecastingService
        from sgst.services.replenishment.rules_service import ReplenishmentRuleService

        async with AsyncSessionLocal() as session:
            rules = await ReplenishmentRuleService(session).list_rules(
                warehouse_id=warehouse_id, active_only=True
            )
            pairs = sorted({
                (rule.product_id, rule.warehouse_id) for rule in rules
                if product_id is None or rule.product_id == product_id
            })

            service = ForecastingService(session)
            results = []
            for pair_product_id, pair_warehouse_id in pairs:
                try:
                    records = await service.generate_forecast(
                        pair_product_id, pair_warehouse_id, horizon_days
                    )
                    results.append({
                        "product_id": pair_product_id,
                        "warehouse_id": pair_warehouse_id,
                        "success": True,
                        "days": len(records)
                    })
                except Exception as e:
                    # Keep the session usable for the remaining pairs
                    await session.rollback()
                    logger.error(
                        f"Error forecasting product {pair_product_id} "
                        f"in warehouse {pair_warehouse_id}: {e}"
                    )
                    results.append({
                        "product_id": pair_product_id,
                        "warehouse_id": pair_warehouse_id,
                        "success": False,
                        "error": str(e)
                    })

            return {
                "total": len(results),
                "successful": sum(1 for r in results if r["success"]),
                "results": results
            }

    result = run_async(_forecast())
    logger.info(f"Demand forecasts completed: {result['successful']}/{result['total']}")
    return result


@celery_app.task(name="tasks.run_replenishment_sweep")
def run_replenishment_sweep(warehouse_id: int = None, submit: bool = False):
    """
    Evaluate stock-out risk, record alerts and create replenishment orders

    Args:
        warehouse_id: Restrict to one warehouse
        submit: Submit each created order for approval
    """
    logger.info(f"Starting replenishment sweep for warehouse_id={warehouse_id}")

    async def _sweep():
        from sgst.database import AsyncSessionLocal
        from sgst.services.replenishment.replenishment_service import ReplenishmentService

        async with AsyncSessionLocal() as session:
            service = ReplenishmentService(session)
            return await service.run_replenishment_sweep(warehouse_id=warehouse_id, submit=submit)

    result = run_async(_sweep())
    logger.info(f"Replenishment sweep created {result['orders_created']} orders")
    return result
