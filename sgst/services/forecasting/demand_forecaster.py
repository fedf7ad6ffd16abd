import uuid
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Dict, Optional, Sequence, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sgst.models.database import Product, Warehouse
from sgst.models.replenishment import DemandForecast
from sgst.services.inventory.inventory_service import InventoryService
from sgst.exceptions import ValidationError, NotFoundError, ConflictError
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

# Monday=0 .. Sunday=6
DEFAULT_WEEKDAY_PROFILE = {
    0: 1.2,
    1: 1.1,
    2: 1.0,
    3: 1.1,
    4: 1.3,
    5: 0.9,
    6: 0.8,
}

MIN_DAYS_FOR_LEARNED_SEASONALITY = 14
SEASONALITY_BOUNDS = (0.5, 1.5)
TREND_WINDOW = 7

History = Union[pd.Series, Sequence[float]]


@dataclass
class ForecastPoint:
    """One day of predicted demand with the parameters that produced it"""
    forecast_date: date
    predicted_demand: int
    confidence: float
    parameters: Dict = field(default_factory=dict)


class DemandForecaster:
    """
    Baseline x day-of-week seasonality x linear trend x bounded noise

    Stateless apart from the random generator, so a seeded instance gives
    reproducible forecasts for identical history.
    """

    def __init__(
        self,
        default_baseline: Optional[float] = None,
        noise_level: Optional[float] = None,
        history_window_days: Optional[int] = None,
        random_seed: Optional[int] = None
    ):
        self.default_baseline = (
            default_baseline if default_baseline is not None else settings.FORECAST_DEFAULT_BASELINE
        )
        self.noise_level = noise_level if noise_level is not None else settings.FORECAST_NOISE_LEVEL
        self.history_window_days = history_window_days or settings.FORECAST_HISTORY_DAYS
        seed = random_seed if random_seed is not None else settings.FORECAST_RANDOM_SEED
        self.random_seed = seed
        self.rng = np.random.default_rng(seed)

    @staticmethod
    def _as_series(history: Optional[History]) -> pd.Series:
        if history is None:
            return pd.Series(dtype=float)
        if isinstance(history, pd.Series):
            return history.astype(float)
        return pd.Series(list(history), dtype=float)

    def calculate_base_demand(self, history: pd.Series) -> float:
        """Mean of the history window, or the default baseline when empty"""
        if len(history) == 0:
            return float(self.default_baseline)
        return float(history.mean())

    def analyze_seasonality(self, history: pd.Series) -> Dict[int, float]:
        """
        Day-of-week multipliers

        Learned from dated history once two full weeks are available,
        otherwise the fixed weekday profile.
        """
        if (
            len(history) < MIN_DAYS_FOR_LEARNED_SEASONALITY
            or not isinstance(history.index, pd.DatetimeIndex)
        ):
            return dict(DEFAULT_WEEKDAY_PROFILE)

        overall_mean = history.mean()
        if overall_mean <= 0:
            return dict(DEFAULT_WEEKDAY_PROFILE)

        weekday_means = history.groupby(history.index.dayofweek).mean()
        low, high = SEASONALITY_BOUNDS

        profile = {}
        for weekday in range(7):
            if weekday in weekday_means.index:
                factor = float(weekday_means[weekday] / overall_mean)
                profile[weekday] = round(min(high, max(low, factor)), 4)
            else:
                profile[weekday] = 1.0
        return profile

    @staticmethod
    def calculate_trend(history: pd.Series) -> float:
        """Daily growth rate from the earliest to the most recent week"""
        values = history.to_numpy(dtype=float)
        if len(values) < 2:
            return 0.0

        recent_avg = values[-TREND_WINDOW:].mean()
        older_avg = values[:TREND_WINDOW].mean()
        if older_avg == 0:
            return 0.0

        return float((recent_avg - older_avg) / older_avg / len(values))

    def calculate_confidence(self, days_ahead: int, data_points: int) -> float:
        # Decreases with horizon distance, increases with available history
        horizon_factor = max(0.3, 1 - (days_ahead / 100))
        data_factor = min(1.0, data_points / self.history_window_days)
        return round(min(1.0, max(0.0, horizon_factor * data_factor)), 4)

    def forecast(
        self,
        history: Optional[History],
        horizon_days: int,
        start_date: Optional[date] = None
    ) -> List[ForecastPoint]:
        """Predict demand for each of the next ``horizon_days`` days after ``start_date``"""
        if horizon_days < 1:
            raise ValidationError(
                "Forecast horizon must be at least one day",
                details={'horizon_days': horizon_days}
            )

        series = self._as_series(history)
        start_date = start_date or date.today()

        fallback = len(series) == 0
        if fallback:
            logger.warning(
                f"No demand history available, using default baseline {self.default_baseline}"
            )

        baseline = self.calculate_base_demand(series)
        profile = self.analyze_seasonality(series)
        trend = self.calculate_trend(series)

        points = []
        for days_ahead in range(1, horizon_days + 1):
            forecast_date = start_date + timedelta(days=days_ahead)
            seasonality = profile[forecast_date.weekday()]
            trend_adjustment = trend * days_ahead
            variance = float(self.rng.uniform(-self.noise_level, self.noise_level)) if self.noise_level else 0.0

            raw = baseline * seasonality * (1 + trend_adjustment) * (1 + variance)
            predicted = max(0, int(round(raw)))

            points.append(ForecastPoint(
                forecast_date=forecast_date,
                predicted_demand=predicted,
                confidence=self.calculate_confidence(days_ahead, len(series)),
                parameters={
                    'baseline_demand': round(baseline, 4),
                    'seasonality_factor': seasonality,
                    'trend_factor': round(trend_adjustment, 6),
                    'variance': round(variance, 6),
                    'history_points': len(series),
                    'fallback': fallback,
                    'noise_level': self.noise_level,
                    'random_seed': self.random_seed,
                }
            ))

        return points

    @staticmethod
    def summarize(points: Sequence) -> Dict:
        """Totals and averages over a batch of forecast points or rows"""
        if not points:
            return {
                'total_periods': 0,
                'average_demand': 0,
                'average_confidence': 0,
                'total_demand': 0
            }

        demands = [p.predicted_demand for p in points]
        confidences = [p.confidence for p in points]
        return {
            'total_periods': len(points),
            'average_demand': round(float(np.mean(demands)), 2),
            'average_confidence': round(float(np.mean(confidences)), 4),
            'total_demand': int(sum(demands))
        }


class ForecastingService:
    """Generates, stores and scores demand forecasts"""

    def __init__(self, db_session: AsyncSession, forecaster: Optional[DemandForecaster] = None):
        self.db = db_session
        self.forecaster = forecaster or DemandForecaster()
        self.inventory = InventoryService(db_session)

    async def generate_forecast(
        self,
        product_id: int,
        warehouse_id: int,
        horizon_days: Optional[int] = None
    ) -> List[DemandForecast]:
        """
        Forecast daily demand and persist one row per horizon day

        Rows are appended; earlier runs for the same dates are kept so
        predictions can later be compared with actual demand.
        """
        horizon_days = horizon_days if horizon_days is not None else settings.FORECAST_HORIZON_DAYS
        if not 1 <= horizon_days <= settings.FORECAST_MAX_HORIZON_DAYS:
            raise ValidationError(
                f"Forecast horizon must be between 1 and {settings.FORECAST_MAX_HORIZON_DAYS} days",
                details={'horizon_days': horizon_days}
            )

        if await self.db.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found", details={'product_id': product_id})
        if await self.db.get(Warehouse, warehouse_id) is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found", details={'warehouse_id': warehouse_id})

        logger.info(
            f"Generating {horizon_days}-day forecast for product {product_id} "
            f"in warehouse {warehouse_id}"
        )

        history = await self.inventory.get_daily_demand_history(
            product_id, warehouse_id, settings.FORECAST_HISTORY_DAYS
        )
        points = self.forecaster.forecast(history, horizon_days)

        run_id = uuid.uuid4().hex
        records = []
        for point in points:
            parameters = dict(point.parameters)
            parameters['run_id'] = run_id
            records.append(DemandForecast(
                product_id=product_id,
                warehouse_id=warehouse_id,
                forecast_date=point.forecast_date,
                period='daily',
                predicted_demand=point.predicted_demand,
                confidence=point.confidence,
                algorithm=settings.FORECAST_ALGORITHM,
                model_version=settings.FORECAST_MODEL_VERSION,
                run_id=run_id,
                parameters=parameters
            ))

        self.db.add_all(records)
        await self.db.commit()

        logger.info(f"Stored forecast run {run_id} with {len(records)} days")
        return records

    async def list_forecasts(
        self,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        limit: int = 500
    ) -> List[DemandForecast]:
        query = select(DemandForecast)
        if product_id is not None:
            query = query.where(DemandForecast.product_id == product_id)
        if warehouse_id is not None:
            query = query.where(DemandForecast.warehouse_id == warehouse_id)
        query = query.order_by(DemandForecast.forecast_date.desc(), DemandForecast.id.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_forecast(self, forecast_id: int) -> DemandForecast:
        forecast = await self.db.get(DemandForecast, forecast_id)
        if forecast is None:
            raise NotFoundError(
                f"Demand forecast {forecast_id} not found",
                details={'forecast_id': forecast_id}
            )
        return forecast

    async def get_forecast_window(
        self,
        product_id: int,
        warehouse_id: int,
        days: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> List[DemandForecast]:
        """Latest prediction for each of the next ``days`` days after ``as_of``"""
        days = days or settings.STOCKOUT_WINDOW_DAYS
        as_of = as_of or date.today()

        query = select(DemandForecast).where(
            and_(
                DemandForecast.product_id == product_id,
                DemandForecast.warehouse_id == warehouse_id,
                DemandForecast.forecast_date > as_of,
                DemandForecast.forecast_date <= as_of + timedelta(days=days)
            )
        ).order_by(
            DemandForecast.forecast_date,
            DemandForecast.created_at.desc(),
            DemandForecast.id.desc()
        )

        result = await self.db.execute(query)

        latest = {}
        for forecast in result.scalars().all():
            latest.setdefault(forecast.forecast_date, forecast)

        return [latest[d] for d in sorted(latest)]

    async def record_actual_demand(self, forecast_id: int, actual_demand: int) -> DemandForecast:
        """Attach observed demand to a forecast row; each row accepts one actual"""
        if actual_demand < 0:
            raise ValidationError(
                "Actual demand cannot be negative",
                details={'forecast_id': forecast_id, 'actual_demand': actual_demand}
            )

        forecast = await self.get_forecast(forecast_id)
        if forecast.actual_demand is not None:
            raise ConflictError(
                f"Actual demand already recorded for forecast {forecast_id}",
                details={'forecast_id': forecast_id, 'actual_demand': forecast.actual_demand}
            )

        forecast.actual_demand = actual_demand
        forecast.actual_recorded_at = datetime.utcnow()
        await self.db.commit()
        return forecast

    async def get_forecast_accuracy(
        self,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None
    ) -> Dict:
        """MAE and MAPE over forecasts that have actual demand recorded"""
        query = select(DemandForecast).where(DemandForecast.actual_demand.is_not(None))
        if product_id is not None:
            query = query.where(DemandForecast.product_id == product_id)
        if warehouse_id is not None:
            query = query.where(DemandForecast.warehouse_id == warehouse_id)

        result = await self.db.execute(query)
        rows = result.scalars().all()

        if not rows:
            return {'samples': 0, 'mae': None, 'mape': None, 'accuracy': None}

        predicted = np.array([r.predicted_demand for r in rows], dtype=float)
        actual = np.array([r.actual_demand for r in rows], dtype=float)
        errors = np.abs(predicted - actual)

        mae = float(errors.mean())
        nonzero = actual > 0
        mape = float((errors[nonzero] / actual[nonzero]).mean()) if nonzero.any() else None

        return {
            'samples': len(rows),
            'mae': round(mae, 4),
            'mape': round(mape, 4) if mape is not None else None,
            'accuracy': round(max(0.0, 1 - mape), 4) if mape is not None else None
        }
