"""
Replenishment Rule & Demand Forecast Models
"""
from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Boolean, JSON,
    Numeric, ForeignKey, UniqueConstraint
)
from datetime import datetime
from typing import Dict, Any
from sgst.models.database import Base


class ReplenishmentRule(Base):
    """Stock policy for one product in one warehouse"""
    __tablename__ = 'replenishment_rules'
    __table_args__ = (
        UniqueConstraint('product_id', 'warehouse_id', name='uq_replenishment_rule_product_warehouse'),
    )

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)

    # Stock levels; min_level <= reorder_point <= max_level
    min_level = Column(Integer, nullable=False)
    max_level = Column(Integer, nullable=False)
    reorder_point = Column(Integer, nullable=False)
    replenish_quantity = Column(Integer, nullable=False, default=0)
    economic_order_quantity = Column(Integer, nullable=True)
    safety_stock = Column(Integer, nullable=False, default=0)
    lead_time_days = Column(Integer, nullable=False, default=7)

    # Classification
    abc_classification = Column(String(1), nullable=False, default='C')  # A, B, C
    velocity_category = Column(String(20), nullable=False, default='medium')  # fast, medium, slow

    preferred_supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=True)
    last_cost = Column(Numeric(12, 2), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'warehouse_id': self.warehouse_id,
            'min_level': self.min_level,
            'max_level': self.max_level,
            'reorder_point': self.reorder_point,
            'replenish_quantity': self.replenish_quantity,
            'economic_order_quantity': self.economic_order_quantity,
            'safety_stock': self.safety_stock,
            'lead_time_days': self.lead_time_days,
            'abc_classification': self.abc_classification,
            'velocity_category': self.velocity_category,
            'preferred_supplier_id': self.preferred_supplier_id,
            'last_cost': float(self.last_cost) if self.last_cost is not None else None,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self) -> str:
        return (
            f"<ReplenishmentRule(id={self.id}, product_id={self.product_id}, "
            f"warehouse_id={self.warehouse_id}, min={self.min_level}, max={self.max_level})>"
        )


class DemandForecast(Base):
    """Append-only daily demand prediction; a new run writes new rows"""
    __tablename__ = 'demand_forecasts'

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)
    forecast_date = Column(Date, nullable=False, index=True)
    period = Column(String(20), nullable=False, default='daily')
    predicted_demand = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=False)  # 0-1
    algorithm = Column(String(50), nullable=False)
    model_version = Column(String(50), nullable=False)
    run_id = Column(String(40), nullable=False, index=True)
    parameters = Column(JSON, nullable=True)
    actual_demand = Column(Integer, nullable=True)
    actual_recorded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'warehouse_id': self.warehouse_id,
            'forecast_date': self.forecast_date.isoformat(),
            'period': self.period,
            'predicted_demand': self.predicted_demand,
            'confidence': self.confidence,
            'algorithm': self.algorithm,
            'model_version': self.model_version,
            'run_id': self.run_id,
            'parameters': self.parameters,
            'actual_demand': self.actual_demand,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self) -> str:
        return (
            f"<DemandForecast(id={self.id}, product_id={self.product_id}, "
            f"date={self.forecast_date}, demand={self.predicted_demand})>"
        )
