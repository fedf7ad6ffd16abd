import pandas as pd
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sgst.models.database import InventoryLevel, SalesRecord
import logging

logger = logging.getLogger(__name__)


class InventoryService:
    """Live stock snapshot and demand history for (product, warehouse) pairs"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_inventory_level(self, product_id: int, warehouse_id: int) -> Optional[InventoryLevel]:
        query = select(InventoryLevel).where(
            and_(
                InventoryLevel.product_id == product_id,
                InventoryLevel.warehouse_id == warehouse_id
            )
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_current_stock(self, product_id: int, warehouse_id: int) -> int:
        """Available quantity (on hand minus reserved); 0 when never stocked"""
        inventory = await self.get_inventory_level(product_id, warehouse_id)
        if inventory is None:
            return 0
        return max(0, (inventory.quantity_on_hand or 0) - (inventory.quantity_reserved or 0))

    async def get_stock_snapshot(
        self,
        pairs: Iterable[Tuple[int, int]]
    ) -> Dict[Tuple[int, int], int]:
        """Available quantity for many (product_id, warehouse_id) pairs in one query"""
        pairs = list(pairs)
        snapshot = {pair: 0 for pair in pairs}
        if not pairs:
            return snapshot

        product_ids = {product_id for product_id, _ in pairs}
        query = select(InventoryLevel).where(InventoryLevel.product_id.in_(product_ids))
        result = await self.db.execute(query)

        for inventory in result.scalars().all():
            key = (inventory.product_id, inventory.warehouse_id)
            if key in snapshot:
                snapshot[key] = max(0, (inventory.quantity_on_hand or 0) - (inventory.quantity_reserved or 0))

        return snapshot

    async def get_daily_demand_history(
        self,
        product_id: int,
        warehouse_id: int,
        days: int,
        end_date: Optional[date] = None
    ) -> pd.Series:
        """
        Daily demand totals over the trailing window

        Days without sales after the first recorded sale count as zero demand.
        Returns an empty series when the pair has no history in the window.
        """
        end_date = end_date or date.today()
        start_date = end_date - timedelta(days=days)

        query = select(SalesRecord.sale_date, SalesRecord.quantity).where(
            and_(
                SalesRecord.product_id == product_id,
                SalesRecord.warehouse_id == warehouse_id,
                SalesRecord.sale_date > start_date,
                SalesRecord.sale_date <= end_date
            )
        ).order_by(SalesRecord.sale_date)

        result = await self.db.execute(query)
        rows = result.all()

        if not rows:
            return pd.Series(dtype=float)

        df = pd.DataFrame(rows, columns=['sale_date', 'quantity'])
        df['sale_date'] = pd.to_datetime(df['sale_date'])
        daily = df.groupby('sale_date')['quantity'].sum().astype(float)

        full_range = pd.date_range(start=daily.index.min(), end=pd.Timestamp(end_date), freq='D')
        return daily.reindex(full_range, fill_value=0.0)

    async def receive_stock(self, product_id: int, warehouse_id: int, quantity: int) -> InventoryLevel:
        """Add received units to on-hand stock, creating the level row if needed"""
        inventory = await self.get_inventory_level(product_id, warehouse_id)

        if inventory is None:
            inventory = InventoryLevel(
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity_on_hand=0,
                quantity_reserved=0,
                quantity_available=0
            )
            self.db.add(inventory)

        inventory.quantity_on_hand = (inventory.quantity_on_hand or 0) + quantity
        inventory.update_available()
        inventory.last_received_at = datetime.utcnow()

        logger.info(
            f"Received {quantity} units of product {product_id} into warehouse {warehouse_id}"
        )
        return inventory
