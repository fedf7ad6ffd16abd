from datetime import datetime
from typing import Dict, List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sgst.models.database import AlertLog
from sgst.services.notifications.notification_client import NotificationClient
from sgst.exceptions import NotFoundError
import logging

logger = logging.getLogger(__name__)

RISK_SEVERITY = {
    'critical': 'critical',
    'high': 'error',
    'medium': 'warning',
}


class NotificationService:
    """Records user-facing alerts and forwards them to the webhook when configured"""

    def __init__(self, db_session: AsyncSession, client: Optional[NotificationClient] = None):
        self.db = db_session
        self.client = client or NotificationClient()

    async def _record(self, entries: Sequence[Dict]) -> List[AlertLog]:
        alerts = [AlertLog(**entry) for entry in entries]
        if not alerts:
            return alerts

        self.db.add_all(alerts)
        await self.db.commit()

        if self.client.enabled:
            for alert in alerts:
                result = await self.client.send_event(alert.alert_type, alert.to_dict())
                if not result['success']:
                    logger.error(
                        f"Failed to deliver notification {alert.id}: {result.get('error')}"
                    )

        return alerts

    async def notify(
        self,
        alert_type: str,
        message: str,
        recipient: Optional[str] = None,
        severity: str = 'info',
        product_id: Optional[int] = None,
        purchase_order_id: Optional[int] = None,
        data: Optional[Dict] = None
    ) -> AlertLog:
        alerts = await self._record([{
            'alert_type': alert_type,
            'severity': severity,
            'recipient': recipient,
            'product_id': product_id,
            'purchase_order_id': purchase_order_id,
            'message': message,
            'additional_data': data
        }])
        return alerts[0]

    async def stockout_alerts(self, alerts: Sequence) -> List[AlertLog]:
        return await self._record([
            {
                'alert_type': 'stockout_risk',
                'severity': RISK_SEVERITY.get(alert.risk_level, 'info'),
                'product_id': alert.product_id,
                'message': alert.message,
                'additional_data': alert.to_dict()
            }
            for alert in alerts
        ])

    async def approval_requested(self, order, approvals: Sequence) -> List[AlertLog]:
        return await self._record([
            {
                'alert_type': 'approval_requested',
                'severity': 'info',
                'recipient': approval.approver_user_id,
                'purchase_order_id': order.id,
                'message': (
                    f"Purchase order {order.order_number} awaits your approval "
                    f"(level {approval.level})"
                ),
                'additional_data': {
                    'level': approval.level,
                    'total_amount': float(order.total_amount or 0),
                    'priority': order.priority
                }
            }
            for approval in approvals
        ])

    async def order_status_changed(self, order, comments: Optional[str] = None) -> AlertLog:
        """Tell the requester their order reached a decision or was cancelled"""
        message = f"Purchase order {order.order_number} is now {order.status.replace('_', ' ')}"
        if comments:
            message = f"{message}: {comments}"

        return await self.notify(
            alert_type=f"order_{order.status}",
            message=message,
            recipient=order.requested_by,
            severity='warning' if order.status in ('rejected', 'changes_requested') else 'info',
            purchase_order_id=order.id,
            data={'status': order.status, 'total_amount': float(order.total_amount or 0)}
        )

    async def list_notifications(
        self,
        recipient: Optional[str] = None,
        unacknowledged_only: bool = False,
        limit: int = 200
    ) -> List[AlertLog]:
        query = select(AlertLog)
        if recipient is not None:
            query = query.where(AlertLog.recipient == recipient)
        if unacknowledged_only:
            query = query.where(AlertLog.acknowledged == False)  # noqa: E712
        query = query.order_by(AlertLog.created_at.desc(), AlertLog.id.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def acknowledge(self, notification_id: int, user: str) -> AlertLog:
        alert = await self.db.get(AlertLog, notification_id)
        if alert is None:
            raise NotFoundError(
                f"Notification {notification_id} not found",
                details={'notification_id': notification_id}
            )

        if not alert.acknowledged:
            alert.acknowledged = True
            alert.acknowledged_at = datetime.utcnow()
            alert.acknowledged_by = user
            await self.db.commit()

        return alert
