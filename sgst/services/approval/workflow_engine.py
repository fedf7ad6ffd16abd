import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, func
from sqlalchemy.orm.exc import StaleDataError
from sgst.models.purchasing import PurchaseOrder, Approval, ApprovalWorkflow, ApprovalLimit
from sgst.services.approval.conditions import evaluate_condition, validate_workflow_rules
from sgst.services.notifications.notification_service import NotificationService
from sgst.services.purchasing import order_status as status
from sgst.exceptions import ValidationError, NotFoundError, ConflictError
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

LIMIT_FIELDS = {'user_id', 'role', 'max_amount', 'currency', 'category', 'is_active', 'created_by'}


def validate_limit_values(values: Dict) -> None:
    errors = []
    if not (values.get('user_id') or '').strip():
        errors.append("user_id is required")

    max_amount = values.get('max_amount')
    if max_amount is None:
        errors.append("max_amount is required")
    elif Decimal(str(max_amount)) < 0:
        errors.append("max_amount must not be negative")

    currency = values.get('currency')
    if not currency or len(currency) != 3:
        errors.append("currency must be a 3 letter code")

    if values.get('is_active', True) is None:
        errors.append("is_active cannot be null")

    if errors:
        raise ValidationError("Invalid approval limit", details={'errors': errors})


@dataclass
class DecisionResult:
    """Outcome of one approver's decision"""
    approval: Approval
    order: PurchaseOrder
    level_resolved: bool = False
    next_level_approvals: List[Approval] = field(default_factory=list)


def moot_pending_approvals(order: PurchaseOrder) -> int:
    """Mark every still-pending approval on the order as moot"""
    count = 0
    for approval in order.approvals:
        if approval.status == status.APPROVAL_PENDING:
            approval.status = status.APPROVAL_MOOT
            count += 1
    return count


class ApprovalWorkflowEngine:
    """
    Multi-level approval of purchase orders

    A submitted order above the auto-approval ceiling is routed through the
    first active workflow whose rule conditions match it. Each level seeds
    one pending approval per approver; a level resolves once every required
    approver has decided.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        notifier: Optional[NotificationService] = None,
        auto_approval_max_amount: Optional[float] = None
    ):
        self.db = db_session
        self.notifier = notifier or NotificationService(db_session)
        self.auto_approval_max_amount = (
            auto_approval_max_amount if auto_approval_max_amount is not None
            else settings.AUTO_APPROVAL_MAX_AMOUNT
        )

    # Workflow definitions

    async def create_workflow(self, data: Dict) -> ApprovalWorkflow:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError("Workflow name is required")

        workflow = ApprovalWorkflow(
            name=name,
            description=data.get('description'),
            rules=validate_workflow_rules(data.get('rules')),
            is_active=data.get('is_active', True),
            created_by=data.get('created_by')
        )
        self.db.add(workflow)
        await self.db.commit()

        logger.info(f"Created approval workflow {workflow.id} '{workflow.name}'")
        return workflow

    async def list_workflows(self, active_only: bool = False) -> List[ApprovalWorkflow]:
        query = select(ApprovalWorkflow)
        if active_only:
            query = query.where(ApprovalWorkflow.is_active == True)  # noqa: E712
        query = query.order_by(ApprovalWorkflow.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_workflow(self, workflow_id: int) -> ApprovalWorkflow:
        workflow = await self.db.get(ApprovalWorkflow, workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Approval workflow {workflow_id} not found",
                details={'workflow_id': workflow_id}
            )
        return workflow

    async def set_workflow_active(self, workflow_id: int, is_active: bool) -> ApprovalWorkflow:
        """Orders already routed through a deactivated workflow keep using it"""
        return await self.update_workflow(workflow_id, {'is_active': is_active})

    async def update_workflow(self, workflow_id: int, changes: Dict) -> ApprovalWorkflow:
        """
        Rename, redescribe, replace the rules of, or (de)activate a workflow

        New rules apply to orders submitted afterwards and to levels seeded
        afterwards on orders already in flight.
        """
        workflow = await self.get_workflow(workflow_id)

        if 'name' in changes:
            name = (changes['name'] or '').strip()
            if not name:
                raise ValidationError("Workflow name is required", details={'workflow_id': workflow_id})
            workflow.name = name
        if 'description' in changes:
            workflow.description = changes['description']
        if 'rules' in changes:
            workflow.rules = validate_workflow_rules(changes['rules'])
        if 'is_active' in changes:
            if changes['is_active'] is None:
                raise ValidationError("is_active cannot be null", details={'workflow_id': workflow_id})
            workflow.is_active = changes['is_active']

        await self.db.commit()
        logger.info(f"Updated approval workflow {workflow_id}: {sorted(changes)}")
        return workflow

    async def delete_workflow(self, workflow_id: int) -> Dict:
        """Delete a workflow no order was routed through; otherwise deactivate it"""
        workflow = await self.get_workflow(workflow_id)

        query = select(func.count(PurchaseOrder.id)).where(
            PurchaseOrder.approval_workflow_id == workflow_id
        )
        orders = (await self.db.execute(query)).scalar() or 0

        if orders:
            workflow.is_active = False
            await self.db.commit()
            logger.info(f"Deactivated approval workflow {workflow_id} used by {orders} orders")
            return {'workflow_id': workflow_id, 'deleted': False, 'deactivated': True, 'orders': orders}

        await self.db.delete(workflow)
        await self.db.commit()
        logger.info(f"Deleted approval workflow {workflow_id}")
        return {'workflow_id': workflow_id, 'deleted': True, 'deactivated': False, 'orders': 0}

    # Approval limits

    async def list_approval_limits(
        self,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> List[ApprovalLimit]:
        query = select(ApprovalLimit)
        if user_id is not None:
            query = query.where(ApprovalLimit.user_id == user_id)
        if role is not None:
            query = query.where(ApprovalLimit.role == role)
        if is_active is not None:
            query = query.where(ApprovalLimit.is_active == is_active)

        result = await self.db.execute(query.order_by(ApprovalLimit.id))
        return list(result.scalars().all())

    async def get_approval_limit(self, limit_id: int) -> ApprovalLimit:
        limit = await self.db.get(ApprovalLimit, limit_id)
        if limit is None:
            raise NotFoundError(
                f"Approval limit {limit_id} not found",
                details={'limit_id': limit_id}
            )
        return limit

    async def create_approval_limit(self, data: Dict) -> ApprovalLimit:
        values = {k: v for k, v in data.items() if k in LIMIT_FIELDS and v is not None}
        values['currency'] = values.get('currency') or settings.ORDER_CURRENCY
        validate_limit_values(values)
        values['max_amount'] = Decimal(str(values['max_amount']))

        limit = ApprovalLimit(**values)
        self.db.add(limit)
        await self.db.commit()

        logger.info(f"Created approval limit {limit.id} for {limit.user_id}: {limit.max_amount} {limit.currency}")
        return limit

    async def update_approval_limit(self, limit_id: int, changes: Dict) -> ApprovalLimit:
        limit = await self.get_approval_limit(limit_id)

        changes = {k: v for k, v in changes.items() if k in LIMIT_FIELDS | {'updated_by'}}
        merged = {name: getattr(limit, name) for name in LIMIT_FIELDS}
        merged.update(changes)
        validate_limit_values(merged)
        if 'max_amount' in changes:
            changes['max_amount'] = Decimal(str(changes['max_amount']))

        for name, value in changes.items():
            setattr(limit, name, value)

        await self.db.commit()
        logger.info(f"Updated approval limit {limit_id}: {sorted(changes)}")
        return limit

    async def delete_approval_limit(self, limit_id: int) -> Dict:
        limit = await self.get_approval_limit(limit_id)
        await self.db.delete(limit)
        await self.db.commit()

        logger.info(f"Deleted approval limit {limit_id}")
        return {'limit_id': limit_id, 'deleted': True}

    async def select_workflow(self, order: PurchaseOrder) -> Optional[ApprovalWorkflow]:
        """First active workflow, in creation order, with a rule matching the order"""
        for workflow in await self.list_workflows(active_only=True):
            if any(evaluate_condition(rule.get('condition') or {}, order) for rule in workflow.rules or []):
                return workflow
        return None

    def is_auto_approved(self, order: PurchaseOrder) -> bool:
        total = Decimal(str(order.total_amount or 0))

        if order.auto_approval_enabled and order.auto_approval_max_amount is not None:
            if total <= Decimal(str(order.auto_approval_max_amount)):
                return True

        return total <= Decimal(str(self.auto_approval_max_amount))

    # Order routing

    async def submit(self, order_id: int) -> PurchaseOrder:
        """
        Route a draft order to approval

        Returns the order in ``approved`` (auto-approved, or no workflow
        applies) or ``pending_approval`` with level 1 approvals seeded.
        """
        order = await self.load_order_for_update(order_id)
        status.ensure_transition(order, status.PENDING_APPROVAL)

        now = datetime.utcnow()
        order.submitted_at = now
        seeded = []

        if self.is_auto_approved(order):
            order.requires_approval = False
            order.status = status.APPROVED
            order.approved_at = now
            logger.info(f"Purchase order {order.order_number} auto-approved ({order.total_amount})")
        else:
            order.requires_approval = True
            workflow = await self.select_workflow(order)

            if workflow is None:
                order.status = status.APPROVED
                order.approved_at = now
                logger.warning(
                    f"No active approval workflow matches order {order.order_number}; approving"
                )
            else:
                order.approval_workflow_id = workflow.id
                order.status = status.PENDING_APPROVAL
                seeded = self._seed_level(order, workflow, 1)
                logger.info(
                    f"Purchase order {order.order_number} routed to workflow "
                    f"'{workflow.name}' with {len(seeded)} level 1 approvers"
                )

        await self.commit_transition(order)

        if seeded:
            await self.notifier.approval_requested(order, seeded)
        else:
            await self.notifier.order_status_changed(order)

        return order

    async def submit_decision(
        self,
        order_id: int,
        approver_user_id: str,
        decision: str,
        comments: Optional[str] = None,
        level: Optional[int] = None
    ) -> DecisionResult:
        """
        Record one approver's decision and resolve the level when complete

        A rejection ends the workflow at once. Changes requested ends it once
        the level resolves. Full approval seeds the next level, or approves
        the order after the last level.
        """
        if decision not in status.APPROVAL_DECISIONS:
            raise ValidationError(
                f"Unknown decision '{decision}'",
                details={'allowed': list(status.APPROVAL_DECISIONS)}
            )

        order = await self.load_order_for_update(order_id)
        approval = self._find_approval(order, approver_user_id, level)
        if approval is None:
            raise NotFoundError(
                "Approval not found or already processed",
                details={
                    'purchase_order_id': order_id,
                    'approver_user_id': approver_user_id,
                    'level': level
                }
            )

        level = approval.level
        if approval.status != status.APPROVAL_PENDING or order.status != status.PENDING_APPROVAL:
            raise ConflictError(
                "Approval already processed",
                code='approval_processed',
                details={
                    'approval_id': approval.id,
                    'approval_status': approval.status,
                    'order_status': order.status
                }
            )

        now = datetime.utcnow()
        approval.status = decision
        approval.comments = comments
        approval.decided_at = now

        result = DecisionResult(approval=approval, order=order)
        previous_status = order.status

        if decision == status.APPROVAL_REJECTED:
            status.ensure_transition(order, status.REJECTED)
            order.status = status.REJECTED
            moot_pending_approvals(order)
            result.level_resolved = True
        elif self._level_resolved(order, level):
            result.level_resolved = True
            decisions = {a.status for a in order.approvals_at_level(level)}

            if status.APPROVAL_CHANGES_REQUESTED in decisions:
                status.ensure_transition(order, status.CHANGES_REQUESTED)
                order.status = status.CHANGES_REQUESTED
                moot_pending_approvals(order)
            else:
                moot_pending_approvals(order)
                workflow = await self.db.get(ApprovalWorkflow, order.approval_workflow_id)
                next_level = level + 1
                if workflow is not None and workflow.rule_for_level(next_level):
                    result.next_level_approvals = self._seed_level(order, workflow, next_level)
                else:
                    status.ensure_transition(order, status.APPROVED)
                    order.status = status.APPROVED
                    order.approved_at = now

        await self.commit_transition(order)

        logger.info(
            f"Approver {approver_user_id} {decision} order {order.order_number} at level {level}; "
            f"order is {order.status}"
        )

        if result.next_level_approvals:
            await self.notifier.approval_requested(order, result.next_level_approvals)
        elif order.status != previous_status:
            await self.notifier.order_status_changed(order, comments)

        return result

    # Queries

    async def list_pending_approvals(
        self,
        approver_user_id: Optional[str] = None,
        priority: Optional[str] = None,
        department_id: Optional[str] = None
    ) -> List[Dict]:
        """Pending approvals at each order's current level, newest first"""
        conditions = [
            Approval.status == status.APPROVAL_PENDING,
            PurchaseOrder.status == status.PENDING_APPROVAL,
            Approval.level == PurchaseOrder.current_approval_level
        ]
        if approver_user_id is not None:
            conditions.append(Approval.approver_user_id == approver_user_id)
        if priority is not None:
            conditions.append(PurchaseOrder.priority == priority)
        if department_id is not None:
            conditions.append(PurchaseOrder.department_id == department_id)

        query = select(Approval, PurchaseOrder).join(
            PurchaseOrder, Approval.purchase_order_id == PurchaseOrder.id
        ).where(and_(*conditions)).order_by(Approval.created_at.desc(), Approval.id.desc())

        result = await self.db.execute(query)

        pending = []
        for row in result.all():
            approval = row.Approval
            order = row.PurchaseOrder
            requested_at = approval.created_at or order.submitted_at or order.created_at
            pending.append({
                'approval_id': approval.id,
                'purchase_order_id': order.id,
                'order_number': order.order_number,
                'supplier_id': order.supplier_id,
                'total_amount': float(order.total_amount or 0),
                'priority': order.priority,
                'department_id': order.department_id,
                'requested_by': order.requested_by,
                'level': approval.level,
                'approver_role': approval.approver_role,
                'is_required': approval.is_required,
                'requested_at': requested_at.isoformat() if requested_at else None,
                'due_date': (
                    (requested_at + timedelta(hours=settings.APPROVAL_DUE_HOURS)).isoformat()
                    if requested_at else None
                )
            })

        return pending

    async def get_approval_history(self, order_id: int) -> List[Approval]:
        order = await self.db.get(PurchaseOrder, order_id)
        if order is None:
            raise NotFoundError(
                f"Purchase order {order_id} not found",
                details={'purchase_order_id': order_id}
            )

        query = select(Approval).where(
            Approval.purchase_order_id == order_id
        ).order_by(Approval.level, Approval.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_all_approval_history(
        self,
        page: int = 1,
        limit: int = 50,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        approver_user_id: Optional[str] = None
    ) -> Dict:
        """
        Decisions across all orders, newest first, one page at a time

        Only decided rows count; pending and moot approvals carry no
        decision time.
        """
        if page < 1 or limit < 1:
            raise ValidationError(
                "page and limit must be positive",
                details={'page': page, 'limit': limit}
            )

        conditions = [Approval.decided_at.isnot(None)]
        if start_date is not None:
            conditions.append(Approval.decided_at >= start_date)
        if end_date is not None:
            conditions.append(Approval.decided_at <= end_date)
        if approver_user_id is not None:
            conditions.append(Approval.approver_user_id == approver_user_id)

        total = (await self.db.execute(
            select(func.count(Approval.id)).where(and_(*conditions))
        )).scalar() or 0

        query = select(Approval).where(and_(*conditions)).order_by(
            Approval.decided_at.desc(), Approval.id.desc()
        ).offset((page - 1) * limit).limit(limit)
        history = list((await self.db.execute(query)).scalars().all())

        return {
            'history': history,
            'total': total,
            'page': page,
            'total_pages': math.ceil(total / limit)
        }

    # Helpers

    def _seed_level(self, order: PurchaseOrder, workflow: ApprovalWorkflow, level: int) -> List[Approval]:
        rule = workflow.rule_for_level(level)
        approvals = [
            Approval(
                level=level,
                approver_user_id=approver['user_id'],
                approver_role=approver.get('role'),
                is_required=approver.get('is_required', True),
                status=status.APPROVAL_PENDING
            )
            for approver in rule['approvers']
        ]
        order.approvals.extend(approvals)
        order.current_approval_level = level
        return approvals

    @staticmethod
    def _find_approval(order: PurchaseOrder, approver_user_id: str, level: Optional[int]) -> Optional[Approval]:
        """
        The approver's row at ``level``; without a level, the pending row at
        the current level, else their latest row at any level
        """
        rows = [a for a in order.approvals if a.approver_user_id == approver_user_id]
        if level is not None:
            return next((a for a in rows if a.level == level), None)

        for approval in rows:
            if approval.level == order.current_approval_level and approval.status == status.APPROVAL_PENDING:
                return approval
        return max(rows, key=lambda a: (a.level, a.id or 0), default=None)

    @staticmethod
    def _level_resolved(order: PurchaseOrder, level: int) -> bool:
        """Every required approver has decided; with none flagged required, everyone"""
        approvals = [a for a in order.approvals_at_level(level) if a.status != status.APPROVAL_MOOT]
        required = [a for a in approvals if a.is_required] or approvals
        return all(a.status != status.APPROVAL_PENDING for a in required)

    async def load_order_for_update(self, order_id: int) -> PurchaseOrder:
        query = select(PurchaseOrder).where(
            PurchaseOrder.id == order_id
        ).with_for_update().execution_options(populate_existing=True)

        result = await self.db.execute(query)
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(
                f"Purchase order {order_id} not found",
                details={'purchase_order_id': order_id}
            )
        return order

    async def commit_transition(self, order: PurchaseOrder) -> None:
        order_id = order.id
        # Touch the row so concurrent writers trip the version check
        order.updated_at = datetime.utcnow()
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConflictError(
                f"Purchase order {order_id} was modified concurrently",
                code='concurrent_update',
                details={'purchase_order_id': order_id}
            ) from e
