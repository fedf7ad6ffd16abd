"""
Purchasing API Routes

Purchase orders, approval decisions, approval workflows and notifications.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field
import logging

from config.settings import settings
from sgst.database import get_db
from sgst.services.purchasing.purchase_order_service import PurchaseOrderService
from sgst.services.approval.workflow_engine import ApprovalWorkflowEngine
from sgst.services.notifications.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix=settings.API_PREFIX, tags=["Purchasing"])


# ============================================================================
# Request Models
# ============================================================================

class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    unit_price: Optional[float] = Field(None, ge=0, description="Defaults to the product unit cost")


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    warehouse_id: Optional[int] = None
    items: List[OrderItemRequest] = Field(..., min_length=1)
    priority: str = Field('normal', description="low, normal, high or urgent")
    department_id: Optional[str] = None
    budget_code: Optional[str] = None
    requested_by: str = 'system'
    notes: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None
    auto_approval_enabled: bool = False
    auto_approval_max_amount: Optional[float] = Field(None, ge=0)
    submit: bool = Field(False, description="Submit for approval right after creation")


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    user: Optional[str] = None


class ReceivedItem(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)


class ReceiveRequest(BaseModel):
    items_received: List[ReceivedItem] = Field(..., min_length=1)


class ApprovalDecisionRequest(BaseModel):
    approver_user_id: str
    decision: str = Field(..., description="approved, rejected or changes_requested")
    comments: Optional[str] = None
    level: Optional[int] = Field(None, ge=1)


class WorkflowCondition(BaseModel):
    field: str
    operator: str
    value: Any = None


class WorkflowApprover(BaseModel):
    user_id: str
    role: Optional[str] = None
    is_required: bool = True


class WorkflowRule(BaseModel):
    level: int
    condition: WorkflowCondition
    approvers: List[WorkflowApprover]


class WorkflowCreate(BaseModel):
    name: str = Field(..., max_length=200)
    description: Optional[str] = None
    rules: List[WorkflowRule]
    is_active: bool = True
    created_by: Optional[str] = None


class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    rules: Optional[List[WorkflowRule]] = None
    is_active: Optional[bool] = None


class ApprovalLimitCreate(BaseModel):
    user_id: str
    role: Optional[str] = None
    max_amount: float = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    category: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None


class ApprovalLimitUpdate(BaseModel):
    role: Optional[str] = None
    max_amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    category: Optional[str] = None
    is_active: Optional[bool] = None
    updated_by: Optional[str] = None


class AcknowledgeRequest(BaseModel):
    user: str


# ============================================================================
# Purchase Order Endpoints
# ============================================================================

@router.post("/purchase-orders", status_code=201)
async def create_purchase_order(
    request: PurchaseOrderCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a draft purchase order

    - **submit**: route the order to approval immediately
    """
    data = request.model_dump(exclude={'submit'})
    data['items'] = [item.model_dump(exclude_none=True) for item in request.items]

    service = PurchaseOrderService(db)
    order = await service.create_order(data, submit=request.submit)
    return order.to_dict()


@router.get("/purchase-orders")
async def list_purchase_orders(
    status: Optional[str] = Query(None),
    supplier_id: Optional[int] = Query(None),
    department_id: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    requested_by: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    service = PurchaseOrderService(db)
    orders = await service.list_orders(
        status_filter=status,
        supplier_id=supplier_id,
        department_id=department_id,
        priority=priority,
        requested_by=requested_by,
        limit=limit
    )
    return {'purchase_orders': [o.to_dict(include_approvals=False) for o in orders], 'count': len(orders)}


@router.get("/purchase-orders/{order_id}")
async def get_purchase_order(order_id: int, db: AsyncSession = Depends(get_db)):
    service = PurchaseOrderService(db)
    order = await service.get_order(order_id)
    return order.to_dict()


@router.post("/purchase-orders/{order_id}/submit")
async def submit_purchase_order(order_id: int, db: AsyncSession = Depends(get_db)):
    """
    Submit a draft for approval; small orders are approved automatically
    """
    service = PurchaseOrderService(db)
    order = await service.submit_for_approval(order_id)
    return order.to_dict()


@router.post("/purchase-orders/{order_id}/cancel")
async def cancel_purchase_order(
    order_id: int,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db)
):
    service = PurchaseOrderService(db)
    order = await service.cancel_order(order_id, reason=request.reason, user=request.user)
    return order.to_dict()


@router.post("/purchase-orders/{order_id}/order")
async def place_purchase_order(order_id: int, db: AsyncSession = Depends(get_db)):
    service = PurchaseOrderService(db)
    order = await service.mark_ordered(order_id)
    return order.to_dict()


@router.post("/purchase-orders/{order_id}/receive")
async def receive_purchase_order(
    order_id: int,
    request: ReceiveRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Receive purchase order items and update inventory
    """
    service = PurchaseOrderService(db)
    order = await service.receive_order(
        order_id, [item.model_dump() for item in request.items_received]
    )
    return order.to_dict()


# ============================================================================
# Approval Endpoints
# ============================================================================

@router.post("/purchase-orders/{order_id}/approvals")
async def submit_approval_decision(
    order_id: int,
    request: ApprovalDecisionRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Record an approver's decision on the order's current approval level
    """
    engine = ApprovalWorkflowEngine(db)
    result = await engine.submit_decision(
        order_id=order_id,
        approver_user_id=request.approver_user_id,
        decision=request.decision,
        comments=request.comments,
        level=request.level
    )

    return {
        'approval': result.approval.to_dict(),
        'purchase_order': result.order.to_dict(),
        'level_resolved': result.level_resolved,
        'next_level_approvers': [a.approver_user_id for a in result.next_level_approvals]
    }


@router.get("/purchase-orders/{order_id}/approval-history")
async def get_approval_history(order_id: int, db: AsyncSession = Depends(get_db)):
    engine = ApprovalWorkflowEngine(db)
    approvals = await engine.get_approval_history(order_id)
    return {'purchase_order_id': order_id, 'approvals': [a.to_dict() for a in approvals]}


@router.get("/approvals/pending")
async def list_pending_approvals(
    approver_user_id: Optional[str] = Query(None, description="Approver to list pending decisions for"),
    priority: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    engine = ApprovalWorkflowEngine(db)
    pending = await engine.list_pending_approvals(approver_user_id, priority, department_id)
    return {'approver_user_id': approver_user_id, 'pending': pending, 'count': len(pending)}


@router.get("/approval-history")
async def get_all_approval_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    approver_user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Approval decisions across all orders, newest first
    """
    engine = ApprovalWorkflowEngine(db)
    result = await engine.get_all_approval_history(
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        approver_user_id=approver_user_id
    )
    result['history'] = [a.to_dict() for a in result['history']]
    return result


# ============================================================================
# Workflow Endpoints
# ============================================================================

@router.get("/approval-workflows")
async def list_workflows(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    engine = ApprovalWorkflowEngine(db)
    workflows = await engine.list_workflows(active_only=active_only)
    return {'workflows': [w.to_dict() for w in workflows], 'count': len(workflows)}


@router.post("/approval-workflows", status_code=201)
async def create_workflow(request: WorkflowCreate, db: AsyncSession = Depends(get_db)):
    """
    Define an approval workflow; levels must run 1, 2, 3... without gaps
    """
    engine = ApprovalWorkflowEngine(db)
    workflow = await engine.create_workflow(request.model_dump())
    return workflow.to_dict()


@router.get("/approval-workflows/{workflow_id}")
async def get_workflow(workflow_id: int, db: AsyncSession = Depends(get_db)):
    engine = ApprovalWorkflowEngine(db)
    workflow = await engine.get_workflow(workflow_id)
    return workflow.to_dict()


@router.patch("/approval-workflows/{workflow_id}")
async def update_workflow(
    workflow_id: int,
    request: WorkflowUpdate,
    db: AsyncSession = Depends(get_db)
):
    """
    Partial update; replaced rules are validated like new ones
    """
    engine = ApprovalWorkflowEngine(db)
    workflow = await engine.update_workflow(workflow_id, request.model_dump(exclude_unset=True))
    return workflow.to_dict()


@router.delete("/approval-workflows/{workflow_id}")
async def delete_workflow(workflow_id: int, db: AsyncSession = Depends(get_db)):
    """
    Delete a workflow, or deactivate it when orders were routed through it
    """
    engine = ApprovalWorkflowEngine(db)
    return await engine.delete_workflow(workflow_id)


# ============================================================================
# Approval Limit Endpoints
# ============================================================================

@router.get("/approval-limits")
async def list_approval_limits(
    user_id: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    engine = ApprovalWorkflowEngine(db)
    limits = await engine.list_approval_limits(user_id, role, is_active)
    return {'approval_limits': [limit.to_dict() for limit in limits], 'count': len(limits)}


@router.post("/approval-limits", status_code=201)
async def create_approval_limit(request: ApprovalLimitCreate, db: AsyncSession = Depends(get_db)):
    engine = ApprovalWorkflowEngine(db)
    limit = await engine.create_approval_limit(request.model_dump())
    return limit.to_dict()


@router.put("/approval-limits/{limit_id}")
async def update_approval_limit(
    limit_id: int,
    request: ApprovalLimitUpdate,
    db: AsyncSession = Depends(get_db)
):
    engine = ApprovalWorkflowEngine(db)
    limit = await engine.update_approval_limit(limit_id, request.model_dump(exclude_unset=True))
    return limit.to_dict()


@router.delete("/approval-limits/{limit_id}")
async def delete_approval_limit(limit_id: int, db: AsyncSession = Depends(get_db)):
    engine = ApprovalWorkflowEngine(db)
    return await engine.delete_approval_limit(limit_id)


# ============================================================================
# Notification Endpoints
# ============================================================================

@router.get("/notifications")
async def list_notifications(
    recipient: Optional[str] = Query(None),
    unacknowledged_only: bool = Query(False),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    service = NotificationService(db)
    notifications = await service.list_notifications(recipient, unacknowledged_only, limit)
    return {'notifications': [n.to_dict() for n in notifications], 'count': len(notifications)}


@router.post("/notifications/{notification_id}/acknowledge")
async def acknowledge_notification(
    notification_id: int,
    request: AcknowledgeRequest,
    db: AsyncSession = Depends(get_db)
):
    service = NotificationService(db)
    notification = await service.acknowledge(notification_id, request.user)
    return notification.to_dict()
