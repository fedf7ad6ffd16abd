"""
Purchase Order & Approval Workflow Models
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, JSON, Text,
    Numeric, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Dict, Any
from sgst.models.database import Base


class PurchaseOrder(Base):
    """Purchase order to a supplier, driven through the approval workflow"""
    __tablename__ = 'purchase_orders'

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(100), unique=True, nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=True)
    replenishment_rule_id = Column(Integer, ForeignKey('replenishment_rules.id'), nullable=True)

    # draft, pending_approval, approved, rejected, changes_requested,
    # ordered, partially_received, completed, cancelled
    status = Column(String(30), nullable=False, default='draft', index=True)
    priority = Column(String(20), nullable=False, default='normal')  # low, normal, high, urgent
    department_id = Column(String(100), nullable=True)
    budget_code = Column(String(100), nullable=True)
    requested_by = Column(String(100), nullable=False, default='system')
    notes = Column(Text, nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)

    requires_approval = Column(Boolean, nullable=False, default=False)
    auto_approval_enabled = Column(Boolean, nullable=False, default=False)
    auto_approval_max_amount = Column(Numeric(14, 2), nullable=True)
    approval_workflow_id = Column(Integer, ForeignKey('approval_workflows.id'), nullable=True)
    current_approval_level = Column(Integer, nullable=False, default=0)
    auto_generated = Column(Boolean, nullable=False, default=False)

    expected_delivery_date = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    ordered_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship(
        "PurchaseOrderItem", back_populates="purchase_order",
        cascade="all, delete-orphan", lazy="selectin", order_by="PurchaseOrderItem.id"
    )
    approvals = relationship(
        "Approval", back_populates="purchase_order",
        cascade="all, delete-orphan", lazy="selectin", order_by="Approval.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

    def approvals_at_level(self, level: int):
        return [a for a in self.approvals if a.level == level]

    def to_dict(self, include_approvals: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'order_number': self.order_number,
            'supplier_id': self.supplier_id,
            'warehouse_id': self.warehouse_id,
            'replenishment_rule_id': self.replenishment_rule_id,
            'status': self.status,
            'priority': self.priority,
            'department_id': self.department_id,
            'budget_code': self.budget_code,
            'requested_by': self.requested_by,
            'notes': self.notes,
            'total_amount': float(self.total_amount or 0),
            'requires_approval': self.requires_approval,
            'auto_approval_enabled': self.auto_approval_enabled,
            'auto_approval_max_amount': (
                float(self.auto_approval_max_amount) if self.auto_approval_max_amount is not None else None
            ),
            'approval_workflow_id': self.approval_workflow_id,
            'current_approval_level': self.current_approval_level,
            'auto_generated': self.auto_generated,
            'expected_delivery_date': self.expected_delivery_date.isoformat() if self.expected_delivery_date else None,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'approved_at': self.approved_at.isoformat() if self.approved_at else None,
            'ordered_at': self.ordered_at.isoformat() if self.ordered_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancellation_reason': self.cancellation_reason,
            'version_id': self.version_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'items': [item.to_dict() for item in self.items],
        }
        if include_approvals:
            data['approvals'] = [approval.to_dict() for approval in self.approvals]
        return data

    def __repr__(self) -> str:
        return f"<PurchaseOrder(id={self.id}, number='{self.order_number}', status='{self.status}')>"


class PurchaseOrderItem(Base):
    """Individual items in a purchase order"""
    __tablename__ = 'purchase_order_items'

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey('purchase_orders.id'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False)
    quantity_ordered = Column(Integer, nullable=False)
    quantity_received = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(12, 2), nullable=False)
    line_total = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    purchase_order = relationship("PurchaseOrder", back_populates="items")

    @property
    def quantity_outstanding(self) -> int:
        return max(0, self.quantity_ordered - (self.quantity_received or 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'quantity_ordered': self.quantity_ordered,
            'quantity_received': self.quantity_received or 0,
            'unit_price': float(self.unit_price),
            'line_total': float(self.line_total)
        }


class Approval(Base):
    """One approver's decision at one level; rows are never deleted"""
    __tablename__ = 'purchase_order_approvals'

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey('purchase_orders.id'), nullable=False, index=True)
    level = Column(Integer, nullable=False)
    approver_user_id = Column(String(100), nullable=False, index=True)
    approver_role = Column(String(100), nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    status = Column(String(30), nullable=False, default='pending')  # pending, approved, rejected, changes_requested, moot
    comments = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    purchase_order = relationship("PurchaseOrder", back_populates="approvals")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'purchase_order_id': self.purchase_order_id,
            'level': self.level,
            'approver_user_id': self.approver_user_id,
            'approver_role': self.approver_role,
            'is_required': self.is_required,
            'status': self.status,
            'comments': self.comments,
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class ApprovalWorkflow(Base):
    """Ordered approval levels, each with a matching condition and approvers"""
    __tablename__ = 'approval_workflows'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    # [{"level": 1, "condition": {"field", "operator", "value"},
    #   "approvers": [{"user_id", "role", "is_required"}]}, ...]
    rules = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def rule_for_level(self, level: int):
        for rule in self.rules or []:
            if rule.get('level') == level:
                return rule
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'rules': self.rules,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class ApprovalLimit(Base):
    """Maximum order amount an approver (or role) may sign off"""
    __tablename__ = 'approval_limits'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    role = Column(String(100), nullable=True)
    max_amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='AOA')
    category = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'role': self.role,
            'max_amount': float(self.max_amount) if self.max_amount is not None else None,
            'currency': self.currency,
            'category': self.category,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'updated_by': self.updated_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
