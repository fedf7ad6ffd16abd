"""Replenishment core schema

Revision ID: 001_replenishment_core
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001_replenishment_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Reference data
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('contact_email', sa.String(200), nullable=True),
        sa.Column('contact_phone', sa.String(50), nullable=True),
        sa.Column('lead_time_days', sa.Integer(), nullable=True, server_default='7'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)
    op.create_index('ix_products_category', 'products', ['category'])

    op.create_table(
        'warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )

    # Stock and demand history
    op.create_table(
        'inventory_levels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_reserved', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_counted_at', sa.DateTime(), nullable=True),
        sa.Column('last_received_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'warehouse_id', name='uq_inventory_product_warehouse')
    )
    op.create_index('ix_inventory_levels_product_id', 'inventory_levels', ['product_id'])
    op.create_index('ix_inventory_levels_warehouse_id', 'inventory_levels', ['warehouse_id'])

    op.create_table(
        'sales_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('sales_channel', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_sales_product_warehouse_date', 'sales_records', ['product_id', 'warehouse_id', 'sale_date'])

    # Replenishment rules and forecasts
    op.create_table(
        'replenishment_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('min_level', sa.Integer(), nullable=False),
        sa.Column('max_level', sa.Integer(), nullable=False),
        sa.Column('reorder_point', sa.Integer(), nullable=False),
        sa.Column('replenish_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('economic_order_quantity', sa.Integer(), nullable=True),
        sa.Column('safety_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lead_time_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('abc_classification', sa.String(1), nullable=False, server_default='C'),
        sa.Column('velocity_category', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('preferred_supplier_id', sa.Integer(), nullable=True),
        sa.Column('last_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.ForeignKeyConstraint(['preferred_supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'warehouse_id', name='uq_replenishment_rule_product_warehouse'),
        sa.CheckConstraint(
            'min_level >= 0 AND min_level <= reorder_point AND reorder_point <= max_level',
            name='ck_replenishment_rule_levels'
        )
    )
    op.create_index('idx_replenishment_rule_warehouse_active', 'replenishment_rules', ['warehouse_id', 'is_active'])

    op.create_table(
        'demand_forecasts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('forecast_date', sa.Date(), nullable=False),
        sa.Column('period', sa.String(20), nullable=False, server_default='daily'),
        sa.Column('predicted_demand', sa.Integer(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('algorithm', sa.String(50), nullable=False),
        sa.Column('model_version', sa.String(50), nullable=False),
        sa.Column('run_id', sa.String(40), nullable=False),
        sa.Column('parameters', postgresql.JSONB(), nullable=True),
        sa.Column('actual_demand', sa.Integer(), nullable=True),
        sa.Column('actual_recorded_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('predicted_demand >= 0', name='ck_demand_forecast_non_negative'),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 1', name='ck_demand_forecast_confidence')
    )
    op.create_index('idx_demand_forecast_pair_date', 'demand_forecasts', ['product_id', 'warehouse_id', 'forecast_date'])
    op.create_index('idx_demand_forecast_run', 'demand_forecasts', ['run_id'])

    # Purchasing and approvals
    op.create_table(
        'approval_workflows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('rules', postgresql.JSONB(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(100), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('replenishment_rule_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='draft'),
        sa.Column('priority', sa.String(20), nullable=False, server_default='normal'),
        sa.Column('department_id', sa.String(100), nullable=True),
        sa.Column('budget_code', sa.String(100), nullable=True),
        sa.Column('requested_by', sa.String(100), nullable=False, server_default='system'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('auto_approval_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('auto_approval_max_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('approval_workflow_id', sa.Integer(), nullable=True),
        sa.Column('current_approval_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_generated', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('expected_delivery_date', sa.DateTime(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('ordered_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.ForeignKeyConstraint(['replenishment_rule_id'], ['replenishment_rules.id']),
        sa.ForeignKeyConstraint(['approval_workflow_id'], ['approval_workflows.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_purchase_orders_order_number', 'purchase_orders', ['order_number'], unique=True)
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])

    op.create_table(
        'purchase_order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_ordered', sa.Integer(), nullable=False),
        sa.Column('quantity_received', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'purchase_order_approvals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('approver_user_id', sa.String(100), nullable=False),
        sa.Column('approver_role', sa.String(100), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_purchase_order_approvals_purchase_order_id', 'purchase_order_approvals', ['purchase_order_id'])
    op.create_index('idx_approval_approver_status', 'purchase_order_approvals', ['approver_user_id', 'status'])

    # Notifications
    op.create_table(
        'alert_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=True, server_default='info'),
        sa.Column('recipient', sa.String(100), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('purchase_order_id', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('additional_data', postgresql.JSONB(), nullable=True),
        sa.Column('acknowledged', sa.Boolean(), nullable=True, server_default='false'),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_alert_logs_recipient', 'alert_logs', ['recipient'])


def downgrade():
    op.drop_index('ix_alert_logs_recipient', table_name='alert_logs')
    op.drop_table('alert_logs')
    op.drop_index('idx_approval_approver_status', table_name='purchase_order_approvals')
    op.drop_index('ix_purchase_order_approvals_purchase_order_id', table_name='purchase_order_approvals')
    op.drop_table('purchase_order_approvals')
    op.drop_table('purchase_order_items')
    op.drop_index('ix_purchase_orders_status', table_name='purchase_orders')
    op.drop_index('ix_purchase_orders_order_number', table_name='purchase_orders')
    op.drop_table('purchase_orders')
    op.drop_table('approval_workflows')
    op.drop_index('idx_demand_forecast_run', table_name='demand_forecasts')
    op.drop_index('idx_demand_forecast_pair_date', table_name='demand_forecasts')
    op.drop_table('demand_forecasts')
    op.drop_index('idx_replenishment_rule_warehouse_active', table_name='replenishment_rules')
    op.drop_table('replenishment_rules')
    op.drop_index('idx_sales_product_warehouse_date', table_name='sales_records')
    op.drop_table('sales_records')
    op.drop_index('ix_inventory_levels_warehouse_id', table_name='inventory_levels')
    op.drop_index('ix_inventory_levels_product_id', table_name='inventory_levels')
    op.drop_table('inventory_levels')
    op.drop_table('warehouses')
    op.drop_index('ix_products_category', table_name='products')
    op.drop_index('ix_products_sku', table_name='products')
    op.drop_table('products')
    op.drop_table('suppliers')
