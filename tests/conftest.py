import pytest
from decimal import Decimal
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sgst.models.database import Base
import sgst.models.replenishment  # noqa: F401
import sgst.models.purchasing  # noqa: F401


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


@pytest.fixture
async def db_session(session_factory):
    """Create database session for tests"""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def sample_supplier(db_session):
    """Create a sample supplier for testing"""
    from sgst.models.database import Supplier

    supplier = Supplier(
        name="Refriango Distribuição",
        contact_email="compras@supplier.ao",
        lead_time_days=5,
        is_active=True
    )

    db_session.add(supplier)
    await db_session.commit()
    return supplier


@pytest.fixture
async def sample_warehouse(db_session):
    from sgst.models.database import Warehouse

    warehouse = Warehouse(code="LDA-01", name="Luanda Central")
    db_session.add(warehouse)
    await db_session.commit()
    return warehouse


@pytest.fixture
async def sample_product(db_session, sample_supplier):
    """Create a sample product for testing"""
    from sgst.models.database import Product

    product = Product(
        sku="TEST-001",
        name="Test Product",
        category="Test",
        supplier_id=sample_supplier.id,
        unit_cost=Decimal("10.00"),
        is_active=True
    )

    db_session.add(product)
    await db_session.commit()
    return product


@pytest.fixture
def set_stock(db_session):
    """Set on-hand stock for a (product, warehouse) pair"""
    from sgst.models.database import InventoryLevel

    async def _set_stock(product_id, warehouse_id, on_hand, reserved=0):
        inventory = InventoryLevel(
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity_on_hand=on_hand,
            quantity_reserved=reserved
        )
        inventory.update_available()
        db_session.add(inventory)
        await db_session.commit()
        return inventory

    return _set_stock


@pytest.fixture
async def sample_rule(db_session, sample_product, sample_warehouse, sample_supplier):
    from sgst.models.replenishment import ReplenishmentRule

    rule = ReplenishmentRule(
        product_id=sample_product.id,
        warehouse_id=sample_warehouse.id,
        min_level=50,
        max_level=300,
        reorder_point=100,
        replenish_quantity=200,
        safety_stock=20,
        lead_time_days=5,
        preferred_supplier_id=sample_supplier.id,
        last_cost=Decimal("12.50"),
        is_active=True
    )
    db_session.add(rule)
    await db_session.commit()
    return rule


@pytest.fixture
def two_level_rules():
    """Two finance approvers at level 1, a director at level 2, for orders above 500k"""
    condition = {'field': 'total_amount', 'operator': 'greater_than', 'value': 500000}
    return [
        {
            'level': 1,
            'condition': condition,
            'approvers': [
                {'user_id': 'finance-ana', 'role': 'finance'},
                {'user_id': 'finance-joao', 'role': 'finance'}
            ]
        },
        {
            'level': 2,
            'condition': condition,
            'approvers': [{'user_id': 'director-maria', 'role': 'director'}]
        }
    ]


@pytest.fixture
async def sample_workflow(db_session, two_level_rules):
    from sgst.services.approval.workflow_engine import ApprovalWorkflowEngine

    engine = ApprovalWorkflowEngine(db_session)
    return await engine.create_workflow({
        'name': 'High value purchases',
        'rules': two_level_rules,
        'created_by': 'admin'
    })


@pytest.fixture
def make_order(db_session, sample_supplier, sample_product, sample_warehouse):
    """Create a draft purchase order worth ``quantity`` x ``unit_price``"""
    from sgst.services.purchasing.purchase_order_service import PurchaseOrderService

    async def _make_order(quantity=100, unit_price=10, **extra):
        data = {
            'supplier_id': sample_supplier.id,
            'warehouse_id': sample_warehouse.id,
            'requested_by': 'buyer-paulo',
            'items': [{'product_id': sample_product.id, 'quantity': quantity, 'unit_price': unit_price}]
        }
        data.update(extra)
        return await PurchaseOrderService(db_session).create_order(data)

    return _make_order
