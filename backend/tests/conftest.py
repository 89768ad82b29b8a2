"""
Pytest fixtures for SalonBook backend tests.

Provides the test database, tenant/branch/customer/catalog fixtures and the
gateway-forwarded principal headers. Pure-engine builders live in factories.py.
"""

from decimal import Decimal

import pytest

from salonbook import create_app
from salonbook.extensions import db
from salonbook.models import Branch, CatalogItem, Customer, Tenant
from salonbook.services.checkout_service import CheckoutContext


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CHECKOUT_SESSION_TTL_MINUTES': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# TENANCY / CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def tenant(db_session):
    tenant = Tenant(name="Glow Salons", code="GLOW", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def other_tenant(db_session):
    tenant = Tenant(name="Other Salons", code="OTHR", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch(db_session, tenant):
    branch = Branch(tenant_id=tenant.id, name="Indiranagar", code="BLR1", state_code="KA")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session, other_tenant):
    branch = Branch(tenant_id=other_tenant.id, name="Bandra", code="BOM1", state_code="MH")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def customer(db_session, tenant):
    customer = Customer(
        tenant_id=tenant.id,
        name="Asha Rao",
        phone="9800000001",
        state_code="KA",
        wallet_balance=Decimal("500.00"),
        loyalty_points=1000,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def haircut(db_session, tenant):
    item = CatalogItem(
        tenant_id=tenant.id,
        item_type="service",
        name="Haircut",
        sku="SVC-HC",
        hsn_sac_code="999721",
        price=Decimal("1000.00"),
        tax_rate=Decimal("18"),
        commission_type="percentage",
        commission_value=Decimal("10"),
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def shampoo(db_session, tenant):
    item = CatalogItem(
        tenant_id=tenant.id,
        item_type="product",
        name="Shampoo 200ml",
        sku="PRD-SH",
        price=Decimal("250.00"),
        tax_rate=Decimal("18"),
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def ctx(tenant, branch):
    return CheckoutContext(tenant_id=tenant.id, branch_id=branch.id, user_id=1, role="receptionist")


@pytest.fixture(scope='function')
def headers(tenant, branch):
    """Gateway principal headers for a receptionist at the test branch."""
    return {
        "X-Tenant-Id": str(tenant.id),
        "X-Branch-Id": str(branch.id),
        "X-User-Id": "1",
        "X-User-Role": "receptionist",
    }


