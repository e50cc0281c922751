"""
Pytest fixtures for erpcore backend tests.

Provides test database setup, two tenants (A and B) with fiscal profiles,
products and customers, a controllable fake PAC, and a test client.
"""

import pytest

from erpcore import create_app
from erpcore.config import TestConfig
from erpcore.extensions import db
from erpcore.models import Company, User, Customer, Product
from erpcore.principal import Principal
from erpcore.services.pac_gateway import (
    EXTENSION_KEY,
    CancelResult,
    PacGateway,
    SandboxPacGateway,
    StampResult,
)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
# TENANTS
# =============================================================================

def make_company(name: str, rfc: str = "EKU9003173C9", **overrides) -> Company:
    fields = dict(
        name=name,
        rfc=rfc,
        tax_regime="601",
        street="Av. Reforma",
        exterior_number="100",
        neighborhood="Centro",
        city="Ciudad de México",
        state="CDMX",
        postal_code="06000",
        test_mode=True,
        is_active=True,
    )
    fields.update(overrides)
    return Company(**fields)


@pytest.fixture(scope='function')
def company_a(db_session):
    """Company A: complete fiscal profile, sandbox mode, no CSD uploaded."""
    company = make_company("Comercial Acme SA de CV")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    company = make_company("Beta Distribuciones SA de CV", rfc="IIA040805DZ4")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def user_a(db_session, company_a):
    user = User(company_id=company_a.id, name="Cashier A", email="cashier@acme.mx")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_b(db_session, company_b):
    user = User(company_id=company_b.id, name="Cashier B", email="cashier@beta.mx")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def principal_a(user_a, company_a):
    return Principal(user_id=user_a.id, company_id=company_a.id, email=user_a.email)


@pytest.fixture(scope='function')
def principal_b(user_b, company_b):
    return Principal(user_id=user_b.id, company_id=company_b.id, email=user_b.email)


@pytest.fixture(scope='function')
def public_customer_a(db_session, company_a):
    """Customer without RFC: invoiced as the general public."""
    customer = Customer(company_id=company_a.id, name="Mostrador", email="mostrador@acme.mx")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def named_customer_a(db_session, company_a):
    customer = Customer(
        company_id=company_a.id,
        name="Universidad Robótica",
        email="compras@ure.mx",
        rfc="URE180429TM6",
        legal_name="UNIVERSIDAD ROBOTICA ESPAÑOLA",
        tax_regime="601",
        cfdi_use="G03",
        fiscal_postal_code="86991",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, company_b):
    customer = Customer(company_id=company_b.id, name="Cliente Beta")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def product_a(db_session, company_a):
    """Stock-tracked product in Company A: stock 5, price 100.00."""
    product = Product(
        company_id=company_a.id,
        sku="WIDGET-1",
        name="Widget",
        use_stock=True,
        stock=5,
        price_cents=10000,
        sat_product_key="01010101",
        sat_unit_key="H87",
        sale_unit="Pieza",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def service_product_a(db_session, company_a):
    """Untracked product (service) in Company A."""
    product = Product(
        company_id=company_a.id,
        sku="SRV-1",
        name="Instalación",
        use_stock=False,
        stock=0,
        price_cents=50000,
        sat_product_key="72151600",
        sat_unit_key="E48",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, company_b):
    product = Product(
        company_id=company_b.id,
        sku="WIDGET-1",
        name="Widget Beta",
        stock=10,
        price_cents=20000,
        sat_product_key="01010101",
        sat_unit_key="H87",
    )
    db_session.add(product)
    db_session.commit()
    return product


# =============================================================================
# FAKE PAC
# =============================================================================

class FakePac(PacGateway):
    """
    Controllable PAC double.

    - stamp_error / cancel_error: PacError raised on the next call(s)
    - cancel_status: status string returned by cancel ("canceled" accepts)
    - calls: every (operation, args) received
    """

    def __init__(self):
        self.sandbox = SandboxPacGateway(serie="T")
        self.stamp_error = None
        self.cancel_error = None
        self.cancel_status = "canceled"
        self.calls = []

    def sign_and_register(self, payload: dict) -> StampResult:
        self.calls.append(("stamp", payload))
        if self.stamp_error is not None:
            raise self.stamp_error
        return self.sandbox.sign_and_register(payload)

    def cancel(self, *, pac_document_id, uuid, motive, substitute_uuid=None) -> CancelResult:
        self.calls.append(("cancel", {
            "pac_document_id": pac_document_id,
            "uuid": uuid,
            "motive": motive,
            "substitute_uuid": substitute_uuid,
        }))
        if self.cancel_error is not None:
            raise self.cancel_error
        if self.cancel_status == "canceled":
            return self.sandbox.cancel(pac_document_id=pac_document_id, uuid=uuid, motive=motive)
        return CancelResult(status=self.cancel_status, accepted=False, message="Awaiting receiver acceptance")

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


@pytest.fixture(scope='function')
def fake_pac(app):
    pac = FakePac()
    app.extensions[EXTENSION_KEY] = pac
    yield pac
    app.extensions.pop(EXTENSION_KEY, None)


# =============================================================================
# HTTP HEADERS
# =============================================================================

@pytest.fixture(scope='function')
def headers_a(principal_a):
    """Headers the auth collaborator forwards for an authenticated caller."""
    return {"X-User-Id": principal_a.user_id, "X-Company-Id": principal_a.company_id}


@pytest.fixture(scope='function')
def headers_b(principal_b):
    return {"X-User-Id": principal_b.user_id, "X-Company-Id": principal_b.company_id}
