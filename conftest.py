"""
Fixtures compartidas para los tests.

Los tests corren contra SQLite en memoria; las variables de entorno se
fijan antes de importar la aplicación para que settings las tome.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["RECEIPT_ARCHIVE_ENABLED"] = "false"

from decimal import Decimal
from uuid import uuid4

import jwt
import pytest

from app.core.config import settings
from app.database.database import Base, SessionLocal, engine
import app.modules.products.models  # noqa: F401
import app.modules.pos.models  # noqa: F401
from app.modules.products.models import Product


@pytest.fixture(autouse=True)
def reset_database():
    """Esquema limpio por test"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def operator_id():
    return uuid4()


@pytest.fixture
def make_product(db_session, tenant_id):
    """Crear productos del catálogo para el tenant del test"""
    def _make(name="Café molido 500g", sku=None, price="120.00", unit="un",
              tax_rate="0", is_active=True, tenant=None):
        product = Product(
            tenant_id=tenant or tenant_id,
            name=name,
            sku=sku or f"SKU-{uuid4().hex[:8].upper()}",
            unit=unit,
            price_sale=Decimal(price),
            tax_rate=Decimal(tax_rate),
            is_active=is_active
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product
    return _make


@pytest.fixture
def make_token():
    def _make(user_id, tenant_id=None, role="cashier", token_type="context"):
        payload = {"sub": str(user_id), "type": token_type, "user_role": role}
        if tenant_id is not None:
            payload["tenant_id"] = str(tenant_id)
        return jwt.encode(payload, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)
    return _make


@pytest.fixture
def auth_headers(make_token, operator_id, tenant_id):
    return {"Authorization": f"Bearer {make_token(operator_id, tenant_id)}"}
