"""
Tests para la consulta de productos del POS

Cubren:
- Snapshot de producto por id con aislamiento multi-tenant
- Productos inactivos
- Búsqueda por nombre o SKU y límites
"""

from decimal import Decimal
from uuid import uuid4

from app.database.database import SessionLocal
from app.modules.products.service import MAX_SEARCH_LIMIT, ProductService


class TestFindProduct:
    """Tests para find_product"""

    def test_returns_snapshot(self, make_product, tenant_id):
        product = make_product(name="Pan tajado", sku="PAN-01", price="4.5", unit="un", tax_rate="19")
        service = ProductService(SessionLocal)

        snapshot = service.find_product(product.id, tenant_id)

        assert snapshot is not None
        assert snapshot.id == product.id
        assert snapshot.name == "Pan tajado"
        assert snapshot.sku == "PAN-01"
        assert snapshot.unit_label == "un"
        assert snapshot.unit_price == Decimal("4.5")
        assert snapshot.tax_rate == Decimal("19")

    def test_other_tenant_is_not_visible(self, make_product, tenant_id):
        product = make_product(tenant=uuid4())
        service = ProductService(SessionLocal)

        assert service.find_product(product.id, tenant_id) is None

    def test_inactive_product_is_not_found(self, make_product, tenant_id):
        product = make_product(is_active=False)
        service = ProductService(SessionLocal)

        assert service.find_product(product.id, tenant_id) is None

    def test_unknown_product(self, tenant_id):
        assert ProductService(SessionLocal).find_product(uuid4(), tenant_id) is None


class TestSearchProducts:
    """Tests para search_products"""

    def test_search_by_name_and_sku_case_insensitive(self, make_product, tenant_id):
        make_product(name="Arroz Diana 1kg", sku="ARR-001")
        make_product(name="Azúcar 1kg", sku="AZU-001")
        make_product(name="Aceite 900ml", sku="ACE-ARR")
        service = ProductService(SessionLocal)

        by_name = service.search_products(tenant_id, "arroz")
        assert [p.name for p in by_name] == ["Arroz Diana 1kg"]

        by_sku = service.search_products(tenant_id, "arr")
        assert [p.name for p in by_sku] == ["Aceite 900ml", "Arroz Diana 1kg"]

    def test_empty_term_lists_active_products_ordered_by_name(self, make_product, tenant_id):
        make_product(name="Leche")
        make_product(name="Huevos")
        make_product(name="Inactivo", is_active=False)
        make_product(name="Otro tenant", tenant=uuid4())

        results = ProductService(SessionLocal).search_products(tenant_id)

        assert [p.name for p in results] == ["Huevos", "Leche"]

    def test_limit_is_clamped(self, make_product, tenant_id):
        for index in range(3):
            make_product(name=f"Producto {index}")
        service = ProductService(SessionLocal)

        assert len(service.search_products(tenant_id, limit=2)) == 2
        assert len(service.search_products(tenant_id, limit=0)) == 3
        assert len(service.search_products(tenant_id, limit=MAX_SEARCH_LIMIT + 100)) == 3
