"""
Catalog service tests: lookups and parameterized search.
"""
import pytest

from src.services.catalog import CatalogService
from src.services.errors import ProductNotFound, ValidationError


@pytest.fixture
def catalog(app):
    return CatalogService()


@pytest.fixture
def shelf(make_product):
    return {
        "icons": make_product(title="Icon Pack", price="5.00", category="icons"),
        "fonts": make_product(title="Font Bundle", price="25.00", category="fonts"),
        "free": make_product(title="Free Icons", price="0", category="icons", freebie=True),
        "hidden": make_product(title="Hidden Icons", price="9.00", category="icons", is_published=False),
    }


class TestLookup:

    def test_get_product(self, catalog, shelf):
        assert catalog.get_product(shelf["icons"].id).title == "Icon Pack"

    def test_unpublished_hidden_by_default(self, catalog, shelf):
        with pytest.raises(ProductNotFound):
            catalog.get_product(shelf["hidden"].id)
        assert catalog.get_product(shelf["hidden"].id, published_only=False).title == "Hidden Icons"

    def test_missing(self, catalog):
        with pytest.raises(ProductNotFound):
            catalog.get_product("missing")
        assert catalog.find_product("") is None

    def test_get_products(self, catalog, shelf):
        found = catalog.get_products([shelf["icons"].id, "missing", shelf["fonts"].id, None])
        assert set(found) == {shelf["icons"].id, shelf["fonts"].id}
        assert catalog.get_products([]) == {}


class TestSearch:

    def titles(self, result):
        return [p["title"] for p in result["products"]]

    def test_category_and_freebie(self, catalog, shelf):
        result = catalog.search({"category": "icons", "freebie": False})
        assert self.titles(result) == ["Icon Pack"]

    def test_price_bounds(self, catalog, shelf):
        result = catalog.search({"min_price": "1", "max_price": "10", "sort": "price_asc"})
        assert self.titles(result) == ["Icon Pack"]

    def test_text_is_bound_not_interpolated(self, catalog, shelf):
        assert catalog.search({"q": "' OR 1=1 --"})["products"] == []
        assert catalog.search({"q": "%"})["pagination"]["total"] == 3

    def test_pagination(self, catalog, shelf):
        result = catalog.search({"sort": "title", "page": 2, "per_page": 2})
        assert self.titles(result) == ["Icon Pack"]
        assert result["pagination"] == {"page": 2, "per_page": 2, "total": 3, "pages": 2}

    def test_per_page_is_capped(self, catalog, shelf):
        assert catalog.search({"per_page": 1000})["pagination"]["per_page"] == 100

    def test_invalid_filters(self, catalog):
        with pytest.raises(ValidationError):
            catalog.search({"sort": "random"})
        with pytest.raises(ValidationError) as exc:
            catalog.search({"min_price": "cheap"})
        assert exc.value.field == "min_price"
