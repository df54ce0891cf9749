import mongomock
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from conftest import base_config
from storefront import create_app
from storefront.errors import ConfigurationError
from storefront.seed import SEED_PRODUCTS


@pytest.mark.parametrize("path", ["/health", "/api/health"])
def test_health(client, path):
    response = client.get(path)

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_missing_database_uri_is_fatal(monkeypatch):
    monkeypatch.delenv("MONGO_URI", raising=False)
    monkeypatch.delenv("MONGODB_URI", raising=False)

    with pytest.raises(ConfigurationError):
        create_app(base_config())


def test_enforced_auth_needs_identity_provider():
    with pytest.raises(ConfigurationError):
        create_app(base_config(AUTH0_DOMAIN=""), database=mongomock.MongoClient()["x"])


def test_unknown_auth_mode_is_fatal():
    with pytest.raises(ConfigurationError):
        create_app(base_config(AUTH_MODE="sometimes"), database=mongomock.MongoClient()["x"])


def test_list_and_fetch_products(client, name_board):
    listed = client.get("/api/products")
    fetched = client.get("/api/products/custom-name-board")

    assert listed.status_code == 200
    assert [product["slug"] for product in listed.get_json()["products"]] == ["custom-name-board"]
    product = fetched.get_json()["product"]
    assert product["price"] == 500
    assert product["isCustomizable"] is True
    assert product["customizationSchema"]["text"] == {"type": "text", "label": "Text", "default": "Your Name"}


def test_list_products_by_category(client, catalog, name_board):
    catalog.create_product({"title": "Precision Gear", "price": 1299, "category": "component"})

    response = client.get("/api/products?category=component")

    assert [product["title"] for product in response.get_json()["products"]] == ["Precision Gear"]


def test_unknown_product_slug(client):
    response = client.get("/api/products/nope")

    assert response.status_code == 404
    assert response.get_json() == {"message": "Product not found.", "retryable": False}


def test_unknown_route_is_json(client):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert "message" in response.get_json()


def test_database_outage_is_retryable(client, catalog, monkeypatch):
    def unavailable(*args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")

    monkeypatch.setattr(catalog, "list_products", unavailable)

    response = client.get("/api/products")

    assert response.status_code == 503
    assert response.get_json()["retryable"] is True


def test_seed_products_is_idempotent(app, database):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["seed-products"])
    second = runner.invoke(args=["seed-products"])

    assert "3 inserted" in first.output
    assert "0 inserted, 3 updated" in second.output
    assert database.products.count_documents({}) == len(SEED_PRODUCTS)
    board = database.products.find_one({"slug": "custom-name-board"})
    assert board["price"] == 899
    assert board["customization_schema"]["fontSize"]["max"] == 120
