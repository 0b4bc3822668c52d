import copy
import json
import os
import threading
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

# Désactive l'init fastapi-limiter (évite toute connexion Redis pendant les tests)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from marketplace.app import app as fastapi_app
from marketplace.notifications import service as notifications
from marketplace.payments import gateway
from marketplace.payments.providers import AirtelMoneyProvider, MTNMoMoProvider
from marketplace.utils.security import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_SUPPLIER, RequestContext, get_request_context

CUSTOMER = RequestContext(user_id="test-user", role=ROLE_CUSTOMER, email="test@example.com", token="fake-token")
SUPPLIER = RequestContext(user_id="sup-1", role=ROLE_SUPPLIER, email="supplier@example.com", token="fake-token")
ADMIN = RequestContext(user_id="admin-user-id", role=ROLE_ADMIN, email="admin@example.com", token="fake-token")

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "tests/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)


class FakeStore:
    """
    Store en mémoire remplaçant les repositories Supabase (catalog, cart, orders).
    - reserve_stock est conditionnel et atomique (verrou), comme la fonction Postgres.
    - Les lignes retournées sont des copies (comme une désérialisation JSON).
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.products: Dict[str, Dict[str, Any]] = {}
        self.carts: Dict[str, List[Dict[str, Any]]] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.fail_insert = False
        self._seq = 0

    # --- données de test ---
    def add_product(self, product_id: str, price, stock: int, name: str = "", approved: bool = True,
                    supplier_id: str = "sup-1") -> None:
        self.products[product_id] = {
            "id": product_id,
            "name": name or f"Produit {product_id}",
            "price": str(price),
            "stock": stock,
            "approved": approved,
            "supplier_id": supplier_id,
        }

    def set_cart(self, user_id: str, items: Dict[str, int]) -> None:
        self.carts[user_id] = [{"product_id": pid, "quantity": q} for pid, q in items.items()]

    def stock(self, product_id: str) -> int:
        return self.products[product_id]["stock"]

    # --- catalog ---
    def fetch_products_by_ids(self, ids):
        return [copy.deepcopy(self.products[str(i)]) for i in ids if str(i) in self.products]

    def get_products_map(self, ids):
        return {p["id"]: p for p in self.fetch_products_by_ids(list(ids))}

    def get_product(self, product_id):
        return self.get_products_map([product_id]).get(str(product_id))

    def reserve_stock(self, product_id, quantity):
        with self.lock:
            product = self.products.get(str(product_id))
            if not product or product["stock"] < quantity:
                return False
            product["stock"] -= quantity
            return True

    def release_stock(self, product_id, quantity):
        with self.lock:
            self.products[str(product_id)]["stock"] += quantity

    # --- cart ---
    def get_cart(self, user_id):
        if user_id not in self.carts:
            return None
        return {"user_id": user_id, "items": copy.deepcopy(self.carts[user_id])}

    def save_cart_items(self, user_id, items):
        self.carts[user_id] = copy.deepcopy(items)
        return self.get_cart(user_id)

    def delete_cart(self, user_id):
        self.carts.pop(user_id, None)

    # --- orders ---
    def insert_order(self, row):
        with self.lock:
            if self.fail_insert:
                raise RuntimeError("store indisponible")
            key = row.get("checkout_key")
            if key and any(o.get("checkout_key") == key and o["customer_id"] == row["customer_id"]
                           for o in self.orders.values()):
                raise RuntimeError("duplicate key value violates unique constraint")
            self._seq += 1
            order_id = f"order-{self._seq}"
            data = copy.deepcopy(row)
            data.update({"id": order_id, "payment_reference": None, "created_at": f"2024-01-01T00:00:{self._seq:02d}"})
            self.orders[order_id] = data
            return copy.deepcopy(data)

    def get_order(self, order_id):
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    def find_by_payment_reference(self, reference):
        for order in self.orders.values():
            if reference and order.get("payment_reference") == reference:
                return copy.deepcopy(order)
        return None

    def find_by_checkout_key(self, customer_id, checkout_key):
        for order in self.orders.values():
            if order["customer_id"] == customer_id and order.get("checkout_key") == checkout_key:
                return copy.deepcopy(order)
        return None

    def set_payment_reference(self, order_id, reference, provider=None):
        with self.lock:
            order = self.orders.get(order_id)
            if not order or order.get("payment_reference") is not None:
                return None
            order["payment_reference"] = reference
            if provider:
                order["provider"] = provider
            return copy.deepcopy(order)

    def update_status_if(self, order_id, expected_status, data):
        with self.lock:
            order = self.orders.get(order_id)
            if not order or order["status"] != expected_status:
                return None
            order.update(copy.deepcopy(data))
            return copy.deepcopy(order)

    def list_customer_orders(self, customer_id, limit=50):
        return [copy.deepcopy(o) for o in self.orders.values() if o["customer_id"] == customer_id][:limit]

    def list_supplier_orders(self, supplier_id, limit=100):
        return [
            copy.deepcopy(o) for o in self.orders.values()
            if any(i.get("supplier_id") == supplier_id for i in o["items"])
        ][:limit]

    def list_all_orders(self, limit=100):
        return [copy.deepcopy(o) for o in self.orders.values()][:limit]

    def install(self, monkeypatch) -> "FakeStore":
        for name in ("fetch_products_by_ids", "get_products_map", "get_product", "reserve_stock", "release_stock"):
            monkeypatch.setattr(f"marketplace.catalog.repository.{name}", getattr(self, name))
        for name in ("get_cart", "save_cart_items", "delete_cart"):
            monkeypatch.setattr(f"marketplace.cart.repository.{name}", getattr(self, name))
        for name in (
            "insert_order", "get_order", "find_by_payment_reference", "find_by_checkout_key",
            "set_payment_reference", "update_status_if", "list_customer_orders",
            "list_supplier_orders", "list_all_orders",
        ):
            monkeypatch.setattr(f"marketplace.orders.repository.{name}", getattr(self, name))
        return self


class ProviderStub:
    """
    Fournisseurs MTN/Airtel branchés sur httpx.MockTransport.
    mode: "ok" (200), "reject" (400), "timeout" (ReadTimeout). `status` pilote check_status.
    """

    def __init__(self):
        self.mode = "ok"
        self.status = "PENDING"
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.mode == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if self.mode == "reject":
            return httpx.Response(400, json={"message": "Solde insuffisant"})
        if request.method == "GET":
            return httpx.Response(200, json={"status": self.status})
        return httpx.Response(202, json={"transactionId": "txn-123", "status": "PENDING"})

    def install(self) -> "ProviderStub":
        transport = httpx.MockTransport(self.handler)
        gateway.register_provider(MTNMoMoProvider("https://mtn.test", "mtn-key", timeout=1, transport=transport))
        gateway.register_provider(AirtelMoneyProvider("https://airtel.test", "airtel-key", timeout=1, transport=transport))
        return self


@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture()
def store(monkeypatch) -> FakeStore:
    return FakeStore().install(monkeypatch)

@pytest.fixture()
def providers() -> ProviderStub:
    return ProviderStub().install()

@pytest.fixture()
def login(app) -> Callable[[Optional[RequestContext]], None]:
    """Change l'utilisateur courant des requêtes (None: non authentifié)."""
    def _login(ctx: Optional[RequestContext]) -> None:
        if ctx is None:
            app.dependency_overrides.pop(get_request_context, None)
        else:
            app.dependency_overrides[get_request_context] = lambda: ctx
    return _login

# Simuler un client authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_request_context(app):
    app.dependency_overrides[get_request_context] = lambda: CUSTOMER
    try:
        yield
    finally:
        app.dependency_overrides.clear()

# Aucun accès réseau: Supabase et fournisseurs réinitialisés à chaque test
@pytest.fixture(autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("marketplace.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("marketplace.infra.supabase_client.get_service_supabase", lambda: MagicMock())
    gateway.reset_providers()
    # SMS non configuré par défaut (fixture `sms` pour simuler la passerelle)
    notifications.register_sms_client(notifications.SmsClient("", ""))
    yield
    gateway.reset_providers()
    notifications.reset_sms_client()


class SmsStub:
    """Passerelle SMS sur httpx.MockTransport; fail=True répond 500."""

    def __init__(self):
        self.fail = False
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"error": "indisponible"})
        return httpx.Response(200, json={"messageId": f"sms-{len(self.requests)}"})

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def install(self) -> "SmsStub":
        transport = httpx.MockTransport(self.handler)
        notifications.register_sms_client(
            notifications.SmsClient("https://sms.test/send", "sms-key", sender_id="ECommerceRW", transport=transport)
        )
        return self


@pytest.fixture()
def sms() -> SmsStub:
    return SmsStub().install()
