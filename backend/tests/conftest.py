"""
Shared pytest fixtures.

Provides:
    - store: in-memory mongomock database injected as the document store
    - app / client: Flask application built around ``store`` and a test secret
    - codec: the application's TokenCodec
    - make_account / make_shop_owner / make_order: document factories
    - login_as: sets a signed session cookie on the test client
"""

import logging
from datetime import datetime

import bcrypt
import mongomock
import pytest

from app import create_app
from settings import Settings

TEST_SECRET = "test-signing-secret-0123456789-abcdefghijklmnop"
TEST_PASSWORD = "Sparkle#2024"


@pytest.fixture()
def store():
    return mongomock.MongoClient().jewel_orders_test


@pytest.fixture()
def settings():
    return Settings(jwt_secret=TEST_SECRET, trusted_proxy_hops=0)


@pytest.fixture()
def app(settings, store):
    application = create_app(settings, db=store)
    application.config.update(TESTING=True)
    return application


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def codec(app):
    return app.extensions["token_codec"]


@pytest.fixture()
def workflow(app):
    return app.extensions["workflow"]


@pytest.fixture()
def test_logger():
    return logging.getLogger("tests.workflow")


@pytest.fixture()
def make_account(store):
    counter = {"n": 0}

    def _make(
        role="salesman",
        request_status="pending",
        is_verified=None,
        is_blocked=False,
        password=TEST_PASSWORD,
        **fields,
    ):
        counter["n"] += 1
        n = counter["n"]
        if is_verified is None:
            is_verified = request_status == "approved"
        document = {
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@example.com",
            "mobile": f"98765{n:05d}",
            "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)),
            "role": role,
            "request_status": request_status,
            "is_verified": is_verified,
            "is_blocked": is_blocked,
            "created_at": datetime.utcnow(),
        }
        document.update(fields)
        document["_id"] = store.users.insert_one(document).inserted_id
        return document

    return _make


@pytest.fixture()
def make_shop_owner(store, make_account):
    def _make(request_status="pending", shop_verified=False):
        owner = make_account(role="shop", request_status=request_status)
        shop_id = store.shops.insert_one(
            {
                "shop_name": f"{owner['name']} Jewellers",
                "owner_id": owner["_id"],
                "address": "12 Zaveri Bazaar, Mumbai",
                "gst_number": "27ABCDE1234F1Z5",
                "is_verified": shop_verified,
                "is_active": True,
                "created_at": datetime.utcnow(),
            }
        ).inserted_id
        store.users.update_one({"_id": owner["_id"]}, {"$set": {"shop_id": shop_id}})
        return store.users.find_one({"_id": owner["_id"]}), store.shops.find_one({"_id": shop_id})

    return _make


@pytest.fixture()
def make_order(store):
    counter = {"n": 0}

    def _make(salesman_id, status="confirmed", **fields):
        counter["n"] += 1
        document = {
            "order_code": f"ORD-20260101-{counter['n']:05d}",
            "product_name": "Gold Name Pendant",
            "customer_name": "Asha Rao",
            "salesman_id": salesman_id,
            "status": status,
            "status_history": [],
            "priority": "medium",
            "created_at": datetime.utcnow(),
        }
        document.update(fields)
        document["_id"] = store.orders.insert_one(document).inserted_id
        return document

    return _make


@pytest.fixture()
def login_as(client, codec):
    def _login(account):
        issued = codec.issue(
            str(account["_id"]),
            account["role"],
            bool(account.get("is_verified")),
            bool(account.get("is_blocked")),
        )
        client.set_cookie("token", issued.token)
        return issued.token

    return _login


@pytest.fixture()
def admin(make_account):
    return make_account(role="admin", request_status="approved")


@pytest.fixture()
def salesman(make_account):
    return make_account(role="salesman", request_status="approved")
