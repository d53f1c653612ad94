import os

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/marketplace_test")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["MIDTRANS_SERVER_KEY"] = "SB-Mid-server-test-key"
os.environ["ENV"] = "test"

from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from database import get_db
from main import app
from utils import email_queue
from utils.hash import hash_password
from utils.jwt import create_access_token
from utils.roles import get_role, seed_roles

PASSWORD = "Secret123"


@pytest.fixture(autouse=True)
def fresh_email_queue():
    email_queue._queue = None
    yield
    email_queue._queue = None


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["marketplace_test"]
    await seed_roles(database)
    return database


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    async def _make(email="buyer@example.com", username="buyer", role="user"):
        role_doc = await get_role(db, role)
        now = datetime.utcnow()
        user = {
            "username": username,
            "email": email,
            "password": hash_password(PASSWORD),
            "role_id": role_doc["_id"],
            "created_at": now,
            "updated_at": now,
        }
        result = await db.users.insert_one(user)
        user["_id"] = result.inserted_id
        user["role"] = role
        user["headers"] = {"Authorization": f"Bearer {create_access_token(user['_id'], role)}"}
        return user

    return _make


@pytest.fixture
def make_product(db):
    async def _make(owner=None, **overrides):
        now = datetime.utcnow()
        product = {
            "user_id": owner["_id"] if owner else None,
            "title": "Portfolio Template",
            "description": "A responsive portfolio website template",
            "price": 150000.0,
            "category": "portfolio",
            "images": ["https://res.cloudinary.com/demo/image/upload/v1/marketplace-products/a.jpg"],
            "video_urls": [],
            "preview_video": None,
            "benefit1": "Responsive",
            "benefit2": "Fast",
            "benefit3": "Clean code",
            "specifications": {},
            "is_active": True,
            "has_source_code": True,
            "source_code": {
                "original_name": "portfolio.zip",
                "google_drive_url": "https://drive.google.com/file/d/abc123/view",
                "google_drive_file_id": "abc123",
            },
            "created_at": now,
            "updated_at": now,
        }
        product.update(overrides)
        result = await db.products.insert_one(product)
        product["_id"] = result.inserted_id
        return product

    return _make


@pytest.fixture
def make_order(db):
    async def _make(product, user=None, status="pending", quantity=1, guest_email=None):
        now = datetime.utcnow()
        order = {
            "order_number": f"ORD-{int(now.timestamp() * 1000)}-TEST",
            "user_id": user["_id"] if user else None,
            "guest_email": guest_email,
            "product_id": product["_id"],
            "unit_price": product["price"],
            "quantity": quantity,
            "total_amount": round(product["price"] * quantity, 2),
            "is_instant_order": False,
            "status": status,
            "order_date": now,
            "created_at": now,
            "updated_at": now,
        }
        result = await db.orders.insert_one(order)
        order["_id"] = result.inserted_id
        return order

    return _make


@pytest.fixture
def make_payment(db):
    async def _make(order, transaction_id="TXN-1700000000000-ABCD1234", status="pending", created_at=None):
        created_at = created_at or datetime.utcnow()
        payment = {
            "order_id": order["_id"],
            "user_id": order.get("user_id"),
            "payment_method": "midtrans",
            "transaction_id": transaction_id,
            "amount": order["total_amount"],
            "payment_status": status,
            "currency": "IDR",
            "customer_email": order.get("guest_email"),
            "created_at": created_at,
            "updated_at": created_at,
        }
        result = await db.payments.insert_one(payment)
        payment["_id"] = result.inserted_id
        return payment

    return _make
