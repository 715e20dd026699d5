import mongomock
import pytest

import database
import users
from catalog import create_service
from schemas import Service


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch):
    client = mongomock.MongoClient()
    db = client["laundry_test"]
    monkeypatch.setattr(database, "db", db)
    database.ensure_indexes()
    yield db
    client.close()


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    # bcrypt at full cost makes the suite crawl
    monkeypatch.setattr(users, "pwd_context", users.CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


def make_user(role="customer", email=None, **extra):
    payload = users.StaffCreateRequest(
        first_name="Ada",
        last_name="Okafor",
        email=email or f"{role}@example.com",
        phone="08031234567",
        password="password123",
        role=role,
        **extra,
    )
    return users._create_user(payload, role)


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def customer():
    return make_user("customer")


@pytest.fixture
def staff():
    return make_user("staff")


@pytest.fixture
def admin():
    return make_user("admin")


@pytest.fixture
def owner():
    return make_user("owner")


@pytest.fixture
def wash_service():
    data = {
        "name": "Basic Wash & Fold",
        "type": "wash_and_fold",
        "description": "Washing, drying and folding for everyday clothing",
        "base_price": 150000,
        "estimated_duration": 24,
        "available_areas": ["Ikeja", "Lekki"],
        "category": "Basic Services",
        "display_order": 1,
    }
    return {"_id": create_service(Service(**data)), **data}


@pytest.fixture
def item_service():
    data = {
        "name": "Professional Ironing",
        "type": "ironing",
        "description": "Expert ironing and pressing service",
        "base_price": 100000,
        "price_per_item": 15000,
        "estimated_duration": 12,
        "available_areas": ["Ikeja"],
        "category": "Specialized Services",
        "display_order": 4,
    }
    return {"_id": create_service(Service(**data)), **data}
