import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from journeatz.auth import DatabaseAuthProvider
from journeatz.config import ADMIN_BOOTSTRAP_EMAIL, ADMIN_BOOTSTRAP_PASSWORD
from journeatz.db import init_db
from journeatz.main import create_app
from journeatz.models import Customer, Kitchen
from journeatz.storage import Storage

PASSWORD = "Secret123!"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def storage(engine):
    return Storage(engine)


@pytest.fixture
def provider(storage):
    return DatabaseAuthProvider(storage, secret_key="test-secret", require_confirmation=False)


@pytest.fixture
def app(engine):
    return create_app(engine=engine, seed_demo=False, secret_key="test-secret")


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def kitchen_and_customer(engine):
    """A kitchen with id k1 and a customer with id c1."""
    with Session(engine) as session:
        session.add(Kitchen(id="k1", name="Thai Corner", cuisine_type="Thai"))
        session.add(Customer(id="c1", name="Casey", address="1 Main St"))
        session.commit()
    return "k1", "c1"


def login(client, email, password=PASSWORD):
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def signup(client, email, role, password=PASSWORD):
    r = client.post("/api/auth/signup", json={"email": email, "password": password, "role": role})
    assert r.status_code == 201, r.text
    client.cookies.clear()
    return login(client, email, password)


@pytest.fixture
def admin_headers(client):
    return login(client, ADMIN_BOOTSTRAP_EMAIL, ADMIN_BOOTSTRAP_PASSWORD)
