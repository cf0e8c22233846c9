import os, tempfile, uuid
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from db import Base, get_db, enable_sqlite_foreign_keys

PASSWORD = "secret123"

@pytest.fixture(scope="session")
def tmp_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return path

@pytest.fixture(scope="session")
def test_engine(tmp_db_path):
    url = f"sqlite:///{tmp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False})
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return engine

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture(scope="session", autouse=True)
def override_di(TestingSessionLocal):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db

@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    # full-strength PBKDF2 makes every registration slow
    monkeypatch.setattr("security.PBKDF2_ITERATIONS", 1000)

@pytest.fixture
def db_session(TestingSessionLocal):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def client():
    return TestClient(app)

def bearer(token):
    return {"Authorization": f"Bearer {token}"}

def login(client, email, password=PASSWORD):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["token"]

def register_tenant(client):
    """Register a company with an admin, a creator and an analyst; return ids and auth headers."""
    tag = uuid.uuid4().hex[:10]
    r = client.post("/register", json={
        "company_name": f"Company {tag}",
        "nit": f"nit-{tag}",
        "admin_name": "Admin",
        "admin_email": f"admin-{tag}@example.com",
        "admin_password": PASSWORD,
    })
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    admin = bearer(login(client, data["admin"]["email"]))

    users = {}
    for role in ("creator", "analyst"):
        email = f"{role}-{tag}@example.com"
        u = client.post("/users", json={"name": role.title(), "email": email, "role": role, "password": PASSWORD},
                        headers=admin)
        assert u.status_code == 201, u.text
        users[role] = SimpleNamespace(id=u.json()["data"]["id"], email=email, headers=bearer(login(client, email)))

    return SimpleNamespace(
        tag=tag,
        company_id=data["company"]["id"],
        admin_id=data["admin"]["id"],
        admin=admin,
        creator=users["creator"].headers,
        creator_id=users["creator"].id,
        analyst=users["analyst"].headers,
        analyst_id=users["analyst"].id,
    )

@pytest.fixture
def tenant(client):
    return register_tenant(client)

@pytest.fixture
def other_tenant(client):
    return register_tenant(client)

@pytest.fixture
def survey(client, tenant):
    """A survey covering every question type; returns its id and question ids by type."""
    r = client.post("/surveys", json={
        "title": "Satisfacción 2025",
        "description": "Encuesta trimestral",
        "questions": [
            {"text": "¿Te gusta el servicio?", "type": "single_choice", "options": ["Sí", "No", "Mucho"]},
            {"text": "¿Qué canales usas?", "type": "multiple_choice", "options": ["A", "B", "C"]},
            {"text": "Califica de 1 a 5", "type": "rating", "options": ["1", "2", "3", "4", "5"]},
            {"text": "Comentarios", "type": "text"},
            {"text": "Edad", "type": "number"},
        ],
    }, headers=tenant.creator)
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    return SimpleNamespace(
        id=data["id"],
        slug=data["link_slug"],
        q={q["type"]: q["id"] for q in data["questions"]},
    )
