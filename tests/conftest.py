import os
from datetime import timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from epitrack.db import Base, get_db
from epitrack.main import app
from epitrack.models.models import Checklist, EquipmentType, User
from epitrack.auth.security import create_access_token, get_password_hash
from epitrack.services.hierarchy import assign_supervisor
from epitrack.services.time_rules import now_utc

PASSWORD = "senha123"
_PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    def _get_db():
        session = Session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role="employee", department="Produção", supervisor=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=fields.pop("name", f"{role.title()} {n}"),
            email=fields.pop("email", f"{role}{n}@empresa.com.br"),
            employee_id=fields.pop("employee_id", f"E{n:04d}"),
            password_hash=_PASSWORD_HASH,
            role=role,
            department=department,
            supervised_employee_ids=[],
            is_active=fields.pop("is_active", True),
            **fields,
        )
        db.add(user)
        db.flush()
        if supervisor is not None:
            assign_supervisor(db, user, supervisor)
        db.commit()
        db.refresh(user)
        if supervisor is not None:
            db.refresh(supervisor)
        return user

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("admin", department="Administração")


@pytest.fixture()
def technician(make_user):
    return make_user("safety_technician", department="Segurança do Trabalho")


@pytest.fixture()
def supervisor(make_user):
    return make_user("supervisor")


@pytest.fixture()
def employee(make_user, supervisor):
    return make_user("employee", supervisor=supervisor)


@pytest.fixture()
def epi_type(db, admin):
    epi = EquipmentType(
        name="Capacete de Segurança",
        category="protecao_cabeca",
        description="Capacete classe B",
        technical_standard="ABNT NBR 8221",
        manufacturer="MSA",
        ca_number="CA-31469",
        ca_expiry_date=now_utc() + timedelta(days=365),
        lifespan_months=24,
        inspection_criteria=[
            {"criterion": "Casco íntegro", "description": "Sem trincas", "is_required": True},
        ],
        is_active=True,
        created_by=admin.id,
    )
    db.add(epi)
    db.commit()
    db.refresh(epi)
    return epi


@pytest.fixture()
def checklist(db, admin, epi_type):
    c = Checklist(
        name="Inspeção Diária - Produção",
        description="Verificação diária",
        type="daily",
        department="Produção",
        items=[
            {
                "id": "item-1",
                "epi_type_id": str(epi_type.id),
                "criteria": [],
                "is_required": True,
                "order": 0,
                "notes": None,
            }
        ],
        frequency_days=1,
        is_active=True,
        version=1,
        effective_date=now_utc() - timedelta(days=1),
        created_by=admin.id,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), role=user.role)}"}
