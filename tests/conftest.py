from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from database import Base, get_db
from deps.auth import create_access_token
from main import app
from services.cache import MemoryCache, get_cache


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def cache():
    return MemoryCache()


# ---------- seed data ----------

@pytest.fixture()
def org(db):
    o = models.Organization(name="Smile Lab")
    db.add(o)
    db.commit()
    return o


@pytest.fixture()
def other_org(db):
    o = models.Organization(name="Other Lab")
    db.add(o)
    db.commit()
    return o


def make_user(db, org, role, first="Ivan", last="Petrov", active=True):
    u = models.User(
        organization_id=org.id,
        first_name=first,
        last_name=last,
        role=role,
        is_active=active,
    )
    db.add(u)
    db.commit()
    return u


def make_work_item(db, org, code, base_price, rate=None, percent=None, name=None):
    wi = models.WorkItem(
        organization_id=org.id,
        code=code,
        name=name or f"Work {code}",
        base_price=Decimal(str(base_price)),
        tech_pay_rate=None if rate is None else Decimal(str(rate)),
        tech_pay_percent=None if percent is None else Decimal(str(percent)),
    )
    db.add(wi)
    db.commit()
    return wi


def make_material(db, org, name="Zirconia disc", stock=10, min_stock=0, unit="pcs"):
    m = models.Material(
        organization_id=org.id,
        name=name,
        unit=unit,
        current_stock=Decimal(str(stock)),
        min_stock=Decimal(str(min_stock)),
    )
    db.add(m)
    db.commit()
    return m


def make_norm(db, work_item, material, qty):
    n = models.MaterialNorm(work_item_id=work_item.id, material_id=material.id, quantity=Decimal(str(qty)))
    db.add(n)
    db.commit()
    return n


def make_stage_template(db, org, names):
    for i, name in enumerate(names, start=1):
        db.add(models.ReferenceList(organization_id=org.id, type="production_stage", name=name, sort_order=i))
    db.commit()


@pytest.fixture()
def owner(db, org):
    return make_user(db, org, models.UserRole.OWNER.value, "Anna", "Owner")


@pytest.fixture()
def technician(db, org):
    return make_user(db, org, models.UserRole.TECHNICIAN.value, "Oleg", "Tech")


@pytest.fixture()
def client_rec(db, org):
    c = models.Client(organization_id=org.id, name="Dental Clinic No. 1", short_name="Clinic 1")
    db.add(c)
    db.commit()
    return c


@pytest.fixture()
def work_a(db, org):
    return make_work_item(db, org, "A", 1000)


@pytest.fixture()
def work_b(db, org):
    return make_work_item(db, org, "B", 700)


# ---------- HTTP ----------

@pytest.fixture()
def api(session_factory, cache):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
