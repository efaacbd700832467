import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import hub_engines.db as db_mod
from hub_engines.app_factory import create_app
from hub_engines.clock import get_now
from hub_engines.models import (
    Base,
    Cart,
    CartItem,
    City,
    Coupon,
    DeliveryFeeRule,
    DeliveryZone,
    Hub,
    WEEKDAYS,
)

NINE_TO_FIVE = json.dumps([{"open": "09:00", "close": "17:00"}])

# Loop, Chicago
HUB_LAT = 41.8781
HUB_LNG = -87.6298


def chicago_monday(hour: int, minute: int = 0) -> datetime:
    """Monday 2024-01-15 at hub-local Chicago time (CST, UTC-6), as aware UTC."""
    return datetime(2024, 1, 15, tzinfo=timezone.utc) + timedelta(hours=hour + 6, minutes=minute)


MONDAY_NOON = chicago_monday(12, 0)


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection through StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_city(db):
    def _make(**overrides):
        values = {"name": "Chicago", "status": "active", "is_operational": True}
        values.update(overrides)
        city = City(**values)
        db.add(city)
        db.commit()
        return city
    return _make


@pytest.fixture
def make_hub(db, make_city):
    """Active hub open 09:00-17:00 every day in America/Chicago."""
    def _make(**overrides):
        if "city_id" not in overrides:
            overrides["city_id"] = make_city().id
        values = {
            "name": "Loop Kitchen",
            "address": "100 W Madison St",
            "status": "active",
            "timezone": "America/Chicago",
            "latitude": HUB_LAT,
            "longitude": HUB_LNG,
            "delivery_radius": 5.0,
            "tax_rate": 0.0,
            "min_order": 0.0,
        }
        for day in WEEKDAYS:
            values[f"hours_{day}"] = NINE_TO_FIVE
        values.update(overrides)
        hub = Hub(**values)
        db.add(hub)
        db.commit()
        return hub
    return _make


@pytest.fixture
def make_zone(db):
    def _make(hub, polygon=None, **overrides):
        values = {
            "hub_id": hub.id,
            "zone_name": "Zone",
            "zone_type": "polygon",
            "is_active": True,
            "polygon_geojson": json.dumps(polygon) if polygon is not None else None,
        }
        values.update(overrides)
        zone = DeliveryZone(**values)
        db.add(zone)
        db.commit()
        return zone
    return _make


@pytest.fixture
def make_fee_rule(db):
    def _make(**overrides):
        values = {"rule_name": "Rule", "fee_type": "flat", "flat_fee": 3.99, "is_active": True}
        values.update(overrides)
        rule = DeliveryFeeRule(**values)
        db.add(rule)
        db.commit()
        return rule
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(**overrides):
        values = {"code": "SAVE5", "type": "fixed", "value": 5.0, "status": "active", "used_count": 0}
        values.update(overrides)
        coupon = Coupon(**values)
        db.add(coupon)
        db.commit()
        return coupon
    return _make


@pytest.fixture
def make_cart(db):
    """Active cart with one line per (name, quantity, unit_price) tuple."""
    def _make(hub, session_token="sess-1", lines=(("Burger", 2, 10.0),), **overrides):
        values = {"session_token": session_token, "hub_id": hub.id, "status": "active"}
        values.update(overrides)
        cart = Cart(**values)
        for name, quantity, unit_price in lines:
            cart.items.append(CartItem(
                name_snapshot=name,
                quantity=quantity,
                unit_price=unit_price,
                line_total=round(quantity * unit_price, 2),
            ))
        db.add(cart)
        db.commit()
        return cart
    return _make


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def frozen_now():
    """Evaluation time injected into routes; tests may reassign ``value``."""
    class _Clock:
        value = MONDAY_NOON
    return _Clock


@pytest.fixture
def client(session_factory, frozen_now):
    """FastAPI TestClient bound to the in-memory database and a pinned clock."""
    app = create_app(cors_origins=["*"])

    def override_get_db():
        db_sess = session_factory()
        try:
            yield db_sess
        finally:
            db_sess.close()

    app.dependency_overrides[db_mod.get_db] = override_get_db
    app.dependency_overrides[get_now] = lambda: frozen_now.value

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
