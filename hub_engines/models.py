from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable with what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class City(Base):
    __tablename__ = "cities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")  # active/inactive
    is_operational = Column(Boolean, nullable=False, default=True)  # marketplace-wide pause switch

    hubs = relationship("Hub", back_populates="city")


class Hub(Base):
    __tablename__ = "hubs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active", index=True)
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=True, index=True)
    timezone = Column(String, nullable=True)  # IANA name, e.g. "America/Chicago"

    # Stored as text so an admin typo survives to be reported as a config error
    closure_until = Column(String, nullable=True)
    closure_reason = Column(String, nullable=True)

    # Each column is a JSON array of {"open": "HH:MM", "close": "HH:MM"}
    hours_monday = Column(Text, nullable=True)
    hours_tuesday = Column(Text, nullable=True)
    hours_wednesday = Column(Text, nullable=True)
    hours_thursday = Column(Text, nullable=True)
    hours_friday = Column(Text, nullable=True)
    hours_saturday = Column(Text, nullable=True)
    hours_sunday = Column(Text, nullable=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    delivery_radius = Column(Float, nullable=True)  # miles
    delivery_zone_type = Column(String, nullable=False, default="radius")  # radius/polygon
    tax_rate = Column(Float, nullable=False, default=0.0)  # percent, e.g. 8.25
    min_order = Column(Float, nullable=False, default=0.0)

    city = relationship("City", back_populates="hubs")
    zones = relationship("DeliveryZone", back_populates="hub", cascade="all, delete-orphan")


class DeliveryZone(Base):
    __tablename__ = "delivery_zones"

    id = Column(Integer, primary_key=True, index=True)
    hub_id = Column(Integer, ForeignKey("hubs.id"), nullable=False, index=True)
    zone_name = Column(String, nullable=True)
    zone_type = Column(String, nullable=False, default="polygon")  # polygon/radius
    is_active = Column(Boolean, nullable=False, default=True)
    polygon_geojson = Column(Text, nullable=True)
    polygon_points = Column(Text, nullable=True)  # legacy [{lat,lng}] or [[lat,lng]]
    priority = Column(Integer, nullable=False, default=0)

    hub = relationship("Hub", back_populates="zones")


class DeliveryFeeRule(Base):
    __tablename__ = "delivery_fee_rules"

    id = Column(Integer, primary_key=True, index=True)
    rule_name = Column(String, nullable=True)

    # Scope is implied by whichever of these is set
    hub_id = Column(Integer, nullable=True, index=True)
    city_id = Column(Integer, nullable=True, index=True)
    zone_id = Column(Integer, nullable=True, index=True)

    fee_type = Column(String, nullable=False, default="flat")  # flat/distance_based/subtotal_based/tiered
    flat_fee = Column(Float, nullable=True)
    base_fee = Column(Float, nullable=True)
    per_km_rate = Column(Float, nullable=True)
    subtotal_percentage = Column(Float, nullable=True)
    min_fee = Column(Float, nullable=True)
    max_fee = Column(Float, nullable=True)
    max_distance_km = Column(Float, nullable=True)
    min_subtotal_free_delivery = Column(Float, nullable=True)
    free_delivery_distance = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)


class SoftwareFee(Base):
    __tablename__ = "software_fees"

    id = Column(Integer, primary_key=True, index=True)
    scope = Column(String, nullable=False, default="city")  # city/hub
    city_id = Column(Integer, nullable=False, index=True)
    hub_id = Column(Integer, nullable=False, default=0)  # 0 = city-scoped
    fee_amount = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False, default="active")


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, unique=True, index=True)  # stored uppercase
    type = Column(String, nullable=False, default="fixed")  # percent/fixed
    value = Column(Float, nullable=False, default=0.0)
    min_subtotal = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="active")
    starts_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    session_token = Column(String, nullable=False, index=True)
    hub_id = Column(Integer, ForeignKey("hubs.id"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=True, index=True)
    status = Column(String, nullable=False, default="active")  # active/converted/abandoned
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan")


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False, index=True)
    item_id = Column(Integer, nullable=True)
    name_snapshot = Column(String, nullable=False)
    image_snapshot = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False, default=0.0)
    line_total = Column(Float, nullable=False, default=0.0)
    modifiers_json = Column(Text, nullable=True)

    cart = relationship("Cart", back_populates="items")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, nullable=False, unique=True)
    hub_id = Column(Integer, ForeignKey("hubs.id"), nullable=False, index=True)
    city_id = Column(Integer, nullable=True)
    customer_id = Column(Integer, nullable=True, index=True)
    session_token = Column(String, nullable=True, index=True)
    fulfillment_type = Column(String, nullable=False, default="delivery")  # delivery/pickup

    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    delivery_address = Column(String, nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)

    subtotal = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    software_fee = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    tip_amount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    coupon_code = Column(String, nullable=True)

    status = Column(String, nullable=False, default="placed", index=True)  # placed/confirmed/...
    payment_status = Column(String, nullable=False, default="pending")

    # Frozen JSON written once at creation, the order's source of truth afterwards
    totals_snapshot = Column(Text, nullable=True)
    cart_snapshot = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship("OrderStatusHistory", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order")

    __table_args__ = (
        Index("ix_orders_session_hub_created", "session_token", "hub_id", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    item_id = Column(Integer, nullable=True)
    name_snapshot = Column(String, nullable=False)
    image_snapshot = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    modifiers_json = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    changed_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="status_history")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    provider = Column(String, nullable=False)
    provider_intent_id = Column(String, nullable=False, index=True)
    checkout_attempt_key = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String, nullable=False, default="usd")
    status = Column(String, nullable=False, default="intent_created", index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payments")

    __table_args__ = (
        UniqueConstraint("checkout_attempt_key", name="uq_payments_checkout_attempt_key"),
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False, default="stripe")
    event_id = Column(String, nullable=False, unique=True)
    event_type = Column(String, nullable=False)  # payment_intent.succeeded, ...
    intent_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=True)  # cents, as reported by the provider
    currency = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class CustomerAddress(Base):
    __tablename__ = "customer_addresses"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    label = Column(String, nullable=True)
    line1 = Column(String, nullable=False)
    line2 = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    country = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="active")
    deleted_at = Column(DateTime, nullable=True)
