from __future__ import annotations
from typing import Any, Optional
import datetime
import uuid
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
    func,
)


class Base(DeclarativeBase):
    pass


class Destination(Base):
    __tablename__ = "destinations"

    id: Mapped[int] = mapped_column(primary_key=True)
    country_name: Mapped[str] = mapped_column(Text)
    city_name: Mapped[str] = mapped_column(Text)
    airport_code: Mapped[Optional[str]] = mapped_column(String(8))
    rate_per_lb_1_50: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    rate_per_lb_51_100: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    rate_per_lb_101_200: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    rate_per_lb_201_plus: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    transit_days_min: Mapped[int] = mapped_column(Integer)
    transit_days_max: Mapped[int] = mapped_column(Integer)
    express_surcharge_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), default=Decimal("25.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PostalGeo(Base):
    __tablename__ = "postal_geos"

    zip_code: Mapped[str] = mapped_column(String(10), primary_key=True)
    city: Mapped[Optional[str]] = mapped_column(Text)
    state: Mapped[Optional[str]] = mapped_column(String(2))
    county: Mapped[Optional[str]] = mapped_column(Text)
    latitude: Mapped[Decimal] = mapped_column(Numeric(10, 7))
    longitude: Mapped[Decimal] = mapped_column(Numeric(10, 7))


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text)
    vehicle_type: Mapped[Optional[str]] = mapped_column(String(24))
    capacity_lbs: Mapped[int] = mapped_column(Integer, default=1000)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    base_location_zip: Mapped[Optional[str]] = mapped_column(String(10))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    bookings: Mapped[list["Booking"]] = relationship(back_populates="assigned_vehicle")


class AvailabilityOverride(Base):
    """Per-date closure or special opening hours."""

    __tablename__ = "availability_overrides"

    id: Mapped[int] = mapped_column(primary_key=True)
    date: Mapped[datetime.date] = mapped_column(Date, unique=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    open_time: Mapped[Optional[datetime.time]] = mapped_column(Time)
    close_time: Mapped[Optional[datetime.time]] = mapped_column(Time)
    reason: Mapped[Optional[str]] = mapped_column(Text)


class CapacityBlock(Base):
    """Fleet-wide capacity ceiling for a time range (maintenance, training...)."""

    __tablename__ = "capacity_blocks"
    __table_args__ = (CheckConstraint("window_end > window_start", name="check_capacity_window"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    window_start: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    window_end: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    max_lbs: Mapped[int] = mapped_column(Integer)
    note: Mapped[Optional[str]] = mapped_column(Text)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("window_end > window_start", name="check_booking_window"),
        CheckConstraint("pickup_or_drop IN ('pickup', 'dropoff')", name="check_pickup_or_drop"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    quote_id: Mapped[Optional[int]] = mapped_column(ForeignKey("shipping_quotes.id", ondelete="SET NULL"))
    shipment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("shipments.id", ondelete="SET NULL"))
    pickup_or_drop: Mapped[str] = mapped_column(String(8))
    window_start: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True)
    window_end: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True)
    address: Mapped[dict[str, Any]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(12), default="pending", index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    service_type: Mapped[str] = mapped_column(String(12), default="standard")
    estimated_weight: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    zip_code: Mapped[Optional[str]] = mapped_column(String(10))
    distance_miles: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    assigned_vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("vehicles.id", ondelete="SET NULL"))
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    assigned_vehicle: Mapped[Optional[Vehicle]] = relationship(back_populates="bookings")


class ShippingQuote(Base):
    __tablename__ = "shipping_quotes"

    id: Mapped[int] = mapped_column(primary_key=True)
    quote_reference: Mapped[str] = mapped_column(String(64), unique=True)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)
    email: Mapped[str] = mapped_column(Text, index=True)
    full_name: Mapped[str] = mapped_column(Text)
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    destination_id: Mapped[int] = mapped_column(ForeignKey("destinations.id"))
    weight_lbs: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    length_inches: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    width_inches: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    height_inches: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    service_type: Mapped[str] = mapped_column(String(12), default="standard")
    declared_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    base_shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    express_surcharge: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    consolidation_fee: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))
    handling_fee: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))
    insurance_cost: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    estimated_transit_days: Mapped[Optional[int]] = mapped_column(Integer)
    transit_label: Mapped[Optional[str]] = mapped_column(Text)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    quote_document_html: Mapped[Optional[str]] = mapped_column(Text)
    quote_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    follow_up_due_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    quote_expires_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    destination: Mapped[Destination] = relationship()


class Shipment(Base):
    __tablename__ = "shipments"

    id: Mapped[int] = mapped_column(primary_key=True)
    tracking_number: Mapped[str] = mapped_column(String(32), unique=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    destination_id: Mapped[int] = mapped_column(ForeignKey("destinations.id"))
    service_type: Mapped[str] = mapped_column(String(12), default="standard")
    status: Mapped[str] = mapped_column(String(24), default="pending_pickup")
    pickup_scheduled_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    special_instructions: Mapped[Optional[str]] = mapped_column(Text)
    total_declared_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    total_weight: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    destination: Mapped[Destination] = relationship()
    items: Mapped[list["ShipmentItem"]] = relationship(
        back_populates="shipment", cascade="all, delete-orphan", order_by="ShipmentItem.id"
    )
    tracking_events: Mapped[list["ShipmentTrackingEvent"]] = relationship(
        back_populates="shipment", cascade="all, delete-orphan", order_by="ShipmentTrackingEvent.id"
    )


class ShipmentItem(Base):
    __tablename__ = "shipment_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipments.id", ondelete="CASCADE"))
    description: Mapped[str] = mapped_column(Text)
    weight_lbs: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    length_inches: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    width_inches: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    height_inches: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    declared_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    category: Mapped[str] = mapped_column(String(32), default="general")
    notes: Mapped[Optional[str]] = mapped_column(Text)

    shipment: Mapped[Shipment] = relationship(back_populates="items")


class ShipmentTrackingEvent(Base):
    __tablename__ = "shipment_tracking"

    id: Mapped[int] = mapped_column(primary_key=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipments.id", ondelete="CASCADE"))
    status: Mapped[str] = mapped_column(String(24))
    location: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True))
    is_customer_visible: Mapped[bool] = mapped_column(Boolean, default=True)

    shipment: Mapped[Shipment] = relationship(back_populates="tracking_events")
