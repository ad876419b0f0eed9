from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db import Base


CENT = Decimal("0.01")


def utcnow() -> datetime:
    # Stored naive in UTC; SQLite drops tzinfo anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def int_pk() -> Mapped[int]:
    return mapped_column(Integer, primary_key=True, autoincrement=True)


def money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# Identity & registry (read-mostly; owned by external collaborators)

class Workshop(Base):
    __tablename__ = "workshops"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # owner|workshop|mechanic|admin
    workshop_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("workshops.id", ondelete="SET NULL"), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    workshop = relationship("Workshop")


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[int] = int_pk()
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    year: Mapped[Optional[int]] = mapped_column(Integer)
    plate_number: Mapped[Optional[str]] = mapped_column(String(50))
    color: Mapped[Optional[str]] = mapped_column(String(50))


# Booking intake

class Booking(Base):
    """Owner-submitted service request. Never hard-deleted."""
    __tablename__ = "service_bookings"

    id: Mapped[int] = int_pk()
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workshop_id: Mapped[int] = mapped_column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    vehicle_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))

    # Contact snapshot, decoupled from the live owner profile
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    customer_email: Mapped[Optional[str]] = mapped_column(String(255))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50))

    service_type: Mapped[str] = mapped_column(String(100), nullable=False)
    preferred_date: Mapped[date] = mapped_column(Date, nullable=False)
    preferred_time: Mapped[time] = mapped_column(Time, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    vehicle = relationship("Vehicle")
    job = relationship("Job", back_populates="booking", uselist=False)


# Job dispatch

class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = int_pk()
    # Unique: a booking yields at most one job
    booking_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("service_bookings.id", ondelete="SET NULL"), unique=True
    )
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"))
    workshop_id: Mapped[int] = mapped_column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    assigned_mechanic_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    service_type: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(10), default="medium", nullable=False)  # low|medium|high
    status: Mapped[str] = mapped_column(String(20), default="unassigned", nullable=False, index=True)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date)
    estimated_time: Mapped[Optional[str]] = mapped_column(String(50))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    booking = relationship("Booking", back_populates="job")
    vehicle = relationship("Vehicle")
    parts = relationship(
        "JobPart",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobPart.id",
    )
    repairs = relationship(
        "JobRepairEntry",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobRepairEntry.logged_at",
    )
    invoice = relationship("Invoice", back_populates="job", uselist=False)

    @property
    def parts_total(self) -> Decimal:
        return sum((money(p.quantity * p.unit_cost) for p in self.parts), Decimal("0.00"))

    __table_args__ = (
        Index("idx_jobs_workshop_status", "workshop_id", "status"),
        Index("idx_jobs_mechanic_status", "assigned_mechanic_id", "status"),
    )


class JobPart(Base):
    __tablename__ = "job_parts"

    id: Mapped[int] = int_pk()
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    job = relationship("Job", back_populates="parts")


class JobRepairEntry(Base):
    """Append-only repair log line"""
    __tablename__ = "job_repairs"

    id: Mapped[int] = int_pk()
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    logged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    job = relationship("Job", back_populates="repairs")


# Invoice engine

class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = int_pk()
    # Unique: a job is billed once; null for legacy/manual invoices
    job_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("jobs.id", ondelete="SET NULL"), unique=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workshop_id: Mapped[int] = mapped_column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    # draft|pending|approved|rejected|paid; "overdue" is derived on read
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    job = relationship("Job", back_populates="invoice")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )

    def effective_status(self, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        due = self.due_date
        if self.status != "approved" or due is None:
            return self.status
        if due.tzinfo is not None:
            due = due.astimezone(timezone.utc).replace(tzinfo=None)
        return "overdue" if due < now else self.status

    __table_args__ = (
        Index("idx_invoices_workshop_created", "workshop_id", "created_at"),
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[int] = int_pk()
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    invoice = relationship("Invoice", back_populates="items")


# Rating & dispute

class Rating(Base):
    __tablename__ = "ratings"

    id: Mapped[int] = int_pk()
    # Unique: one review per booking
    booking_id: Mapped[int] = mapped_column(Integer, ForeignKey("service_bookings.id"), unique=True, nullable=False)
    job_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("jobs.id", ondelete="SET NULL"))
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workshop_id: Mapped[int] = mapped_column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    mechanic_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    response: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hidden_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    requests = relationship("RatingRequest", back_populates="rating", order_by="RatingRequest.created_at")

    @property
    def status(self) -> str:
        if self.response and self.response.strip():
            return "resolved"
        if self.responded_at is not None:
            return "reviewed"
        return "new"


class RatingRequest(Base):
    """Workshop request for an admin to remove a disputed rating"""
    __tablename__ = "rating_requests"

    id: Mapped[int] = int_pk()
    rating_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("ratings.id", ondelete="SET NULL"), index=True)
    workshop_id: Mapped[int] = mapped_column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    requested_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    reason: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)  # pending|approved|rejected|deleted
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    rating = relationship("Rating", back_populates="requests")

    __table_args__ = (
        # At most one open request per rating
        Index(
            "uq_rating_requests_open",
            "rating_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


# Notification router

class NotificationEvent(Base):
    __tablename__ = "notification_events"

    id: Mapped[int] = int_pk()
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_role: Mapped[str] = mapped_column(String(20), nullable=False)  # owner|workshop|mechanic|admin
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # owner|mechanic|workshop|admin|system
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_notification_events_target", "target_role", "target_id", "read_at"),
    )


# Report aggregator

class ReportRequest(Base):
    __tablename__ = "report_requests"

    id: Mapped[int] = int_pk()
    workshop_id: Mapped[int] = mapped_column(Integer, ForeignKey("workshops.id"), nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)  # pending|generated|rejected
    invoice_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0.00"), nullable=False)
    paid_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0.00"), nullable=False)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    workshop = relationship("Workshop")

    __table_args__ = (UniqueConstraint("workshop_id", "month", "year", name="uq_report_period"),)


class AuditLog(Base):
    """Append-only audit log for workflow transitions"""
    __tablename__ = "audit_logs"

    id: Mapped[int] = int_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # booking|job|invoice|rating|rating_request|report_request
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(20))
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )
