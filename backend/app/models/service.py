import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

from app.utils.image_refs import decode_image_refs, encode_image_refs

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class ImageRefList(TypeDecorator):
    """Ordered image references stored as a JSON array in a TEXT column."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return encode_image_refs(value)

    def process_result_value(self, value, dialect):
        return decode_image_refs(value)


ID_TYPE = String(64)
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")

SERVICE_REQUEST_STATUSES = (
    "CREATED",
    "ASSIGNED",
    "SCHEDULED",
    "IN_PROGRESS",
    "PAYMENT_PENDING",
    "COMPLETED",
    "CANCELLED",
)


class User(Base):
    __tablename__ = "users"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    name = Column(String(128))
    phone = Column(String(20))
    role = Column(String(32), nullable=False)
    city = Column(String(128))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Franchise(Base):
    __tablename__ = "franchises"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    name = Column(String(128), nullable=False)
    city = Column(String(128), nullable=False)
    owner_id = Column(ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_franchises_city", "city"),
        Index("idx_franchises_owner", "owner_id"),
    )


class Product(Base):
    __tablename__ = "products"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    deposit = Column(Numeric(12, 2))
    buy_price = Column(Numeric(12, 2))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    customer_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    product_id = Column(ID_TYPE, ForeignKey("products.id"), nullable=False)
    franchise_id = Column(ID_TYPE, ForeignKey("franchises.id"), nullable=False)
    status = Column(String(32), nullable=False, default="ACTIVE", server_default=text("'ACTIVE'"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class InstallationRequest(Base):
    __tablename__ = "installation_requests"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    customer_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    product_id = Column(ID_TYPE, ForeignKey("products.id"), nullable=False)
    franchise_id = Column(ID_TYPE, ForeignKey("franchises.id"), nullable=False)
    order_type = Column(String(16), nullable=False, default="RENTAL", server_default=text("'RENTAL'"))
    status = Column(String(32), nullable=False, default="SUBMITTED", server_default=text("'SUBMITTED'"))
    assigned_technician_id = Column(ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class ServiceRequest(Base):
    __tablename__ = "service_requests"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    customer_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    product_id = Column(ID_TYPE, ForeignKey("products.id"), nullable=False)
    subscription_id = Column(ID_TYPE, ForeignKey("subscriptions.id", ondelete="SET NULL"))
    installation_request_id = Column(ID_TYPE, ForeignKey("installation_requests.id", ondelete="SET NULL"))
    type = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="", server_default=text("''"))
    images = Column(ImageRefList)
    status = Column(String(32), nullable=False, default="CREATED", server_default=text("'CREATED'"))
    assigned_to_id = Column(ID_TYPE, ForeignKey("users.id", ondelete="SET NULL"))
    franchise_id = Column(ID_TYPE, ForeignKey("franchises.id"), nullable=False)
    scheduled_date = Column(DateTime(timezone=True))
    completed_date = Column(DateTime(timezone=True))
    before_images = Column(ImageRefList)
    after_images = Column(ImageRefList)
    requires_payment = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    payment_amount = Column(Numeric(12, 2))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN (" + ",".join(f"'{s}'" for s in SERVICE_REQUEST_STATUSES) + ")",
            name="chk_service_request_status",
        ),
        CheckConstraint(
            "subscription_id IS NULL OR installation_request_id IS NULL",
            name="chk_service_request_single_origin",
        ),
        Index("idx_service_requests_customer", "customer_id"),
        Index("idx_service_requests_franchise", "franchise_id"),
        Index("idx_service_requests_assigned", "assigned_to_id"),
        Index("idx_service_requests_installation", "installation_request_id"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    service_request_id = Column(ID_TYPE, ForeignKey("service_requests.id", ondelete="SET NULL"))
    installation_request_id = Column(ID_TYPE, ForeignKey("installation_requests.id", ondelete="SET NULL"))
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(32), nullable=False, default="PENDING", server_default=text("'PENDING'"))
    payment_method = Column(String(32))
    paid_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ActionHistory(Base):
    __tablename__ = "action_history"

    id = Column(ID_TYPE, primary_key=True, default=_new_id)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(ID_TYPE, nullable=False)
    # Plain columns, no FKs: history must outlive the rows it describes.
    service_request_id = Column(ID_TYPE)
    installation_request_id = Column(ID_TYPE)
    subscription_id = Column(ID_TYPE)
    action_type = Column(String(64), nullable=False)
    from_status = Column(String(32))
    to_status = Column(String(32))
    performed_by = Column(ID_TYPE, nullable=False)
    performed_by_role = Column(String(32), nullable=False)
    comment = Column(Text)
    history_meta = Column("metadata", JSON_TYPE, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_action_history_entity", "entity_type", "entity_id"),)
