"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
JSONB is used only where the shape is tenant-defined (field schemas, payloads).
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.domain import FormVisibility


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Owned by the identity collaborator; the core reads pricing_plan and,
    when a subscription lapses, resets it to free.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    pricing_plan: Mapped[str] = mapped_column(String(255), nullable=False, default="free")
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, plan={self.pricing_plan})>"


class Session(Base):
    """
    ORM model for sessions table.

    The primary key is the hex SHA-256 of the session token; raw tokens are never stored.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class App(Base):
    """ORM model for apps table. A tenant's project owning forms and secret keys."""

    __tablename__ = "apps"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<App(id={self.id}, user_id={self.user_id}, name={self.name})>"


class SecretKey(Base):
    """
    ORM model for secret_keys table.

    Stores only the HMAC of the key; lookups are by hash.
    """

    __tablename__ = "secret_keys"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    app_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_secret_keys_hash", "hash"),)


class Form(Base):
    """ORM model for forms table."""

    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    app_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_public: Mapped[bool] = mapped_column("public", Boolean, nullable=False, default=False)

    # Only ever incremented, by accepted submissions
    response_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    redirect_on_submit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    success_url: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    failure_url: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    __table_args__ = (
        CheckConstraint("response_count >= 0", name="ck_forms_response_count_non_negative"),
    )

    @property
    def visibility(self) -> FormVisibility:
        return FormVisibility.PUBLIC if self.is_public else FormVisibility.PRIVATE

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Form(id={self.id}, app_id={self.app_id}, public={self.is_public})>"


class FormVersion(Base):
    """
    ORM model for form_versions table.

    A version is immutable once it has a response; version_number never repeats per form.
    """

    __tablename__ = "form_versions"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    form_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False
    )
    fields: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("form_id", "version_number", name="uq_form_versions_number"),
        CheckConstraint("version_number >= 1", name="ck_form_versions_number_positive"),
    )


class FormResponse(Base):
    """
    ORM model for form_responses table.

    Belongs to the schema version that validated it. Only `archived` is mutable.
    """

    __tablename__ = "form_responses"

    id: Mapped[int] = mapped_column(BigInteger, Identity(always=True), primary_key=True)
    form_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("form_versions.id", ondelete="CASCADE"), nullable=False
    )
    respondent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    response: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_form_responses_version_created", "form_version_id", "created_at"),
    )


class SubscriptionCycle(Base):
    """
    ORM model for subscription_cycles table.

    At most one cycle per user contains "now". The migration backs this with a
    GiST exclusion constraint over tstzrange(start_date, end_date).
    """

    __tablename__ = "subscription_cycles"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_subscription_cycles_interval"),
        Index("idx_subscription_cycles_user_end", "user_id", "end_date"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<SubscriptionCycle(id={self.id}, user_id={self.user_id}, "
            f"start={self.start_date}, end={self.end_date})>"
        )


class BillingPeriod(Base):
    """ORM model for billing_periods table. The usage-counting window inside a cycle."""

    __tablename__ = "billing_periods"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    subscription_cycle_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscription_cycles.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_billing_periods_interval"),
        UniqueConstraint(
            "subscription_cycle_id", "start_date", name="uq_billing_periods_cycle_start"
        ),
    )


class UsageCounter(Base):
    """ORM model for usage_counters table. Never decremented."""

    __tablename__ = "usage_counters"

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    billing_period_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("billing_periods.id", ondelete="CASCADE"), nullable=False
    )
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "billing_period_id", name="uq_usage_counters_user_period"),
        CheckConstraint("usage_count >= 0", name="ck_usage_counters_non_negative"),
    )


class Device(Base):
    """ORM model for devices table. Push targets of a form owner."""

    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    push_token: Mapped[str] = mapped_column("fcm_token", String(255), nullable=False)
    platform: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
