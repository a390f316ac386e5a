"""
ORM Tables

Rows owned by a target (periods, categories, transactions) carry both
user_id and group_id: a group row has group_id set and user_id holding
the acting member, an individual row has group_id NULL. scope_key
("user:<id>" / "group:<id>") gives the per-target unique constraints a
non-null column to hang on.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatledger.models.ledger import (
    BucketCategory,
    MemberRole,
    TransactionType,
    UserTier,
)
from chatledger.services.storage.database import Base


def _enum(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda cls: [member.value for member in cls],
    )


MONEY = Numeric(18, 2)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class UserRow(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(100))
    tier: Mapped[UserTier] = mapped_column(
        _enum(UserTier, "usertier"), nullable=False, default=UserTier.STANDARD
    )
    income_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class GroupRow(Base, TimestampMixin):
    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    income_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class GroupMemberRow(Base, TimestampMixin):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[MemberRole] = mapped_column(
        _enum(MemberRole, "memberrole"), nullable=False, default=MemberRole.MEMBER
    )


class PeriodRow(Base, TimestampMixin):
    __tablename__ = "periods"
    __table_args__ = (
        UniqueConstraint("scope_key", "name", name="uq_period_scope_name"),
        Index("ix_periods_scope_current", "scope_key", "is_current"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope_key: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("groups.id"))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BudgetRow(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    period_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("periods.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    estimated_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    buckets: Mapped[list["BucketRow"]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BucketRow.position",
    )


class BucketRow(Base, TimestampMixin):
    __tablename__ = "buckets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    budget_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    category: Mapped[Optional[BucketCategory]] = mapped_column(
        _enum(BucketCategory, "bucketcategory")
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    budget: Mapped[BudgetRow] = relationship(back_populates="buckets")


class CategoryRow(Base, TimestampMixin):
    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("scope_key", "name_key", name="uq_category_scope_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope_key: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("users.id"))
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("groups.id"))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    name_key: Mapped[str] = mapped_column(String(100), nullable=False)


class TransactionRow(Base, TimestampMixin):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_scope_period", "scope_key", "period_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope_key: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("groups.id"))
    period_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("periods.id"), nullable=False)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("categories.id"))
    bucket: Mapped[Optional[str]] = mapped_column(String(100))
    type: Mapped[TransactionType] = mapped_column(
        _enum(TransactionType, "transactiontype"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    raw_message: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped[Optional[CategoryRow]] = relationship(lazy="joined")


class ContextSummaryRow(Base):
    __tablename__ = "context_summaries"

    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
