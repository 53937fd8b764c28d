from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class AccountType(str, Enum):
    checking = "checking"
    savings = "savings"
    investment = "investment"


class RecurrenceKind(str, Enum):
    day_of_month = "day_of_month"
    twice_monthly = "twice_monthly"
    weekly = "weekly"


class Certainty(str, Enum):
    guaranteed = "guaranteed"
    probable = "probable"
    uncertain = "uncertain"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    recurring_events: Mapped[list["RecurringEvent"]] = relationship(
        "RecurringEvent", back_populates="account", cascade="all, delete-orphan"
    )
    single_shot_expenses: Mapped[list["SingleShotExpense"]] = relationship(
        "SingleShotExpense", back_populates="account", cascade="all, delete-orphan"
    )
    single_shot_income: Mapped[list["SingleShotIncome"]] = relationship(
        "SingleShotIncome", back_populates="account", cascade="all, delete-orphan"
    )
    credit_cards: Mapped[list["CreditCard"]] = relationship(
        "CreditCard", back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )


class RecurringEvent(Base, TimestampMixin):
    __tablename__ = "recurring_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[RecurrenceKind] = mapped_column(
        SAEnum(RecurrenceKind), nullable=False
    )
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    second_day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    weekday: Mapped[Optional[int]] = mapped_column(Integer)
    interval_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    certainty: Mapped[Certainty] = mapped_column(
        SAEnum(Certainty), nullable=False, default=Certainty.guaranteed
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    account: Mapped["Account"] = relationship(
        "Account", back_populates="recurring_events"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
        CheckConstraint("interval_weeks > 0", name="ck_recurring_interval_positive"),
        Index("ix_recurring_events_user_account", "user_id", "account_id"),
    )


class SingleShotExpense(Base, TimestampMixin):
    __tablename__ = "single_shot_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    account: Mapped["Account"] = relationship(
        "Account", back_populates="single_shot_expenses"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_single_shot_amount_positive"),
        Index("ix_single_shot_expenses_user_date", "user_id", "date"),
    )


class SingleShotIncome(Base, TimestampMixin):
    __tablename__ = "single_shot_income"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    certainty: Mapped[Certainty] = mapped_column(
        SAEnum(Certainty), nullable=False, default=Certainty.guaranteed
    )

    account: Mapped["Account"] = relationship(
        "Account", back_populates="single_shot_income"
    )

    __table_args__ = (
        CheckConstraint(
            "amount_cents > 0", name="ck_single_shot_income_amount_positive"
        ),
        Index("ix_single_shot_income_user_date", "user_id", "date"),
    )


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    statement_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    statement_due_date: Mapped[Optional[date]] = mapped_column(Date)
    future_statement_cents: Mapped[Optional[int]] = mapped_column(Integer)

    account: Mapped["Account"] = relationship("Account", back_populates="credit_cards")
    history: Mapped[list["StatementHistory"]] = relationship(
        "StatementHistory", back_populates="card", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
        CheckConstraint(
            "statement_balance_cents >= 0", name="ck_card_statement_positive"
        ),
        CheckConstraint(
            "future_statement_cents IS NULL OR future_statement_cents >= 0",
            name="ck_card_future_statement_positive",
        ),
    )


class StatementHistory(Base, TimestampMixin):
    __tablename__ = "statement_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    card_id: Mapped[int] = mapped_column(ForeignKey("credit_cards.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)

    card: Mapped["CreditCard"] = relationship("CreditCard", back_populates="history")

    __table_args__ = (
        Index("ix_statement_history_user_cycle", "user_id", "year", "month"),
    )


class ProgressionCheckpoint(Base, TimestampMixin):
    __tablename__ = "progression_checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_progression_checkpoint_user"),
    )


class SnapshotRecord(Base, TimestampMixin):
    __tablename__ = "projection_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    horizon_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_date: Mapped[date] = mapped_column(Date, nullable=False)
    data: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("ix_projection_snapshots_user_created", "user_id", "created_at"),
    )
