import datetime as dt
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from models import AccountType, Certainty, RecurrenceKind, TransactionType


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance_cents: int
    balance_updated_at: Optional[datetime] = None


class AccountBalanceIn(BaseModel):
    balance_cents: int
    updated_at: Optional[datetime] = None


class RecurringEventIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    account_id: int
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    kind: RecurrenceKind
    day_of_month: Optional[int] = None
    second_day_of_month: Optional[int] = None
    weekday: Optional[int] = None
    interval_weeks: int = Field(default=1, gt=0)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    certainty: Certainty = Certainty.guaranteed
    is_active: bool = True


class SingleShotExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_id: int
    amount_cents: int = Field(..., gt=0)
    date: dt.date


class SingleShotIncomeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_id: int
    amount_cents: int = Field(..., gt=0)
    date: dt.date
    certainty: Certainty = Certainty.guaranteed


class RecurringActiveIn(BaseModel):
    is_active: bool


class CreditCardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    account_id: int
    statement_balance_cents: int = Field(..., ge=0)
    due_day: int = Field(..., ge=1, le=31)
    future_statement_cents: Optional[int] = Field(default=None, ge=0)


class FutureStatementIn(BaseModel):
    amount_cents: int = Field(..., ge=0)


class SnapshotIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    horizon_days: Optional[int] = None
    reference_date: Optional[date] = None


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class OccurrencePayload(_Payload):
    date: dt.date
    account_id: str
    amount_cents: int
    source: Literal[
        "recurring", "single_shot", "single_shot_income", "credit_card"
    ]
    source_id: str
    certainty: Literal["guaranteed", "probable", "uncertain"] = "guaranteed"


class DailyBalancePayload(_Payload):
    date: dt.date
    day_offset: int = Field(..., ge=0)
    per_account_balance: dict[str, int]
    aggregate_balance: int
    pessimistic_balance: int
    events: list[OccurrencePayload] = Field(default_factory=list)


class BalanceBasePayload(_Payload):
    kind: Literal["single", "range"]
    date: Optional[dt.date] = None
    from_: Optional[dt.date] = Field(default=None, alias="from")
    to: Optional[dt.date] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "BalanceBasePayload":
        if self.kind == "single" and self.date is None:
            raise ValueError("A single balance base needs a date")
        if self.kind == "range" and (self.from_ is None or self.to is None):
            raise ValueError("A range balance base needs from and to")
        return self


class SnapshotPayload(_Payload):
    schema_version: int
    generated_at: datetime
    horizon_days: int
    reference_date: date
    balance_base: Optional[BalanceBasePayload] = None
    days: list[DailyBalancePayload]
