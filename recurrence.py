from __future__ import annotations

import heapq
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Iterator, Optional

from calendar_utils import iter_months, resolve_day_of_month
from models import Certainty, RecurrenceKind


class MalformedRecurrence(ValueError):
    pass


class OccurrenceSource(str, Enum):
    recurring = "recurring"
    single_shot = "single_shot"
    single_shot_income = "single_shot_income"
    credit_card = "credit_card"


@dataclass(frozen=True)
class RecurrenceRule:
    kind: RecurrenceKind
    day_of_month: Optional[int] = None
    second_day_of_month: Optional[int] = None
    weekday: Optional[int] = None  # 0 = Monday
    interval_weeks: int = 1


@dataclass(frozen=True)
class RecurringCashEvent:
    event_id: str
    account_id: str
    amount_cents: int  # income positive, expense negative
    rule: RecurrenceRule
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    certainty: Certainty = Certainty.guaranteed


@dataclass(frozen=True)
class SingleShotExpense:
    expense_id: str
    account_id: str
    amount_cents: int  # positive magnitude, always debited
    on_date: date


@dataclass(frozen=True)
class SingleShotIncome:
    income_id: str
    account_id: str
    amount_cents: int  # positive magnitude, always credited
    on_date: date
    certainty: Certainty = Certainty.guaranteed


@dataclass(frozen=True)
class CreditCardStatement:
    card_id: str
    account_id: str
    statement_balance_cents: int
    due_day: int
    future_statement_cents: Optional[int] = None


@dataclass(frozen=True)
class Occurrence:
    on_date: date
    account_id: str
    amount_cents: int
    source: OccurrenceSource
    source_id: str
    certainty: Certainty = Certainty.guaranteed

    @property
    def is_guaranteed(self) -> bool:
        return self.amount_cents <= 0 or self.certainty == Certainty.guaranteed


def occurrence_sort_key(occurrence: Occurrence) -> tuple[date, str, str]:
    return (occurrence.on_date, occurrence.source_id, occurrence.source.value)


def require_cents(value: object, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{label} must be an integer amount of cents, got {value!r}")
    return value


def _check_day(day: Optional[int], label: str) -> None:
    if day is None:
        raise MalformedRecurrence(f"{label} is required")
    if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 31:
        raise MalformedRecurrence(f"{label} must be between 1 and 31, got {day!r}")


def validate_rule(rule: RecurrenceRule) -> None:
    if rule.kind == RecurrenceKind.day_of_month:
        _check_day(rule.day_of_month, "day_of_month")
    elif rule.kind == RecurrenceKind.twice_monthly:
        _check_day(rule.day_of_month, "day_of_month")
        _check_day(rule.second_day_of_month, "second_day_of_month")
    elif rule.kind == RecurrenceKind.weekly:
        if rule.weekday is None or not 0 <= rule.weekday <= 6:
            raise MalformedRecurrence(
                f"weekday must be between 0 and 6, got {rule.weekday!r}"
            )
        if rule.interval_weeks < 1:
            raise MalformedRecurrence(
                f"interval_weeks must be positive, got {rule.interval_weeks!r}"
            )
    else:
        raise MalformedRecurrence(f"Unsupported recurrence kind: {rule.kind!r}")


def _monthly_dates(rule: RecurrenceRule, lower: date, upper: date) -> Iterator[date]:
    days = [rule.day_of_month]
    if rule.kind == RecurrenceKind.twice_monthly:
        days.append(rule.second_day_of_month)
    for year, month in iter_months(lower, upper):
        # Clamping can fold both days of a twice-monthly rule onto one date.
        resolved = sorted({resolve_day_of_month(year, month, day) for day in days})
        for when in resolved:
            if lower <= when <= upper:
                yield when


def _weekly_dates(
    rule: RecurrenceRule, anchor: date, lower: date, upper: date
) -> Iterator[date]:
    step = timedelta(weeks=rule.interval_weeks)
    first = anchor + timedelta(days=(rule.weekday - anchor.weekday()) % 7)
    if first < lower:
        periods = -(-(lower - first).days // step.days)
        first += step * periods
    current = first
    while current <= upper:
        yield current
        current += step


def expand_recurring(
    event: RecurringCashEvent, start: date, end: date
) -> Iterator[Occurrence]:
    """Occurrences of ``event`` within ``[start, end]``, in date order.

    Day-of-month rules resolve once per covered month; the event's own
    start/end bounds exclude occurrences outside them. Weekly rules step
    ``interval_weeks`` at a time from the event's start date, or from the
    first matching weekday in range when the event has no start date.
    """
    validate_rule(event.rule)
    require_cents(event.amount_cents, f"Recurring event {event.event_id} amount")

    lower = max(start, event.start_date) if event.start_date else start
    upper = min(end, event.end_date) if event.end_date else end
    if lower > upper:
        return iter(())

    if event.rule.kind == RecurrenceKind.weekly:
        dates = _weekly_dates(event.rule, event.start_date or lower, lower, upper)
    else:
        dates = _monthly_dates(event.rule, lower, upper)
    return (
        Occurrence(
            on_date=when,
            account_id=event.account_id,
            amount_cents=event.amount_cents,
            source=OccurrenceSource.recurring,
            source_id=event.event_id,
            certainty=event.certainty,
        )
        for when in dates
    )


def expand_single_shot(
    expense: SingleShotExpense, start: date, end: date
) -> Iterator[Occurrence]:
    amount = require_cents(expense.amount_cents, f"Expense {expense.expense_id} amount")
    if amount <= 0:
        raise ValueError(f"Expense {expense.expense_id} amount must be positive")
    if start <= expense.on_date <= end:
        yield Occurrence(
            on_date=expense.on_date,
            account_id=expense.account_id,
            amount_cents=-amount,
            source=OccurrenceSource.single_shot,
            source_id=expense.expense_id,
        )


def expand_single_shot_income(
    income: SingleShotIncome, start: date, end: date
) -> Iterator[Occurrence]:
    amount = require_cents(income.amount_cents, f"Income {income.income_id} amount")
    if amount <= 0:
        raise ValueError(f"Income {income.income_id} amount must be positive")
    if start <= income.on_date <= end:
        yield Occurrence(
            on_date=income.on_date,
            account_id=income.account_id,
            amount_cents=amount,
            source=OccurrenceSource.single_shot_income,
            source_id=income.income_id,
            certainty=income.certainty,
        )


def expand_statement_due(
    statement: CreditCardStatement, start: date, end: date
) -> Iterator[Occurrence]:
    """Debit of the current statement on every resolved due date in range.

    Each month's due day is clamped through ``resolve_day_of_month``. Only
    the current statement balance is debited; a pending future statement
    becomes current through month progression, never through expansion.
    """
    balance = require_cents(
        statement.statement_balance_cents, f"Card {statement.card_id} statement"
    )
    _check_day(statement.due_day, "due_day")
    if not balance:
        return
    for year, month in iter_months(start, end):
        due = resolve_day_of_month(year, month, statement.due_day)
        if start <= due <= end:
            yield Occurrence(
                on_date=due,
                account_id=statement.account_id,
                amount_cents=-balance,
                source=OccurrenceSource.credit_card,
                source_id=statement.card_id,
            )


class OccurrenceStream:
    """Restartable, date-ordered view of every occurrence in ``[start, end]``.

    Same-day occurrences from different sources are ordered by source id so
    downstream aggregation is deterministic. Iterating again re-derives the
    sequence from the inputs.
    """

    def __init__(
        self,
        start: date,
        end: date,
        recurring_events: Iterable[RecurringCashEvent] = (),
        single_shot_expenses: Iterable[SingleShotExpense] = (),
        credit_card_statements: Iterable[CreditCardStatement] = (),
        single_shot_income: Iterable[SingleShotIncome] = (),
    ) -> None:
        if start > end:
            raise ValueError("Start date must be before end date")
        self.start = start
        self.end = end
        self.recurring_events = tuple(recurring_events)
        self.single_shot_expenses = tuple(single_shot_expenses)
        self.credit_card_statements = tuple(credit_card_statements)
        self.single_shot_income = tuple(single_shot_income)
        for event in self.recurring_events:
            validate_rule(event.rule)

    def _sources(self) -> list[Iterator[Occurrence]]:
        sources = [
            expand_recurring(event, self.start, self.end)
            for event in self.recurring_events
        ]
        sources.extend(
            expand_single_shot(expense, self.start, self.end)
            for expense in self.single_shot_expenses
        )
        sources.extend(
            expand_single_shot_income(income, self.start, self.end)
            for income in self.single_shot_income
        )
        sources.extend(
            expand_statement_due(statement, self.start, self.end)
            for statement in self.credit_card_statements
        )
        return sources

    def __iter__(self) -> Iterator[Occurrence]:
        return heapq.merge(*self._sources(), key=occurrence_sort_key)
