from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from itertools import groupby
from operator import attrgetter
from typing import Iterable, Optional, Sequence

from models import AccountType
from recurrence import (
    CreditCardStatement,
    Occurrence,
    OccurrenceStream,
    RecurringCashEvent,
    SingleShotExpense,
    SingleShotIncome,
    require_cents,
)
from snapshots import (
    CURRENT_SCHEMA_VERSION,
    BalanceUpdateBase,
    DailyBalance,
    ProjectionSnapshot,
)

logger = logging.getLogger(__name__)

ALLOWED_HORIZONS = (7, 14, 30, 60, 90)


class InvalidHorizon(ValueError):
    pass


class UnknownAccount(ValueError):
    pass


@dataclass(frozen=True)
class AccountBalance:
    account_id: str
    account_type: AccountType
    balance_cents: int
    last_updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class DangerDay:
    on_date: date
    day_offset: int
    balance_cents: int


@dataclass(frozen=True)
class ScenarioSummary:
    total_income_cents: int
    total_expenses_cents: int
    end_balance_cents: int
    danger_days: tuple[DangerDay, ...]

    @property
    def danger_day_count(self) -> int:
        return len(self.danger_days)


@dataclass(frozen=True)
class ProjectionSummary:
    """Optimistic counts every income; pessimistic only guaranteed income."""

    starting_balance_cents: int
    optimistic: ScenarioSummary
    pessimistic: ScenarioSummary


@dataclass(frozen=True)
class EstimatedBalance:
    today: date
    base: Optional[BalanceUpdateBase]
    balances: tuple[tuple[str, int], ...]
    total_cents: int
    is_estimated: bool


def validate_horizon(horizon_days: object) -> int:
    if isinstance(horizon_days, bool) or horizon_days not in ALLOWED_HORIZONS:
        raise InvalidHorizon(
            f"Horizon must be one of {', '.join(map(str, ALLOWED_HORIZONS))} days, "
            f"got {horizon_days!r}"
        )
    return horizon_days


def balance_update_base(
    accounts: Sequence[AccountBalance],
) -> Optional[BalanceUpdateBase]:
    """How fresh the starting balances are.

    ``single`` when every account was last updated on the same calendar
    date, ``range`` from the earliest to the latest update date otherwise.
    Without accounts, or with an account that was never updated, there is
    no reliable base and ``None`` is returned.
    """
    if not accounts:
        return None
    dates = []
    for account in accounts:
        if account.last_updated_at is None:
            return None
        dates.append(account.last_updated_at.date())
    earliest, latest = min(dates), max(dates)
    if earliest == latest:
        return BalanceUpdateBase.single(earliest)
    return BalanceUpdateBase.range(earliest, latest)


def _opening_balances(accounts: Iterable[AccountBalance]) -> dict[str, int]:
    balances: dict[str, int] = {}
    for account in sorted(accounts, key=attrgetter("account_id")):
        if account.account_id in balances:
            raise ValueError(f"Duplicate account id: {account.account_id}")
        balances[account.account_id] = require_cents(
            account.balance_cents, f"Account {account.account_id} balance"
        )
    return balances


def _apply(balances: dict[str, int], occurrence: Occurrence) -> None:
    if occurrence.account_id not in balances:
        raise UnknownAccount(
            f"{occurrence.source.value} {occurrence.source_id} targets unknown "
            f"account {occurrence.account_id}"
        )
    balances[occurrence.account_id] += occurrence.amount_cents


def project(
    accounts: Sequence[AccountBalance],
    recurring_events: Sequence[RecurringCashEvent],
    single_shot_expenses: Sequence[SingleShotExpense],
    credit_card_statements: Sequence[CreditCardStatement],
    horizon_days: int,
    reference_date: date,
    *,
    single_shot_income: Sequence[SingleShotIncome] = (),
    generated_at: Optional[datetime] = None,
) -> ProjectionSnapshot:
    """Simulate balances day by day from ``reference_date``.

    The result holds ``horizon_days + 1`` points: day 0 is the reference
    date itself with that day's events already applied. Credit cards are
    debited their current statement on each due date; the snapshot never
    depends on pending future statements. Per-account balances follow the
    optimistic scenario (every income lands); each day also carries the
    pessimistic aggregate, which only counts guaranteed income. Identical
    inputs give identical snapshots, so ``generated_at`` defaults to the
    start of ``reference_date``.
    """
    validate_horizon(horizon_days)
    end_date = reference_date + timedelta(days=horizon_days)
    balances = _opening_balances(accounts)
    stream = OccurrenceStream(
        reference_date,
        end_date,
        recurring_events,
        single_shot_expenses,
        credit_card_statements,
        single_shot_income,
    )
    by_date = {
        on_date: tuple(items)
        for on_date, items in groupby(stream, key=attrgetter("on_date"))
    }

    days = []
    uncertain_income = 0
    for offset in range(horizon_days + 1):
        current = reference_date + timedelta(days=offset)
        applied = by_date.get(current, ())
        for occurrence in applied:
            _apply(balances, occurrence)
            if not occurrence.is_guaranteed:
                uncertain_income += occurrence.amount_cents
        aggregate = sum(balances.values())
        days.append(
            DailyBalance(
                on_date=current,
                day_offset=offset,
                balances=tuple(balances.items()),
                aggregate_cents=aggregate,
                pessimistic_aggregate_cents=aggregate - uncertain_income,
                events=applied,
            )
        )

    snapshot = ProjectionSnapshot(
        schema_version=CURRENT_SCHEMA_VERSION,
        generated_at=generated_at or datetime.combine(reference_date, time.min),
        horizon_days=horizon_days,
        reference_date=reference_date,
        days=tuple(days),
        balance_base=balance_update_base(accounts),
    )
    logger.debug(
        f"projection: reference_date={reference_date} horizon_days={horizon_days} "
        f"events={sum(len(d.events) for d in days)} "
        f"end_balance={snapshot.days[-1].aggregate_cents}"
    )
    return snapshot


def _scenario(snapshot: ProjectionSnapshot, optimistic: bool) -> ScenarioSummary:
    income = 0
    expenses = 0
    danger_days = []
    for day in snapshot.days:
        for event in day.events:
            if event.amount_cents < 0:
                expenses -= event.amount_cents
            elif optimistic or event.is_guaranteed:
                income += event.amount_cents
        balance = day.aggregate_cents if optimistic else day.pessimistic_aggregate_cents
        if balance < 0:
            danger_days.append(
                DangerDay(
                    on_date=day.on_date,
                    day_offset=day.day_offset,
                    balance_cents=balance,
                )
            )
    last = snapshot.days[-1]
    return ScenarioSummary(
        total_income_cents=income,
        total_expenses_cents=expenses,
        end_balance_cents=(
            last.aggregate_cents if optimistic else last.pessimistic_aggregate_cents
        ),
        danger_days=tuple(danger_days),
    )


def summarize(snapshot: ProjectionSnapshot) -> ProjectionSummary:
    first = snapshot.days[0]
    starting = first.aggregate_cents - sum(e.amount_cents for e in first.events)
    return ProjectionSummary(
        starting_balance_cents=starting,
        optimistic=_scenario(snapshot, optimistic=True),
        pessimistic=_scenario(snapshot, optimistic=False),
    )


def estimate_today(
    accounts: Sequence[AccountBalance],
    recurring_events: Sequence[RecurringCashEvent],
    single_shot_expenses: Sequence[SingleShotExpense],
    credit_card_statements: Sequence[CreditCardStatement],
    today: date,
    *,
    single_shot_income: Sequence[SingleShotIncome] = (),
) -> EstimatedBalance:
    """Roll each account forward from its last update through ``today``.

    Only movements dated strictly after an account's own update date are
    applied. Accounts without an update timestamp keep their recorded
    balance.
    """
    balances = _opening_balances(accounts)
    updated_on = {
        account.account_id: account.last_updated_at.date()
        for account in accounts
        if account.last_updated_at is not None
    }
    moved = False
    if updated_on:
        interval_start = min(updated_on.values()) + timedelta(days=1)
        if interval_start <= today:
            stream = OccurrenceStream(
                interval_start,
                today,
                recurring_events,
                single_shot_expenses,
                credit_card_statements,
                single_shot_income,
            )
            for occurrence in stream:
                since = updated_on.get(occurrence.account_id)
                if since is not None and occurrence.on_date <= since:
                    continue
                if occurrence.account_id in balances and since is None:
                    continue
                _apply(balances, occurrence)
                moved = True

    return EstimatedBalance(
        today=today,
        base=balance_update_base(accounts),
        balances=tuple(balances.items()),
        total_cents=sum(balances.values()),
        is_estimated=moved,
    )
