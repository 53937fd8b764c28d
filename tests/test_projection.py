from datetime import date, datetime

import pytest

from models import AccountType, Certainty, RecurrenceKind
from projection import (
    ALLOWED_HORIZONS,
    AccountBalance,
    InvalidHorizon,
    UnknownAccount,
    balance_update_base,
    estimate_today,
    project,
    summarize,
)
from recurrence import (
    CreditCardStatement,
    RecurrenceRule,
    RecurringCashEvent,
    SingleShotExpense,
    SingleShotIncome,
)
from snapshots import BalanceUpdateBase, dump_snapshot


def _account(
    account_id: str = "1",
    balance: int = 100000,
    updated: datetime = datetime(2025, 1, 1, 9, 0),
) -> AccountBalance:
    return AccountBalance(
        account_id=account_id,
        account_type=AccountType.checking,
        balance_cents=balance,
        last_updated_at=updated,
    )


def _monthly(
    event_id: str,
    day: int,
    amount: int,
    certainty: Certainty = Certainty.guaranteed,
) -> RecurringCashEvent:
    return RecurringCashEvent(
        event_id=event_id,
        account_id="1",
        amount_cents=amount,
        rule=RecurrenceRule(kind=RecurrenceKind.day_of_month, day_of_month=day),
        certainty=certainty,
    )


def test_empty_events_give_flat_projection_for_every_horizon() -> None:
    accounts = [_account("1", 100000), _account("2", -2500)]
    for horizon in ALLOWED_HORIZONS:
        snapshot = project(accounts, [], [], [], horizon, date(2025, 1, 1))
        assert len(snapshot.days) == horizon + 1
        assert [d.day_offset for d in snapshot.days] == list(range(horizon + 1))
        assert {d.aggregate_cents for d in snapshot.days} == {97500}
        assert all(d.balance_for("2") == -2500 for d in snapshot.days)


def test_income_and_expense_scenario() -> None:
    snapshot = project(
        [_account()],
        [_monthly("salary", 1, 50000), _monthly("rent", 15, -20000)],
        [],
        [],
        30,
        date(2025, 1, 1),
    )
    by_date = {d.on_date: d.aggregate_cents for d in snapshot.days}

    assert by_date[date(2025, 1, 1)] == 150000
    assert by_date[date(2025, 1, 14)] == 150000
    assert by_date[date(2025, 1, 15)] == 130000
    assert by_date[date(2025, 1, 31)] == 130000
    assert snapshot.end_date == date(2025, 1, 31)


def test_projection_is_deterministic() -> None:
    inputs = (
        [_account("2", 5000), _account("1", 100000)],
        [_monthly("salary", 1, 50000), _monthly("rent", 31, -20000)],
        [
            SingleShotExpense(
                expense_id="3", account_id="2", amount_cents=700, on_date=date(2025, 2, 3)
            )
        ],
        [
            CreditCardStatement(
                card_id="9", account_id="1", statement_balance_cents=30000, due_day=10
            )
        ],
    )
    first = project(*inputs, 60, date(2025, 1, 20))
    second = project(*inputs, 60, date(2025, 1, 20))

    assert first == second
    assert dump_snapshot(first) == dump_snapshot(second)
    assert first.generated_at == datetime(2025, 1, 20, 0, 0)


def test_current_statement_is_debited_monthly_but_future_statement_is_not() -> None:
    card = CreditCardStatement(
        card_id="9",
        account_id="1",
        statement_balance_cents=30000,
        due_day=31,
        future_statement_cents=45000,
    )
    snapshot = project([_account()], [], [], [card], 90, date(2025, 2, 1))
    debits = [e for d in snapshot.days for e in d.events]

    assert [(e.on_date, e.amount_cents) for e in debits] == [
        (date(2025, 2, 28), -30000),
        (date(2025, 3, 31), -30000),
        (date(2025, 4, 30), -30000),
    ]
    assert snapshot.days[-1].aggregate_cents == 10000


def test_sixty_day_projection_debits_card_on_each_due_date() -> None:
    card = CreditCardStatement(
        card_id="9", account_id="1", statement_balance_cents=30000, due_day=20
    )
    snapshot = project([_account()], [], [], [card], 60, date(2025, 1, 10))
    debits = [(e.on_date, e.amount_cents) for d in snapshot.days for e in d.events]

    assert debits == [(date(2025, 1, 20), -30000), (date(2025, 2, 20), -30000)]
    assert snapshot.days[-1].aggregate_cents == 40000


def test_single_shot_income_is_credited_on_its_date() -> None:
    bonus = SingleShotIncome(
        income_id="4", account_id="1", amount_cents=25000, on_date=date(2025, 1, 8)
    )
    snapshot = project(
        [_account()], [], [], [], 14, date(2025, 1, 1), single_shot_income=[bonus]
    )
    by_date = {d.on_date: d.aggregate_cents for d in snapshot.days}

    assert by_date[date(2025, 1, 7)] == 100000
    assert by_date[date(2025, 1, 8)] == 125000
    assert snapshot.days[-1].pessimistic_aggregate_cents == 125000


def test_invalid_horizon_is_rejected() -> None:
    for horizon in (0, 1, 31, 365, True):
        with pytest.raises(InvalidHorizon):
            project([_account()], [], [], [], horizon, date(2025, 1, 1))


def test_event_for_unknown_account_is_rejected() -> None:
    stray = RecurringCashEvent(
        event_id="x",
        account_id="404",
        amount_cents=-1,
        rule=RecurrenceRule(kind=RecurrenceKind.day_of_month, day_of_month=2),
    )
    with pytest.raises(UnknownAccount):
        project([_account()], [stray], [], [], 7, date(2025, 1, 1))


def test_balance_update_base_range_and_single() -> None:
    mixed = [
        _account("1", updated=datetime(2025, 1, 10, 8, 0)),
        _account("2", updated=datetime(2025, 1, 5, 22, 0)),
    ]
    same_day = [
        _account("1", updated=datetime(2025, 1, 5, 8, 0)),
        _account("2", updated=datetime(2025, 1, 5, 22, 0)),
    ]

    mixed_base = balance_update_base(mixed)
    assert mixed_base == BalanceUpdateBase.range(date(2025, 1, 5), date(2025, 1, 10))
    assert mixed_base.as_dict() == {
        "kind": "range",
        "from": "2025-01-05",
        "to": "2025-01-10",
    }
    assert balance_update_base(same_day).as_dict() == {
        "kind": "single",
        "date": "2025-01-05",
    }
    assert balance_update_base([]) is None
    assert balance_update_base([_account(updated=None)]) is None


def test_summary_reports_totals_and_danger_days() -> None:
    snapshot = project(
        [_account(balance=10000)],
        [_monthly("salary", 20, 50000), _monthly("rent", 5, -30000)],
        [],
        [],
        30,
        date(2025, 1, 1),
    )
    summary = summarize(snapshot)

    assert summary.starting_balance_cents == 10000
    optimistic = summary.optimistic
    assert optimistic.total_income_cents == 50000
    assert optimistic.total_expenses_cents == 30000
    assert optimistic.end_balance_cents == 30000
    assert optimistic.danger_day_count == 15
    assert optimistic.danger_days[0].on_date == date(2025, 1, 5)
    assert optimistic.danger_days[-1].on_date == date(2025, 1, 19)
    # Every income is guaranteed, so both scenarios agree.
    assert summary.pessimistic == optimistic


def test_pessimistic_scenario_counts_only_guaranteed_income() -> None:
    snapshot = project(
        [_account(balance=10000)],
        [
            _monthly("freelance", 3, 40000, certainty=Certainty.uncertain),
            _monthly("rent", 5, -30000),
            _monthly("salary", 20, 50000),
        ],
        [],
        [],
        30,
        date(2025, 1, 1),
        single_shot_income=[
            SingleShotIncome(
                income_id="refund",
                account_id="1",
                amount_cents=20000,
                on_date=date(2025, 1, 10),
                certainty=Certainty.probable,
            )
        ],
    )
    by_date = {d.on_date: d for d in snapshot.days}
    assert by_date[date(2025, 1, 5)].aggregate_cents == 20000
    assert by_date[date(2025, 1, 5)].pessimistic_aggregate_cents == -20000
    assert by_date[date(2025, 1, 10)].pessimistic_aggregate_cents == -20000

    summary = summarize(snapshot)
    assert summary.starting_balance_cents == 10000

    assert summary.optimistic.total_income_cents == 110000
    assert summary.optimistic.total_expenses_cents == 30000
    assert summary.optimistic.end_balance_cents == 90000
    assert summary.optimistic.danger_day_count == 0

    assert summary.pessimistic.total_income_cents == 50000
    assert summary.pessimistic.total_expenses_cents == 30000
    assert summary.pessimistic.end_balance_cents == 30000
    assert summary.pessimistic.danger_day_count == 15
    assert summary.pessimistic.danger_days[0].on_date == date(2025, 1, 5)
    assert summary.pessimistic.danger_days[-1].on_date == date(2025, 1, 19)


def test_estimate_today_applies_movements_after_each_update() -> None:
    accounts = [
        _account("1", 100000, updated=datetime(2025, 1, 10, 12, 0)),
        _account("2", 20000, updated=datetime(2025, 1, 1, 12, 0)),
    ]
    events = [
        _monthly("rent", 5, -20000),
        RecurringCashEvent(
            event_id="savings",
            account_id="2",
            amount_cents=1000,
            rule=RecurrenceRule(kind=RecurrenceKind.day_of_month, day_of_month=5),
        ),
        _monthly("salary", 12, 50000),
    ]
    estimate = estimate_today(accounts, events, [], [], date(2025, 1, 15))

    # Rent on the 5th predates account 1's update and is already included.
    assert dict(estimate.balances) == {"1": 150000, "2": 21000}
    assert estimate.total_cents == 171000
    assert estimate.is_estimated
    assert estimate.base == BalanceUpdateBase.range(date(2025, 1, 1), date(2025, 1, 10))


def test_estimate_today_without_movements_is_not_estimated() -> None:
    estimate = estimate_today([_account()], [], [], [], date(2025, 1, 1))
    assert dict(estimate.balances) == {"1": 100000}
    assert not estimate.is_estimated
