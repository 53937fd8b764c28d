import logging
from datetime import date
from threading import Lock
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from events import finance_data_events
from models import (
    Account,
    CreditCard,
    RecurringEvent,
    SingleShotExpense,
    SingleShotIncome,
)
from projection import InvalidHorizon, ScenarioSummary, UnknownAccount, summarize
from recurrence import MalformedRecurrence
from scheduler import SchedulerManager
from schemas import (
    AccountBalanceIn,
    AccountIn,
    CreditCardIn,
    FutureStatementIn,
    RecurringActiveIn,
    RecurringEventIn,
    SingleShotExpenseIn,
    SingleShotIncomeIn,
    SnapshotIn,
)
from services import (
    AccountService,
    CreditCardService,
    ProgressionService,
    ProjectionService,
    RecurringEventService,
    SingleShotExpenseService,
    SingleShotIncomeService,
    SnapshotService,
)
from snapshots import dump_snapshot

logger = logging.getLogger(__name__)

app = FastAPI(title="Cashflow Planner")


class DataRevision:
    """Counter bumped whenever finance data changes; clients refetch on change."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.value = 0

    def bump(self, reason: str) -> None:
        with self._lock:
            self.value += 1
        logger.debug(f"finance_data_invalidated: reason={reason} revision={self.value}")


data_revision = DataRevision()
finance_data_events.subscribe(data_revision.bump)

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "balance_updated_at": (
            account.balance_updated_at.isoformat()
            if account.balance_updated_at
            else None
        ),
    }


def recurring_out(event: RecurringEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "name": event.name,
        "account_id": event.account_id,
        "type": event.type.value,
        "amount_cents": event.amount_cents,
        "kind": event.kind.value,
        "day_of_month": event.day_of_month,
        "second_day_of_month": event.second_day_of_month,
        "weekday": event.weekday,
        "interval_weeks": event.interval_weeks,
        "start_date": event.start_date.isoformat() if event.start_date else None,
        "end_date": event.end_date.isoformat() if event.end_date else None,
        "certainty": event.certainty.value,
        "is_active": event.is_active,
    }


def expense_out(expense: SingleShotExpense) -> dict[str, object]:
    return {
        "id": expense.id,
        "name": expense.name,
        "account_id": expense.account_id,
        "amount_cents": expense.amount_cents,
        "date": expense.date.isoformat(),
    }


def income_out(income: SingleShotIncome) -> dict[str, object]:
    return {
        "id": income.id,
        "name": income.name,
        "account_id": income.account_id,
        "amount_cents": income.amount_cents,
        "date": income.date.isoformat(),
        "certainty": income.certainty.value,
    }


def card_out(card: CreditCard) -> dict[str, object]:
    return {
        "id": card.id,
        "name": card.name,
        "account_id": card.account_id,
        "statement_balance_cents": card.statement_balance_cents,
        "due_day": card.due_day,
        "statement_due_date": (
            card.statement_due_date.isoformat() if card.statement_due_date else None
        ),
        "future_statement_cents": card.future_statement_cents,
    }


def scenario_out(scenario: ScenarioSummary) -> dict[str, object]:
    return {
        "end_balance_cents": scenario.end_balance_cents,
        "total_income_cents": scenario.total_income_cents,
        "total_expenses_cents": scenario.total_expenses_cents,
        "danger_day_count": scenario.danger_day_count,
        "danger_days": [d.on_date.isoformat() for d in scenario.danger_days],
    }


@app.get("/api/revision")
def api_revision():
    return {"revision": data_revision.value}


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return account_out(account)


@app.post("/api/accounts/{account_id}/balance")
def api_update_balance(
    account_id: int, data: AccountBalanceIn, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).update_balance(account_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return account_out(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/recurring")
def api_recurring(db: Session = Depends(get_db)):
    return [recurring_out(e) for e in RecurringEventService(db).list_all()]


@app.post("/api/recurring", status_code=201)
def api_create_recurring(data: RecurringEventIn, db: Session = Depends(get_db)):
    try:
        event = RecurringEventService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return recurring_out(event)


@app.post("/api/recurring/{event_id}/active")
def api_set_recurring_active(
    event_id: int, data: RecurringActiveIn, db: Session = Depends(get_db)
):
    try:
        event = RecurringEventService(db).set_active(event_id, data.is_active)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return recurring_out(event)


@app.delete("/api/recurring/{event_id}", status_code=204)
def api_delete_recurring(event_id: int, db: Session = Depends(get_db)):
    try:
        RecurringEventService(db).delete(event_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/expenses")
def api_expenses(db: Session = Depends(get_db)):
    return [expense_out(e) for e in SingleShotExpenseService(db).list_all()]


@app.post("/api/expenses", status_code=201)
def api_create_expense(data: SingleShotExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = SingleShotExpenseService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return expense_out(expense)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def api_delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        SingleShotExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/income")
def api_income(db: Session = Depends(get_db)):
    return [income_out(i) for i in SingleShotIncomeService(db).list_all()]


@app.post("/api/income", status_code=201)
def api_create_income(data: SingleShotIncomeIn, db: Session = Depends(get_db)):
    try:
        income = SingleShotIncomeService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return income_out(income)


@app.delete("/api/income/{income_id}", status_code=204)
def api_delete_income(income_id: int, db: Session = Depends(get_db)):
    try:
        SingleShotIncomeService(db).delete(income_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/credit-cards")
def api_credit_cards(db: Session = Depends(get_db)):
    return [card_out(c) for c in CreditCardService(db).list_all()]


@app.post("/api/credit-cards", status_code=201)
def api_create_credit_card(data: CreditCardIn, db: Session = Depends(get_db)):
    try:
        card = CreditCardService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return card_out(card)


@app.post("/api/credit-cards/{card_id}/future-statement")
def api_set_future_statement(
    card_id: int, data: FutureStatementIn, db: Session = Depends(get_db)
):
    try:
        card = CreditCardService(db).set_future_statement(card_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return card_out(card)


@app.delete("/api/credit-cards/{card_id}/future-statement")
def api_clear_future_statement(card_id: int, db: Session = Depends(get_db)):
    try:
        card = CreditCardService(db).clear_future_statement(card_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return card_out(card)


@app.get("/api/credit-cards/{card_id}/history")
def api_statement_history(card_id: int, db: Session = Depends(get_db)):
    try:
        history = CreditCardService(db).history(card_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [
        {
            "id": item.id,
            "year": item.year,
            "month": item.month,
            "amount_cents": item.amount_cents,
            "due_date": item.due_date.isoformat() if item.due_date else None,
        }
        for item in history
    ]


@app.get("/api/projection")
def api_projection(
    days: Optional[int] = None,
    start: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        snapshot = ProjectionService(db).project(days, start)
    except (InvalidHorizon, MalformedRecurrence, UnknownAccount) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    summary = summarize(snapshot)
    return {
        "revision": data_revision.value,
        "snapshot": dump_snapshot(snapshot),
        "summary": {
            "starting_balance_cents": summary.starting_balance_cents,
            "optimistic": scenario_out(summary.optimistic),
            "pessimistic": scenario_out(summary.pessimistic),
        },
    }


@app.get("/api/estimated-balance")
def api_estimated_balance(db: Session = Depends(get_db)):
    try:
        estimate = ProjectionService(db).estimate_today()
    except (MalformedRecurrence, UnknownAccount) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "today": estimate.today.isoformat(),
        "base": estimate.base.as_dict() if estimate.base else None,
        "balances": dict(estimate.balances),
        "total_cents": estimate.total_cents,
        "is_estimated": estimate.is_estimated,
    }


@app.post("/api/progression/check")
def api_progression_check(db: Session = Depends(get_db)):
    result = ProgressionService(db).run()
    body = {
        "success": result.success,
        "outcome": result.outcome.value,
        "progressed_cards": result.progressed_cards,
        "cleaned_statements": result.cleaned_statements,
        "failed_cards": list(result.failed_cards),
        "error": result.error,
        "cleanup_error": result.cleanup_error,
    }
    if not result.success:
        raise HTTPException(status_code=502, detail=body)
    return body


@app.get("/api/snapshots")
def api_snapshots(db: Session = Depends(get_db)):
    return [
        {
            "id": record.id,
            "name": record.name,
            "schema_version": record.schema_version,
            "horizon_days": record.horizon_days,
            "reference_date": record.reference_date.isoformat(),
            "created_at": record.created_at.isoformat(),
        }
        for record in SnapshotService(db).list_all()
    ]


@app.post("/api/snapshots", status_code=201)
def api_create_snapshot(data: SnapshotIn, db: Session = Depends(get_db)):
    try:
        snapshot = ProjectionService(db).project(
            data.horizon_days, data.reference_date
        )
    except (InvalidHorizon, MalformedRecurrence, UnknownAccount) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    record = SnapshotService(db).create(data.name, snapshot)
    return {"id": record.id, "name": record.name}


@app.get("/api/snapshots/{snapshot_id}")
def api_snapshot(snapshot_id: int, db: Session = Depends(get_db)):
    service = SnapshotService(db)
    try:
        record = service.get(snapshot_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        snapshot = service.load(record.id)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"id": record.id, "name": record.name, "snapshot": dump_snapshot(snapshot)}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
