from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from calendar_utils import local_now
from config import get_settings
from events import finance_data_events
from locks import SingleFlight
from models import (
    Account,
    CreditCard,
    ProgressionCheckpoint,
    RecurringEvent,
    SingleShotExpense,
    SingleShotIncome,
    SnapshotRecord,
    StatementHistory,
    TransactionType,
)
from progression import (
    FutureStatement,
    MonthProgression,
    PromotedStatement,
    ProgressionResult,
    StatementStoreError,
)
from projection import (
    AccountBalance,
    EstimatedBalance,
    estimate_today,
    project,
    validate_horizon,
)
from recurrence import (
    CreditCardStatement,
    RecurrenceRule,
    RecurringCashEvent,
    SingleShotExpense as SingleShotDebit,
    SingleShotIncome as SingleShotCredit,
    validate_rule,
)
from schemas import (
    AccountBalanceIn,
    AccountIn,
    CreditCardIn,
    FutureStatementIn,
    RecurringEventIn,
    SingleShotExpenseIn,
    SingleShotIncomeIn,
)
from snapshots import ProjectionSnapshot, dump_snapshot, load_snapshot

logger = logging.getLogger(__name__)

_progression_flight = SingleFlight()


def get_current_user_id() -> int:
    return 1


def account_to_engine(account: Account) -> AccountBalance:
    return AccountBalance(
        account_id=str(account.id),
        account_type=account.type,
        balance_cents=account.balance_cents,
        last_updated_at=account.balance_updated_at,
    )


def rule_from_columns(event: RecurringEvent | RecurringEventIn) -> RecurrenceRule:
    return RecurrenceRule(
        kind=event.kind,
        day_of_month=event.day_of_month,
        second_day_of_month=event.second_day_of_month,
        weekday=event.weekday,
        interval_weeks=event.interval_weeks,
    )


def recurring_to_engine(event: RecurringEvent) -> RecurringCashEvent:
    sign = 1 if event.type == TransactionType.income else -1
    return RecurringCashEvent(
        event_id=str(event.id),
        account_id=str(event.account_id),
        amount_cents=sign * event.amount_cents,
        rule=rule_from_columns(event),
        start_date=event.start_date,
        end_date=event.end_date,
        certainty=event.certainty,
    )


def single_shot_to_engine(expense: SingleShotExpense) -> SingleShotDebit:
    return SingleShotDebit(
        expense_id=str(expense.id),
        account_id=str(expense.account_id),
        amount_cents=expense.amount_cents,
        on_date=expense.date,
    )


def single_shot_income_to_engine(income: SingleShotIncome) -> SingleShotCredit:
    return SingleShotCredit(
        income_id=str(income.id),
        account_id=str(income.account_id),
        amount_cents=income.amount_cents,
        on_date=income.date,
        certainty=income.certainty,
    )


def card_to_engine(card: CreditCard) -> CreditCardStatement:
    return CreditCardStatement(
        card_id=str(card.id),
        account_id=str(card.account_id),
        statement_balance_cents=card.statement_balance_cents,
        due_day=card.due_day,
        future_statement_cents=card.future_statement_cents,
    )


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise ValueError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        name = data.name.strip()
        existing = self.session.scalar(
            select(Account.id).where(
                Account.user_id == self.user_id, Account.name == name
            )
        )
        if existing:
            raise ValueError("Account with this name already exists")
        account = Account(
            user_id=self.user_id,
            name=name,
            type=data.type,
            balance_cents=data.balance_cents,
            balance_updated_at=data.balance_updated_at or local_now(),
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        finance_data_events.notify("accounts")
        return account

    def update_balance(self, account_id: int, data: AccountBalanceIn) -> Account:
        account = self.get(account_id)
        account.balance_cents = data.balance_cents
        account.balance_updated_at = data.updated_at or local_now()
        self.session.commit()
        self.session.refresh(account)
        finance_data_events.notify("accounts")
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.delete(account)
        self.session.commit()
        finance_data_events.notify("accounts")


class RecurringEventService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, event_id: int) -> RecurringEvent:
        event = self.session.get(RecurringEvent, event_id)
        if not event or event.user_id != self.user_id:
            raise ValueError("Recurring event not found")
        return event

    def list_all(self, active_only: bool = False) -> list[RecurringEvent]:
        stmt = select(RecurringEvent).where(RecurringEvent.user_id == self.user_id)
        if active_only:
            stmt = stmt.where(RecurringEvent.is_active.is_(True))
        return self.session.scalars(stmt.order_by(RecurringEvent.id)).all()

    def create(self, data: RecurringEventIn) -> RecurringEvent:
        AccountService(self.session, self.user_id).get(data.account_id)
        validate_rule(rule_from_columns(data))
        if data.start_date and data.end_date and data.start_date > data.end_date:
            raise ValueError("Start date must be before end date")
        event = RecurringEvent(user_id=self.user_id, **data.model_dump())
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        finance_data_events.notify("recurring_events")
        return event

    def set_active(self, event_id: int, is_active: bool) -> RecurringEvent:
        event = self.get(event_id)
        event.is_active = is_active
        self.session.commit()
        self.session.refresh(event)
        finance_data_events.notify("recurring_events")
        return event

    def delete(self, event_id: int) -> None:
        event = self.get(event_id)
        self.session.delete(event)
        self.session.commit()
        finance_data_events.notify("recurring_events")


class SingleShotExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[SingleShotExpense]:
        stmt = (
            select(SingleShotExpense)
            .where(SingleShotExpense.user_id == self.user_id)
            .order_by(SingleShotExpense.date, SingleShotExpense.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: SingleShotExpenseIn) -> SingleShotExpense:
        AccountService(self.session, self.user_id).get(data.account_id)
        expense = SingleShotExpense(
            user_id=self.user_id,
            account_id=data.account_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            date=data.date,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        finance_data_events.notify("single_shot_expenses")
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.session.get(SingleShotExpense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise ValueError("Expense not found")
        self.session.delete(expense)
        self.session.commit()
        finance_data_events.notify("single_shot_expenses")


class SingleShotIncomeService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[SingleShotIncome]:
        stmt = (
            select(SingleShotIncome)
            .where(SingleShotIncome.user_id == self.user_id)
            .order_by(SingleShotIncome.date, SingleShotIncome.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: SingleShotIncomeIn) -> SingleShotIncome:
        AccountService(self.session, self.user_id).get(data.account_id)
        income = SingleShotIncome(
            user_id=self.user_id,
            account_id=data.account_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            date=data.date,
            certainty=data.certainty,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        finance_data_events.notify("single_shot_income")
        return income

    def delete(self, income_id: int) -> None:
        income = self.session.get(SingleShotIncome, income_id)
        if not income or income.user_id != self.user_id:
            raise ValueError("Income not found")
        self.session.delete(income)
        self.session.commit()
        finance_data_events.notify("single_shot_income")


class CreditCardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, card_id: int) -> CreditCard:
        card = self.session.get(CreditCard, card_id)
        if not card or card.user_id != self.user_id:
            raise ValueError("Credit card not found")
        return card

    def list_all(self) -> list[CreditCard]:
        stmt = (
            select(CreditCard)
            .where(CreditCard.user_id == self.user_id)
            .order_by(CreditCard.name, CreditCard.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: CreditCardIn) -> CreditCard:
        AccountService(self.session, self.user_id).get(data.account_id)
        card = CreditCard(
            user_id=self.user_id,
            account_id=data.account_id,
            name=data.name.strip(),
            statement_balance_cents=data.statement_balance_cents,
            due_day=data.due_day,
            future_statement_cents=data.future_statement_cents,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        finance_data_events.notify("credit_cards")
        return card

    def set_future_statement(self, card_id: int, data: FutureStatementIn) -> CreditCard:
        card = self.get(card_id)
        card.future_statement_cents = data.amount_cents
        self.session.commit()
        finance_data_events.notify("credit_cards")
        return card

    def clear_future_statement(self, card_id: int) -> CreditCard:
        card = self.get(card_id)
        card.future_statement_cents = None
        self.session.commit()
        finance_data_events.notify("credit_cards")
        return card

    def history(self, card_id: int) -> list[StatementHistory]:
        self.get(card_id)
        stmt = (
            select(StatementHistory)
            .where(
                StatementHistory.user_id == self.user_id,
                StatementHistory.card_id == card_id,
            )
            .order_by(StatementHistory.year.desc(), StatementHistory.month.desc())
        )
        return self.session.scalars(stmt).all()

    def delete(self, card_id: int) -> None:
        card = self.get(card_id)
        self.session.delete(card)
        self.session.commit()
        finance_data_events.notify("credit_cards")


class SqlStatementStore:
    """Statement persistence used by month progression."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def read_future_statements(self) -> list[FutureStatement]:
        try:
            cards = self.session.scalars(
                select(CreditCard).where(
                    CreditCard.user_id == self.user_id,
                    CreditCard.future_statement_cents.is_not(None),
                )
            ).all()
        except SQLAlchemyError as exc:
            raise StatementStoreError(str(exc)) from exc
        return [
            FutureStatement(
                card_id=str(card.id),
                due_day=card.due_day,
                current_balance_cents=card.statement_balance_cents,
                current_due_date=card.statement_due_date,
                future_balance_cents=card.future_statement_cents,
            )
            for card in cards
        ]

    def commit_promotion(self, card_id: str, statement: PromotedStatement) -> bool:
        try:
            card = self.session.get(CreditCard, int(card_id))
            if (
                card is None
                or card.user_id != self.user_id
                or card.future_statement_cents is None
            ):
                return False
            self.session.add(
                StatementHistory(
                    user_id=self.user_id,
                    card_id=card.id,
                    year=statement.archived_year,
                    month=statement.archived_month,
                    amount_cents=statement.archived_balance_cents,
                    due_date=statement.archived_due_date,
                )
            )
            card.statement_balance_cents = statement.statement_balance_cents
            card.statement_due_date = statement.due_date
            card.future_statement_cents = None
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StatementStoreError(str(exc)) from exc
        return True

    def list_stale_statements(self, cutoff: date) -> list[str]:
        try:
            ids = self.session.scalars(
                select(StatementHistory.id).where(
                    StatementHistory.user_id == self.user_id,
                    or_(
                        StatementHistory.year < cutoff.year,
                        and_(
                            StatementHistory.year == cutoff.year,
                            StatementHistory.month < cutoff.month,
                        ),
                    ),
                )
            ).all()
        except SQLAlchemyError as exc:
            raise StatementStoreError(str(exc)) from exc
        return [str(statement_id) for statement_id in ids]

    def delete_stale_statements(self, statement_ids: Sequence[str]) -> int:
        if not statement_ids:
            return 0
        try:
            result = self.session.execute(
                delete(StatementHistory).where(
                    StatementHistory.user_id == self.user_id,
                    StatementHistory.id.in_([int(i) for i in statement_ids]),
                )
            )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StatementStoreError(str(exc)) from exc
        return int(result.rowcount or 0)


@dataclass(frozen=True)
class ProjectionInputs:
    accounts: list[AccountBalance]
    recurring_events: list[RecurringCashEvent]
    single_shot_expenses: list[SingleShotDebit]
    credit_card_statements: list[CreditCardStatement]
    single_shot_income: list[SingleShotCredit]


class ProjectionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def load_inputs(self) -> ProjectionInputs:
        return ProjectionInputs(
            accounts=[
                account_to_engine(a)
                for a in AccountService(self.session, self.user_id).list_all()
            ],
            recurring_events=[
                recurring_to_engine(e)
                for e in RecurringEventService(self.session, self.user_id).list_all(
                    active_only=True
                )
            ],
            single_shot_expenses=[
                single_shot_to_engine(e)
                for e in SingleShotExpenseService(self.session, self.user_id).list_all()
            ],
            credit_card_statements=[
                card_to_engine(c)
                for c in CreditCardService(self.session, self.user_id).list_all()
            ],
            single_shot_income=[
                single_shot_income_to_engine(i)
                for i in SingleShotIncomeService(self.session, self.user_id).list_all()
            ],
        )

    def project(
        self,
        horizon_days: Optional[int] = None,
        reference_date: Optional[date] = None,
        generated_at: Optional[datetime] = None,
    ) -> ProjectionSnapshot:
        if horizon_days is None:
            horizon_days = get_settings().default_horizon_days
        horizon = validate_horizon(horizon_days)
        now = local_now()
        inputs = self.load_inputs()
        return project(
            inputs.accounts,
            inputs.recurring_events,
            inputs.single_shot_expenses,
            inputs.credit_card_statements,
            horizon,
            reference_date or now.date(),
            single_shot_income=inputs.single_shot_income,
            generated_at=generated_at or now,
        )

    def estimate_today(self, today: Optional[date] = None) -> EstimatedBalance:
        inputs = self.load_inputs()
        return estimate_today(
            inputs.accounts,
            inputs.recurring_events,
            inputs.single_shot_expenses,
            inputs.credit_card_statements,
            today or local_now().date(),
            single_shot_income=inputs.single_shot_income,
        )


class SnapshotService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[SnapshotRecord]:
        stmt = (
            select(SnapshotRecord)
            .where(SnapshotRecord.user_id == self.user_id)
            .order_by(SnapshotRecord.created_at.desc(), SnapshotRecord.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, snapshot_id: int) -> SnapshotRecord:
        record = self.session.get(SnapshotRecord, snapshot_id)
        if not record or record.user_id != self.user_id:
            raise ValueError("Snapshot not found")
        return record

    def create(self, name: str, snapshot: ProjectionSnapshot) -> SnapshotRecord:
        record = SnapshotRecord(
            user_id=self.user_id,
            name=name.strip(),
            schema_version=snapshot.schema_version,
            horizon_days=snapshot.horizon_days,
            reference_date=snapshot.reference_date,
            data=json.dumps(dump_snapshot(snapshot), sort_keys=True),
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def load(self, snapshot_id: int) -> ProjectionSnapshot:
        record = self.get(snapshot_id)
        payload = json.loads(record.data)
        if payload.get("schemaVersion") != record.schema_version:
            raise ValueError("Snapshot payload does not match its recorded version")
        return load_snapshot(payload)


class ProgressionService:
    """Runs the month progression check and owns its checkpoint."""

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        retention_months: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        if retention_months is None:
            retention_months = get_settings().statement_retention_months
        self.retention_months = retention_months
        self.clock = clock or local_now

    def checkpoint(self) -> ProgressionCheckpoint:
        checkpoint = self.session.scalar(
            select(ProgressionCheckpoint).where(
                ProgressionCheckpoint.user_id == self.user_id
            )
        )
        if checkpoint is None:
            checkpoint = ProgressionCheckpoint(user_id=self.user_id)
            self.session.add(checkpoint)
            self.session.flush()
        return checkpoint

    def run(self) -> ProgressionResult:
        return _progression_flight.do(self.user_id, self._run)

    def _run(self) -> ProgressionResult:
        checked_at = self.clock()
        checkpoint = self.checkpoint()
        last_checked = checkpoint.last_checked_at
        progression = MonthProgression(
            SqlStatementStore(self.session, self.user_id),
            retention_months=self.retention_months,
            clock=lambda: checked_at,
        )
        result = progression.check_and_progress_month(last_checked)
        if not result.success:
            logger.warning(
                f"month_progression: checkpoint_withheld user_id={self.user_id} "
                f"error={result.error}"
            )
            return result

        checkpoint = self.checkpoint()
        if checkpoint.last_checked_at is None or checked_at > checkpoint.last_checked_at:
            checkpoint.last_checked_at = checked_at
        self.session.commit()
        if result.progressed_cards:
            finance_data_events.notify("credit_cards")
        return result
