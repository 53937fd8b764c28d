from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from operator import attrgetter
from typing import Callable, Optional, Protocol, Sequence

from calendar_utils import (
    add_months,
    has_crossed_month_boundary,
    local_now,
    month_start,
    resolve_day_of_month,
)

logger = logging.getLogger(__name__)


class ProgressionState(str, Enum):
    idle = "idle"
    checking = "checking"
    progressed = "progressed"
    noop_same_month = "noop_same_month"
    failed = "failed"


class StatementStoreError(RuntimeError):
    pass


class PromotionFailed(RuntimeError):
    def __init__(self, card_id: str, reason: str) -> None:
        super().__init__(f"Failed to promote statement for card {card_id}: {reason}")
        self.card_id = card_id
        self.reason = reason


@dataclass(frozen=True)
class FutureStatement:
    """A card that carries a pending statement for its next cycle."""

    card_id: str
    due_day: int
    current_balance_cents: int
    current_due_date: Optional[date]
    future_balance_cents: int


@dataclass(frozen=True)
class PromotedStatement:
    statement_balance_cents: int
    due_date: date
    archived_balance_cents: int
    archived_year: int
    archived_month: int
    archived_due_date: Optional[date]


class StatementStore(Protocol):
    def read_future_statements(self) -> Sequence[FutureStatement]: ...

    def commit_promotion(self, card_id: str, statement: PromotedStatement) -> bool:
        """Apply one promotion atomically.

        Returns ``False`` when the card no longer holds a future statement,
        which makes a retried promotion a no-op.
        """
        ...

    def list_stale_statements(self, cutoff: date) -> Sequence[str]: ...

    def delete_stale_statements(self, statement_ids: Sequence[str]) -> int: ...


@dataclass(frozen=True)
class ProgressionResult:
    success: bool
    progressed_cards: int = 0
    cleaned_statements: int = 0
    error: Optional[str] = None
    outcome: ProgressionState = ProgressionState.noop_same_month
    failed_cards: tuple[str, ...] = ()
    cleanup_error: Optional[str] = None


def promote(statement: FutureStatement, now: datetime) -> PromotedStatement:
    due = resolve_day_of_month(now.year, now.month, statement.due_day)
    if statement.current_due_date is not None:
        archived_cycle = statement.current_due_date
    else:
        archived_cycle = add_months(month_start(now.date()), -1)
    return PromotedStatement(
        statement_balance_cents=statement.future_balance_cents,
        due_date=due,
        archived_balance_cents=statement.current_balance_cents,
        archived_year=archived_cycle.year,
        archived_month=archived_cycle.month,
        archived_due_date=statement.current_due_date,
    )


def retention_cutoff(now: datetime, retention_months: int) -> date:
    """First day of the oldest month whose statement history is kept."""
    return add_months(month_start(now.date()), -retention_months)


class MonthProgression:
    """Promotes future credit-card statements once per real-world month.

    ``idle -> checking -> (progressed | noop_same_month | failed) -> idle``.
    The machine keeps no memory between calls; the caller owns the
    "last checked" checkpoint and must only advance it after a successful
    result. Callers must also make sure no two checks run concurrently for
    the same group.
    """

    def __init__(
        self,
        store: StatementStore,
        *,
        retention_months: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if retention_months < 1:
            # The statement archived by this run belongs to last month.
            raise ValueError("retention_months must be >= 1")
        self.store = store
        self.retention_months = retention_months
        self.clock = clock or local_now
        self.state = ProgressionState.idle

    def check_and_progress_month(
        self, last_checked: Optional[datetime]
    ) -> ProgressionResult:
        self.state = ProgressionState.checking
        try:
            return self._check(last_checked)
        finally:
            self.state = ProgressionState.idle

    def _check(self, last_checked: Optional[datetime]) -> ProgressionResult:
        now = self.clock()
        if last_checked is not None and not has_crossed_month_boundary(
            last_checked, now
        ):
            return ProgressionResult(
                success=True, outcome=ProgressionState.noop_same_month
            )

        try:
            pending = self.store.read_future_statements()
        except StatementStoreError as exc:
            logger.error(f"month_progression: read_failed error={exc}")
            return ProgressionResult(
                success=False,
                error=f"Failed to read future statements: {exc}",
                outcome=ProgressionState.failed,
            )

        progressed = 0
        failures: list[PromotionFailed] = []
        for statement in sorted(pending, key=attrgetter("card_id")):
            try:
                if self.store.commit_promotion(
                    statement.card_id, promote(statement, now)
                ):
                    progressed += 1
            except StatementStoreError as exc:
                failure = PromotionFailed(statement.card_id, str(exc))
                logger.error(f"month_progression: {failure}")
                failures.append(failure)

        cleaned = 0
        cleanup_error = None
        cutoff = retention_cutoff(now, self.retention_months)
        try:
            stale = self.store.list_stale_statements(cutoff)
            if stale:
                cleaned = self.store.delete_stale_statements(stale)
        except StatementStoreError as exc:
            # Stale history is retried next month; it does not block the checkpoint.
            logger.warning(
                f"month_progression: cleanup_failed cutoff={cutoff} error={exc}"
            )
            cleanup_error = f"Failed to clean statement history: {exc}"

        logger.info(
            f"month_progression: progressed_cards={progressed} "
            f"cleaned_statements={cleaned} failures={len(failures)}"
        )
        if failures:
            return ProgressionResult(
                success=False,
                progressed_cards=progressed,
                cleaned_statements=cleaned,
                error="; ".join(str(failure) for failure in failures),
                outcome=ProgressionState.failed,
                failed_cards=tuple(failure.card_id for failure in failures),
                cleanup_error=cleanup_error,
            )
        return ProgressionResult(
            success=True,
            progressed_cards=progressed,
            cleaned_statements=cleaned,
            outcome=ProgressionState.progressed,
            cleanup_error=cleanup_error,
        )


def check_and_progress_month(
    store: StatementStore,
    last_checked: Optional[datetime],
    *,
    retention_months: int = 1,
    clock: Optional[Callable[[], datetime]] = None,
) -> ProgressionResult:
    return MonthProgression(
        store, retention_months=retention_months, clock=clock
    ).check_and_progress_month(last_checked)
