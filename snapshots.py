from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Literal, Optional

from models import Certainty
from recurrence import Occurrence, OccurrenceSource
from schemas import (
    BalanceBasePayload,
    DailyBalancePayload,
    OccurrencePayload,
    SnapshotPayload,
)

# Bump together with a migration in load_snapshot when the payload changes.
CURRENT_SCHEMA_VERSION = 1


class SchemaIncompatible(ValueError):
    def __init__(self, version: object) -> None:
        super().__init__(
            f"Snapshot schema version {version!r} is not supported "
            f"(current version is {CURRENT_SCHEMA_VERSION})"
        )
        self.version = version


def is_schema_version_compatible(version: int) -> bool:
    return 1 <= version <= CURRENT_SCHEMA_VERSION


@dataclass(frozen=True)
class BalanceUpdateBase:
    kind: Literal["single", "range"]
    start: date
    end: date

    @classmethod
    def single(cls, on_date: date) -> "BalanceUpdateBase":
        return cls("single", on_date, on_date)

    @classmethod
    def range(cls, start: date, end: date) -> "BalanceUpdateBase":
        if start >= end:
            raise ValueError("A balance range needs start before end")
        return cls("range", start, end)

    def as_dict(self) -> dict[str, str]:
        if self.kind == "single":
            return {"kind": "single", "date": self.start.isoformat()}
        return {
            "kind": "range",
            "from": self.start.isoformat(),
            "to": self.end.isoformat(),
        }


@dataclass(frozen=True)
class DailyBalance:
    on_date: date
    day_offset: int
    balances: tuple[tuple[str, int], ...]
    aggregate_cents: int
    pessimistic_aggregate_cents: int
    events: tuple[Occurrence, ...] = ()

    def balance_for(self, account_id: str) -> int:
        for candidate, cents in self.balances:
            if candidate == account_id:
                return cents
        raise KeyError(account_id)


@dataclass(frozen=True)
class ProjectionSnapshot:
    schema_version: int
    generated_at: datetime
    horizon_days: int
    reference_date: date
    days: tuple[DailyBalance, ...]
    balance_base: Optional[BalanceUpdateBase]

    @property
    def end_date(self) -> date:
        return self.days[-1].on_date


def dump_snapshot(snapshot: ProjectionSnapshot) -> dict[str, Any]:
    """JSON-ready payload of ``snapshot``, tagged with its schema version."""
    payload = SnapshotPayload(
        schema_version=snapshot.schema_version,
        generated_at=snapshot.generated_at,
        horizon_days=snapshot.horizon_days,
        reference_date=snapshot.reference_date,
        balance_base=(
            BalanceBasePayload.model_validate(snapshot.balance_base.as_dict())
            if snapshot.balance_base
            else None
        ),
        days=[
            DailyBalancePayload(
                date=day.on_date,
                day_offset=day.day_offset,
                per_account_balance=dict(day.balances),
                aggregate_balance=day.aggregate_cents,
                pessimistic_balance=day.pessimistic_aggregate_cents,
                events=[
                    OccurrencePayload(
                        date=event.on_date,
                        account_id=event.account_id,
                        amount_cents=event.amount_cents,
                        source=event.source.value,
                        source_id=event.source_id,
                        certainty=event.certainty.value,
                    )
                    for event in day.events
                ],
            )
            for day in snapshot.days
        ],
    )
    return payload.model_dump(mode="json", by_alias=True, exclude_none=True)


def load_snapshot(payload: dict[str, Any]) -> ProjectionSnapshot:
    """Rebuild a snapshot from its persisted payload.

    The schema version is checked before anything else is read, so a payload
    written by a newer release is rejected as a whole instead of being
    partially interpreted.
    """
    version = payload.get("schemaVersion")
    if (
        isinstance(version, bool)
        or not isinstance(version, int)
        or not is_schema_version_compatible(version)
    ):
        raise SchemaIncompatible(version)

    parsed = SnapshotPayload.model_validate(payload)
    base = None
    if parsed.balance_base is not None:
        if parsed.balance_base.kind == "single":
            base = BalanceUpdateBase.single(parsed.balance_base.date)
        else:
            base = BalanceUpdateBase.range(
                parsed.balance_base.from_, parsed.balance_base.to
            )

    days = tuple(
        DailyBalance(
            on_date=day.date,
            day_offset=day.day_offset,
            balances=tuple(sorted(day.per_account_balance.items())),
            aggregate_cents=day.aggregate_balance,
            pessimistic_aggregate_cents=day.pessimistic_balance,
            events=tuple(
                Occurrence(
                    on_date=event.date,
                    account_id=event.account_id,
                    amount_cents=event.amount_cents,
                    source=OccurrenceSource(event.source),
                    source_id=event.source_id,
                    certainty=Certainty(event.certainty),
                )
                for event in day.events
            ),
        )
        for day in parsed.days
    )
    return ProjectionSnapshot(
        schema_version=parsed.schema_version,
        generated_at=parsed.generated_at,
        horizon_days=parsed.horizon_days,
        reference_date=parsed.reference_date,
        days=days,
        balance_base=base,
    )
