import json
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from models import AccountType, RecurrenceKind
from projection import AccountBalance, project
from recurrence import RecurrenceRule, RecurringCashEvent
from snapshots import (
    CURRENT_SCHEMA_VERSION,
    SchemaIncompatible,
    dump_snapshot,
    is_schema_version_compatible,
    load_snapshot,
)


def _snapshot():
    accounts = [
        AccountBalance(
            account_id="1",
            account_type=AccountType.checking,
            balance_cents=100000,
            last_updated_at=datetime(2025, 1, 1, 8, 30),
        )
    ]
    salary = RecurringCashEvent(
        event_id="4",
        account_id="1",
        amount_cents=50000,
        rule=RecurrenceRule(kind=RecurrenceKind.day_of_month, day_of_month=5),
    )
    return project(accounts, [salary], [], [], 7, date(2025, 1, 1))


def test_schema_version_compatibility() -> None:
    assert CURRENT_SCHEMA_VERSION == 1
    assert not is_schema_version_compatible(0)
    assert is_schema_version_compatible(1)
    assert not is_schema_version_compatible(2)


def test_dump_uses_camel_case_and_tags_version() -> None:
    payload = dump_snapshot(_snapshot())

    assert payload["schemaVersion"] == 1
    assert payload["horizonDays"] == 7
    assert payload["referenceDate"] == "2025-01-01"
    assert payload["balanceBase"] == {"kind": "single", "date": "2025-01-01"}
    assert len(payload["days"]) == 8
    payday = payload["days"][4]
    assert payday["date"] == "2025-01-05"
    assert payday["perAccountBalance"] == {"1": 150000}
    assert payday["aggregateBalance"] == 150000
    assert payday["pessimisticBalance"] == 150000
    assert payday["events"] == [
        {
            "date": "2025-01-05",
            "accountId": "1",
            "amountCents": 50000,
            "source": "recurring",
            "sourceId": "4",
            "certainty": "guaranteed",
        }
    ]


def test_stored_snapshot_loads_back_unchanged() -> None:
    snapshot = _snapshot()
    stored = json.loads(json.dumps(dump_snapshot(snapshot)))

    assert load_snapshot(stored) == snapshot


def test_newer_schema_is_rejected_before_parsing() -> None:
    payload = dump_snapshot(_snapshot())
    payload["schemaVersion"] = 2
    payload["days"] = "not even a list"

    with pytest.raises(SchemaIncompatible) as excinfo:
        load_snapshot(payload)
    assert excinfo.value.version == 2

    with pytest.raises(SchemaIncompatible):
        load_snapshot({"days": []})


def test_unknown_fields_are_rejected() -> None:
    payload = dump_snapshot(_snapshot())
    payload["surprise"] = True

    with pytest.raises(ValidationError):
        load_snapshot(payload)
