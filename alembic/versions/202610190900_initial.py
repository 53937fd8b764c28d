"""initial cashflow schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum("checking", "savings", "investment", name="accounttype"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_updated_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )

    op.create_table(
        "recurring_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120)),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "day_of_month", "twice_monthly", "weekly", name="recurrencekind"
            ),
            nullable=False,
        ),
        sa.Column("day_of_month", sa.Integer()),
        sa.Column("second_day_of_month", sa.Integer()),
        sa.Column("weekday", sa.Integer()),
        sa.Column("interval_weeks", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        sa.Column(
            "certainty",
            sa.Enum("guaranteed", "probable", "uncertain", name="certainty"),
            nullable=False,
            server_default="guaranteed",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
        sa.CheckConstraint(
            "interval_weeks > 0", name="ck_recurring_interval_positive"
        ),
    )
    op.create_index(
        "ix_recurring_events_user_account",
        "recurring_events",
        ["user_id", "account_id"],
    )

    op.create_table(
        "single_shot_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_single_shot_amount_positive"),
    )
    op.create_index(
        "ix_single_shot_expenses_user_date",
        "single_shot_expenses",
        ["user_id", "date"],
    )

    op.create_table(
        "single_shot_income",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "certainty",
            sa.Enum("guaranteed", "probable", "uncertain", name="certainty"),
            nullable=False,
            server_default="guaranteed",
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_single_shot_income_amount_positive"
        ),
    )
    op.create_index(
        "ix_single_shot_income_user_date",
        "single_shot_income",
        ["user_id", "date"],
    )

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "statement_balance_cents",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column("statement_due_date", sa.Date()),
        sa.Column("future_statement_cents", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
        sa.CheckConstraint(
            "statement_balance_cents >= 0", name="ck_card_statement_positive"
        ),
        sa.CheckConstraint(
            "future_statement_cents IS NULL OR future_statement_cents >= 0",
            name="ck_card_future_statement_positive",
        ),
    )

    op.create_table(
        "statement_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "card_id", sa.Integer(), sa.ForeignKey("credit_cards.id"), nullable=False
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date()),
        *_timestamps(),
    )
    op.create_index(
        "ix_statement_history_user_cycle",
        "statement_history",
        ["user_id", "year", "month"],
    )

    op.create_table(
        "progression_checkpoints",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("last_checked_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_progression_checkpoint_user"),
    )

    op.create_table(
        "projection_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("horizon_days", sa.Integer(), nullable=False),
        sa.Column("reference_date", sa.Date(), nullable=False),
        sa.Column("data", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_projection_snapshots_user_created",
        "projection_snapshots",
        ["user_id", "created_at"],
    )


def downgrade():
    op.drop_index(
        "ix_projection_snapshots_user_created", table_name="projection_snapshots"
    )
    op.drop_table("projection_snapshots")
    op.drop_table("progression_checkpoints")
    op.drop_index("ix_statement_history_user_cycle", table_name="statement_history")
    op.drop_table("statement_history")
    op.drop_table("credit_cards")
    op.drop_index("ix_single_shot_income_user_date", table_name="single_shot_income")
    op.drop_table("single_shot_income")
    op.drop_index(
        "ix_single_shot_expenses_user_date", table_name="single_shot_expenses"
    )
    op.drop_table("single_shot_expenses")
    op.drop_index("ix_recurring_events_user_account", table_name="recurring_events")
    op.drop_table("recurring_events")
    op.drop_table("accounts")
