"""Initial schema: zones, accounts, transactions, postings, balances, incidents, audit, outbox, inbox

Revision ID: 001
Revises:
Create Date: 2024-01-01

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SEED_ZONES = [
    ("zone-na", "North America"),
    ("zone-sa", "South America"),
    ("zone-eu", "Europe"),
    ("zone-uk", "United Kingdom"),
    ("zone-af", "Africa"),
    ("zone-me", "Middle East"),
    ("zone-in", "India"),
    ("zone-cn", "China"),
    ("zone-ap", "Asia Pacific"),
    ("zone-au", "Australia"),
]


def upgrade() -> None:
    zones = op.create_table(
        "zones",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OK"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('OK', 'DEGRADED', 'DOWN')", name="ck_zones_status"),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("zone_id", sa.String(64), sa.ForeignKey("zones.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_accounts_zone_id", "accounts", ["zone_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("request_id", sa.String(255), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("from_account", sa.String(255), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("to_account", sa.String(255), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("amount_units", sa.BigInteger, nullable=False),
        sa.Column("zone_id", sa.String(64), sa.ForeignKey("zones.id"), nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("request_id", name="uq_transactions_request_id"),
        sa.CheckConstraint("amount_units > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])
    op.create_index("ix_transactions_zone_id", "transactions", ["zone_id"])

    op.create_table(
        "postings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("transaction_id", sa.String(26), sa.ForeignKey("transactions.id"), nullable=False),
        sa.Column("account_id", sa.String(255), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("amount_units", sa.BigInteger, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("direction IN ('DEBIT', 'CREDIT')", name="ck_postings_direction"),
        sa.CheckConstraint("amount_units > 0", name="ck_postings_amount_positive"),
    )
    op.create_index("ix_postings_transaction_id", "postings", ["transaction_id"])
    op.create_index("ix_postings_account_id", "postings", ["account_id"])

    op.create_table(
        "balances",
        sa.Column("account_id", sa.String(255), sa.ForeignKey("accounts.id"), primary_key=True),
        sa.Column("balance_units", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_balances_updated_at", "balances", ["updated_at"])

    op.create_table(
        "incidents",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("zone_id", sa.String(64), sa.ForeignKey("zones.id"), nullable=False),
        sa.Column("related_transaction_id", sa.String(26), sa.ForeignKey("transactions.id"), nullable=True),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("details", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("severity IN ('INFO', 'WARN', 'CRITICAL')", name="ck_incidents_severity"),
        sa.CheckConstraint("status IN ('OPEN', 'ACK', 'RESOLVED')", name="ck_incidents_status"),
    )
    op.create_index("ix_incidents_zone_detected", "incidents", ["zone_id", "detected_at"])
    op.create_index("ix_incidents_detected_at", "incidents", ["detected_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("target_type", sa.String(32), nullable=False),
        sa.Column("target_id", sa.String(255), nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("details", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_log_target", "audit_log", ["target_type", "target_id", "created_at"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("aggregate_type", sa.String(100), nullable=False),
        sa.Column("aggregate_id", sa.String(26), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_outbox_events_due",
        "outbox_events",
        ["event_type", "next_attempt_at", "created_at"],
        postgresql_where=sa.text("published_at IS NULL"),
    )
    op.create_index("ix_outbox_events_aggregate", "outbox_events", ["aggregate_type", "aggregate_id"])

    op.create_table(
        "inbox_events",
        sa.Column("consumer", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("consumer", "event_id", name="pk_inbox_events"),
    )

    op.bulk_insert(
        zones,
        [{"id": zone_id, "name": name, "status": "OK"} for zone_id, name in SEED_ZONES],
    )


def downgrade() -> None:
    op.drop_table("inbox_events")
    op.drop_table("outbox_events")
    op.drop_table("audit_log")
    op.drop_table("incidents")
    op.drop_table("balances")
    op.drop_table("postings")
    op.drop_table("transactions")
    op.drop_table("accounts")
    op.drop_table("zones")
