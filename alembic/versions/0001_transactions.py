"""transactions table

Revision ID: 0001_transactions
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_transactions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.transactions (
            id text PRIMARY KEY,
            amount integer NOT NULL CHECK (amount > 0),
            status text NOT NULL CHECK (status IN (
                'created', 'captured', 'dispensing', 'dispensed',
                'failed', 'expired', 'cancelled', 'dropped'
            )),
            dispensed boolean NOT NULL DEFAULT false,
            dispensed_count integer NOT NULL DEFAULT 0 CHECK (dispensed_count >= 0),
            provider text,
            provider_reference text,
            provider_event_type text,
            payer_reference text,
            locked_by text,
            failure_reason text,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CONSTRAINT transactions_dispensed_status_chk
                CHECK (NOT dispensed OR status = 'dispensed')
        );
        """
    )
    # fetch_next scans only rows a device could still act on
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_transactions_actionable_created
        ON app.transactions (created_at, id)
        WHERE status IN ('captured', 'dispensing') AND NOT dispensed;
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_transactions_status_updated
        ON app.transactions (status, updated_at);
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS app.ix_transactions_status_updated;")
    op.execute("DROP INDEX IF EXISTS app.ix_transactions_actionable_created;")
    op.execute("DROP TABLE IF EXISTS app.transactions;")
