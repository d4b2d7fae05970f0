"""Add append-only triggers to audit_events and dispensations.

Revision ID: 002
Revises: 001
Create Date: 2024-10-02 00:00:00.000000

Both tables are ledgers: rows are inserted once and never changed.
The application has no update or delete path for them; these triggers
enforce the same at the database level.
"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LEDGER_TABLES = ("audit_events", "dispensations")


def upgrade() -> None:
    """Add immutability trigger to ledger tables."""

    # Create the trigger function
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_ledger_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            IF TG_OP = 'UPDATE' THEN
                RAISE EXCEPTION '% rows are immutable and cannot be modified. Row ID: %', TG_TABLE_NAME, OLD.id;
            ELSIF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION '% rows are immutable and cannot be deleted. Row ID: %', TG_TABLE_NAME, OLD.id;
            END IF;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table in LEDGER_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_immutability_trigger ON {table}")
        op.execute(f"""
            CREATE TRIGGER {table}_immutability_trigger
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION prevent_ledger_modification()
        """)
        op.execute(f"""
            COMMENT ON TABLE {table} IS
            'Append-only ledger. Protected by immutability trigger.';
        """)


def downgrade() -> None:
    """Remove immutability triggers."""

    for table in LEDGER_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_immutability_trigger ON {table};")
        op.execute(f"COMMENT ON TABLE {table} IS NULL;")

    op.execute("DROP FUNCTION IF EXISTS prevent_ledger_modification();")
