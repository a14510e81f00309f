"""Add append-only triggers to audit_events and consent_records.

Revision ID: 002_append_only
Revises: 001
Create Date: 2026-10-01 00:00:01.000000

PostgreSQL triggers reject UPDATE and DELETE on the audit trail and the
consent ledger, so both are append-only at the database level.
Consent tokens are not covered: consumption updates them in place.
"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "002_append_only"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PROTECTED_TABLES = ("audit_events", "consent_records")


def upgrade() -> None:
    """Add immutability triggers."""
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_append_only_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            IF TG_OP = 'UPDATE' THEN
                RAISE EXCEPTION 'SECURITY VIOLATION: % rows are immutable and cannot be modified. ID: %', TG_TABLE_NAME, OLD.id;
            ELSIF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'SECURITY VIOLATION: % rows are immutable and cannot be deleted. ID: %', TG_TABLE_NAME, OLD.id;
            END IF;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table in PROTECTED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_immutability_trigger ON {table}")
        op.execute(f"""
            CREATE TRIGGER {table}_immutability_trigger
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION prevent_append_only_modification()
        """)
        op.execute(f"""
            COMMENT ON TRIGGER {table}_immutability_trigger ON {table} IS
            'Security control: {table} is append-only; rows cannot be modified or deleted.';
        """)


def downgrade() -> None:
    """Remove immutability triggers.

    WARNING: This removes an important security control.
    Only use for emergency maintenance with proper authorization.
    """
    for table in PROTECTED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_immutability_trigger ON {table}")
    op.execute("DROP FUNCTION IF EXISTS prevent_append_only_modification()")
