"""Add audit_entries append-only trigger.

Revision ID: 002_audit_append_only
Revises: 001
Create Date: 2026-01-02 00:00:00.000000

Rejects UPDATE on audit_entries outright. DELETE is rejected unless the
transaction has set ``consent_gate.allow_audit_prune``, which only the
retention pruning job does.
"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "002_audit_append_only"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add append-only trigger to audit_entries table."""

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_entry_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            IF TG_OP = 'UPDATE' THEN
                RAISE EXCEPTION 'Audit entries are append-only and cannot be modified. Entry ID: %', OLD.id;
            ELSIF TG_OP = 'DELETE' THEN
                IF coalesce(current_setting('consent_gate.allow_audit_prune', true), 'off') <> 'on' THEN
                    RAISE EXCEPTION 'Audit entries can only be deleted by retention pruning. Entry ID: %', OLD.id;
                END IF;
                RETURN OLD;
            END IF;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        DROP TRIGGER IF EXISTS audit_entries_append_only ON audit_entries
    """)

    op.execute("""
        CREATE TRIGGER audit_entries_append_only
        BEFORE UPDATE OR DELETE ON audit_entries
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_entry_modification()
    """)

    op.execute("""
        COMMENT ON TABLE audit_entries IS
        'Append-only authorization audit log. Rows are pruned only by the retention job.';
    """)


def downgrade() -> None:
    """Remove append-only trigger."""

    op.execute("""
        DROP TRIGGER IF EXISTS audit_entries_append_only ON audit_entries;
    """)

    op.execute("""
        DROP FUNCTION IF EXISTS prevent_audit_entry_modification();
    """)

    op.execute("""
        COMMENT ON TABLE audit_entries IS NULL;
    """)
