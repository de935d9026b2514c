"""Consent gate schema.

Revision ID: 001
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create consent, permission, session, payment, anchor and audit tables."""

    # Consent requests
    op.create_table(
        "consent_requests",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("provider_address", sa.String(42), nullable=False),
        sa.Column("provider_name", sa.String(255), nullable=True),
        sa.Column("patient_id", sa.String(100), nullable=False),
        sa.Column("patient_address", sa.String(42), nullable=False),
        sa.Column("access_level", sa.String(20), nullable=False),
        sa.Column("data_types", postgresql.JSON(), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("urgency", sa.String(20), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pending_pair_key", sa.String(201), nullable=True),
        sa.Column("approved_access_level", sa.String(20), nullable=True),
        sa.Column("approved_data_types", postgresql.JSON(), nullable=True),
        sa.Column("approved_duration_days", sa.Integer(), nullable=True),
        sa.Column("conditions", postgresql.JSON(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("denied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("denial_reason", sa.Text(), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("anchor_ref", sa.String(128), nullable=True),
        sa.Column("decision_anchor_ref", sa.String(128), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_consent_requests"),
        # At most one pending request per (provider, patient)
        sa.UniqueConstraint(
            "pending_pair_key", name="uq_consent_requests_pending_pair_key"
        ),
    )
    op.create_index("ix_consent_requests_provider_id", "consent_requests", ["provider_id"])
    op.create_index("ix_consent_requests_patient_id", "consent_requests", ["patient_id"])
    op.create_index("ix_consent_requests_status", "consent_requests", ["status"])
    op.create_index(
        "ix_consent_requests_response_deadline", "consent_requests", ["response_deadline"]
    )

    # Access permissions
    op.create_table(
        "access_permissions",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("consent_request_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("patient_id", sa.String(100), nullable=False),
        sa.Column("access_level", sa.String(20), nullable=False),
        sa.Column("allowed_data_types", postgresql.JSON(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_count", sa.Integer(), nullable=False, default=0),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, default=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_access_permissions"),
        sa.ForeignKeyConstraint(
            ["consent_request_id"],
            ["consent_requests.id"],
            name="fk_access_permissions_consent_request_id_consent_requests",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "consent_request_id", name="uq_access_permissions_consent_request_id"
        ),
    )
    op.create_index("ix_access_permissions_provider_id", "access_permissions", ["provider_id"])
    op.create_index("ix_access_permissions_patient_id", "access_permissions", ["patient_id"])
    op.create_index("ix_access_permissions_expires_at", "access_permissions", ["expires_at"])
    op.create_index("ix_access_permissions_is_active", "access_permissions", ["is_active"])

    # Access sessions
    op.create_table(
        "access_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("permission_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("patient_id", sa.String(100), nullable=False),
        sa.Column("state", sa.String(30), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_reason", sa.Text(), nullable=True),
        sa.Column("files_accessed", postgresql.JSON(), nullable=False),
        sa.Column("access_count", sa.Integer(), nullable=False, default=0),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_access_sessions"),
        sa.ForeignKeyConstraint(
            ["permission_id"],
            ["access_permissions.id"],
            name="fk_access_sessions_permission_id_access_permissions",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_access_sessions_permission_id", "access_sessions", ["permission_id"])
    op.create_index("ix_access_sessions_provider_id", "access_sessions", ["provider_id"])
    op.create_index("ix_access_sessions_patient_id", "access_sessions", ["patient_id"])
    op.create_index("ix_access_sessions_state", "access_sessions", ["state"])

    # Payment transactions
    op.create_table(
        "payment_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("permission_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("payer_id", sa.String(100), nullable=False),
        sa.Column("payee_id", sa.String(100), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reference", sa.String(100), nullable=False),
        sa.Column("external_tx_ref", sa.String(128), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, default=0),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_payment_transactions"),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["access_sessions.id"],
            name="fk_payment_transactions_session_id_access_sessions",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["permission_id"],
            ["access_permissions.id"],
            name="fk_payment_transactions_permission_id_access_permissions",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("reference", name="uq_payment_transactions_reference"),
        sa.UniqueConstraint(
            "external_tx_ref", name="uq_payment_transactions_external_tx_ref"
        ),
    )
    op.create_index(
        "ix_payment_transactions_session_id", "payment_transactions", ["session_id"]
    )
    op.create_index("ix_payment_transactions_payer_id", "payment_transactions", ["payer_id"])
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"])

    # Anchor outbox
    op.create_table(
        "anchor_records",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("consent_request_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("event", sa.String(30), nullable=False),
        sa.Column("idempotency_key", sa.String(150), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, default=0),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("anchored_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_anchor_records"),
        sa.ForeignKeyConstraint(
            ["consent_request_id"],
            ["consent_requests.id"],
            name="fk_anchor_records_consent_request_id_consent_requests",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_anchor_records_idempotency_key"),
    )
    op.create_index(
        "ix_anchor_records_consent_request_id", "anchor_records", ["consent_request_id"]
    )
    op.create_index("ix_anchor_records_status", "anchor_records", ["status"])

    # Notification inbox
    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("recipient_id", sa.String(100), nullable=False),
        sa.Column("recipient_role", sa.String(20), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("consent_request_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("action_required", sa.Boolean(), nullable=False, default=False),
        sa.Column("action_url", sa.String(500), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, default=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index(
        "ix_notifications_consent_request_id", "notifications", ["consent_request_id"]
    )
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])

    # File metadata
    op.create_table(
        "medical_files",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("patient_id", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("content_hash", sa.String(130), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("is_encrypted", sa.Boolean(), nullable=False, default=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_medical_files"),
    )
    op.create_index("ix_medical_files_patient_id", "medical_files", ["patient_id"])

    # Audit entries (append-only)
    op.create_table(
        "audit_entries",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.String(100), nullable=False),
        sa.Column("actor_role", sa.String(20), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=False),
        sa.Column("target_type", sa.String(20), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("details", postgresql.JSON(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_entries"),
    )
    op.create_index("ix_audit_entries_event_type", "audit_entries", ["event_type"])
    op.create_index("ix_audit_entries_actor_id", "audit_entries", ["actor_id"])
    op.create_index("ix_audit_entries_target_id", "audit_entries", ["target_id"])
    op.create_index("ix_audit_entries_success", "audit_entries", ["success"])
    op.create_index("ix_audit_entries_created_at", "audit_entries", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_entries")
    op.drop_table("medical_files")
    op.drop_table("notifications")
    op.drop_table("anchor_records")
    op.drop_table("payment_transactions")
    op.drop_table("access_sessions")
    op.drop_table("access_permissions")
    op.drop_table("consent_requests")
