"""Create accounting sync tables.

Profiles with encrypted bank details, per-provider credential records,
clients and invoices carrying provider reference ids, the sync log and
the rate limit attempt log.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _provider_sync_columns(ref_columns: dict[str, str]) -> list[sa.Column]:
    """Reference id, last-synced timestamp and error columns for each provider."""
    columns = [sa.Column(name, sa.String(255), nullable=True) for name in ref_columns.values()]
    for short in ref_columns:
        columns.append(sa.Column(f"last_synced_to_{short}", sa.DateTime(), nullable=True))
        columns.append(sa.Column(f"{short}_sync_error", sa.Text(), nullable=True))
    return columns


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


# ---------------------------------------------------------------------------
# Upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("payment_terms", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("bank_name_encrypted", sa.Text(), nullable=True),
        sa.Column("bank_bsb_encrypted", sa.Text(), nullable=True),
        sa.Column("bank_account_number_encrypted", sa.Text(), nullable=True),
        sa.Column("bank_account_name_encrypted", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"], unique=True)

    op.create_table(
        "accounting_connections",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=True),
        sa.Column("tenant_name", sa.String(255), nullable=True),
        sa.Column("tenant_uri", sa.Text(), nullable=True),
        sa.Column("access_token_encrypted", sa.Text(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("sync_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("connected_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "provider", name="uq_accounting_connections_user_provider"),
        sa.CheckConstraint(
            "provider IN ('xero', 'quickbooks', 'myob')",
            name="ck_accounting_connections_provider",
        ),
    )
    op.create_index("ix_accounting_connections_user_id", "accounting_connections", ["user_id"])

    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("suburb", sa.String(100), nullable=True),
        sa.Column("state", sa.String(50), nullable=True),
        sa.Column("postcode", sa.String(20), nullable=True),
        *_provider_sync_columns({"xero": "xero_contact_id", "qb": "qb_customer_id", "myob": "myob_uid"}),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_clients_user_id", "clients", ["user_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("line_items", sa.JSON(), nullable=True),
        sa.Column("total", sa.Float(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        *_provider_sync_columns({"xero": "xero_invoice_id", "qb": "qb_invoice_id", "myob": "myob_uid"}),
        sa.Column("xero_sync_status", sa.String(20), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status IN ('draft', 'sent', 'partially_paid', 'paid', 'overdue', 'cancelled')",
            name="ck_invoices_status",
        ),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])

    op.create_table(
        "sync_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("sync_direction", sa.String(20), nullable=False),
        sa.Column("sync_status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sync_log_user_provider_created", "sync_log", ["user_id", "provider", "created_at"])

    op.create_table(
        "rate_limits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_rate_limits_key_created_at", "rate_limits", ["key", "created_at"])


# ---------------------------------------------------------------------------
# Downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    op.drop_index("ix_rate_limits_key_created_at", table_name="rate_limits")
    op.drop_table("rate_limits")
    op.drop_index("ix_sync_log_user_provider_created", table_name="sync_log")
    op.drop_table("sync_log")
    op.drop_index("ix_invoices_client_id", table_name="invoices")
    op.drop_index("ix_invoices_user_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_clients_user_id", table_name="clients")
    op.drop_table("clients")
    op.drop_index("ix_accounting_connections_user_id", table_name="accounting_connections")
    op.drop_table("accounting_connections")
    op.drop_index("ix_profiles_user_id", table_name="profiles")
    op.drop_table("profiles")
