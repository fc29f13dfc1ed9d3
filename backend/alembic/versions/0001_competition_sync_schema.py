"""
Competition participants, account integrations and sync history
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_competition_sync_schema"
down_revision = None
branch_labels = None
depends_on = None


performance_source = sa.Enum(
    "REGISTRATION",
    "MYFXBOOK",
    "MT4",
    "MT5",
    "FOREX_FACTORY",
    "FOREX_FACTORY_MANUAL",
    name="performancedatasource",
)
integration_provider = sa.Enum("MYFXBOOK", "MT4", "MT5", "FOREX_FACTORY", name="integrationprovider")
integration_status = sa.Enum("PENDING", "SYNCING", "SUCCESS", "ERROR", name="integrationsyncstatus")
sync_type = sa.Enum("MANUAL", "AUTOMATIC", name="synctype")
history_status = sa.Enum("PENDING", "IN_PROGRESS", "SUCCESS", "ERROR", name="synchistorystatus")
data_source = sa.Enum("LIVE", "FALLBACK", name="syncdatasource")


def upgrade():
    op.create_table(
        "trading_credentials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_username", sa.String(length=100), nullable=False),
        sa.Column("account_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("platform", sa.String(length=20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_trading_credentials_account_username", "trading_credentials", ["account_username"])

    op.create_table(
        "traders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_traders_email", "traders", ["email"], unique=True)

    op.create_table(
        "credential_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("credential_id", sa.Integer(), sa.ForeignKey("trading_credentials.id"), nullable=False, unique=True),
        sa.Column("trader_id", sa.Integer(), sa.ForeignKey("traders.id"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_credential_assignments_trader_id", "credential_assignments", ["trader_id"])

    op.create_table(
        "performance_data",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trader_id", sa.Integer(), sa.ForeignKey("traders.id"), nullable=False, unique=True),
        sa.Column("starting_balance", sa.Float(), nullable=False, server_default="1000"),
        sa.Column("current_balance", sa.Float(), nullable=False, server_default="1000"),
        sa.Column("profit_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("data_source", performance_source, nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "account_integrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", integration_provider, nullable=False),
        sa.Column("credential_id", sa.Integer(), sa.ForeignKey("trading_credentials.id"), nullable=False),
        sa.Column("account_id", sa.String(length=255), nullable=False),
        sa.Column("api_token_encrypted", sa.Text(), nullable=True),
        sa.Column("server_endpoint", sa.String(length=500), nullable=True),
        sa.Column("platform", sa.String(length=10), nullable=True),
        sa.Column("system_id", sa.String(length=100), nullable=True),
        sa.Column("sync_status", integration_status, nullable=False, server_default="PENDING"),
        sa.Column("last_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_account_integrations_provider", "account_integrations", ["provider"])
    op.create_index("ix_account_integrations_credential_id", "account_integrations", ["credential_id"])
    op.create_index("idx_integrations_provider_credential", "account_integrations", ["provider", "credential_id"])
    op.create_index("idx_integrations_provider_active", "account_integrations", ["provider", "is_active"])

    op.create_table(
        "sync_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("integration_id", sa.Integer(), sa.ForeignKey("account_integrations.id"), nullable=False),
        sa.Column("sync_type", sync_type, nullable=False),
        sa.Column("status", history_status, nullable=False),
        sa.Column("records_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("data_source", data_source, nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sync_history_integration_id", "sync_history", ["integration_id"])
    op.create_index("idx_sync_history_integration_date", "sync_history", ["integration_id", "synced_at"])


def downgrade():
    op.drop_index("idx_sync_history_integration_date", table_name="sync_history")
    op.drop_index("ix_sync_history_integration_id", table_name="sync_history")
    op.drop_table("sync_history")

    op.drop_index("idx_integrations_provider_active", table_name="account_integrations")
    op.drop_index("idx_integrations_provider_credential", table_name="account_integrations")
    op.drop_index("ix_account_integrations_credential_id", table_name="account_integrations")
    op.drop_index("ix_account_integrations_provider", table_name="account_integrations")
    op.drop_table("account_integrations")

    op.drop_table("performance_data")
    op.drop_index("ix_credential_assignments_trader_id", table_name="credential_assignments")
    op.drop_table("credential_assignments")
    op.drop_index("ix_traders_email", table_name="traders")
    op.drop_table("traders")
    op.drop_index("ix_trading_credentials_account_username", table_name="trading_credentials")
    op.drop_table("trading_credentials")

    bind = op.get_bind()
    for enum_type in (data_source, history_status, sync_type, integration_status, integration_provider, performance_source):
        enum_type.drop(bind, checkfirst=True)
