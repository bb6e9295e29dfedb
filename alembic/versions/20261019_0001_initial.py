"""
Initial schema: users, sessions, linked OAuth accounts and export configs.

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "Users",
        sa.Column("UserID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("FirstName", sa.String(length=100), nullable=False),
        sa.Column("LastName", sa.String(length=100), nullable=False),
        sa.Column("Email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("DateCreated", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("LastUpdated", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("FacebookAdToken", sa.Text(), nullable=True),
    )

    op.create_table(
        "UserSession",
        sa.Column("SessionID", sa.String(length=36), primary_key=True),
        sa.Column("UserID", sa.Integer(), sa.ForeignKey("Users.UserID"), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("ExpiresAt", sa.DateTime(), nullable=True),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("LastSeen", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "LinkedAccount",
        sa.Column("AccountID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("UserID", sa.Integer(), sa.ForeignKey("Users.UserID"), nullable=False),
        sa.Column("Provider", sa.String(length=32), nullable=False),
        sa.Column("ProviderAccountID", sa.String(length=255), nullable=True),
        sa.Column("AccessToken", sa.Text(), nullable=True),
        sa.Column("RefreshToken", sa.Text(), nullable=True),
        sa.Column("ExpiresAt", sa.Integer(), nullable=True),
        sa.Column("Scope", sa.Text(), nullable=True),
        sa.Column("UpdatedAt", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_LinkedAccount_UserID", "LinkedAccount", ["UserID"])

    op.create_table(
        "ExportConfig",
        sa.Column("ConfigID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("UserID", sa.Integer(), sa.ForeignKey("Users.UserID"), nullable=False),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column("DataType", sa.String(length=16), nullable=False),
        sa.Column("SpreadsheetUrl", sa.String(length=500), nullable=True),
        sa.Column("SpreadsheetID", sa.String(length=128), nullable=False),
        sa.Column("SpreadsheetName", sa.String(length=255), nullable=True),
        sa.Column("SheetName", sa.String(length=255), nullable=False),
        sa.Column("ColumnMapping", sa.Text(), nullable=False),
        sa.Column("IncludeDate", sa.Boolean(), server_default=sa.text("1")),
        sa.Column("AppendMode", sa.Boolean(), server_default=sa.text("1")),
        sa.Column("AccountIDs", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("AutoExportEnabled", sa.Boolean(), server_default=sa.text("0")),
        sa.Column("ExportFrequency", sa.String(length=16), nullable=True),
        sa.Column("ExportHour", sa.Integer(), nullable=True),
        sa.Column("ExportMinute", sa.Integer(), nullable=True),
        sa.Column("ExportInterval", sa.Integer(), nullable=True),
        sa.Column("UseAdAccountTimezone", sa.Boolean(), server_default=sa.text("0")),
        sa.Column("AdAccountTimezone", sa.String(length=100), nullable=True),
        sa.Column("LastRunAt", sa.DateTime(), nullable=True),
        sa.Column("LastRunStatus", sa.String(length=16), nullable=True),
        sa.Column("LastRunRows", sa.Integer(), nullable=True),
        sa.Column("LastRunError", sa.Text(), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("UpdatedAt", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_ExportConfig_UserID", "ExportConfig", ["UserID"])
    op.create_index(
        "ix_ExportConfig_AutoExportEnabled", "ExportConfig", ["AutoExportEnabled"]
    )


def downgrade() -> None:
    op.drop_index("ix_ExportConfig_AutoExportEnabled", table_name="ExportConfig")
    op.drop_index("ix_ExportConfig_UserID", table_name="ExportConfig")
    op.drop_table("ExportConfig")
    op.drop_index("ix_LinkedAccount_UserID", table_name="LinkedAccount")
    op.drop_table("LinkedAccount")
    op.drop_table("UserSession")
    op.drop_table("Users")
