"""access catalog tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("user_type", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_user_type", "users", ["user_type"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "pages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("page_key", sa.String(), nullable=False),
        sa.Column("page_name", sa.String(), nullable=False),
        sa.Column("route_path", sa.String(), nullable=False),
        sa.Column("section_key", sa.String(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pages_page_key", "pages", ["page_key"], unique=True)
    op.create_index("ix_pages_route_path", "pages", ["route_path"], unique=True)
    op.create_index("ix_pages_section_key", "pages", ["section_key"])
    op.create_index("ix_pages_is_active", "pages", ["is_active"])
    op.create_index("ix_pages_created_at", "pages", ["created_at"])

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("perm_key", sa.String(), nullable=False),
        sa.Column("page_id", sa.Integer(), nullable=False),
        sa.Column("action_key", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["page_id"], ["pages.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("page_id", "action_key", name="uq_permissions_page_action"),
    )
    op.create_index("ix_permissions_perm_key", "permissions", ["perm_key"], unique=True)
    op.create_index("ix_permissions_page_id", "permissions", ["page_id"])
    op.create_index("ix_permissions_action_key", "permissions", ["action_key"])
    op.create_index("ix_permissions_is_active", "permissions", ["is_active"])
    op.create_index("ix_permissions_created_at", "permissions", ["created_at"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("role_name", sa.String(), nullable=False),
        sa.Column("role_description", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_roles_role_name", "roles", ["role_name"], unique=True)
    op.create_index("ix_roles_created_at", "roles", ["created_at"])

    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.Column("is_allowed", sa.Boolean(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"]),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )
    op.create_index("ix_role_permissions_permission", "role_permissions", ["permission_id"])

    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )
    op.create_index("ix_user_roles_role", "user_roles", ["role_id"])

    op.create_table(
        "user_permissions",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.Column("is_allowed", sa.Boolean(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"]),
        sa.PrimaryKeyConstraint("user_id", "permission_id"),
    )
    op.create_index("ix_user_permissions_permission", "user_permissions", ["permission_id"])


def downgrade() -> None:
    op.drop_index("ix_user_permissions_permission", table_name="user_permissions")
    op.drop_table("user_permissions")
    op.drop_index("ix_user_roles_role", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_index("ix_role_permissions_permission", table_name="role_permissions")
    op.drop_table("role_permissions")

    op.drop_index("ix_roles_created_at", table_name="roles")
    op.drop_index("ix_roles_role_name", table_name="roles")
    op.drop_table("roles")

    op.drop_index("ix_permissions_created_at", table_name="permissions")
    op.drop_index("ix_permissions_is_active", table_name="permissions")
    op.drop_index("ix_permissions_action_key", table_name="permissions")
    op.drop_index("ix_permissions_page_id", table_name="permissions")
    op.drop_index("ix_permissions_perm_key", table_name="permissions")
    op.drop_table("permissions")

    op.drop_index("ix_pages_created_at", table_name="pages")
    op.drop_index("ix_pages_is_active", table_name="pages")
    op.drop_index("ix_pages_section_key", table_name="pages")
    op.drop_index("ix_pages_route_path", table_name="pages")
    op.drop_index("ix_pages_page_key", table_name="pages")
    op.drop_table("pages")

    op.drop_index("ix_users_created_at", table_name="users")
    op.drop_index("ix_users_user_type", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
