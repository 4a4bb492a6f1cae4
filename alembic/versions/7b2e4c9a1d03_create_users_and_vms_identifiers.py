"""Create users and vms_identifiers tables

Revision ID: 7b2e4c9a1d03
Revises:
Create Date: 2026-10-19 09:12:31.204518

- users: comptes Vetra (clients, vétérinaires, administrateurs)
- vms_identifiers: liens (system_name, external_id) vers les VMS externes,
  clé de déduplication de la synchronisation
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7b2e4c9a1d03"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column(
            "username",
            sa.String(length=100),
            nullable=False,
            comment="Identifiant de connexion",
        ),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column(
            "password_hash",
            sa.String(length=255),
            nullable=False,
            comment="Hash bcrypt (mot de passe provisoire pour les comptes importés)",
        ),
        sa.Column(
            "role",
            sa.String(length=20),
            nullable=False,
            comment="client | doctor | admin",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("username"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=False)

    op.create_table(
        "vms_identifiers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column(
            "system_name",
            sa.String(length=50),
            nullable=False,
            comment="Nom du VMS (ex: ezyVet)",
        ),
        sa.Column(
            "external_id",
            sa.String(length=64),
            nullable=False,
            comment="Clé primaire de l'enregistrement dans le VMS",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["username"], ["users.username"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "system_name", "external_id", name="uq_vms_identifiers_system_external"
        ),
        sa.UniqueConstraint("username", "system_name", name="uq_vms_identifiers_user_system"),
    )
    op.create_index(
        op.f("ix_vms_identifiers_username"), "vms_identifiers", ["username"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_vms_identifiers_username"), table_name="vms_identifiers")
    op.drop_table("vms_identifiers")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
