"""Initial schema: settings, jobs, cards, card_sets

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_settings_key", "settings", ["key"], unique=True)
    op.create_index("ix_settings_created_at", "settings", ["created_at"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("trigger", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_jobs_type", "jobs", ["type"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_jobs_created_at", "jobs", ["created_at"])

    op.create_table(
        "cards",
        sa.Column("scryfall_id", sa.String(255), nullable=False),
        sa.Column("oracle_id", sa.String(255), nullable=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("set_code", sa.String(20), nullable=True),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("scryfall_id"),
    )
    op.create_index("ix_cards_oracle_id", "cards", ["oracle_id"])
    op.create_index("ix_cards_name", "cards", ["name"])
    op.create_index("ix_cards_set_code", "cards", ["set_code"])

    op.create_table(
        "card_sets",
        sa.Column("scryfall_id", sa.String(36), nullable=False),
        sa.Column("code", sa.String(10), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("set_type", sa.String(50), nullable=True),
        sa.Column("released_at", sa.String(10), nullable=True),
        sa.Column("card_count", sa.Integer(), nullable=False),
        sa.Column("digital", sa.Boolean(), nullable=False),
        sa.Column("icon_filename", sa.String(255), nullable=True),
        sa.Column("parent_set_code", sa.String(10), nullable=True),
        sa.PrimaryKeyConstraint("scryfall_id"),
    )
    op.create_index("ix_card_sets_code", "card_sets", ["code"], unique=True)
    op.create_index("ix_card_sets_name", "card_sets", ["name"])
    op.create_index("ix_card_sets_set_type", "card_sets", ["set_type"])


def downgrade() -> None:
    op.drop_index("ix_card_sets_set_type", table_name="card_sets")
    op.drop_index("ix_card_sets_name", table_name="card_sets")
    op.drop_index("ix_card_sets_code", table_name="card_sets")
    op.drop_table("card_sets")

    op.drop_index("ix_cards_set_code", table_name="cards")
    op.drop_index("ix_cards_name", table_name="cards")
    op.drop_index("ix_cards_oracle_id", table_name="cards")
    op.drop_table("cards")

    op.drop_index("ix_jobs_created_at", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_type", table_name="jobs")
    op.drop_table("jobs")

    op.drop_index("ix_settings_created_at", table_name="settings")
    op.drop_index("ix_settings_key", table_name="settings")
    op.drop_table("settings")
