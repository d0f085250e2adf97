"""baseline: sessions, rosters and per-session game state

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "game_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("session_code", sa.String(7), nullable=False, unique=True),
        sa.Column("campaign_name", sa.String(255), nullable=False),
        sa.Column("host_id", sa.String(100), nullable=False),
        sa.Column("max_players", sa.Integer(), nullable=True),
        sa.Column("dm_language", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "session_characters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.String(36), sa.ForeignKey("game_sessions.id"), nullable=False),
        sa.Column("character_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("armor_class", sa.Integer(), nullable=True),
        sa.Column("max_hp", sa.Integer(), nullable=False),
        sa.Column("current_hp", sa.Integer(), nullable=True),
        sa.Column("added_by", sa.String(100), nullable=True),
        sa.Column("added_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("session_id", "character_id", name="uq_session_character"),
    )

    op.create_table(
        "game_states",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.String(36), sa.ForeignKey("game_sessions.id"), nullable=False, unique=True),
        sa.Column("combat_state", sa.JSON(), nullable=True),
        sa.Column("combat_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scene_summary", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("game_states")
    op.drop_table("session_characters")
    op.drop_table("game_sessions")
