from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "competitions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("creator_account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("opponent_account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("wager", sa.Integer(), nullable=False),
        sa.Column("leaderboard_ref", sa.String(length=64), nullable=False),
        sa.Column("game_title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("participant_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_pool", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("house_contribution", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("result_json", sa.JSON(), nullable=True),
        sa.Column("cancel_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("starts_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("settled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "status IN ('open','pending','active','completed','declined','cancelled')",
            name="ck_competitions_status",
        ),
    )
    op.create_index("ix_competitions_creator_account_id", "competitions", ["creator_account_id"])
    op.create_index("ix_competitions_opponent_account_id", "competitions", ["opponent_account_id"])
    op.create_index("ix_competitions_status", "competitions", ["status"])
    op.create_index("ix_competitions_ends_at", "competitions", ["ends_at"])

    op.create_table(
        "participants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("competition_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("escrow_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("score", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_participants_competition_id", "participants", ["competition_id"])
    op.create_index("ix_participants_account_id", "participants", ["account_id"])
    op.create_unique_constraint("uq_participants_competition_account", "participants", ["competition_id", "account_id"])

    op.create_table(
        "bets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("competition_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("bettor_account_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("target_participant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("participants.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("placed_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refunded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payout", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("house_contribution", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("amount > 0", name="ck_bets_amount_positive"),
    )
    op.create_index("ix_bets_competition_id", "bets", ["competition_id"])
    op.create_index("ix_bets_bettor_account_id", "bets", ["bettor_account_id"])
    op.create_unique_constraint("uq_bets_one_per_bettor", "bets", ["competition_id", "bettor_account_id"])

def downgrade() -> None:
    op.drop_table("bets")
    op.drop_table("participants")
    op.drop_index("ix_competitions_ends_at", table_name="competitions")
    op.drop_index("ix_competitions_status", table_name="competitions")
    op.drop_index("ix_competitions_opponent_account_id", table_name="competitions")
    op.drop_index("ix_competitions_creator_account_id", table_name="competitions")
    op.drop_table("competitions")
