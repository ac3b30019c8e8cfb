"""Create users and assessment sessions."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "assessment_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assessment_type", sa.String(length=16), nullable=False, server_default="checkin"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("text_data", sa.JSON(), nullable=True),
        sa.Column("visual_data", sa.JSON(), nullable=True),
        sa.Column("analysis", sa.JSON(), nullable=True),
        sa.Column("final_score", sa.Float(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="cascade"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'cancelled')",
            name="ck_assessment_sessions_status",
        ),
        sa.CheckConstraint(
            "assessment_type IN ('baseline', 'checkin')",
            name="ck_assessment_sessions_type",
        ),
        sa.CheckConstraint(
            "(final_score IS NULL) OR (final_score >= 0 AND final_score <= 100)",
            name="ck_assessment_sessions_final_score",
        ),
        sa.CheckConstraint(
            "(status = 'completed') = (analysis IS NOT NULL)",
            name="ck_assessment_sessions_analysis_completed",
        ),
    )
    op.create_index(
        "ix_assessment_sessions_user_created",
        "assessment_sessions",
        ["user_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "uq_assessment_sessions_user_pending",
        "assessment_sessions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_assessment_sessions_user_pending", table_name="assessment_sessions")
    op.drop_index("ix_assessment_sessions_user_created", table_name="assessment_sessions")
    op.drop_table("assessment_sessions")
    op.drop_table("users")
