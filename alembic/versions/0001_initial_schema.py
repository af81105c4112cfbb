"""Initial PaperTrail schema (default table names and integer ids)."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create revision and revision change tables."""
    op.create_table(
        "revisions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("model", sa.Text(), nullable=False),
        sa.Column("document", postgresql.JSONB, nullable=False),
        sa.Column("operation", sa.String(length=7), nullable=False),
        sa.Column("document_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("revision", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_revisions_document", "revisions", ["model", "document_id"])

    op.create_table(
        "revision_changes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("revision_id", sa.BigInteger(), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("document", postgresql.JSONB, nullable=False),
        sa.Column("diff", postgresql.JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["revision_id"], ["revisions.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_revision_changes_revision_id",
        "revision_changes",
        ["revision_id"],
    )


def downgrade() -> None:
    """Drop revision tables."""
    op.drop_index("ix_revision_changes_revision_id", table_name="revision_changes")
    op.drop_table("revision_changes")

    op.drop_index("idx_revisions_document", table_name="revisions")
    op.drop_table("revisions")
