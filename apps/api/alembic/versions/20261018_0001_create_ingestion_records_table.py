"""create ingestion records table

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ingestion_records",
        sa.Column("file_key", sa.String(length=512), primary_key=True, nullable=False),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column("document_id", sa.String(length=128), nullable=False),
        sa.Column("index_name", sa.String(length=128), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index(
        "ix_ingestion_records_document_id",
        "ingestion_records",
        ["document_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_ingestion_records_document_id", table_name="ingestion_records")
    op.drop_table("ingestion_records")
