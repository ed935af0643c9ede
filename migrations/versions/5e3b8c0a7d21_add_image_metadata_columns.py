"""add image_type, thumbnail and image_path to locations

Revision ID: 5e3b8c0a7d21
Revises: 1c7e2a9d4f10
Create Date: 2025-04-11 09:32:00
"""

from alembic import op
import sqlalchemy as sa


revision = "5e3b8c0a7d21"
down_revision = "1c7e2a9d4f10"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("locations") as batch_op:
        batch_op.add_column(sa.Column("image_type", sa.String(length=50), nullable=True))
        batch_op.add_column(sa.Column("thumbnail", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("image_path", sa.String(length=512), nullable=True))


def downgrade():
    with op.batch_alter_table("locations") as batch_op:
        batch_op.drop_column("image_path")
        batch_op.drop_column("thumbnail")
        batch_op.drop_column("image_type")
