"""Per-business return number sequence

Revision ID: 20261020_return_seq
Revises: 20261019_initial
Create Date: 2026-10-20

Return numbers were derived from a row count, which hands the same number
to two concurrent submissions. This adds an atomically bumped counter per
business and seeds it past every number already issued.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261020_return_seq'
down_revision = '20261019_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('return_sequences',
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ),
        sa.PrimaryKeyConstraint('business_id')
    )

    op.execute(
        "INSERT INTO return_sequences (business_id, next_number) "
        "SELECT business_id, COUNT(*) + 1 FROM returns_exchanges GROUP BY business_id"
    )


def downgrade():
    op.drop_table('return_sequences')
