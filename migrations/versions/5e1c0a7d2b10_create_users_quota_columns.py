"""users: plan label + API quota counters

Revision ID: 5e1c0a7d2b10
Revises:
Create Date: 2025-11-02 10:12:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '5e1c0a7d2b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('uuid', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('account_type', sa.String(length=16), nullable=False, server_default='basic'),
        sa.Column('post_api_calls', sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column('get_api_calls', sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column('edit_api_calls', sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("account_type IN ('basic','pro')", name='ck_users_account_type_valid'),
    )


def downgrade():
    op.drop_table('users')
