"""stripe: one billing record per user

Revision ID: 8b4f2e61c9a3
Revises: 5e1c0a7d2b10
Create Date: 2025-11-02 10:40:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '8b4f2e61c9a3'
down_revision = '5e1c0a7d2b10'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'stripe',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=64), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=64), nullable=True),
        sa.Column('price_id', sa.String(length=64), nullable=True),
        sa.Column('subscription_status', sa.String(length=32), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid'], ondelete="RESTRICT"),
    )
    # ON CONFLICT (user_id) in the upsert relies on this being unique
    op.create_index('ix_stripe_user_id', 'stripe', ['user_id'], unique=True)
    op.create_index('ix_stripe_stripe_customer_id', 'stripe', ['stripe_customer_id'])
    op.create_index('ix_stripe_stripe_subscription_id', 'stripe', ['stripe_subscription_id'])
    op.create_index('ix_stripe_subscription_status', 'stripe', ['subscription_status'])


def downgrade():
    op.drop_index('ix_stripe_subscription_status', table_name='stripe')
    op.drop_index('ix_stripe_stripe_subscription_id', table_name='stripe')
    op.drop_index('ix_stripe_stripe_customer_id', table_name='stripe')
    op.drop_index('ix_stripe_user_id', table_name='stripe')
    op.drop_table('stripe')
