"""Add indexes for cohort and segment bulk reads

Revision ID: 3f1c9d2e7a41
Revises:
Create Date: 2026-10-19 11:02:17.418260

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9d2e7a41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    # Activation anchor scan and activity fetch
    op.create_index('idx_transactions_created', 'transactions', ['created_at'], if_not_exists=True)
    op.create_index('idx_transactions_user_created', 'transactions', ['user_id', 'created_at'], if_not_exists=True)
    # Mini-app activity fetch
    op.create_index('idx_marketing_source_user_created', 'marketing_events',
                    ['source', 'user_id', 'created_at'], if_not_exists=True)
    # Billing and trial anchors
    op.create_index('idx_payment_history_created', 'payment_history', ['created_at'], if_not_exists=True)
    op.create_index('ix_user_subscriptions_user_id', 'user_subscriptions', ['user_id'], if_not_exists=True)
    # Telegram id lookups for events without user_id
    op.create_index('ix_users_telegram_id', 'users', ['telegram_id'], if_not_exists=True)


def downgrade():
    op.drop_index('ix_users_telegram_id', 'users')
    op.drop_index('ix_user_subscriptions_user_id', 'user_subscriptions')
    op.drop_index('idx_payment_history_created', 'payment_history')
    op.drop_index('idx_marketing_source_user_created', 'marketing_events')
    op.drop_index('idx_transactions_user_created', 'transactions')
    op.drop_index('idx_transactions_created', 'transactions')
