"""Create email_logs table

Revision ID: 002
Revises: 001
Create Date: 2025-02-10 14:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Check if table already exists (in case it was created by Base.metadata.create_all)
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'email_logs' not in existing_tables:
        op.create_table(
            'email_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('customer_id', sa.Integer(), nullable=True),
            sa.Column('subscription_id', sa.Integer(), nullable=True),
            sa.Column('to_email', sa.String(length=255), nullable=False),
            sa.Column('subject', sa.String(length=255), nullable=False),
            sa.Column('template', sa.String(length=100), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('provider_message_id', sa.String(length=255), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='SET NULL'),
            sa.ForeignKeyConstraint(['subscription_id'], ['woocommerce_subscriptions.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_email_logs_id', 'email_logs', ['id'])
        op.create_index('ix_email_logs_customer_id', 'email_logs', ['customer_id'])
        op.create_index('ix_email_logs_to_email', 'email_logs', ['to_email'])


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)

    if 'email_logs' in inspector.get_table_names():
        op.drop_index('ix_email_logs_to_email', table_name='email_logs')
        op.drop_index('ix_email_logs_customer_id', table_name='email_logs')
        op.drop_index('ix_email_logs_id', table_name='email_logs')
        op.drop_table('email_logs')
