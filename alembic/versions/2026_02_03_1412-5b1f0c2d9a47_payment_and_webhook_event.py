"""payment and webhook event

Revision ID: 5b1f0c2d9a47
Revises:
Create Date: 2026-02-03 14:12:45.118302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1f0c2d9a47'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'payment',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('payer_tax_id', sa.String(), nullable=False),
        sa.Column('payment_method', sa.Enum('PIX', 'CREDIT_CARD', name='paymentmethod'), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'PAID', 'FAIL', name='paymentstatus'), nullable=False),
        sa.Column('external_reference', sa.String(), nullable=True),
        sa.Column('provider_preference_id', sa.String(), nullable=True),
        sa.Column('provider_init_point', sa.String(), nullable=True),
        sa.Column('provider_sandbox_init_point', sa.String(), nullable=True),
        sa.Column('provider_payment_id', sa.String(), nullable=True),
        sa.Column('fail_reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_reference')
    )
    op.create_index(op.f('ix_payment_payer_tax_id'), 'payment', ['payer_tax_id'], unique=False)
    op.create_index(op.f('ix_payment_payment_method'), 'payment', ['payment_method'], unique=False)
    op.create_index(op.f('ix_payment_status'), 'payment', ['status'], unique=False)
    op.create_index(op.f('ix_payment_created_at'), 'payment', ['created_at'], unique=False)

    op.create_table(
        'webhook_event',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('idempotency_key', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key')
    )
    op.create_index(op.f('ix_webhook_event_received_at'), 'webhook_event', ['received_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_webhook_event_received_at'), table_name='webhook_event')
    op.drop_table('webhook_event')

    op.drop_index(op.f('ix_payment_created_at'), table_name='payment')
    op.drop_index(op.f('ix_payment_status'), table_name='payment')
    op.drop_index(op.f('ix_payment_payment_method'), table_name='payment')
    op.drop_index(op.f('ix_payment_payer_tax_id'), table_name='payment')
    op.drop_table('payment')
    sa.Enum(name='paymentstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='paymentmethod').drop(op.get_bind(), checkfirst=True)
