"""Affiliate codes, attributions, commissions and payout batches

Revision ID: b7e41c9a2d05
Revises:
Create Date: 2026-10-19 10:12:40.518302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7e41c9a2d05'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STATUSES = ('PENDING', 'PROCESSING', 'PAID', 'FAILED')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('profiles',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('full_name', sa.String(), nullable=False),
    sa.Column('email', sa.String(), nullable=True),
    sa.Column('role', sa.Enum('CUSTOMER', 'STYLIST', 'ADMIN', name='profilerole'), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('payout_account_id', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('bookings',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('stylist_id', sa.UUID(), nullable=False),
    sa.Column('total_price_minor', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['customer_id'], ['profiles.id'], name=op.f('fk_bookings_customer_id_profiles')),
    sa.ForeignKeyConstraint(['stylist_id'], ['profiles.id'], name=op.f('fk_bookings_stylist_id_profiles')),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('booking_payments',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('booking_id', sa.UUID(), nullable=False),
    sa.Column('provider_payment_id', sa.String(), nullable=True),
    sa.Column('amount_minor', sa.Integer(), nullable=False),
    sa.Column('affiliate_id', sa.UUID(), nullable=True),
    sa.Column('affiliate_commission_minor', sa.Integer(), nullable=True),
    sa.Column('affiliate_commission_rate', sa.Numeric(precision=5, scale=2), nullable=True),
    sa.Column('status', sa.Enum('PENDING', 'SUCCEEDED', 'FAILED', 'REFUNDED', name='bookingpaymentstatus'), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name=op.f('fk_booking_payments_booking_id_bookings')),
    sa.ForeignKeyConstraint(['affiliate_id'], ['profiles.id'], name=op.f('fk_booking_payments_affiliate_id_profiles')),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('booking_id'),
    sa.UniqueConstraint('provider_payment_id')
    )
    op.create_table('affiliate_codes',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(), nullable=False),
    sa.Column('owner_id', sa.UUID(), nullable=False),
    sa.Column('commission_rate', sa.Numeric(precision=5, scale=2), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('expires_at', sa.DateTime(), nullable=True),
    sa.Column('click_count', sa.Integer(), nullable=False),
    sa.Column('conversion_count', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['owner_id'], ['profiles.id'], name=op.f('fk_affiliate_codes_owner_id_profiles')),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_affiliate_codes_code'), 'affiliate_codes', ['code'], unique=True)
    op.create_table('affiliate_attributions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code_id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.UUID(), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=True),
    sa.Column('visitor_session', sa.String(), nullable=True),
    sa.Column('original_user_id', sa.UUID(), nullable=True),
    sa.Column('attributed_at', sa.DateTime(), nullable=False),
    sa.Column('expires_at', sa.DateTime(), nullable=False),
    sa.Column('converted', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('converted_at', sa.DateTime(), nullable=True),
    sa.Column('booking_id', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['code_id'], ['affiliate_codes.id'], name=op.f('fk_affiliate_attributions_code_id_affiliate_codes')),
    sa.ForeignKeyConstraint(['owner_id'], ['profiles.id'], name=op.f('fk_affiliate_attributions_owner_id_profiles')),
    sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name=op.f('fk_affiliate_attributions_user_id_profiles')),
    sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name=op.f('fk_affiliate_attributions_booking_id_bookings')),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_affiliate_attributions_user_id'), 'affiliate_attributions', ['user_id'], unique=False)
    op.create_index(
        'uq_affiliate_attributions_open_user_code',
        'affiliate_attributions',
        ['user_id', 'code_id'],
        unique=True,
        postgresql_where=sa.text('converted = false'),
    )
    op.create_table('affiliate_payout_batches',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.UUID(), nullable=False),
    sa.Column('period_start', sa.DateTime(), nullable=False),
    sa.Column('period_end', sa.DateTime(), nullable=False),
    sa.Column('amount_minor', sa.Integer(), nullable=False),
    sa.Column('currency', sa.String(), nullable=False),
    sa.Column('record_count', sa.Integer(), nullable=False),
    sa.Column('status', sa.Enum(*STATUSES, name='payoutstatus'), nullable=False),
    sa.Column('provider_transfer_id', sa.String(), nullable=True),
    sa.Column('failure_reason', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('paid_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['owner_id'], ['profiles.id'], name=op.f('fk_affiliate_payout_batches_owner_id_profiles')),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_affiliate_payout_batches_owner_id'), 'affiliate_payout_batches', ['owner_id'], unique=False)
    op.create_table('affiliate_commissions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('booking_id', sa.UUID(), nullable=False),
    sa.Column('owner_id', sa.UUID(), nullable=False),
    sa.Column('attribution_id', sa.UUID(), nullable=True),
    sa.Column('amount_minor', sa.Integer(), nullable=False),
    sa.Column('commission_rate', sa.Numeric(precision=5, scale=2), nullable=False),
    sa.Column('status', sa.Enum(*STATUSES, name='commissionstatus'), nullable=False),
    sa.Column('batch_id', sa.UUID(), nullable=True),
    sa.Column('batched_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('paid_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name=op.f('fk_affiliate_commissions_booking_id_bookings')),
    sa.ForeignKeyConstraint(['owner_id'], ['profiles.id'], name=op.f('fk_affiliate_commissions_owner_id_profiles')),
    sa.ForeignKeyConstraint(['attribution_id'], ['affiliate_attributions.id'], name=op.f('fk_affiliate_commissions_attribution_id_affiliate_attributions')),
    sa.ForeignKeyConstraint(['batch_id'], ['affiliate_payout_batches.id'], name=op.f('fk_affiliate_commissions_batch_id_affiliate_payout_batches')),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('booking_id')
    )
    op.create_index(op.f('ix_affiliate_commissions_owner_id'), 'affiliate_commissions', ['owner_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_affiliate_commissions_owner_id'), table_name='affiliate_commissions')
    op.drop_table('affiliate_commissions')
    op.drop_index(op.f('ix_affiliate_payout_batches_owner_id'), table_name='affiliate_payout_batches')
    op.drop_table('affiliate_payout_batches')
    op.drop_index('uq_affiliate_attributions_open_user_code', table_name='affiliate_attributions')
    op.drop_index(op.f('ix_affiliate_attributions_user_id'), table_name='affiliate_attributions')
    op.drop_table('affiliate_attributions')
    op.drop_index(op.f('ix_affiliate_codes_code'), table_name='affiliate_codes')
    op.drop_table('affiliate_codes')
    op.drop_table('booking_payments')
    op.drop_table('bookings')
    op.drop_table('profiles')
    for name in ('commissionstatus', 'payoutstatus', 'bookingpaymentstatus', 'profilerole'):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
