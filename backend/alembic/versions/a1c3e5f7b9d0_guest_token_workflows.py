"""guest token workflows: bookings, charges, payments, waitlist, tokens

Revision ID: a1c3e5f7b9d0
Revises:
Create Date: 2026-04-20

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'a1c3e5f7b9d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=100), nullable=False, server_default=''),
        sa.Column('mobile_e164', sa.String(length=32), nullable=True),
        sa.Column('stripe_customer_id', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'table_bookings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('booking_reference', sa.String(length=32), nullable=False),
        sa.Column('booking_type', sa.String(length=20), nullable=False, server_default='regular'),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('party_size', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('committed_party_size', sa.Integer(), nullable=True),
        sa.Column('start_datetime', sa.DateTime(timezone=True), nullable=False),
        sa.Column('hold_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('table_name', sa.String(length=64), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('card_capture_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sunday_preorder_cutoff_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sunday_preorder_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_reference'),
    )
    op.create_index(op.f('ix_table_bookings_customer_id'), 'table_bookings', ['customer_id'], unique=False)
    op.create_index(op.f('ix_table_bookings_status'), 'table_bookings', ['status'], unique=False)

    op.create_table(
        'card_captures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_booking_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('stripe_setup_intent_id', sa.String(length=64), nullable=True),
        sa.Column('stripe_payment_method_id', sa.String(length=64), nullable=True),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['table_booking_id'], ['table_bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_card_captures_table_booking_id'), 'card_captures', ['table_booking_id'], unique=False)

    op.create_table(
        'charge_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_booking_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='GBP'),
        sa.Column('manager_decision', sa.String(length=20), nullable=True),
        sa.Column('charge_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('stripe_payment_intent_id', sa.String(length=64), nullable=True),
        sa.Column('charge_attempt_error', sa.String(length=500), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['table_booking_id'], ['table_bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "manager_decision IS NULL OR manager_decision IN ('approved', 'waived')",
            name='ck_charge_requests_manager_decision',
        ),
    )
    op.create_index(op.f('ix_charge_requests_table_booking_id'), 'charge_requests', ['table_booking_id'], unique=False)
    op.create_index(op.f('ix_charge_requests_charge_status'), 'charge_requests', ['charge_status'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_booking_id', sa.Integer(), nullable=False),
        sa.Column('charge_request_id', sa.Integer(), nullable=True),
        sa.Column('charge_type', sa.String(length=20), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(length=64), nullable=True),
        sa.Column('stripe_checkout_session_id', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='GBP'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['table_booking_id'], ['table_bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['charge_request_id'], ['charge_requests.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_payments_table_booking_id'), 'payments', ['table_booking_id'], unique=False)
    op.create_index(
        op.f('ix_payments_stripe_checkout_session_id'), 'payments', ['stripe_checkout_session_id'], unique=False
    )

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('start_datetime', sa.DateTime(timezone=True), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('booking_open', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('event_status', sa.String(length=20), nullable=False, server_default='scheduled'),
        sa.Column('payment_mode', sa.String(length=20), nullable=False, server_default='free'),
        sa.Column('price_per_seat', sa.Numeric(10, 2), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'event_bookings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('seats', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False, server_default='waitlist_offer'),
        sa.Column('hold_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_event_bookings_event_id'), 'event_bookings', ['event_id'], unique=False)
    op.create_index(op.f('ix_event_bookings_customer_id'), 'event_bookings', ['customer_id'], unique=False)

    op.create_table(
        'waitlist_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('requested_seats', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued'),
        sa.Column('offered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_waitlist_entries_event_id'), 'waitlist_entries', ['event_id'], unique=False)
    op.create_index(op.f('ix_waitlist_entries_customer_id'), 'waitlist_entries', ['customer_id'], unique=False)

    op.create_table(
        'waitlist_offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('waitlist_entry_id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('seats_held', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='sent'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['waitlist_entry_id'], ['waitlist_entries.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_waitlist_offers_waitlist_entry_id'), 'waitlist_offers', ['waitlist_entry_id'], unique=False)
    op.create_index(op.f('ix_waitlist_offers_event_id'), 'waitlist_offers', ['event_id'], unique=False)
    op.create_index(op.f('ix_waitlist_offers_customer_id'), 'waitlist_offers', ['customer_id'], unique=False)

    op.create_table(
        'booking_holds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('hold_type', sa.String(length=20), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('waitlist_offer_id', sa.Integer(), nullable=True),
        sa.Column('event_booking_id', sa.Integer(), nullable=True),
        sa.Column('seats_held', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['waitlist_offer_id'], ['waitlist_offers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['event_booking_id'], ['event_bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_booking_holds_event_id'), 'booking_holds', ['event_id'], unique=False)
    op.create_index(op.f('ix_booking_holds_waitlist_offer_id'), 'booking_holds', ['waitlist_offer_id'], unique=False)
    op.create_index(op.f('ix_booking_holds_event_booking_id'), 'booking_holds', ['event_booking_id'], unique=False)

    op.create_table(
        'guest_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('table_booking_id', sa.Integer(), nullable=True),
        sa.Column('charge_request_id', sa.Integer(), nullable=True),
        sa.Column('waitlist_offer_id', sa.Integer(), nullable=True),
        sa.Column('event_booking_id', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['table_booking_id'], ['table_bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['charge_request_id'], ['charge_requests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['waitlist_offer_id'], ['waitlist_offers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['event_booking_id'], ['event_bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "action_type IN ('charge_approval', 'payment', 'card_capture', 'waitlist_offer', 'sunday_preorder')",
            name='ck_guest_tokens_action_type',
        ),
    )
    op.create_index(op.f('ix_guest_tokens_token_hash'), 'guest_tokens', ['token_hash'], unique=True)
    op.create_index(op.f('ix_guest_tokens_customer_id'), 'guest_tokens', ['customer_id'], unique=False)
    op.create_index(op.f('ix_guest_tokens_table_booking_id'), 'guest_tokens', ['table_booking_id'], unique=False)

    op.create_table(
        'sunday_menu_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('item_type', sa.String(length=20), nullable=False, server_default='main'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'table_booking_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.Integer(), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), nullable=False),
        sa.Column('name_snapshot', sa.String(length=120), nullable=False),
        sa.Column('price_snapshot', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('item_type', sa.String(length=20), nullable=False, server_default='main'),
        sa.ForeignKeyConstraint(['booking_id'], ['table_bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['menu_item_id'], ['sunday_menu_items.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_table_booking_items_booking_id'), 'table_booking_items', ['booking_id'], unique=False)

    op.create_table(
        'guest_token_throttles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bucket_key', sa.String(length=200), nullable=False),
        sa.Column('window_started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('blocked_until', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_guest_token_throttles_bucket_key'), 'guest_token_throttles', ['bucket_key'], unique=True)
    op.create_index(
        op.f('ix_guest_token_throttles_window_started_at'), 'guest_token_throttles', ['window_started_at'], unique=False
    )

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=200), nullable=False),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='in_progress'),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_idempotency_keys_key'), 'idempotency_keys', ['key'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_idempotency_keys_key'), table_name='idempotency_keys')
    op.drop_table('idempotency_keys')
    op.drop_index(op.f('ix_guest_token_throttles_window_started_at'), table_name='guest_token_throttles')
    op.drop_index(op.f('ix_guest_token_throttles_bucket_key'), table_name='guest_token_throttles')
    op.drop_table('guest_token_throttles')
    op.drop_index(op.f('ix_table_booking_items_booking_id'), table_name='table_booking_items')
    op.drop_table('table_booking_items')
    op.drop_table('sunday_menu_items')
    op.drop_index(op.f('ix_guest_tokens_table_booking_id'), table_name='guest_tokens')
    op.drop_index(op.f('ix_guest_tokens_customer_id'), table_name='guest_tokens')
    op.drop_index(op.f('ix_guest_tokens_token_hash'), table_name='guest_tokens')
    op.drop_table('guest_tokens')
    op.drop_index(op.f('ix_booking_holds_event_booking_id'), table_name='booking_holds')
    op.drop_index(op.f('ix_booking_holds_waitlist_offer_id'), table_name='booking_holds')
    op.drop_index(op.f('ix_booking_holds_event_id'), table_name='booking_holds')
    op.drop_table('booking_holds')
    op.drop_index(op.f('ix_waitlist_offers_customer_id'), table_name='waitlist_offers')
    op.drop_index(op.f('ix_waitlist_offers_event_id'), table_name='waitlist_offers')
    op.drop_index(op.f('ix_waitlist_offers_waitlist_entry_id'), table_name='waitlist_offers')
    op.drop_table('waitlist_offers')
    op.drop_index(op.f('ix_waitlist_entries_customer_id'), table_name='waitlist_entries')
    op.drop_index(op.f('ix_waitlist_entries_event_id'), table_name='waitlist_entries')
    op.drop_table('waitlist_entries')
    op.drop_index(op.f('ix_event_bookings_customer_id'), table_name='event_bookings')
    op.drop_index(op.f('ix_event_bookings_event_id'), table_name='event_bookings')
    op.drop_table('event_bookings')
    op.drop_table('events')
    op.drop_index(op.f('ix_payments_stripe_checkout_session_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_table_booking_id'), table_name='payments')
    op.drop_table('payments')
    op.drop_index(op.f('ix_charge_requests_charge_status'), table_name='charge_requests')
    op.drop_index(op.f('ix_charge_requests_table_booking_id'), table_name='charge_requests')
    op.drop_table('charge_requests')
    op.drop_index(op.f('ix_card_captures_table_booking_id'), table_name='card_captures')
    op.drop_table('card_captures')
    op.drop_index(op.f('ix_table_bookings_status'), table_name='table_bookings')
    op.drop_index(op.f('ix_table_bookings_customer_id'), table_name='table_bookings')
    op.drop_table('table_bookings')
    op.drop_table('customers')
