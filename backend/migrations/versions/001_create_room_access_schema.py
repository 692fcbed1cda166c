"""Create users, rooms, purchases, processed payments and chat tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_external_id', 'users', ['external_id'], unique=True)

    op.create_table(
        'rooms',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='usd'),
        sa.Column('creator_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('price > 0', name='ck_rooms_price_positive'),
    )
    op.create_index('ix_rooms_creator_id', 'rooms', ['creator_id'])

    op.create_table(
        'purchases',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('room_id', sa.String(length=36), sa.ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False),
        sa.Column('password', sa.String(length=64), nullable=False),
        sa.Column('access_token', sa.String(length=64), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='processing'),
        sa.Column('payment_amount', sa.Integer(), nullable=True),
        sa.Column('platform_fee', sa.Integer(), nullable=True),
        sa.Column('creator_share', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=10), nullable=True),
        sa.Column('payment_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id', 'room_id', name='unique_user_room'),
    )
    op.create_index('ix_purchases_user_id', 'purchases', ['user_id'])
    op.create_index('ix_purchases_room_id', 'purchases', ['room_id'])
    op.create_index('ix_purchases_access_token', 'purchases', ['access_token'], unique=True)
    op.create_index('ix_purchases_room_payment', 'purchases', ['room_id', 'payment_id'])

    op.create_table(
        'room_messages',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('room_id', sa.String(length=36), sa.ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_room_messages_room_created', 'room_messages', ['room_id', 'created_at'])

    op.create_table(
        'direct_messages',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('room_id', sa.String(length=36), sa.ForeignKey('rooms.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('receiver_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_direct_messages_room_created', 'direct_messages', ['room_id', 'created_at'])

    op.create_table(
        'processed_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payment_id', sa.String(length=255), nullable=False),
        sa.Column('room_id', sa.String(length=36), nullable=False),
        sa.Column('purchase_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_processed_payments_payment_id', 'processed_payments', ['payment_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_processed_payments_payment_id', table_name='processed_payments')
    op.drop_table('processed_payments')
    op.drop_index('ix_direct_messages_room_created', table_name='direct_messages')
    op.drop_table('direct_messages')
    op.drop_index('ix_room_messages_room_created', table_name='room_messages')
    op.drop_table('room_messages')
    op.drop_index('ix_purchases_room_payment', table_name='purchases')
    op.drop_index('ix_purchases_access_token', table_name='purchases')
    op.drop_index('ix_purchases_room_id', table_name='purchases')
    op.drop_index('ix_purchases_user_id', table_name='purchases')
    op.drop_table('purchases')
    op.drop_index('ix_rooms_creator_id', table_name='rooms')
    op.drop_table('rooms')
    op.drop_index('ix_users_external_id', table_name='users')
    op.drop_table('users')
