"""Create messaging tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table('users',
    sa.Column('id', sa.String(length=64), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('username', sa.String(length=64), nullable=True),
    sa.Column('display_name', sa.String(length=100), nullable=True),
    sa.Column('avatar_url', sa.String(length=1024), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id', name='pk_users'),
    sa.UniqueConstraint('email', name='uq_users_email')
    )

    op.create_table('user_blocks',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('blocker_id', sa.String(length=64), nullable=False),
    sa.Column('blocked_id', sa.String(length=64), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['blocker_id'], ['users.id'], name='fk_user_blocks_blocker_id_users'),
    sa.ForeignKeyConstraint(['blocked_id'], ['users.id'], name='fk_user_blocks_blocked_id_users'),
    sa.PrimaryKeyConstraint('id', name='pk_user_blocks'),
    sa.UniqueConstraint('blocker_id', 'blocked_id', name='uq_user_blocks_pair')
    )
    op.create_index('ix_user_blocks_blocker_id', 'user_blocks', ['blocker_id'])
    op.create_index('ix_user_blocks_blocked_id', 'user_blocks', ['blocked_id'])

    op.create_table('conversations',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('type', sa.String(length=16), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=True),
    sa.Column('avatar_url', sa.String(length=1024), nullable=True),
    sa.Column('other_user_id', sa.String(length=64), nullable=True),
    sa.Column('other_user_name', sa.String(length=255), nullable=True),
    sa.Column('created_by', sa.String(length=64), nullable=False),
    sa.Column('member_count', sa.Integer(), nullable=False),
    sa.Column('last_message_id', sa.Integer(), nullable=True),
    sa.Column('last_message_sender_id', sa.String(length=64), nullable=True),
    sa.Column('last_message_text', sa.Text(), nullable=True),
    sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('private_key', sa.String(length=160), nullable=True),
    sa.Column('is_deleted', sa.Boolean(), nullable=False),
    *_timestamps(),
    sa.ForeignKeyConstraint(['other_user_id'], ['users.id'], name='fk_conversations_other_user_id_users'),
    sa.ForeignKeyConstraint(['created_by'], ['users.id'], name='fk_conversations_created_by_users'),
    sa.PrimaryKeyConstraint('id', name='pk_conversations'),
    sa.UniqueConstraint('private_key', name='uq_conversations_private_key')
    )
    op.create_index('ix_conversations_type', 'conversations', ['type'])
    op.create_index('ix_conversations_other_user_id', 'conversations', ['other_user_id'])
    op.create_index('ix_conversations_created_by', 'conversations', ['created_by'])
    op.create_index('ix_conversations_is_deleted', 'conversations', ['is_deleted'])
    op.create_index('idx_conversations_last_message_at', 'conversations', ['last_message_at'])

    op.create_table('conversation_members',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('conversation_id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('role', sa.String(length=16), nullable=False),
    sa.Column('nickname', sa.String(length=255), nullable=True),
    sa.Column('custom_background', sa.String(length=1024), nullable=True),
    sa.Column('is_muted', sa.Boolean(), nullable=False),
    sa.Column('is_pinned', sa.Boolean(), nullable=False),
    sa.Column('is_conversation_blocked', sa.Boolean(), nullable=False),
    sa.Column('unread_count', sa.Integer(), nullable=False),
    sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('left_at', sa.DateTime(timezone=True), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], name='fk_conversation_members_conversation_id_conversations'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_conversation_members_user_id_users'),
    sa.PrimaryKeyConstraint('id', name='pk_conversation_members'),
    sa.UniqueConstraint('conversation_id', 'user_id', name='uq_conversation_members_pair')
    )
    op.create_index('ix_conversation_members_conversation_id', 'conversation_members', ['conversation_id'])
    op.create_index('ix_conversation_members_user_id', 'conversation_members', ['user_id'])
    op.create_index('idx_conversation_members_user_pinned', 'conversation_members', ['user_id', 'is_pinned', 'updated_at'])
    op.create_index('idx_conversation_members_user_unread', 'conversation_members', ['user_id', 'unread_count'])

    op.create_table('messages',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('conversation_id', sa.String(length=36), nullable=False),
    sa.Column('sender_id', sa.String(length=64), nullable=False),
    sa.Column('type', sa.String(length=16), nullable=False),
    sa.Column('text', sa.Text(), nullable=True),
    sa.Column('media_url', sa.String(length=2048), nullable=True),
    sa.Column('mime_type', sa.String(length=255), nullable=True),
    sa.Column('file_name', sa.String(length=255), nullable=True),
    sa.Column('file_size', sa.BigInteger(), nullable=True),
    sa.Column('duration', sa.Float(), nullable=True),
    sa.Column('reply_to_message_id', sa.Integer(), nullable=True),
    sa.Column('is_deleted', sa.Boolean(), nullable=False),
    *_timestamps(),
    sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], name='fk_messages_conversation_id_conversations'),
    sa.ForeignKeyConstraint(['sender_id'], ['users.id'], name='fk_messages_sender_id_users'),
    sa.ForeignKeyConstraint(['reply_to_message_id'], ['messages.id'], name='fk_messages_reply_to_message_id_messages'),
    sa.PrimaryKeyConstraint('id', name='pk_messages')
    )
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('ix_messages_reply_to_message_id', 'messages', ['reply_to_message_id'])
    op.create_index('idx_messages_conversation_created', 'messages', ['conversation_id', 'created_at'])

    op.create_table('message_reactions',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('message_id', sa.Integer(), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('type', sa.String(length=16), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['message_id'], ['messages.id'], name='fk_message_reactions_message_id_messages', ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_message_reactions_user_id_users'),
    sa.PrimaryKeyConstraint('id', name='pk_message_reactions'),
    sa.UniqueConstraint('message_id', 'user_id', name='uq_message_reactions_pair')
    )
    op.create_index('ix_message_reactions_user_id', 'message_reactions', ['user_id'])

    op.create_table('notifications',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('from_user_id', sa.String(length=64), nullable=True),
    sa.Column('type', sa.String(length=32), nullable=False),
    sa.Column('title', sa.String(length=200), nullable=False),
    sa.Column('body', sa.String(length=500), nullable=False),
    sa.Column('data', sa.JSON(), nullable=False),
    sa.Column('read', sa.Boolean(), nullable=False),
    sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_notifications_user_id_users'),
    sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], name='fk_notifications_from_user_id_users'),
    sa.PrimaryKeyConstraint('id', name='pk_notifications')
    )
    op.create_index('ix_notifications_from_user_id', 'notifications', ['from_user_id'])
    op.create_index('ix_notifications_expires_at', 'notifications', ['expires_at'])
    op.create_index('idx_notifications_user_read_created', 'notifications', ['user_id', 'read', 'created_at'])
    op.create_index('idx_notifications_user_type_created', 'notifications', ['user_id', 'type', 'created_at'])

    op.create_table('push_tokens',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('token', sa.String(length=512), nullable=False),
    sa.Column('platform', sa.String(length=16), nullable=False),
    sa.Column('device_id', sa.String(length=255), nullable=True),
    sa.Column('device_name', sa.String(length=200), nullable=True),
    sa.Column('active', sa.Boolean(), nullable=False),
    *_timestamps(),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_push_tokens_user_id_users'),
    sa.PrimaryKeyConstraint('id', name='pk_push_tokens'),
    sa.UniqueConstraint('token', name='uq_push_tokens_token')
    )
    op.create_index('idx_push_tokens_user_active', 'push_tokens', ['user_id', 'active'])


def downgrade() -> None:
    op.drop_table('push_tokens')
    op.drop_table('notifications')
    op.drop_table('message_reactions')
    op.drop_table('messages')
    op.drop_table('conversation_members')
    op.drop_table('conversations')
    op.drop_table('user_blocks')
    op.drop_table('users')
