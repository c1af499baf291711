"""Initial schema: projects, conversations, messages and the action engine

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(*values, name):
    # Stored as VARCHAR + CHECK, matching native_enum=False on the models
    return sa.Enum(*values, name=name, native_enum=False)


def upgrade() -> None:
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_projects_id', 'projects', ['id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(100)),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'project_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', _enum('manager', 'agent', name='projectrole'), nullable=False, server_default='agent'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_project_member'),
    )
    op.create_index('ix_project_members_id', 'project_members', ['id'])

    op.create_table(
        'visitors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('visitor_uid', sa.String(100), nullable=False),
        sa.Column('display_name', sa.String(100)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_visitors_id', 'visitors', ['id'])
    op.create_index('ix_visitors_visitor_uid', 'visitors', ['visitor_uid'], unique=True)

    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('visitor_id', sa.Integer(), sa.ForeignKey('visitors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', _enum('open', 'pending', 'closed', name='conversationstatus'), nullable=False, server_default='open'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_conversations_id', 'conversations', ['id'])
    op.create_index('ix_conversations_project_id', 'conversations', ['project_id'])

    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text()),
        sa.Column(
            'content_type',
            _enum('text', 'form_request', 'form_submission', name='messagecontenttype'),
            nullable=False,
            server_default='text',
        ),
        sa.Column('metadata', sa.Text()),
        sa.Column('sender_id', sa.String(100), nullable=False),
        sa.Column('recipient_id', sa.String(100), nullable=False),
        sa.Column('from_customer', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            'status',
            _enum('sending', 'sent', 'delivered', 'read', 'failed', name='messagestatus'),
            nullable=False,
            server_default='sending',
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_messages_id', 'messages', ['id'])
    op.create_index('ix_messages_conversation_content_type', 'messages', ['conversation_id', 'content_type'])

    op.create_table(
        'action_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('project_id', sa.Integer(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('definition', sa.Text(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_action_templates_id', 'action_templates', ['id'])
    op.create_index('ix_action_templates_project_id', 'action_templates', ['project_id'])

    op.create_table(
        'action_submissions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('template_id', sa.Integer(), sa.ForeignKey('action_templates.id'), nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('visitor_id', sa.Integer(), sa.ForeignKey('visitors.id', ondelete='CASCADE')),
        sa.Column('form_request_message_id', sa.Integer(), sa.ForeignKey('messages.id', ondelete='SET NULL')),
        sa.Column('data', sa.Text(), nullable=False),
        sa.Column(
            'status',
            _enum('submitted', 'processing', 'completed', 'failed', 'cancelled', name='actionsubmissionstatus'),
            nullable=False,
            server_default='submitted',
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            '(creator_id IS NOT NULL AND visitor_id IS NULL) OR '
            '(creator_id IS NULL AND visitor_id IS NOT NULL)',
            name='ck_action_submissions_single_owner',
        ),
    )
    op.create_index('ix_action_submissions_conversation_id', 'action_submissions', ['conversation_id'])
    # One submission per form request
    op.create_index(
        'uq_action_submissions_form_request_message',
        'action_submissions',
        ['form_request_message_id'],
        unique=True,
        postgresql_where=sa.text('form_request_message_id IS NOT NULL'),
        sqlite_where=sa.text('form_request_message_id IS NOT NULL'),
    )

    # At most one unanswered form request per conversation
    op.create_table(
        'pending_form_requests',
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('pending_form_requests')
    op.drop_index('uq_action_submissions_form_request_message', table_name='action_submissions')
    op.drop_index('ix_action_submissions_conversation_id', table_name='action_submissions')
    op.drop_table('action_submissions')
    op.drop_index('ix_action_templates_project_id', table_name='action_templates')
    op.drop_index('ix_action_templates_id', table_name='action_templates')
    op.drop_table('action_templates')
    op.drop_index('ix_messages_conversation_content_type', table_name='messages')
    op.drop_index('ix_messages_id', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_conversations_project_id', table_name='conversations')
    op.drop_index('ix_conversations_id', table_name='conversations')
    op.drop_table('conversations')
    op.drop_index('ix_visitors_visitor_uid', table_name='visitors')
    op.drop_index('ix_visitors_id', table_name='visitors')
    op.drop_table('visitors')
    op.drop_index('ix_project_members_id', table_name='project_members')
    op.drop_table('project_members')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
    op.drop_index('ix_projects_id', table_name='projects')
    op.drop_table('projects')
