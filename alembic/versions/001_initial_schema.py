"""Initial schema - profiles, tickets, comments, attachments, history, rules

Revision ID: 001
Revises:
Create Date: 2026-10-18

WHY: Creates every table of the ticket lifecycle core in one revision.
Enum columns store member names, matching SQLAlchemy's default Enum
mapping in the models.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


profile_role = sa.Enum('USER', 'EMPLOYEE', 'ADMIN', 'OWNER', name='profilerole')
ticket_status = sa.Enum('OPEN', 'WAITING', 'CLOSED', name='ticketstatus')
ticket_priority = sa.Enum('LOW', 'NORMAL', 'HIGH', 'URGENT', name='ticketpriority')
history_action = sa.Enum(
    'CREATED', 'STATUS_CHANGED', 'PRIORITY_CHANGED', 'ASSIGNED',
    'DUE_DATE_CHANGED', 'REOPENED', 'DUPLICATED',
    name='historyaction',
)
notification_event_type = sa.Enum(
    'TICKET_CREATED', 'TICKET_ASSIGNED', 'TICKET_UPDATED', 'TICKET_CLOSED',
    'COMMENT_ADDED', 'TICKET_REOPENED', 'TICKET_DUPLICATED',
    name='notificationeventtype',
)


def upgrade() -> None:
    """
    Create the helpdesk tables.

    WHY:
    - profiles: the active-principal directory (role drives access)
    - categories: optional ticket classification
    - tickets: the lifecycle record
    - ticket_comments / ticket_attachments: append-only children
    - ticket_history: append-only audit trail, ordered by (created_at, id)
    - notification_rules: event type -> recipient selectors
    """
    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', profile_role, nullable=False, server_default='USER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_profiles_role', 'profiles', ['role'])

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', ticket_status, nullable=False, server_default='OPEN'),
        sa.Column('priority', ticket_priority, nullable=False, server_default='NORMAL'),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('submitter_id', sa.Integer(), nullable=False),
        sa.Column('assignee_id', sa.Integer(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.ForeignKeyConstraint(['submitter_id'], ['profiles.id']),
        sa.ForeignKeyConstraint(['assignee_id'], ['profiles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_priority', 'tickets', ['priority'])
    op.create_index('ix_tickets_submitter_id', 'tickets', ['submitter_id'])
    op.create_index('ix_tickets_assignee_id', 'tickets', ['assignee_id'])
    op.create_index('ix_tickets_created_at', 'tickets', ['created_at'])

    op.create_table(
        'ticket_comments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('author_id', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_private', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['author_id'], ['profiles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ticket_comments_ticket_id', 'ticket_comments', ['ticket_id'])
    op.create_index('ix_ticket_comments_created_at', 'ticket_comments', ['created_at'])

    op.create_table(
        'ticket_attachments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('uploader_id', sa.Integer(), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('byte_size', sa.Integer(), nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=False),
        sa.Column('blob_ref', sa.String(length=500), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploader_id'], ['profiles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ticket_attachments_ticket_id', 'ticket_attachments', ['ticket_id'])

    op.create_table(
        'ticket_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('action', history_action, nullable=False),
        sa.Column('field_name', sa.String(length=50), nullable=True),
        sa.Column('old_value', sa.String(length=255), nullable=True),
        sa.Column('new_value', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['actor_id'], ['profiles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ticket_history_ticket_created', 'ticket_history', ['ticket_id', 'created_at'])

    op.create_table(
        'notification_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', notification_event_type, nullable=False),
        sa.Column('recipient_selectors', sa.JSON(), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notification_rules_event_type', 'notification_rules', ['event_type'])


def downgrade() -> None:
    """Drop all helpdesk tables and enum types."""
    op.drop_index('ix_notification_rules_event_type', table_name='notification_rules')
    op.drop_table('notification_rules')

    op.drop_index('ix_ticket_history_ticket_created', table_name='ticket_history')
    op.drop_table('ticket_history')

    op.drop_index('ix_ticket_attachments_ticket_id', table_name='ticket_attachments')
    op.drop_table('ticket_attachments')

    op.drop_index('ix_ticket_comments_created_at', table_name='ticket_comments')
    op.drop_index('ix_ticket_comments_ticket_id', table_name='ticket_comments')
    op.drop_table('ticket_comments')

    op.drop_index('ix_tickets_created_at', table_name='tickets')
    op.drop_index('ix_tickets_assignee_id', table_name='tickets')
    op.drop_index('ix_tickets_submitter_id', table_name='tickets')
    op.drop_index('ix_tickets_priority', table_name='tickets')
    op.drop_index('ix_tickets_status', table_name='tickets')
    op.drop_table('tickets')

    op.drop_table('categories')

    op.drop_index('ix_profiles_role', table_name='profiles')
    op.drop_table('profiles')

    bind = op.get_bind()
    for enum_type in (
        notification_event_type,
        history_action,
        ticket_priority,
        ticket_status,
        profile_role,
    ):
        enum_type.drop(bind, checkfirst=True)
