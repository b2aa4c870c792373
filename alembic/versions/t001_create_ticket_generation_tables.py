"""Create events, tickets and ticket_generation_batches tables

Revision ID: t001_ticket_generation
Revises:
Create Date: 2026-10-19

This migration creates the tables for bulk ticket generation:
- events: seat counter used by the capacity reservation
- tickets: one row per ticket, moved PENDING -> GENERATED | ERROR | QUEUE_ERROR
- ticket_generation_batches: one record per bulk request (correlation id)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 't001_ticket_generation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('organizer_id', sa.String(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('tickets_remaining', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('tickets_remaining >= 0', name='ck_events_tickets_remaining'),
    )
    op.create_index('ix_events_organizer_id', 'events', ['organizer_id'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('event_id', sa.String(), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('ticket_type_id', sa.String(), nullable=False),

        # Owner
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('type', sa.String(20), nullable=False, server_default='standard'),
        sa.Column('attendee_name', sa.String(255), nullable=False),
        sa.Column('attendee_email', sa.String(255), nullable=False),
        sa.Column('attendee_phone', sa.String(50), nullable=True),

        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),

        # Generation output
        sa.Column('qr_payload', sa.Text(), nullable=True),
        sa.Column('checksum', sa.String(255), nullable=True),
        sa.Column('artifact_url', sa.Text(), nullable=True),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),

        sa.Column('correlation_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('event_id', 'id', name='uq_tickets_event_id_id'),
    )

    op.create_check_constraint(
        'check_ticket_status',
        'tickets',
        "status IN ('PENDING', 'QUEUE_ERROR', 'GENERATED', 'ERROR')"
    )

    op.create_index('ix_tickets_event_id_status', 'tickets', ['event_id', 'status'])
    op.create_index('ix_tickets_correlation_id', 'tickets', ['correlation_id'])
    op.create_index('ix_tickets_user_id', 'tickets', ['user_id'])
    # Stale PENDING sweep
    op.create_index(
        'idx_tickets_pending_created',
        'tickets',
        ['created_at'],
        postgresql_where=sa.text("status = 'PENDING'")
    )

    op.create_table(
        'ticket_generation_batches',
        sa.Column('correlation_id', sa.String(), primary_key=True),
        sa.Column('event_id', sa.String(), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('requester_id', sa.String(), nullable=False),
        sa.Column('ticket_ids', sa.JSON(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('delay_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('job_id', sa.String(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_ticket_generation_batches_event_id', 'ticket_generation_batches', ['event_id'])
    op.create_index('ix_ticket_generation_batches_status', 'ticket_generation_batches', ['status'])


def downgrade() -> None:
    op.drop_index('ix_ticket_generation_batches_status', table_name='ticket_generation_batches')
    op.drop_index('ix_ticket_generation_batches_event_id', table_name='ticket_generation_batches')
    op.drop_table('ticket_generation_batches')

    op.drop_index('idx_tickets_pending_created', table_name='tickets')
    op.drop_index('ix_tickets_user_id', table_name='tickets')
    op.drop_index('ix_tickets_correlation_id', table_name='tickets')
    op.drop_index('ix_tickets_event_id_status', table_name='tickets')
    op.drop_constraint('check_ticket_status', 'tickets', type_='check')
    op.drop_table('tickets')

    op.drop_index('ix_events_organizer_id', table_name='events')
    op.drop_table('events')
