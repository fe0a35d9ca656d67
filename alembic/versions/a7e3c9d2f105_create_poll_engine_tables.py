"""create_poll_engine_tables

Revision ID: a7e3c9d2f105
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a7e3c9d2f105'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'identities',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_identities_phone', 'identities', ['phone'], unique=True)

    op.create_table(
        'polls',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('public_id', sa.String(length=16), nullable=False),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('creator_phone', sa.String(length=20), sa.ForeignKey('identities.phone'), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=10), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'ended', 'rejected')",
            name='ck_poll_status',
        ),
        sa.CheckConstraint(
            "end_time IS NOT NULL OR status = 'pending'",
            name='ck_poll_end_time',
        ),
    )
    op.create_index('ix_polls_public_id', 'polls', ['public_id'], unique=True)
    op.create_index('idx_polls_status_end', 'polls', ['status', 'end_time'])

    op.create_table(
        'poll_options',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('poll_id', sa.Integer(), sa.ForeignKey('polls.id', ondelete='CASCADE'), nullable=False),
        sa.Column('text', sa.String(length=255), nullable=False),
        sa.Column('color', sa.String(length=7), nullable=False),
    )
    op.create_index('idx_poll_options_poll', 'poll_options', ['poll_id'])

    op.create_table(
        'verification_challenges',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('identity_phone', sa.String(length=20), nullable=False),
        sa.Column('code_lookup_key', sa.String(length=64), nullable=False),
        sa.Column('purpose', sa.String(length=20), nullable=False),
        sa.Column('target_poll_id', sa.Integer(), sa.ForeignKey('polls.id', ondelete='CASCADE'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "purpose IN ('create_poll', 'cast_vote', 'admin_login')",
            name='ck_challenge_purpose',
        ),
    )
    op.create_index(
        'idx_challenges_lookup',
        'verification_challenges',
        ['identity_phone', 'code_lookup_key', 'purpose'],
    )
    op.create_index('idx_challenges_expires', 'verification_challenges', ['expires_at'])

    op.create_table(
        'votes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('poll_id', sa.Integer(), sa.ForeignKey('polls.id', ondelete='CASCADE'), nullable=False),
        sa.Column('option_id', sa.Integer(), sa.ForeignKey('poll_options.id', ondelete='CASCADE'), nullable=False),
        sa.Column('identity_phone', sa.String(length=20), sa.ForeignKey('identities.phone'), nullable=False),
        sa.Column('cast_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_winner', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('poll_id', 'identity_phone', name='uq_vote_poll_identity'),
    )
    op.create_index('idx_votes_poll_option', 'votes', ['poll_id', 'option_id'])
    # At most one winner row per poll
    op.create_index(
        'uq_vote_poll_winner',
        'votes',
        ['poll_id'],
        unique=True,
        sqlite_where=sa.text('is_winner = 1'),
        postgresql_where=sa.text('is_winner'),
    )


def downgrade():
    op.drop_index('uq_vote_poll_winner', table_name='votes')
    op.drop_index('idx_votes_poll_option', table_name='votes')
    op.drop_table('votes')

    op.drop_index('idx_challenges_expires', table_name='verification_challenges')
    op.drop_index('idx_challenges_lookup', table_name='verification_challenges')
    op.drop_table('verification_challenges')

    op.drop_index('idx_poll_options_poll', table_name='poll_options')
    op.drop_table('poll_options')

    op.drop_index('idx_polls_status_end', table_name='polls')
    op.drop_index('ix_polls_public_id', table_name='polls')
    op.drop_table('polls')

    op.drop_index('ix_identities_phone', table_name='identities')
    op.drop_table('identities')
