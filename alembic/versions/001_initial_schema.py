"""
Initial schema - all Watchtower tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ============== ENUMS ==============

    op.execute('DROP TYPE IF EXISTS subjecttype CASCADE')
    op.execute('DROP TYPE IF EXISTS verificationstatus CASCADE')

    op.execute("CREATE TYPE subjecttype AS ENUM ('email', 'username', 'phone', 'name')")
    op.execute("CREATE TYPE verificationstatus AS ENUM ('unverified', 'pending', 'verified')")

    # ============== TABLES ==============

    # Users
    op.create_table('users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Monitored subjects
    op.create_table('monitored_subjects',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject_type', postgresql.ENUM('email', 'username', 'phone', 'name', name='subjecttype', create_type=False), nullable=False),
        sa.Column('subject_value', sa.String(500), nullable=False),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'subject_type', 'subject_value', name='uq_monitored_subject')
    )
    op.create_index('ix_monitored_subjects_user_id', 'monitored_subjects', ['user_id'])

    # Breach alerts
    op.create_table('breach_alerts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('monitored_subject_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('breach_source', sa.String(255), nullable=False),
        sa.Column('breach_date', sa.String(64), nullable=True),
        sa.Column('breach_data', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('fingerprint', sa.String(64), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['monitored_subject_id'], ['monitored_subjects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('monitored_subject_id', 'fingerprint', name='uq_breach_alert_fingerprint')
    )
    op.create_index('ix_breach_alerts_user_id', 'breach_alerts', ['user_id'])
    op.create_index('ix_breach_alerts_user_unread', 'breach_alerts', ['user_id', 'is_read'])

    # Investigations
    op.create_table('investigations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('target', sa.Text(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_investigations_user_id', 'investigations', ['user_id'])

    # Findings
    op.create_table('findings',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('investigation_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('agent_type', sa.String(100), nullable=False),
        sa.Column('source', sa.String(255), nullable=False, server_default=''),
        sa.Column('data', postgresql.JSON(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('confidence_score', sa.Float(), nullable=True),
        sa.Column('verification_status', postgresql.ENUM('unverified', 'pending', 'verified', name='verificationstatus', create_type=False), nullable=False, server_default='unverified'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['investigation_id'], ['investigations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_findings_investigation_agent', 'findings', ['investigation_id', 'agent_type'])


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign key constraints)
    op.drop_table('findings')
    op.drop_table('investigations')
    op.drop_table('breach_alerts')
    op.drop_table('monitored_subjects')
    op.drop_table('users')

    op.execute('DROP TYPE IF EXISTS verificationstatus')
    op.execute('DROP TYPE IF EXISTS subjecttype')
