"""Case lifecycle schema

Revision ID: 001_case_lifecycle
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_case_lifecycle'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create cases and the records each case owns."""
    op.create_table(
        'cases',
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('client_id', sa.String(length=100), nullable=False),
        sa.Column('advocate_id', sa.String(length=100), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        # Enums are stored as their string values (non-native)
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('court_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('hold_reason', sa.Text(), nullable=True),
        sa.Column('outcome', sa.Text(), nullable=True),
        sa.Column('escalation_flagged', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('case_id')
    )
    op.create_index(op.f('ix_cases_client_id'), 'cases', ['client_id'], unique=False)
    op.create_index(op.f('ix_cases_advocate_id'), 'cases', ['advocate_id'], unique=False)
    op.create_index(op.f('ix_cases_status'), 'cases', ['status'], unique=False)
    op.create_index(op.f('ix_cases_court_date'), 'cases', ['court_date'], unique=False)
    op.create_index(op.f('ix_cases_created_at'), 'cases', ['created_at'], unique=False)

    op.create_table(
        'case_documents',
        sa.Column('document_id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_type', sa.String(length=100), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('access_level', sa.String(length=20), nullable=False),
        sa.Column('scan_status', sa.String(length=20), nullable=False),
        sa.Column('uploaded_by', sa.String(length=100), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.case_id']),
        sa.PrimaryKeyConstraint('document_id')
    )
    op.create_index(op.f('ix_case_documents_case_id'), 'case_documents', ['case_id'], unique=False)

    op.create_table(
        'case_notes',
        sa.Column('note_id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('author_id', sa.String(length=100), nullable=False),
        sa.Column('note_type', sa.String(length=20), nullable=False),
        sa.Column('access_level', sa.String(length=20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('shared_with', sa.JSON(), nullable=False),
        sa.Column('follow_up_due', sa.DateTime(timezone=True), nullable=True),
        sa.Column('follow_up_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.case_id']),
        sa.PrimaryKeyConstraint('note_id')
    )
    op.create_index(op.f('ix_case_notes_case_id'), 'case_notes', ['case_id'], unique=False)

    op.create_table(
        'case_assignments',
        sa.Column('assignment_id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('advocate_id', sa.String(length=100), nullable=False),
        sa.Column('reason', sa.String(length=20), nullable=False),
        sa.Column('assigned_by', sa.String(length=100), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('superseded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['case_id'], ['cases.case_id']),
        sa.PrimaryKeyConstraint('assignment_id')
    )
    op.create_index(op.f('ix_case_assignments_case_id'), 'case_assignments', ['case_id'], unique=False)
    op.create_index(op.f('ix_case_assignments_advocate_id'), 'case_assignments', ['advocate_id'], unique=False)

    op.create_table(
        'case_activities',
        sa.Column('entry_id', sa.String(length=50), nullable=False),
        sa.Column('case_id', sa.String(length=50), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=100), nullable=False),
        sa.Column('actor_role', sa.String(length=20), nullable=False),
        sa.Column('action', sa.String(length=30), nullable=False),
        sa.Column('before', sa.JSON(), nullable=False),
        sa.Column('after', sa.JSON(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('origin', sa.String(length=100), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['case_id'], ['cases.case_id']),
        sa.PrimaryKeyConstraint('entry_id'),
        sa.UniqueConstraint('case_id', 'sequence', name='uq_case_activities_case_sequence')
    )
    op.create_index(op.f('ix_case_activities_case_id'), 'case_activities', ['case_id'], unique=False)
    op.create_index(op.f('ix_case_activities_action'), 'case_activities', ['action'], unique=False)


def downgrade() -> None:
    """Drop all case lifecycle tables."""
    op.drop_index(op.f('ix_case_activities_action'), table_name='case_activities')
    op.drop_index(op.f('ix_case_activities_case_id'), table_name='case_activities')
    op.drop_table('case_activities')
    op.drop_index(op.f('ix_case_assignments_advocate_id'), table_name='case_assignments')
    op.drop_index(op.f('ix_case_assignments_case_id'), table_name='case_assignments')
    op.drop_table('case_assignments')
    op.drop_index(op.f('ix_case_notes_case_id'), table_name='case_notes')
    op.drop_table('case_notes')
    op.drop_index(op.f('ix_case_documents_case_id'), table_name='case_documents')
    op.drop_table('case_documents')
    op.drop_index(op.f('ix_cases_created_at'), table_name='cases')
    op.drop_index(op.f('ix_cases_court_date'), table_name='cases')
    op.drop_index(op.f('ix_cases_status'), table_name='cases')
    op.drop_index(op.f('ix_cases_advocate_id'), table_name='cases')
    op.drop_index(op.f('ix_cases_client_id'), table_name='cases')
    op.drop_table('cases')
