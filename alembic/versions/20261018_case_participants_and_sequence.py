"""Case participants and per-case audit sequence counter

Revision ID: 002_participants_sequence
Revises: 001_case_lifecycle
Create Date: 2026-10-18 12:00:00.000000

Adds to ``cases``:
  - ``secondary_advocate_ids`` / ``additional_client_ids`` JSON lists
  - ``last_sequence``, bumped by every unit of work so writers on one case
    serialize on its row; backfilled from the existing activity ledger
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002_participants_sequence'
down_revision: Union[str, None] = '001_case_lifecycle'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add participant lists and the sequence counter to cases."""
    with op.batch_alter_table('cases') as batch_op:
        batch_op.add_column(
            sa.Column('secondary_advocate_ids', sa.JSON(), nullable=False, server_default='[]')
        )
        batch_op.add_column(
            sa.Column('additional_client_ids', sa.JSON(), nullable=False, server_default='[]')
        )
        batch_op.add_column(
            sa.Column('last_sequence', sa.Integer(), nullable=False, server_default='0')
        )

    op.execute(
        """
        UPDATE cases SET last_sequence = COALESCE(
            (SELECT MAX(sequence) FROM case_activities
             WHERE case_activities.case_id = cases.case_id),
            0
        )
        """
    )


def downgrade() -> None:
    """Drop participant lists and the sequence counter."""
    with op.batch_alter_table('cases') as batch_op:
        batch_op.drop_column('last_sequence')
        batch_op.drop_column('additional_client_ids')
        batch_op.drop_column('secondary_advocate_ids')
