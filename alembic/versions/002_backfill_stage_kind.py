"""Replace stage title matching with an explicit stage kind.

Revision ID: 002
Revises: 001
Create Date: 2026-04-14

Stages used to be recognized by title at every move ("Pending", "Archive",
...) and review stages by a boolean. This migration:
1. Adds stages.kind and backfills it once from is_review_stage and the title
2. Adds tasks.review_state and backfills it from is_in_specific_stage
3. Drops the two legacy boolean columns

The classification rules are inlined so later changes to the application
code do not alter what this migration does.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAGE_KIND = sa.Enum('suggestion', 'intake', 'normal', 'review', 'terminal', name='stagekind')
REVIEW_STATE = sa.Enum('active', 'awaiting_review', name='reviewstate')

SUGGESTION_TITLES = ('suggested', 'suggested task')
INTAKE_TITLES = ('pending',)
TERMINAL_TITLES = ('archive', 'completed', 'complete')


def _classify(title: str, is_review_stage: bool) -> str:
    normalized = " ".join((title or "").split()).lower()
    if normalized in SUGGESTION_TITLES:
        return 'suggestion'
    if normalized in INTAKE_TITLES:
        return 'intake'
    if normalized in TERMINAL_TITLES:
        return 'terminal'
    if is_review_stage:
        return 'review'
    return 'normal'


def upgrade() -> None:
    bind = op.get_bind()
    STAGE_KIND.create(bind, checkfirst=True)
    REVIEW_STATE.create(bind, checkfirst=True)

    with op.batch_alter_table('stages') as batch_op:
        batch_op.add_column(sa.Column('kind', STAGE_KIND, nullable=False, server_default='normal'))
    with op.batch_alter_table('tasks') as batch_op:
        batch_op.add_column(sa.Column('review_state', REVIEW_STATE, nullable=False, server_default='active'))

    stages = bind.execute(sa.text("SELECT id, title, is_review_stage FROM stages")).fetchall()
    counts: dict[str, int] = {}
    for stage_id, title, is_review_stage in stages:
        kind = _classify(title, bool(is_review_stage))
        counts[kind] = counts.get(kind, 0) + 1
        if kind != 'normal':
            bind.execute(
                sa.text("UPDATE stages SET kind = :kind WHERE id = :id"),
                {"kind": kind, "id": stage_id}
            )
    print(f"Classified {len(stages)} stages: {counts}")

    bind.execute(sa.text(
        "UPDATE tasks SET review_state = 'awaiting_review' WHERE is_in_specific_stage = :flag"
    ), {"flag": True})

    with op.batch_alter_table('stages') as batch_op:
        batch_op.drop_column('is_review_stage')
    with op.batch_alter_table('tasks') as batch_op:
        batch_op.drop_column('is_in_specific_stage')
        batch_op.create_index('ix_tasks_review_state', ['review_state'])


def downgrade() -> None:
    bind = op.get_bind()

    with op.batch_alter_table('stages') as batch_op:
        batch_op.add_column(sa.Column('is_review_stage', sa.Boolean, nullable=False, server_default=sa.false()))
    with op.batch_alter_table('tasks') as batch_op:
        batch_op.add_column(sa.Column('is_in_specific_stage', sa.Boolean, nullable=False, server_default=sa.false()))

    bind.execute(sa.text("UPDATE stages SET is_review_stage = :flag WHERE kind = 'review'"), {"flag": True})
    bind.execute(sa.text(
        "UPDATE tasks SET is_in_specific_stage = :flag WHERE review_state = 'awaiting_review'"
    ), {"flag": True})

    with op.batch_alter_table('tasks') as batch_op:
        batch_op.drop_index('ix_tasks_review_state')
        batch_op.drop_column('review_state')
    with op.batch_alter_table('stages') as batch_op:
        batch_op.drop_column('kind')

    REVIEW_STATE.drop(bind, checkfirst=True)
    STAGE_KIND.drop(bind, checkfirst=True)
