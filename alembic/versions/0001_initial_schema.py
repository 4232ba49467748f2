"""initial_schema

Creates the Gridbase schema: accounts, tables and fields, records and cell
values, and the audit log.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'app_user',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(200), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='viewer'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'data_table',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('meta_json', sa.JSON(), nullable=False),
        sa.Column('export_allowed_roles', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'table_field',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'table_id', sa.Integer(),
            sa.ForeignKey('data_table.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('options_json', sa.JSON(), nullable=False),
        sa.Column('readonly', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('table_id', 'name', name='uq_table_field_name'),
    )
    op.create_index('ix_table_field_table_id', 'table_field', ['table_id'])

    op.create_table(
        'record',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'table_id', sa.Integer(),
            sa.ForeignKey('data_table.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('readonly', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('meta_json', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_record_table_id', 'record', ['table_id'])

    op.create_table(
        'cell_value',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'record_id', sa.Integer(),
            sa.ForeignKey('record.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'field_id', sa.Integer(),
            sa.ForeignKey('table_field.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('value_json', sa.JSON(), nullable=True),
        sa.Column('formula_expr', sa.Text(), nullable=True),
        sa.Column('is_dirty', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('computed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('record_id', 'field_id', name='uq_cell_value_record_field'),
    )
    op.create_index('ix_cell_value_record_id', 'cell_value', ['record_id'])
    op.create_index('ix_cell_value_field_id', 'cell_value', ['field_id'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('table_id', sa.Integer(), nullable=True),
        sa.Column('view_id', sa.Integer(), nullable=True),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('meta_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_log_action', 'audit_log', ['action'])
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])
    op.create_index('ix_audit_log_table_id', 'audit_log', ['table_id'])


def downgrade() -> None:
    op.drop_table('audit_log')
    op.drop_table('cell_value')
    op.drop_table('record')
    op.drop_table('table_field')
    op.drop_table('data_table')
    op.drop_table('app_user')
