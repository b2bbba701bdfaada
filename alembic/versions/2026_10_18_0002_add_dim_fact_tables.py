"""Add per-bucket dimension fact tables for windowed breakdowns

Revision ID: add_dim_fact_tables
Revises: create_rollup_tables
Create Date: 2026-10-18 00:00:01.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'add_dim_fact_tables'
down_revision = 'create_rollup_tables'
branch_labels = None
depends_on = None


FACT_TABLES = {
    'minute_dim_stats': 'minute',
    'hourly_dim_stats': 'hour',
}


def upgrade() -> None:
    for table, bucket in FACT_TABLES.items():
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('backend_id', sa.Integer(), nullable=False),
            sa.Column('total_upload', sa.BigInteger(), nullable=False),
            sa.Column('total_download', sa.BigInteger(), nullable=False),
            sa.Column('total_connections', sa.BigInteger(), nullable=False),
            sa.Column('last_seen', sa.DateTime(), nullable=True),
            sa.Column(bucket, sa.String(19), nullable=False),
            sa.Column('domain', sa.String(255), nullable=False),
            sa.Column('ip', sa.String(45), nullable=False),
            sa.Column('source_ip', sa.String(45), nullable=False),
            sa.Column('chain', sa.String(512), nullable=False),
            sa.Column('rule', sa.String(512), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint(
                'backend_id', bucket, 'domain', 'ip', 'source_ip', 'chain', 'rule',
                name=f'uq_{table}'
            )
        )
        op.create_index(f'ix_{table}_backend_id', table, ['backend_id'])
        op.create_index(f'ix_{table}_{bucket}', table, [bucket])
        op.create_index(
            f'ix_{table}_backend_{bucket}_source', table, ['backend_id', bucket, 'source_ip']
        )


def downgrade() -> None:
    for table in FACT_TABLES:
        op.drop_table(table)
