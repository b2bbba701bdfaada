"""Create traffic rollup, geoip cache and app config tables

Revision ID: create_rollup_tables
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'create_rollup_tables'
down_revision = None
branch_labels = None
depends_on = None


KEY_COLUMNS = {
    'domain': lambda: [sa.Column('domain', sa.String(255), nullable=False)],
    'ip': lambda: [sa.Column('ip', sa.String(45), nullable=False)],
    'country': lambda: [
        sa.Column('country', sa.String(16), nullable=False),
        sa.Column('country_name', sa.String(128), nullable=True),
        sa.Column('continent', sa.String(64), nullable=True),
    ],
    'device': lambda: [sa.Column('source_ip', sa.String(45), nullable=False)],
    'proxy': lambda: [sa.Column('chain', sa.String(512), nullable=False)],
    'rule': lambda: [
        sa.Column('rule', sa.String(512), nullable=False),
        sa.Column('final_proxy', sa.String(255), nullable=True),
    ],
}

UNIQUE_KEYS = {
    'domain': ['domain'],
    'ip': ['ip'],
    'country': ['country'],
    'device': ['source_ip'],
    'proxy': ['chain'],
    'rule': ['rule'],
}

PAIRWISE = {
    'device_domain_stats': [('source_ip', 45), ('domain', 255)],
    'device_ip_stats': [('source_ip', 45), ('ip', 45)],
    'proxy_domain_stats': [('chain', 512), ('domain', 255)],
    'proxy_ip_stats': [('chain', 512), ('ip', 45)],
    'rule_proxy_stats': [('rule', 512), ('chain', 512)],
}


def _counter_columns():
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('backend_id', sa.Integer(), nullable=False),
        sa.Column('total_upload', sa.BigInteger(), nullable=False),
        sa.Column('total_download', sa.BigInteger(), nullable=False),
        sa.Column('total_connections', sa.BigInteger(), nullable=False),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
    ]


def _create_rollup(table, bucket, key_columns, unique):
    columns = _counter_columns()
    if bucket:
        columns.append(sa.Column(bucket, sa.String(19), nullable=False))
    columns.extend(key_columns)

    unique_columns = ['backend_id'] + ([bucket] if bucket else []) + unique
    op.create_table(
        table,
        *columns,
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(*unique_columns, name=f'uq_{table}')
    )
    op.create_index(f'ix_{table}_backend_id', table, ['backend_id'])
    if bucket:
        op.create_index(f'ix_{table}_{bucket}', table, [bucket])


def _rollup_tables():
    tables = []
    for name in KEY_COLUMNS:
        tables.append((f'{name}_stats', None, name))
        tables.append((f'minute_{name}_stats', 'minute', name))
        tables.append((f'hourly_{name}_stats', 'hour', name))
    return tables


def upgrade() -> None:
    # Dimension-less totals per bucket
    _create_rollup('minute_stats', 'minute', [], [])
    _create_rollup('hourly_stats', 'hour', [], [])

    for table, bucket, name in _rollup_tables():
        _create_rollup(table, bucket, KEY_COLUMNS[name](), UNIQUE_KEYS[name])

    for table, keys in PAIRWISE.items():
        _create_rollup(
            table,
            None,
            [sa.Column(column, sa.String(length), nullable=False) for column, length in keys],
            [column for column, _ in keys]
        )
    op.create_index(
        'ix_proxy_domain_stats_backend_domain', 'proxy_domain_stats', ['backend_id', 'domain']
    )

    op.create_table(
        'geoip_cache',
        sa.Column('ip', sa.String(45), nullable=False),
        sa.Column('country', sa.String(16), nullable=True),
        sa.Column('country_name', sa.String(128), nullable=True),
        sa.Column('continent', sa.String(64), nullable=True),
        sa.Column('city', sa.String(128), nullable=True),
        sa.Column('asn', sa.String(32), nullable=True),
        sa.Column('as_name', sa.String(255), nullable=True),
        sa.Column('queried_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('ip')
    )
    op.create_index('ix_geoip_cache_country', 'geoip_cache', ['country'])

    op.create_table(
        'app_config',
        sa.Column('key', sa.String(128), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade() -> None:
    op.drop_table('app_config')
    op.drop_index('ix_geoip_cache_country', table_name='geoip_cache')
    op.drop_table('geoip_cache')

    for table in PAIRWISE:
        op.drop_table(table)
    for table, _, _ in _rollup_tables():
        op.drop_table(table)
    op.drop_table('hourly_stats')
    op.drop_table('minute_stats')
