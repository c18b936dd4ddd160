"""create accounts and global_counter

Revision ID: 4b7d2e91c0aa
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4b7d2e91c0aa'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    tables = set(insp.get_table_names())

    if 'accounts' not in tables:
        op.create_table(
            'accounts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.Column('tickets_contributed', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('supplies', sa.Integer(), nullable=False, server_default='100'),
            sa.Column('currency', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('premium_currency', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('generator_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint('tickets_contributed >= 0', name='ck_accounts_tickets_non_negative'),
            sa.CheckConstraint('supplies >= 0', name='ck_accounts_supplies_non_negative'),
            sa.CheckConstraint('currency >= 0', name='ck_accounts_currency_non_negative'),
            sa.CheckConstraint('premium_currency >= 0', name='ck_accounts_premium_non_negative'),
            sa.CheckConstraint('generator_count >= 0', name='ck_accounts_generators_non_negative'),
        )
        op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)

    if 'global_counter' not in tables:
        op.create_table(
            'global_counter',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint('value >= 0', name='ck_global_counter_non_negative'),
        )
        op.execute("INSERT INTO global_counter (id, value) VALUES (1, 0)")


def downgrade():
    op.drop_table('global_counter')
    op.drop_index('ix_accounts_email', table_name='accounts')
    op.drop_table('accounts')
