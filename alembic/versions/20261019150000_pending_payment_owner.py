from alembic import op
import sqlalchemy as sa

revision = "20261019150000"
down_revision = "20261019093000"

def upgrade():
    op.add_column('pending_payments', sa.Column('user_id', sa.Integer(), nullable=True))
    op.add_column('pending_payments', sa.Column('amount_cents', sa.BigInteger(), nullable=True))
    op.create_index('ix_pending_payments_user_id', 'pending_payments', ['user_id'])

def downgrade():
    op.drop_index('ix_pending_payments_user_id', table_name='pending_payments')
    op.drop_column('pending_payments', 'amount_cents')
    op.drop_column('pending_payments', 'user_id')
