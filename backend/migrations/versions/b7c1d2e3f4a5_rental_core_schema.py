"""rental core schema

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the tables the rental core reads from and writes to:
- outlets: branches holding cylinder stock
- cylinders: physical cylinders, one current outlet each
- leases: cylinder rentals (active -> returned, overdue is never stored)
- transfers: append-only record of cylinder moves between outlets
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # outlets
    # ============================================================================
    op.create_table(
        'outlets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_outlets'),
        sa.UniqueConstraint('name', name='uq_outlets_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_outlets_is_active', 'outlets', ['is_active'])

    # ============================================================================
    # cylinders
    # ============================================================================
    op.create_table(
        'cylinders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('qr_code', sa.String(length=255), nullable=False),
        sa.Column('capacity_class', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('current_outlet_id', sa.Integer(), nullable=False),
        sa.Column('current_gas_volume', sa.Numeric(10, 2), nullable=False),
        sa.Column('max_gas_volume', sa.Numeric(10, 2), nullable=False),
        sa.Column('last_inspection_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            "status IN ('available', 'leased', 'refilling', 'maintenance', 'damaged', 'retired')",
            name='ck_cylinders_status',
        ),
        sa.CheckConstraint('current_gas_volume <= max_gas_volume', name='ck_cylinders_volume_within_max'),
        sa.CheckConstraint('current_gas_volume >= 0', name='ck_cylinders_volume_non_negative'),
        sa.ForeignKeyConstraint(['current_outlet_id'], ['outlets.id'], name='fk_cylinders_current_outlet_id_outlets'),
        sa.PrimaryKeyConstraint('id', name='pk_cylinders'),
        sa.UniqueConstraint('code', name='uq_cylinders_code'),
        sa.UniqueConstraint('qr_code', name='uq_cylinders_qr_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cylinders_status', 'cylinders', ['status'])
    op.create_index('ix_cylinders_current_outlet_id', 'cylinders', ['current_outlet_id'])
    op.create_index('ix_cylinders_outlet_status', 'cylinders', ['current_outlet_id', 'status'])

    # ============================================================================
    # leases
    # ============================================================================
    op.create_table(
        'leases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_id', sa.Integer(), nullable=False),
        sa.Column('outlet_id', sa.Integer(), nullable=False),
        sa.Column('lease_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expected_return_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_return_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lease_amount_cents', sa.Integer(), nullable=False),
        sa.Column('deposit_amount_cents', sa.Integer(), nullable=False),
        sa.Column('refund_amount_cents', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('return_condition', sa.String(length=32), nullable=True),
        sa.Column('return_staff_id', sa.Integer(), nullable=True),
        sa.Column('damage_notes', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint("status IN ('active', 'returned')", name='ck_leases_status'),
        sa.CheckConstraint(
            "return_condition IS NULL OR return_condition IN ('good', 'damaged', 'needs_inspection')",
            name='ck_leases_return_condition',
        ),
        sa.CheckConstraint('deposit_amount_cents >= 0', name='ck_leases_deposit_non_negative'),
        sa.CheckConstraint('lease_amount_cents >= 0', name='ck_leases_amount_non_negative'),
        sa.CheckConstraint(
            'refund_amount_cents IS NULL OR '
            '(refund_amount_cents >= 0 AND refund_amount_cents <= deposit_amount_cents)',
            name='ck_leases_refund_within_deposit',
        ),
        sa.CheckConstraint(
            "(status = 'returned' AND actual_return_date IS NOT NULL AND refund_amount_cents IS NOT NULL) OR "
            "(status = 'active' AND actual_return_date IS NULL AND refund_amount_cents IS NULL)",
            name='ck_leases_return_fields_match_status',
        ),
        sa.ForeignKeyConstraint(['cylinder_id'], ['cylinders.id'], name='fk_leases_cylinder_id_cylinders'),
        sa.ForeignKeyConstraint(['outlet_id'], ['outlets.id'], name='fk_leases_outlet_id_outlets'),
        sa.PrimaryKeyConstraint('id', name='pk_leases'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_leases_customer_id', 'leases', ['customer_id'])
    op.create_index('ix_leases_cylinder_id', 'leases', ['cylinder_id'])
    op.create_index('ix_leases_outlet_id', 'leases', ['outlet_id'])
    op.create_index('ix_leases_status', 'leases', ['status'])
    op.create_index('ix_leases_outlet_status', 'leases', ['outlet_id', 'status'])
    # One active lease per cylinder
    op.create_index(
        'uq_leases_one_active_per_cylinder',
        'leases',
        ['cylinder_id'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    # ============================================================================
    # transfers
    # ============================================================================
    op.create_table(
        'transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cylinder_id', sa.Integer(), nullable=False),
        sa.Column('source_outlet_id', sa.Integer(), nullable=False),
        sa.Column('destination_outlet_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=16), nullable=False),
        sa.Column('custom_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('source_outlet_id <> destination_outlet_id', name='ck_transfers_distinct_outlets'),
        sa.CheckConstraint(
            "reason IN ('balancing', 'request', 'maintenance', 'emergency', 'closure', 'other')",
            name='ck_transfers_reason',
        ),
        sa.CheckConstraint(
            "reason <> 'other' OR (custom_reason IS NOT NULL AND custom_reason <> '')",
            name='ck_transfers_custom_reason',
        ),
        sa.ForeignKeyConstraint(['cylinder_id'], ['cylinders.id'], name='fk_transfers_cylinder_id_cylinders'),
        sa.ForeignKeyConstraint(['source_outlet_id'], ['outlets.id'], name='fk_transfers_source_outlet_id_outlets'),
        sa.ForeignKeyConstraint(['destination_outlet_id'], ['outlets.id'], name='fk_transfers_destination_outlet_id_outlets'),
        sa.PrimaryKeyConstraint('id', name='pk_transfers'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transfers_cylinder_id', 'transfers', ['cylinder_id'])
    op.create_index('ix_transfers_source_outlet_id', 'transfers', ['source_outlet_id'])
    op.create_index('ix_transfers_destination_outlet_id', 'transfers', ['destination_outlet_id'])
    op.create_index('ix_transfers_cylinder_created', 'transfers', ['cylinder_id', 'created_at'])


def downgrade():
    op.drop_table('transfers')
    op.drop_table('leases')
    op.drop_table('cylinders')
    op.drop_table('outlets')
