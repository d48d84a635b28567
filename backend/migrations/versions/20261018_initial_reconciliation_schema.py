"""Initial reconciliation schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. Collaborator master data read by the engine (stations, nozzles, fuel_prices, tanks)
2. shifts with the one-ACTIVE-shift-per-employee-and-station partial unique index
3. readings (append-only, split conservation enforced by CHECK)
4. cash_handovers with unique successor and unique (shift, type)
5. settlements, one per station business day
6. audit_events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. MASTER DATA
    # ==========================================================================
    op.create_table('stations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('manager_user_id', sa.Integer(), nullable=True),
        sa.Column('owner_user_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('stations', schema=None) as batch_op:
        batch_op.create_index('ix_stations_code', ['code'], unique=True)
        batch_op.create_index('ix_stations_manager_user_id', ['manager_user_id'], unique=False)
        batch_op.create_index('ix_stations_owner_user_id', ['owner_user_id'], unique=False)

    op.create_table('nozzles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('nozzle_number', sa.String(length=32), nullable=False),
        sa.Column('fuel_type', sa.String(length=16), nullable=False),
        sa.Column('initial_volume_ml', sa.BigInteger(), nullable=False),
        sa.Column('current_volume_ml', sa.BigInteger(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('station_id', 'nozzle_number', name='uq_nozzles_station_number'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('nozzles', schema=None) as batch_op:
        batch_op.create_index('ix_nozzles_station_id', ['station_id'], unique=False)

    op.create_table('fuel_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('fuel_type', sa.String(length=16), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('set_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('fuel_prices', schema=None) as batch_op:
        batch_op.create_index('ix_fuel_prices_lookup', ['station_id', 'fuel_type', 'effective_from'], unique=False)

    op.create_table('tanks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('fuel_type', sa.String(length=16), nullable=False),
        sa.Column('capacity_ml', sa.BigInteger(), nullable=False),
        sa.Column('current_level_ml', sa.BigInteger(), nullable=False),
        sa.Column('low_level_percent', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('station_id', 'fuel_type', name='uq_tanks_station_fuel'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('tanks', schema=None) as batch_op:
        batch_op.create_index('ix_tanks_station_id', ['station_id'], unique=False)

    # ==========================================================================
    # 2. SHIFTS
    # ==========================================================================
    op.create_table('shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('employee_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('shift_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expected_cash_cents', sa.BigInteger(), nullable=False),
        sa.Column('expected_online_cents', sa.BigInteger(), nullable=False),
        sa.Column('expected_credit_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_sales_cents', sa.BigInteger(), nullable=False),
        sa.Column('litres_sold_ml', sa.BigInteger(), nullable=False),
        sa.Column('reading_count', sa.Integer(), nullable=False),
        sa.Column('actual_cash_cents', sa.BigInteger(), nullable=True),
        sa.Column('actual_online_cents', sa.BigInteger(), nullable=True),
        sa.Column('variance_cents', sa.BigInteger(), nullable=True),
        sa.Column('online_variance_cents', sa.BigInteger(), nullable=True),
        sa.Column('variance_severity', sa.String(length=16), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('started_by_user_id', sa.Integer(), nullable=True),
        sa.Column('ended_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('shifts', schema=None) as batch_op:
        batch_op.create_index('ix_shifts_station_id', ['station_id'], unique=False)
        batch_op.create_index('ix_shifts_employee_id', ['employee_id'], unique=False)
        batch_op.create_index('ix_shifts_status', ['status'], unique=False)
        batch_op.create_index('ix_shifts_station_business_date', ['station_id', 'business_date'], unique=False)

    # At most one ACTIVE shift per (employee, station)
    op.create_index(
        'uq_shifts_one_active',
        'shifts',
        ['employee_id', 'station_id'],
        unique=True,
        sqlite_where=sa.text("status = 'ACTIVE'"),
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    # ==========================================================================
    # 3. READINGS
    # ==========================================================================
    op.create_table('readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('nozzle_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(length=24), nullable=False),
        sa.Column('corrects_reading_id', sa.Integer(), nullable=True),
        sa.Column('previous_volume_ml', sa.BigInteger(), nullable=False),
        sa.Column('current_volume_ml', sa.BigInteger(), nullable=False),
        sa.Column('litres_sold_ml', sa.BigInteger(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('total_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('cash_cents', sa.BigInteger(), nullable=False),
        sa.Column('online_cents', sa.BigInteger(), nullable=False),
        sa.Column('credit_cents', sa.BigInteger(), nullable=False),
        sa.Column('payment_split_version', sa.Integer(), nullable=False),
        sa.Column('low_fuel_warning', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('recorded_by_user_id', sa.Integer(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('current_volume_ml >= previous_volume_ml', name='ck_readings_volume_order'),
        sa.CheckConstraint(
            'abs(cash_cents + online_cents + credit_cents - total_amount_cents) <= 1',
            name='ck_readings_split_conserves_total',
        ),
        sa.CheckConstraint(
            "kind != 'METER' OR (cash_cents >= 0 AND online_cents >= 0 AND credit_cents >= 0)",
            name='ck_readings_meter_split_non_negative',
        ),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.ForeignKeyConstraint(['nozzle_id'], ['nozzles.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['corrects_reading_id'], ['readings.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('readings', schema=None) as batch_op:
        batch_op.create_index('ix_readings_station_id', ['station_id'], unique=False)
        batch_op.create_index('ix_readings_nozzle_id', ['nozzle_id'], unique=False)
        batch_op.create_index('ix_readings_shift_id', ['shift_id'], unique=False)
        batch_op.create_index('ix_readings_kind', ['kind'], unique=False)
        batch_op.create_index('ix_readings_corrects_reading_id', ['corrects_reading_id'], unique=False)
        batch_op.create_index('ix_readings_recorded_by_user_id', ['recorded_by_user_id'], unique=False)
        batch_op.create_index('ix_readings_recorded_at', ['recorded_at'], unique=False)
        batch_op.create_index('ix_readings_nozzle_recorded', ['nozzle_id', 'recorded_at'], unique=False)

    # ==========================================================================
    # 4. CASH HANDOVERS
    # ==========================================================================
    op.create_table('cash_handovers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('parent_handover_id', sa.Integer(), nullable=True),
        sa.Column('handover_type', sa.String(length=24), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('handover_date', sa.Date(), nullable=False),
        sa.Column('from_user_id', sa.Integer(), nullable=True),
        sa.Column('to_user_id', sa.Integer(), nullable=True),
        sa.Column('expected_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('actual_amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('discrepancy_cents', sa.BigInteger(), nullable=True),
        sa.Column('severity', sa.String(length=16), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('confirmed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('dispute_notes', sa.Text(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('bank_name', sa.String(length=100), nullable=True),
        sa.Column('deposit_reference', sa.String(length=50), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['parent_handover_id'], ['cash_handovers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shift_id', 'handover_type', name='uq_cash_handovers_shift_type'),
        sa.UniqueConstraint('parent_handover_id', name='uq_cash_handovers_parent'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('cash_handovers', schema=None) as batch_op:
        batch_op.create_index('ix_cash_handovers_station_id', ['station_id'], unique=False)
        batch_op.create_index('ix_cash_handovers_shift_id', ['shift_id'], unique=False)
        batch_op.create_index('ix_cash_handovers_handover_type', ['handover_type'], unique=False)
        batch_op.create_index('ix_cash_handovers_from_user_id', ['from_user_id'], unique=False)
        batch_op.create_index('ix_cash_handovers_to_user_id', ['to_user_id'], unique=False)
        batch_op.create_index('ix_cash_handovers_status', ['status'], unique=False)
        batch_op.create_index('ix_cash_handovers_station_date', ['station_id', 'handover_date'], unique=False)

    # ==========================================================================
    # 5. SETTLEMENTS
    # ==========================================================================
    op.create_table('settlements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('total_sales_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_litres_ml', sa.BigInteger(), nullable=False),
        sa.Column('expected_cash_cents', sa.BigInteger(), nullable=False),
        sa.Column('expected_online_cents', sa.BigInteger(), nullable=False),
        sa.Column('expected_credit_cents', sa.BigInteger(), nullable=False),
        sa.Column('actual_cash_cents', sa.BigInteger(), nullable=False),
        sa.Column('actual_online_cents', sa.BigInteger(), nullable=False),
        sa.Column('deposited_cash_cents', sa.BigInteger(), nullable=False),
        sa.Column('shift_variance_cents', sa.BigInteger(), nullable=False),
        sa.Column('online_variance_cents', sa.BigInteger(), nullable=False),
        sa.Column('resolved_discrepancy_cents', sa.BigInteger(), nullable=False),
        sa.Column('final_variance_cents', sa.BigInteger(), nullable=False),
        sa.Column('shift_count', sa.Integer(), nullable=False),
        sa.Column('cancelled_shift_count', sa.Integer(), nullable=False),
        sa.Column('handover_count', sa.Integer(), nullable=False),
        sa.Column('prepared_by_user_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('station_id', 'business_date', name='uq_settlements_station_date'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('settlements', schema=None) as batch_op:
        batch_op.create_index('ix_settlements_station_id', ['station_id'], unique=False)
        batch_op.create_index('ix_settlements_business_date', ['business_date'], unique=False)

    # ==========================================================================
    # 6. AUDIT EVENTS
    # ==========================================================================
    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('station_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('handover_id', sa.Integer(), nullable=True),
        sa.Column('reading_id', sa.Integer(), nullable=True),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['station_id'], ['stations.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id']),
        sa.ForeignKeyConstraint(['handover_id'], ['cash_handovers.id']),
        sa.ForeignKeyConstraint(['reading_id'], ['readings.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index('ix_audit_events_event_type', ['event_type'], unique=False)
        batch_op.create_index('ix_audit_events_event_category', ['event_category'], unique=False)
        batch_op.create_index('ix_audit_events_actor_user_id', ['actor_user_id'], unique=False)
        batch_op.create_index('ix_audit_events_shift_id', ['shift_id'], unique=False)
        batch_op.create_index('ix_audit_events_handover_id', ['handover_id'], unique=False)
        batch_op.create_index('ix_audit_events_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_audit_events_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('ix_audit_events_station_occurred', ['station_id', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('settlements')
    op.drop_table('cash_handovers')
    op.drop_table('readings')
    op.drop_index('uq_shifts_one_active', table_name='shifts')
    op.drop_table('shifts')
    op.drop_table('tanks')
    op.drop_table('fuel_prices')
    op.drop_table('nozzles')
    op.drop_table('stations')
