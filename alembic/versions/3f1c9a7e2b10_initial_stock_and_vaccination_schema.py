"""initial_stock_and_vaccination_schema

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-16 09:12:41.508213

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1c9a7e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'scopekind': ('national', 'regional', 'district', 'health_center'),
    'genderrestriction': ('none', 'male', 'female'),
    'ageunit': ('days', 'weeks', 'months', 'years'),
    'gender': ('male', 'female'),
    'childstatus': ('up_to_date', 'behind'),
    'transferstatus': ('pending', 'confirmed', 'cancelled'),
    'transfercancelreason': ('cancelled_by_sender', 'rejected_by_receiver'),
    'bucketkind': ('due', 'late', 'overdue'),
    'requeststatus': ('pending', 'scheduled', 'cancelled'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # 1. Tipos enum
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    # 2. Jerarquía
    op.create_table('regions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table('districts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('region_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['region_id'], ['regions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_district_region', 'districts', ['region_id'], unique=False)
    op.create_table('health_centers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('district_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('address', sa.String(length=300), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['district_id'], ['districts.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_health_center_district', 'health_centers', ['district_id'], unique=False)

    # 3. Catálogo de vacunas y calendario
    op.create_table('vaccines',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False, comment='Nombre de la vacuna (ej: Pentavalente)'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('required_dose_count', sa.Integer(), nullable=False, comment='Número total de dosis del esquema'),
        sa.Column('gender_restriction', _enum('genderrestriction'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint('required_dose_count > 0', name='ck_vaccine_required_dose_count'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table('vaccine_calendars',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('description', sa.String(length=300), nullable=False),
        sa.Column('age_unit', _enum('ageunit'), nullable=False),
        sa.Column('min_age', sa.Integer(), nullable=True),
        sa.Column('max_age', sa.Integer(), nullable=True),
        sa.Column('specific_age', sa.Integer(), nullable=True, comment='Edad exacta recomendada; prevalece sobre min_age'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('vaccine_calendar_doses',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('calendar_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('dose', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['calendar_id'], ['vaccine_calendars.id']),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('calendar_id', 'vaccine_id', 'dose', name='uq_calendar_vaccine_dose')
    )
    op.create_index('idx_calendar_dose_vaccine', 'vaccine_calendar_doses', ['vaccine_id'], unique=False)

    # 4. Niños
    op.create_table('children',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('health_center_id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(length=150), nullable=False),
        sa.Column('last_name', sa.String(length=150), nullable=False),
        sa.Column('gender', _enum('gender'), nullable=False),
        sa.Column('birth_date', sa.Date(), nullable=False),
        sa.Column('status', _enum('childstatus'), nullable=False),
        sa.Column('next_appointment_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_vaccine_id', sa.UUID(), nullable=True),
        sa.Column('next_planner_id', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['health_center_id'], ['health_centers.id']),
        sa.ForeignKeyConstraint(['next_vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_child_health_center', 'children', ['health_center_id'], unique=False)

    # 5. Lotes de stock
    op.create_table('stock_lots',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('scope_kind', _enum('scopekind'), nullable=False),
        sa.Column('scope_id', sa.UUID(), nullable=True, comment='NULL para el nivel nacional'),
        sa.Column('original_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('held_quantity', sa.Integer(), nullable=False),
        sa.Column('distributed_quantity', sa.Integer(), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=False),
        sa.Column('source_lot_id', sa.UUID(), nullable=True),
        sa.Column('derived_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('original_quantity = remaining_quantity + held_quantity + distributed_quantity', name='ck_lot_quantity_balance'),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_lot_remaining_non_negative'),
        sa.CheckConstraint('held_quantity >= 0', name='ck_lot_held_non_negative'),
        sa.CheckConstraint('distributed_quantity >= 0', name='ck_lot_distributed_non_negative'),
        sa.ForeignKeyConstraint(['source_lot_id'], ['stock_lots.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_lot_scope_vaccine', 'stock_lots', ['vaccine_id', 'scope_kind', 'scope_id', 'expiration_date'], unique=False)
    op.create_index('idx_lot_source', 'stock_lots', ['source_lot_id'], unique=False)

    op.create_table('stock_expiration_notices',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('lot_id', sa.UUID(), nullable=False),
        sa.Column('threshold_days', sa.Integer(), nullable=False),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['lot_id'], ['stock_lots.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('lot_id', 'threshold_days', name='uq_expiration_notice_lot_threshold')
    )

    # 6. Transferencias
    op.create_table('stock_transfers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('from_kind', _enum('scopekind'), nullable=False),
        sa.Column('from_id', sa.UUID(), nullable=True),
        sa.Column('to_kind', _enum('scopekind'), nullable=False),
        sa.Column('to_id', sa.UUID(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', _enum('transferstatus'), nullable=False),
        sa.Column('created_by', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.UUID(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.UUID(), nullable=True),
        sa.Column('cancel_reason', _enum('transfercancelreason'), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_transfer_quantity_positive'),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_transfer_from', 'stock_transfers', ['from_kind', 'from_id', 'status'], unique=False)
    op.create_index('idx_transfer_to', 'stock_transfers', ['to_kind', 'to_id', 'status'], unique=False)

    op.create_table('stock_transfer_lots',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('transfer_id', sa.UUID(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.UUID(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('derived_lot_id', sa.UUID(), nullable=True, comment='Lote creado en el receptor al confirmar'),
        sa.CheckConstraint('quantity > 0', name='ck_transfer_lot_quantity_positive'),
        sa.ForeignKeyConstraint(['derived_lot_id'], ['stock_lots.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['lot_id'], ['stock_lots.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_transfer_lot_transfer', 'stock_transfer_lots', ['transfer_id'], unique=False)

    # 7. Agenda de vacunación
    op.create_table('scheduled_vaccinations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('child_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_calendar_id', sa.UUID(), nullable=True),
        sa.Column('health_center_id', sa.UUID(), nullable=False, comment='Centro cuyo stock respalda la cita'),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('dose', sa.Integer(), nullable=False),
        sa.Column('planner_id', sa.UUID(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint('dose > 0', name='ck_scheduled_dose_positive'),
        sa.ForeignKeyConstraint(['child_id'], ['children.id']),
        sa.ForeignKeyConstraint(['health_center_id'], ['health_centers.id']),
        sa.ForeignKeyConstraint(['vaccine_calendar_id'], ['vaccine_calendars.id']),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_scheduled_child_vaccine', 'scheduled_vaccinations', ['child_id', 'vaccine_id', 'scheduled_for'], unique=False)
    op.create_index('idx_scheduled_for', 'scheduled_vaccinations', ['scheduled_for'], unique=False)

    op.create_table('stock_reservations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('scheduled_vaccination_id', sa.UUID(), nullable=False),
        sa.Column('lot_id', sa.UUID(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_reservation_quantity_positive'),
        sa.ForeignKeyConstraint(['lot_id'], ['stock_lots.id']),
        sa.ForeignKeyConstraint(['scheduled_vaccination_id'], ['scheduled_vaccinations.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_reservation_schedule', 'stock_reservations', ['scheduled_vaccination_id'], unique=False)
    op.create_index('idx_reservation_lot', 'stock_reservations', ['lot_id'], unique=False)

    op.create_table('completed_vaccinations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('child_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_calendar_id', sa.UUID(), nullable=True),
        sa.Column('dose', sa.Integer(), nullable=False, comment='Número de dosis aplicada (1, 2, 3...)'),
        sa.Column('administered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('administered_by', sa.UUID(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['child_id'], ['children.id']),
        sa.ForeignKeyConstraint(['vaccine_calendar_id'], ['vaccine_calendars.id']),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_completed_child_vaccine', 'completed_vaccinations', ['child_id', 'vaccine_id'], unique=False)

    op.create_table('child_vaccine_buckets',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('child_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_calendar_id', sa.UUID(), nullable=True),
        sa.Column('kind', _enum('bucketkind'), nullable=False),
        sa.Column('dose', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['child_id'], ['children.id']),
        sa.ForeignKeyConstraint(['vaccine_calendar_id'], ['vaccine_calendars.id']),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_bucket_child_vaccine', 'child_vaccine_buckets', ['child_id', 'vaccine_id', 'kind'], unique=False)

    op.create_table('vaccine_requests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('child_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_id', sa.UUID(), nullable=False),
        sa.Column('vaccine_calendar_id', sa.UUID(), nullable=True),
        sa.Column('dose', sa.Integer(), nullable=False),
        sa.Column('status', _enum('requeststatus'), nullable=False),
        sa.Column('requested_by', sa.UUID(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scheduled_by', sa.UUID(), nullable=True),
        sa.Column('scheduled_vaccination_id', sa.UUID(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.CheckConstraint('dose > 0', name='ck_request_dose_positive'),
        sa.ForeignKeyConstraint(['child_id'], ['children.id']),
        sa.ForeignKeyConstraint(['scheduled_vaccination_id'], ['scheduled_vaccinations.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['vaccine_calendar_id'], ['vaccine_calendars.id']),
        sa.ForeignKeyConstraint(['vaccine_id'], ['vaccines.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_request_child_vaccine', 'vaccine_requests', ['child_id', 'vaccine_id', 'status'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_request_child_vaccine', table_name='vaccine_requests')
    op.drop_table('vaccine_requests')
    op.drop_index('idx_bucket_child_vaccine', table_name='child_vaccine_buckets')
    op.drop_table('child_vaccine_buckets')
    op.drop_index('idx_completed_child_vaccine', table_name='completed_vaccinations')
    op.drop_table('completed_vaccinations')
    op.drop_index('idx_reservation_lot', table_name='stock_reservations')
    op.drop_index('idx_reservation_schedule', table_name='stock_reservations')
    op.drop_table('stock_reservations')
    op.drop_index('idx_scheduled_for', table_name='scheduled_vaccinations')
    op.drop_index('idx_scheduled_child_vaccine', table_name='scheduled_vaccinations')
    op.drop_table('scheduled_vaccinations')
    op.drop_index('idx_transfer_lot_transfer', table_name='stock_transfer_lots')
    op.drop_table('stock_transfer_lots')
    op.drop_index('idx_transfer_to', table_name='stock_transfers')
    op.drop_index('idx_transfer_from', table_name='stock_transfers')
    op.drop_table('stock_transfers')
    op.drop_table('stock_expiration_notices')
    op.drop_index('idx_lot_source', table_name='stock_lots')
    op.drop_index('idx_lot_scope_vaccine', table_name='stock_lots')
    op.drop_table('stock_lots')
    op.drop_index('idx_child_health_center', table_name='children')
    op.drop_table('children')
    op.drop_index('idx_calendar_dose_vaccine', table_name='vaccine_calendar_doses')
    op.drop_table('vaccine_calendar_doses')
    op.drop_table('vaccine_calendars')
    op.drop_table('vaccines')
    op.drop_index('idx_health_center_district', table_name='health_centers')
    op.drop_table('health_centers')
    op.drop_index('idx_district_region', table_name='districts')
    op.drop_table('districts')
    op.drop_table('regions')

    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
