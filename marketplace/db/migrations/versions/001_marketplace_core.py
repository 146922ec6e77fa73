"""marketplace core schema

Revision ID: 001_marketplace_core
Revises:
Create Date: 2026-10-18

Baseline schema for the RFQ marketplace: participants, capabilities,
RFQs, bids and the domain event log. Enum columns are stored as
constrained strings so the same revision applies to Postgres and SQLite.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_marketplace_core'
down_revision = None
branch_labels = None
depends_on = None


RFQ_STATUSES = ('draft', 'open', 'in_review', 'pending_award', 'awarded', 'closed', 'cancelled')
BID_STATUSES = ('submitted', 'withdrawn', 'accepted', 'rejected')
ACTOR_TYPES = ('customer', 'supplier', 'system')


def upgrade() -> None:
    # Customers
    op.create_table('customers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('contact_email', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_customers_contact_email', 'customers', ['contact_email'], unique=True)

    # Suppliers
    op.create_table('suppliers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('contact_email', sa.String(255), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('country', sa.String(100)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_suppliers_contact_email', 'suppliers', ['contact_email'], unique=True)

    # Supplier capabilities
    op.create_table('supplier_capabilities',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('process', sa.String(255), nullable=False),
        sa.Column('materials', sa.JSON()),
        sa.Column('certifications', sa.JSON()),
        sa.Column('max_length_mm', sa.Float()),
        sa.Column('max_width_mm', sa.Float()),
        sa.Column('max_height_mm', sa.Float()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Supplier documents
    op.create_table('supplier_documents',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('doc_type', sa.String(100), nullable=False),
        sa.Column('file_name', sa.String(255)),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # RFQs
    op.create_table('rfqs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('status', sa.Enum(*RFQ_STATUSES, name='rfqstatus', native_enum=False, length=32),
                  nullable=False, server_default='open', index=True),
        sa.Column('process_requirements', sa.JSON()),
        sa.Column('material_requirements', sa.JSON()),
        sa.Column('certification_requirements', sa.JSON()),
        sa.Column('quantity', sa.Integer()),
        sa.Column('target_date', sa.DateTime(timezone=True)),
        sa.Column('priority', sa.Float()),
        sa.Column('awarded_bid_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_rfqs_status_created', 'rfqs', ['status', 'created_at'])

    # Bids
    op.create_table('rfq_bids',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=False, index=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id'), nullable=False, index=True),
        sa.Column('price_total', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('lead_time_days', sa.Integer()),
        sa.Column('notes', sa.Text()),
        sa.Column('status', sa.Enum(*BID_STATUSES, name='bidstatus', native_enum=False, length=32),
                  nullable=False, server_default='submitted', index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('rfq_id', 'supplier_id', name='uq_rfq_bid_supplier'),
    )
    op.create_index('ix_rfq_bids_supplier_updated', 'rfq_bids', ['supplier_id', 'updated_at'])

    # Domain event log
    op.create_table('marketplace_events',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfqs.id'), nullable=True, index=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('actor_type', sa.Enum(*ACTOR_TYPES, name='actortype', native_enum=False, length=32),
                  nullable=False, server_default='system'),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )
    op.create_index('ix_marketplace_events_rfq_created', 'marketplace_events', ['rfq_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_marketplace_events_rfq_created', table_name='marketplace_events')
    op.drop_table('marketplace_events')
    op.drop_index('ix_rfq_bids_supplier_updated', table_name='rfq_bids')
    op.drop_table('rfq_bids')
    op.drop_index('ix_rfqs_status_created', table_name='rfqs')
    op.drop_table('rfqs')
    op.drop_table('supplier_documents')
    op.drop_table('supplier_capabilities')
    op.drop_index('ix_suppliers_contact_email', table_name='suppliers')
    op.drop_table('suppliers')
    op.drop_index('ix_customers_contact_email', table_name='customers')
    op.drop_table('customers')
