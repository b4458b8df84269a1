"""Initial schema - invoices, allocations, suppliers and aliases

Revision ID: 001_initial
Revises:
Create Date: 2026-01-12

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Suppliers first, invoices reference them
    op.create_table(
        'suppliers',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('normalized_key', sa.String(), nullable=False),
        sa.Column('validation_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'normalized_key', name='uq_suppliers_org_normalized_key'),
        sa.UniqueConstraint('organization_id', 'code', name='uq_suppliers_org_code'),
    )
    op.create_index('ix_suppliers_org_status', 'suppliers', ['organization_id', 'validation_status'])

    op.create_table(
        'supplier_aliases',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('supplier_id', sa.String(length=36), nullable=False),
        sa.Column('alias_key', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('organization_id', 'alias_key', name='uq_supplier_aliases_org_alias_key'),
    )
    op.create_index('ix_supplier_aliases_supplier_id', 'supplier_aliases', ['supplier_id'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('file_name', sa.String(), nullable=True),
        sa.Column('supplier_id', sa.String(length=36), nullable=True),

        # Extraction output, items included
        sa.Column('extracted_data', sa.JSON(), nullable=True),

        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_invoices_organization_id', 'invoices', ['organization_id'])
    op.create_index('ix_invoices_supplier_id', 'invoices', ['supplier_id'])

    op.create_table(
        'invoice_allocations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('invoice_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('account_code', sa.String(length=50), nullable=False),
        sa.Column('label', sa.String(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('vat_code', sa.String(length=50), nullable=True),
        sa.Column('vat_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('item_indices', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_invoice_allocations_invoice_id', 'invoice_allocations', ['invoice_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_invoice_allocations_invoice_id', table_name='invoice_allocations')
    op.drop_table('invoice_allocations')
    op.drop_index('ix_invoices_supplier_id', table_name='invoices')
    op.drop_index('ix_invoices_organization_id', table_name='invoices')
    op.drop_table('invoices')
    op.drop_index('ix_supplier_aliases_supplier_id', table_name='supplier_aliases')
    op.drop_table('supplier_aliases')
    op.drop_index('ix_suppliers_org_status', table_name='suppliers')
    op.drop_table('suppliers')
