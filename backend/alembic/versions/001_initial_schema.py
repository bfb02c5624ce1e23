"""Initial schema - allow-list, public access and verification tokens

Revision ID: 001
Revises:
Create Date: 2026-10-18

WHY: Creates the three tables the access stores persist to:
- allowed_addresses: authorized addresses, unique by normalized form
- public_access_config: the public-access override singleton
- verification_tokens: registration and login-verification tokens, with a
  partial unique index allowing one active token per subject
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the access tables.

    WHY: Enum columns are stored as plain strings (lower-case values) so the
    partial index predicate is the same SQL on PostgreSQL and SQLite.
    """
    op.create_table(
        'allowed_addresses',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('address', sa.String(length=45), nullable=False),
        sa.Column('normalized_address', sa.String(length=45), nullable=False),
        sa.Column('address_type', sa.String(length=8), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('added_by', sa.String(length=255), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    # WHY: Uniqueness of the normalized form is what rejects duplicates
    op.create_index('ix_allowed_addresses_normalized_address', 'allowed_addresses', ['normalized_address'], unique=True)
    op.create_index('ix_allowed_addresses_added_at', 'allowed_addresses', ['added_at'])

    op.create_table(
        'public_access_config',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('enabled_by', sa.String(length=255), nullable=True),
        sa.Column('enabled_at', sa.DateTime(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False, server_default=''),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'verification_tokens',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('subject', sa.String(length=255), nullable=False),
        sa.Column('purpose', sa.String(length=32), nullable=False),
        sa.Column('secret', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=12), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_verification_tokens_subject', 'verification_tokens', ['subject'])
    op.create_index('ix_verification_tokens_secret', 'verification_tokens', ['secret'], unique=True)
    op.create_index('ix_verification_tokens_created_at', 'verification_tokens', ['created_at'])
    op.create_index('ix_verification_tokens_subject_created', 'verification_tokens', ['subject', 'created_at'])

    # One active token per subject
    # WHY: Makes "create unless the subject has an active token" one atomic insert
    op.create_index(
        'uq_verification_tokens_active_subject',
        'verification_tokens',
        ['subject'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )


def downgrade() -> None:
    """Drop the access tables."""
    op.drop_index('uq_verification_tokens_active_subject', table_name='verification_tokens')
    op.drop_index('ix_verification_tokens_subject_created', table_name='verification_tokens')
    op.drop_index('ix_verification_tokens_created_at', table_name='verification_tokens')
    op.drop_index('ix_verification_tokens_secret', table_name='verification_tokens')
    op.drop_index('ix_verification_tokens_subject', table_name='verification_tokens')
    op.drop_table('verification_tokens')

    op.drop_table('public_access_config')

    op.drop_index('ix_allowed_addresses_added_at', table_name='allowed_addresses')
    op.drop_index('ix_allowed_addresses_normalized_address', table_name='allowed_addresses')
    op.drop_table('allowed_addresses')
