"""enable_pgcrypto_extension

Revision ID: 4f2c8a1d9b37
Revises:
Create Date: 2026-10-18 09:12:41.503112

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '4f2c8a1d9b37'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Scheme credential secrets are encrypted with pgp_sym_encrypt
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto;')


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('DROP EXTENSION IF EXISTS pgcrypto;')
