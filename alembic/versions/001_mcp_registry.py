"""MCP registry tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # MCP 服务表
    op.create_table(
        'mcp_services',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('endpoint_url', sa.String(500), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('owner', sa.String(100), nullable=False, server_default='system'),
        sa.Column('icon', sa.String(200)),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_mcp_services_is_active', 'mcp_services', ['is_active'])
    op.create_index('ix_mcp_services_is_deleted', 'mcp_services', ['is_deleted'])
    op.create_index(
        'uq_mcp_services_endpoint_active',
        'mcp_services',
        ['endpoint_url'],
        unique=True,
        postgresql_where=sa.text('is_deleted = false'),
    )

    # MCP 工具表
    op.create_table(
        'mcp_tools',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            'service_id',
            sa.Integer,
            sa.ForeignKey('mcp_services.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('version', sa.String(50), nullable=False, server_default='1.0.0'),
        sa.Column('input_schema', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('cacheable', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('cache_ttl', sa.Integer, nullable=False, server_default='0'),
        sa.Column('stats', postgresql.JSONB, nullable=False, server_default='{}'),
        sa.Column('priority', sa.Integer, nullable=False, server_default='1'),
        sa.Column('usage_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_mcp_tools_service_id', 'mcp_tools', ['service_id'])
    op.create_index('ix_mcp_tools_is_enabled', 'mcp_tools', ['is_enabled'])
    op.create_index('ix_mcp_tools_is_deleted', 'mcp_tools', ['is_deleted'])
    op.create_index(
        'uq_mcp_tools_service_name_active',
        'mcp_tools',
        ['service_id', 'name'],
        unique=True,
        postgresql_where=sa.text('is_deleted = false'),
    )
    # 启用工具查询的排序
    op.create_index(
        'ix_mcp_tools_priority_name',
        'mcp_tools',
        [sa.text('priority DESC'), 'name'],
    )


def downgrade() -> None:
    op.drop_table('mcp_tools')
    op.drop_table('mcp_services')
