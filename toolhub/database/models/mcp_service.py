"""
MCP 服务模型

每个 MCP Server 模块对应一条服务记录，自然键为 endpoint_url
"""

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from toolhub.database.base import Base, SoftDeleteMixin, TimestampMixin

if TYPE_CHECKING:
    from toolhub.database.models.mcp_tool import McpTool


class McpService(Base, TimestampMixin, SoftDeleteMixin):
    """
    MCP 服务实体

    - endpoint_url 在未删除的服务中唯一（部分唯一索引）
    - is_active 由管理员控制；停用的服务下的工具不会出现在启用工具查询中
    - 软删除会级联到所属工具，永久删除会同时清除工具
    """

    __tablename__ = "mcp_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    endpoint_url: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    owner: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    icon: Mapped[Optional[str]] = mapped_column(String(200))

    # 仅供展示，同步时描述变更会递增
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    tools: Mapped[List["McpTool"]] = relationship(
        back_populates="service",
        passive_deletes=True,
        lazy="raise",
    )

    __table_args__ = (
        Index(
            "uq_mcp_services_endpoint_active",
            "endpoint_url",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "endpoint_url": self.endpoint_url,
            "description": self.description,
            "owner": self.owner,
            "icon": self.icon,
            "version": self.version,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<McpService(id={self.id}, name={self.name}, endpoint={self.endpoint_url})>"
