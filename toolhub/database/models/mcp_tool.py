"""
MCP 工具模型

自然键为 (service_id, name)，在未删除的工具中唯一
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from toolhub.database.base import Base, JSONType, SoftDeleteMixin, TimestampMixin
from toolhub.schemas.catalog import display_name

if TYPE_CHECKING:
    from toolhub.database.models.mcp_service import McpService


class McpTool(Base, TimestampMixin, SoftDeleteMixin):
    """MCP 工具实体"""

    __tablename__ = "mcp_tools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    service_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("mcp_services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    version: Mapped[str] = mapped_column(String(50), nullable=False, default="1.0.0")

    # 工具参数 JSON Schema（不透明文档）
    input_schema: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # 缓存提示
    cacheable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cache_ttl: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # 远端回报的统计信息，仅供展示
    stats: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # 调用时同名工具的排序依据
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    service: Mapped["McpService"] = relationship(back_populates="tools", lazy="raise")

    __table_args__ = (
        Index(
            "uq_mcp_tools_service_name_active",
            "service_id",
            "name",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    @property
    def display_name(self) -> str:
        return display_name(self.name)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "version": self.version,
            "input_schema": self.input_schema or {},
            "cacheable": self.cacheable,
            "cache_ttl": self.cache_ttl,
            "stats": self.stats or {},
            "priority": self.priority,
            "usage_count": self.usage_count,
            "is_enabled": self.is_enabled,
            "is_deleted": self.is_deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<McpTool(id={self.id}, service_id={self.service_id}, name={self.name})>"


# 启用工具查询的排序
Index("ix_mcp_tools_priority_name", McpTool.priority.desc(), McpTool.name)
