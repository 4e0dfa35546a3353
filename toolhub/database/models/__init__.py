"""
数据库模型

所有 SQLAlchemy 模型的统一导出
"""

from toolhub.database.models.mcp_service import McpService
from toolhub.database.models.mcp_tool import McpTool

__all__ = [
    "McpService",
    "McpTool",
]
