"""
MCP 工具注册表服务
"""

__version__ = "0.1.0"
