"""
MCP 注册表引擎

发现、比较、同步、选择性启用与工具名称解析
"""
