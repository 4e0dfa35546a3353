"""
发现目录与管理操作结果的数据结构
"""
