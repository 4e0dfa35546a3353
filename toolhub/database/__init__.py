"""
数据库模块

提供 SQLAlchemy 2.0 异步数据库支持
"""

from toolhub.database.engine import (
    engine,
    async_session_maker,
    get_db,
    close_db,
)
from toolhub.database.base import (
    Base,
    JSONType,
    TimestampMixin,
    SoftDeleteMixin,
)

__all__ = [
    # Engine
    "engine",
    "async_session_maker",
    "get_db",
    "close_db",
    # Base
    "Base",
    "JSONType",
    "TimestampMixin",
    "SoftDeleteMixin",
]
