"""
工具名称解析

调用时 AI 给出的工具名可能带模块前缀、大小写混用、使用连字符，
需要标准化后再与注册表中的工具名比较。
"""

from typing import Dict, Iterable, List, Optional, Protocol, TypeVar

import structlog

from toolhub.core.config import settings
from toolhub.core.errors import ToolNotFound

logger = structlog.get_logger(__name__)


class NamedEntry(Protocol):
    name: str


T = TypeVar("T", bound=NamedEntry)


def canonical_tool_name(name: str) -> str:
    """注册表侧的标准形式：小写，连字符换成下划线"""
    return name.lower().replace("-", "_")


class ToolNameResolver:
    """工具名称解析器"""

    def __init__(self, aliases: Optional[Dict[str, str]] = None):
        source = settings.MCP_TOOL_NAME_ALIASES if aliases is None else aliases
        # 别名键按小写匹配
        self.aliases = {k.lower(): v for k, v in source.items()}

    def normalize(self, raw_name: str) -> str:
        """
        标准化调用方给出的工具名

        1. 含 "." 时取最后一个 "." 之后的部分（去掉模块前缀）
        2. 转小写
        3. 命中别名表则使用别名
        4. 否则把 "-" 替换为 "_"
        """
        name = raw_name.rsplit(".", 1)[-1] if "." in raw_name else raw_name
        name = name.lower()
        if name in self.aliases:
            return canonical_tool_name(self.aliases[name])
        return name.replace("-", "_")

    def find(self, raw_name: str, candidates: Iterable[T]) -> Optional[T]:
        """返回第一个匹配的候选，未命中返回 None"""
        normalized = self.normalize(raw_name)
        matches: List[T] = [c for c in candidates if canonical_tool_name(c.name) == normalized]

        if not matches:
            return None

        if len(matches) > 1:
            logger.warning(
                "tool_name_ambiguous",
                raw_name=raw_name,
                normalized_name=normalized,
                candidates=[getattr(m, "id", m.name) for m in matches],
            )
        return matches[0]

    def resolve(self, raw_name: str, candidates: Iterable[T]) -> T:
        """
        解析工具名

        候选的迭代顺序决定同名冲突时的胜者，注册表按
        priority DESC, name ASC, id ASC 给出候选。

        Raises:
            ToolNotFound: 没有任何候选匹配
        """
        tool = self.find(raw_name, candidates)
        if tool is None:
            normalized = self.normalize(raw_name)
            logger.info("tool_name_not_found", raw_name=raw_name, normalized_name=normalized)
            raise ToolNotFound(raw_name, normalized)
        return tool


def get_tool_name_resolver() -> ToolNameResolver:
    return ToolNameResolver()
