"""
发现目录（DiscoveredCatalog）

一次清单抓取的内存快照，不落库，只用于驱动比较与同步。

清单中的工具条目有两种形态：
- DescribedTool: 新格式，完整的工具对象
- NamedTool: 旧格式，只有工具名称，需要 SchemaResolver 二次查询
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

# 清单 endpoint 末尾的参数占位符，如 /api/hr/:toolName
_TRAILING_PLACEHOLDER = re.compile(r"/:[A-Za-z_][A-Za-z0-9_]*/?$")

# 清单与 tools 数组中的工具对象优先 inputSchema
MANIFEST_SCHEMA_KEYS = ("inputSchema", "schema", "input_schema")


def capitalize_key(module_key: str) -> str:
    """首字母大写，其余保持原样"""
    return module_key[:1].upper() + module_key[1:]


def display_name(tool_name: str) -> str:
    """create_boxplot -> Create Boxplot"""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), tool_name.replace("_", " "))


def service_name_for(module_key: str) -> str:
    return f"{capitalize_key(module_key)} 服務"


def service_description_for(module_key: str, tool_count: int) -> str:
    return f"{capitalize_key(module_key)} 模組提供的 MCP 服務，包含 {tool_count} 個工具"


def tool_description_for(tool_name: str) -> str:
    return f"{display_name(tool_name)} 工具"


def build_endpoint_url(base_url: str, endpoint_pattern: str) -> str:
    """基础 URL + 清单 endpoint，去掉末尾的参数占位符"""
    return _TRAILING_PLACEHOLDER.sub("", f"{base_url}{endpoint_pattern or ''}")


@dataclass
class ToolDescriptor:
    """工具描述"""

    name: str
    description: str = ""
    version: str = "1.0.0"
    # 原样保留远端给出的 schema，是否为对象在写入注册表时校验
    input_schema: Any = field(default_factory=dict)
    cacheable: bool = False
    cache_ttl: int = 0
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return display_name(self.name)

    @classmethod
    def from_payload(
        cls,
        name: str,
        payload: Dict[str, Any],
        schema_keys: Tuple[str, ...] = MANIFEST_SCHEMA_KEYS,
    ) -> "ToolDescriptor":
        """从远端工具对象构建，schema 取 schema_keys 中第一个非空的键"""
        schema = next((payload[k] for k in schema_keys if payload.get(k) is not None), None)

        stats = payload.get("stats")
        return cls(
            name=name,
            description=payload.get("description") or "",
            version=payload.get("version") or "1.0.0",
            input_schema=schema if schema is not None else {},
            cacheable=bool(payload.get("cacheable") or False),
            cache_ttl=_as_int(payload.get("cacheTTL")),
            stats=stats if isinstance(stats, dict) else {},
        )

    @classmethod
    def default(cls, name: str) -> "ToolDescriptor":
        """所有探测都失败时的默认描述"""
        return cls(name=name, description=tool_description_for(name))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "version": self.version,
            "schema": self.input_schema,
            "cacheable": self.cacheable,
            "cache_ttl": self.cache_ttl,
            "stats": self.stats,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class DescribedTool:
    """新格式：清单直接给出完整工具对象"""

    descriptor: ToolDescriptor


@dataclass(frozen=True)
class NamedTool:
    """旧格式：清单只给出工具名称"""

    name: str


ToolEntry = Union[DescribedTool, NamedTool]


@dataclass
class DiscoveredService:
    """发现的服务（一个清单模块）"""

    module_key: str
    name: str
    endpoint: str
    description: str
    tools: List[ToolDescriptor] = field(default_factory=list)

    @property
    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_key": self.module_key,
            "name": self.name,
            "endpoint": self.endpoint,
            "description": self.description,
            "tools": [t.to_dict() for t in self.tools],
        }


@dataclass
class ServerInfo:
    """MCP Server 信息"""

    url: str
    version: Optional[str] = None
    tools_registered: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "version": self.version,
            "tools_registered": self.tools_registered,
        }


@dataclass
class DiscoveredCatalog:
    """一次发现调用得到的目录，服务顺序与清单 modules 的插入顺序一致"""

    server_info: ServerInfo
    services: List[DiscoveredService] = field(default_factory=list)

    @property
    def total_tools(self) -> int:
        return sum(len(s.tools) for s in self.services)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "services": [s.to_dict() for s in self.services],
            "server_info": self.server_info.to_dict(),
        }
