"""
同步互斥锁

完整同步与选择性启用不能并发作用于同一 MCP Server。
锁以端点的 origin（scheme://host[:port]）为键，在抓取清单之前获取，
在提交或回滚之后释放。

后端：
- memory: 进程内 asyncio.Lock，单进程部署
- redis: redis.asyncio 分布式锁（带过期时间），多进程 / 多实例部署
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError
import structlog

from toolhub.core.config import settings
from toolhub.core.errors import SyncInProgress

logger = structlog.get_logger(__name__)

LOCK_KEY_PREFIX = "toolhub:mcp_sync"


def lock_key_for(url: str) -> str:
    """计算端点对应的锁键（同一 MCP Server 下的所有服务共享一把锁）"""
    parsed = httpx.URL(url)
    if not parsed.host:
        return url
    origin = f"{parsed.scheme}://{parsed.host}"
    if parsed.port:
        origin = f"{origin}:{parsed.port}"
    return origin


class SyncLockManager:
    """按端点 origin 加锁"""

    def __init__(
        self,
        backend: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        ttl_seconds: Optional[int] = None,
        redis_client: Optional[redis.Redis] = None,
    ):
        self.backend = backend or settings.MCP_SYNC_LOCK_BACKEND
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.MCP_SYNC_LOCK_TIMEOUT_SECONDS
        )
        self.ttl_seconds = ttl_seconds or settings.MCP_SYNC_LOCK_TTL_SECONDS
        self._redis = redis_client
        self._locks: Dict[str, asyncio.Lock] = {}

        if self.backend not in ("memory", "redis"):
            raise ValueError(f"Unknown sync lock backend: {self.backend}")

    def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    def is_locked(self, url: str) -> bool:
        """仅 memory 后端可查询（用于状态展示与测试）"""
        lock = self._locks.get(lock_key_for(url))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, urls: Iterable[str]) -> AsyncIterator[List[str]]:
        """
        获取一组端点的锁

        键去重后按字典序获取，避免两个调用以相反顺序加锁造成死锁。
        超时未获取到则抛出 SyncInProgress，已获取的锁会被释放。
        """
        keys = sorted({lock_key_for(url) for url in urls})
        acquired: List[object] = []
        log = logger.bind(keys=keys, backend=self.backend)

        try:
            for key in keys:
                acquired.append(await self._acquire(key))
            log.debug("sync_lock_acquired")
            yield keys
        finally:
            for handle in reversed(acquired):
                await self._release(handle)
            if acquired:
                log.debug("sync_lock_released")

    async def _acquire(self, key: str) -> object:
        if self.backend == "redis":
            lock = self._get_redis().lock(
                f"{LOCK_KEY_PREFIX}:{key}",
                timeout=self.ttl_seconds,
                blocking_timeout=self.timeout_seconds,
            )
            if not await lock.acquire():
                raise SyncInProgress(f"端點 {key} 正在同步中，請稍後再試", details={"lock_key": key})
            return lock

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise SyncInProgress(f"端點 {key} 正在同步中，請稍後再試", details={"lock_key": key})
        return lock

    async def _release(self, handle: object) -> None:
        if isinstance(handle, asyncio.Lock):
            handle.release()
            return
        try:
            await handle.release()
        except RedisError as e:
            # 锁已过期被他人持有时 release 会失败，只记录
            logger.warning("sync_lock_release_failed", error=str(e))


_lock_manager: Optional[SyncLockManager] = None


def get_sync_lock_manager() -> SyncLockManager:
    """获取全局锁管理器"""
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = SyncLockManager()
    return _lock_manager
