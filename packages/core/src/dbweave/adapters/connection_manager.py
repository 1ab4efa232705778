"""
ConnectionManager - 命名连接注册表
按连接ID管理多个已连接的适配器，提供健康检查和统一关闭
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from .adapter_factory import create_adapter
from .base import DataAdapter
from .helpers import error_message
from ..config.connection import BaseConnectionConfig
from ..telemetry.logger import get_logger
from ..utils.errors import ConfigurationError, DatabaseConnectionError


logger = get_logger(__name__)


class ConnectionManager:
    """
    多连接管理
    - 创建、移除、全部关闭持有锁，查找直接读字典
    - 连接失败时不登记任何实例
    - 可作为异步上下文管理器，退出时关闭全部连接
    """

    def __init__(self):
        self._connections: Dict[str, DataAdapter] = {}
        self._pending: Set[str] = set()
        self._lock = asyncio.Lock()

    async def create_connection(
        self,
        connection_id: str,
        kind: str,
        config: Union[BaseConnectionConfig, Mapping[str, Any]]
    ) -> DataAdapter:
        """构造适配器、连接并登记"""
        async with self._lock:
            if connection_id in self._connections or connection_id in self._pending:
                raise ConfigurationError(
                    f"Connection '{connection_id}' already exists",
                    config_key=connection_id
                )
            adapter = create_adapter(kind, config)
            self._pending.add(connection_id)

        # 连接在锁外进行，避免慢连接阻塞其他连接的创建
        try:
            await adapter.connect()
        except BaseException:
            async with self._lock:
                self._pending.discard(connection_id)
            raise

        async with self._lock:
            self._pending.discard(connection_id)
            self._connections[connection_id] = adapter

        logger.info(f"Connection '{connection_id}' created ({adapter.database_type})")
        return adapter

    def get_connection(self, connection_id: str) -> DataAdapter:
        adapter = self._connections.get(connection_id)
        if adapter is None:
            raise ConfigurationError(
                f"Connection '{connection_id}' not found",
                config_key=connection_id
            )
        return adapter

    def has_connection(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def list_connections(self) -> List[str]:
        return list(self._connections)

    async def remove_connection(self, connection_id: str) -> None:
        """先移出注册表，再断开连接"""
        async with self._lock:
            adapter = self._connections.pop(connection_id, None)
        if adapter is None:
            raise ConfigurationError(
                f"Connection '{connection_id}' not found",
                config_key=connection_id
            )

        if adapter.is_connected():
            await adapter.disconnect()
        logger.info(f"Connection '{connection_id}' removed")

    async def close_all_connections(self) -> None:
        """
        并发关闭所有连接
        即使有连接关闭失败，注册表也会被清空，之后汇总抛出
        """
        async with self._lock:
            connections = self._connections
            self._connections = {}

        if not connections:
            return

        ids = list(connections)
        results = await asyncio.gather(
            *(connections[connection_id].disconnect() for connection_id in ids),
            return_exceptions=True
        )

        failures = {
            connection_id: result
            for connection_id, result in zip(ids, results)
            if isinstance(result, BaseException)
        }
        logger.info(f"Closed {len(ids) - len(failures)} of {len(ids)} connections")

        if failures:
            summary = "; ".join(f"{cid}: {error_message(exc)}" for cid, exc in failures.items())
            raise DatabaseConnectionError(
                f"Failed to close {len(failures)} connection(s): {summary}",
                details={"failed": list(failures)}
            )

    async def health_check(self) -> Dict[str, bool]:
        """对每个连接执行validate_connection"""
        connections = dict(self._connections)
        results = await asyncio.gather(
            *(adapter.validate_connection() for adapter in connections.values()),
            return_exceptions=True
        )
        return {
            connection_id: result is True
            for connection_id, result in zip(connections, results)
        }

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        await self.close_all_connections()
        return None
