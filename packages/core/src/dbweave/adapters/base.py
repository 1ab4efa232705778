"""
DataAdapter基类 - 数据库适配器统一接口
连接、执行命令、结构内省、事务管理四类操作，所有后端行为一致
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, TYPE_CHECKING

from ..types.core_types import QueryResult, TableInfo, DatabaseStats

if TYPE_CHECKING:
    from ..config.connection import BaseConnectionConfig


class DataAdapter(ABC):
    """
    数据库适配器基类
    - 状态：未连接 -> 已连接（无事务 <-> 事务中）-> 未连接
    - 除connect/disconnect/validate_connection/is_*外，未连接时操作抛出DatabaseConnectionError
    - 同一时刻最多一个事务，事务中的命令都在专用连接上执行
    - 共享逻辑放在 helpers 模块中，基类只定义接口
    """

    database_type: str = "unknown"

    @property
    @abstractmethod
    def config(self) -> "BaseConnectionConfig":
        """只读的连接配置"""

    @abstractmethod
    async def connect(self) -> None:
        """建立连接，已连接时不做任何事"""

    @abstractmethod
    async def disconnect(self) -> None:
        """释放全部资源，未提交的事务被丢弃；未连接时不做任何事"""

    @abstractmethod
    def is_connected(self) -> bool:
        """是否已连接"""

    @abstractmethod
    async def execute_query(
        self,
        command: str,
        parameters: Optional[Sequence[Any]] = None
    ) -> QueryResult:
        """执行后端原生命令并返回统一结果"""

    @abstractmethod
    async def get_tables(self) -> List[TableInfo]:
        """列出所有表/视图/集合/键模式"""

    @abstractmethod
    async def get_table_info(self, name: str, schema: Optional[str] = None) -> Optional[TableInfo]:
        """获取单个结构的详细信息，不存在返回None"""

    @abstractmethod
    async def get_database_stats(self) -> DatabaseStats:
        """获取数据库整体统计"""

    @abstractmethod
    async def validate_connection(self) -> bool:
        """连接是否可用，任何失败都返回False，从不抛出"""

    @abstractmethod
    async def begin_transaction(self) -> None:
        """开始事务，已在事务中时抛出TransactionError"""

    @abstractmethod
    async def commit_transaction(self) -> None:
        """提交事务，不在事务中时抛出TransactionError"""

    @abstractmethod
    async def rollback_transaction(self) -> None:
        """回滚事务，不在事务中时抛出TransactionError"""

    @abstractmethod
    def is_in_transaction(self) -> bool:
        """是否在事务中"""

    async def __aenter__(self) -> "DataAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def __repr__(self) -> str:
        state = "connected" if self.is_connected() else "disconnected"
        return f"<{self.__class__.__name__} {self.database_type} {state}>"
