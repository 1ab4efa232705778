"""
数据库适配器系统 - 统一的异步适配器接口与连接管理
支持PostgreSQL、Redis、MongoDB
"""

from .base import DataAdapter
from .postgresql_adapter import PostgreSQLAdapter
from .redis_adapter import RedisAdapter
from .mongodb_adapter import MongoDBAdapter
from .adapter_factory import create_adapter, supported_backends
from .connection_manager import ConnectionManager
from .transaction_manager import transaction

__all__ = [
    "DataAdapter",
    "PostgreSQLAdapter",
    "RedisAdapter",
    "MongoDBAdapter",
    "create_adapter",
    "supported_backends",
    "ConnectionManager",
    "transaction"
]
