"""
DbWeave数据库适配器核心包
导出主要API供外部使用 - 一个接口访问关系型、键值和文档数据库
"""

# 适配器
from .adapters.base import DataAdapter
from .adapters.adapter_factory import create_adapter, supported_backends
from .adapters.connection_manager import ConnectionManager
from .adapters.transaction_manager import transaction

# 配置
from .config.base import DbWeaveConfig
from .config.connection import (
    PostgreSQLConfig,
    RedisConfig,
    MongoDBConfig,
    load_connection_config,
    config_from_url,
)

# 监控遥测
from .telemetry.logger import get_logger, setup_logging

# 工具函数
from .utils.errors import (
    DatabaseError,
    DatabaseConnectionError,
    TransactionError,
    QueryError,
    ValidationError,
    ConfigurationError,
)

# 类型定义
from .types import (
    FieldInfo,
    QueryResult,
    ColumnInfo,
    IndexInfo,
    ConstraintInfo,
    TableInfo,
    TableKind,
    DatabaseStats,
)

__version__ = "1.0.0"
__all__ = [
    # 适配器
    "DataAdapter",
    "create_adapter",
    "supported_backends",
    "ConnectionManager",
    "transaction",

    # 配置
    "DbWeaveConfig",
    "PostgreSQLConfig",
    "RedisConfig",
    "MongoDBConfig",
    "load_connection_config",
    "config_from_url",

    # 监控遥测
    "get_logger",
    "setup_logging",

    # 工具函数
    "DatabaseError",
    "DatabaseConnectionError",
    "TransactionError",
    "QueryError",
    "ValidationError",
    "ConfigurationError",

    # 类型定义
    "FieldInfo",
    "QueryResult",
    "ColumnInfo",
    "IndexInfo",
    "ConstraintInfo",
    "TableInfo",
    "TableKind",
    "DatabaseStats",
]
