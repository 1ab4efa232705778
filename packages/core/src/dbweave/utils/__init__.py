"""
工具函数 - 异常类型、值序列化与负载安全检查
"""

from .errors import (
    DatabaseError,
    DatabaseConnectionError,
    TransactionError,
    QueryError,
    ValidationError,
    ConfigurationError,
)

__all__ = [
    "DatabaseError",
    "DatabaseConnectionError",
    "TransactionError",
    "QueryError",
    "ValidationError",
    "ConfigurationError",
]
