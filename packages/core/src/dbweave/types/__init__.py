"""
类型定义系统 - 查询结果、结构信息与解析后的命令
"""

from .core_types import (
    TableKind,
    ConstraintKind,
    FieldInfo,
    QueryResult,
    ColumnInfo,
    IndexInfo,
    ConstraintInfo,
    TableInfo,
    DatabaseStats,
)
from .command_types import SQLCommand, KeyValueCommand, DocumentOperation

__all__ = [
    # 核心类型
    "TableKind",
    "ConstraintKind",
    "FieldInfo",
    "QueryResult",
    "ColumnInfo",
    "IndexInfo",
    "ConstraintInfo",
    "TableInfo",
    "DatabaseStats",

    # 命令类型
    "SQLCommand",
    "KeyValueCommand",
    "DocumentOperation",
]
