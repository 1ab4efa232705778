"""
类型转换工具 - 处理各后端驱动返回的特殊类型
确保查询结果中的所有值都能被JSON序列化
"""

from decimal import Decimal
from datetime import datetime, date, time, timedelta
from uuid import UUID
from typing import Any, Dict, List
import json


def convert_to_serializable(value: Any) -> Any:
    """
    将驱动返回的特殊类型转换为可序列化的基本类型

    支持的转换：
    - Decimal -> float
    - datetime/date/time -> ISO格式字符串
    - timedelta -> 秒数
    - UUID -> 字符串
    - bytes -> UTF-8字符串或十六进制字符串
    - 嵌套的字典、列表、集合递归处理
    - 其他不可序列化的对象（如ObjectId、asyncpg的Range）-> str
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, Decimal):
        return float(value)

    elif isinstance(value, (datetime, date, time)):
        return value.isoformat()
    elif isinstance(value, timedelta):
        return value.total_seconds()

    elif isinstance(value, UUID):
        return str(value)

    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            return raw.hex()

    elif isinstance(value, dict):
        return {str(k): convert_to_serializable(v) for k, v in value.items()}

    elif isinstance(value, (list, tuple, set, frozenset)):
        return [convert_to_serializable(item) for item in value]

    else:
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)


def convert_rows_to_serializable(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """转换查询结果的多行数据"""
    return [convert_to_serializable(row) for row in rows]


def describe_value_type(value: Any) -> str:
    """
    返回值的类型名称，用于没有类型系统的后端（文档、键值）推断字段类型
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "int"
    if isinstance(value, (float, Decimal)):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, (bytes, bytearray)):
        return "binData"
    # bson.ObjectId 等驱动类型使用类名
    name = type(value).__name__
    return name[:1].lower() + name[1:]
