"""
参数清理工具 - 文档命令的集合名清理和负载安全检查
拒绝一切可在服务端执行代码的操作符，不做静默删除
"""

import re
from typing import Any, Iterable, Optional, Set

from .errors import QueryError


MAX_COLLECTION_NAME_LENGTH = 120

RESERVED_COLLECTION_NAMES = frozenset({"system", "admin", "local", "config"})

# 可执行服务端代码的操作符（匹配时忽略大小写，$$where 已被 $where 覆盖）
DENIED_OPERATORS = ("$where", "$$where", "$eval", "$function", "$accumulator")

_COLLECTION_STRIP = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_collection_name(name: Any, database_type: Optional[str] = None) -> str:
    """
    清理集合名：去除 [A-Za-z0-9_-] 以外的字符

    Raises:
        QueryError: 名称为空、超长或为保留名称
    """
    if not isinstance(name, str):
        raise QueryError(
            "Collection name must be a string",
            database_type=database_type,
            details={"collection": name}
        )

    cleaned = _COLLECTION_STRIP.sub("", name)
    if not cleaned:
        raise QueryError(
            f"Invalid collection name: {name!r}",
            database_type=database_type,
            details={"collection": name}
        )
    if len(cleaned) > MAX_COLLECTION_NAME_LENGTH:
        raise QueryError(
            f"Collection name exceeds {MAX_COLLECTION_NAME_LENGTH} characters",
            database_type=database_type,
            details={"collection": name}
        )
    if cleaned.lower() in RESERVED_COLLECTION_NAMES:
        raise QueryError(
            f"Access to reserved collection '{cleaned}' is not allowed",
            database_type=database_type,
            details={"collection": name}
        )
    return cleaned


def find_denied_operator(value: Any, denied: Iterable[str] = DENIED_OPERATORS) -> Optional[str]:
    """
    递归查找负载中出现的被拒绝操作符（键名或字符串值）

    Returns:
        找到的操作符，未找到返回None
    """
    lowered = tuple(op.lower() for op in denied)
    visited: Set[int] = set()
    return _find_recursive(value, lowered, visited)


def _find_recursive(value: Any, denied: tuple, visited: Set[int]) -> Optional[str]:
    if isinstance(value, str):
        return _match_text(value, denied)

    if isinstance(value, (dict, list, tuple)):
        # 防止循环引用
        value_id = id(value)
        if value_id in visited:
            return None
        visited.add(value_id)

    if isinstance(value, dict):
        for key, item in value.items():
            if isinstance(key, str):
                hit = _match_text(key, denied)
                if hit:
                    return hit
            hit = _find_recursive(item, denied, visited)
            if hit:
                return hit
    elif isinstance(value, (list, tuple)):
        for item in value:
            hit = _find_recursive(item, denied, visited)
            if hit:
                return hit
    return None


def _match_text(text: str, denied: tuple) -> Optional[str]:
    lowered = text.lower()
    for operator in denied:
        if operator in lowered:
            return operator
    return None


def ensure_safe_payload(value: Any, database_type: Optional[str] = None, query: Optional[str] = None) -> Any:
    """
    检查负载，发现被拒绝的操作符时抛出QueryError

    Returns:
        原样返回通过检查的负载
    """
    hit = find_denied_operator(value)
    if hit:
        raise QueryError(
            f"Operator '{hit}' is not allowed",
            database_type=database_type,
            query=query,
            details={"operator": hit}
        )
    return value
