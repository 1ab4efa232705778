"""
命令类型定义 - 各范式解析后的命令
原始命令字符串在进入后端之前先被解析为以下不可变结构
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class SQLCommand:
    """SQL文本和按位置绑定的参数（$1..$n）"""
    text: str
    parameters: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class KeyValueCommand:
    """键值命令：大写的命令关键字和已替换占位符的参数"""
    keyword: str
    arguments: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DocumentOperation:
    """
    文档操作
    update字段随操作不同而含义不同：
    - updateOne/updateMany: 更新文档
    - insertOne/insertMany: 待插入的文档
    - distinct: 字段名
    - aggregate: 管道列表
    """
    collection: str
    operation: str
    filter: Dict[str, Any] = field(default_factory=dict)
    update: Optional[Any] = None
    options: Dict[str, Any] = field(default_factory=dict)
