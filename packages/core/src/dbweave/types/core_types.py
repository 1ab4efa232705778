"""
核心类型定义 - 适配器统一返回的数据结构
查询结果、表结构、索引、约束和数据库统计信息
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class TableKind(str, Enum):
    """结构类型"""
    TABLE = "table"
    VIEW = "view"
    MATERIALIZED_VIEW = "materialized_view"


class ConstraintKind(str, Enum):
    """约束类型"""
    PRIMARY_KEY = "PRIMARY KEY"
    FOREIGN_KEY = "FOREIGN KEY"
    UNIQUE = "UNIQUE"
    CHECK = "CHECK"
    NOT_NULL = "NOT NULL"


@dataclass
class FieldInfo:
    """结果集中的字段描述"""
    name: str
    data_type: str
    nullable: bool = True
    default_value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QueryResult:
    """
    统一的查询结果
    返回行的语句：row_count等于rows的长度
    不返回行的语句：rows只有一条合成行，row_count为后端报告的影响行数
    """
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    fields: List[FieldInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "row_count": self.row_count,
            "fields": [f.to_dict() for f in self.fields]
        }


@dataclass
class ColumnInfo:
    """列描述"""
    name: str
    data_type: str
    nullable: bool = True
    default_value: Optional[Any] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IndexInfo:
    """索引描述，columns保持索引定义中的顺序"""
    name: str
    columns: List[str] = field(default_factory=list)
    unique: bool = False
    index_type: str = "btree"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConstraintInfo:
    """约束描述"""
    name: str
    kind: ConstraintKind
    columns: List[str] = field(default_factory=list)
    referenced_table: Optional[str] = None
    referenced_columns: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class TableInfo:
    """表/视图/集合/键模式的结构描述"""
    name: str
    schema: Optional[str] = None
    kind: TableKind = TableKind.TABLE
    columns: List[ColumnInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)
    constraints: List[ConstraintInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "kind": self.kind.value,
            "columns": [c.to_dict() for c in self.columns],
            "indexes": [i.to_dict() for i in self.indexes],
            "constraints": [c.to_dict() for c in self.constraints]
        }


@dataclass
class DatabaseStats:
    """数据库整体统计"""
    total_tables: int = 0
    total_views: int = 0
    total_indexes: int = 0
    database_size: str = "0 MB"
    connection_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
