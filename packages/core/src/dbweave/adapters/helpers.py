"""
适配器共享辅助函数 - 状态检查、错误包装与结果构造
各适配器直接调用，不通过继承共享
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..types.core_types import FieldInfo, QueryResult
from ..utils.errors import DatabaseConnectionError, QueryError, TransactionError
from ..utils.type_converter import convert_to_serializable, describe_value_type


def error_message(exc: BaseException) -> str:
    """取异常的可读信息，空信息时使用异常类名"""
    message = str(exc).strip()
    return message or exc.__class__.__name__


def ensure_connected(connected: bool, database_type: str) -> None:
    """未连接时抛出DatabaseConnectionError"""
    if not connected:
        raise DatabaseConnectionError(
            "Not connected to database",
            database_type=database_type
        )


def ensure_no_transaction(in_transaction: bool, database_type: str) -> None:
    if in_transaction:
        raise TransactionError(
            "Transaction already in progress",
            database_type=database_type
        )


def ensure_transaction(in_transaction: bool, database_type: str) -> None:
    if not in_transaction:
        raise TransactionError(
            "No transaction in progress",
            database_type=database_type
        )


def disconnected_during_begin(database_type: str) -> DatabaseConnectionError:
    """开启事务的等待期间适配器被断开"""
    return DatabaseConnectionError(
        "Disconnected while beginning transaction",
        database_type=database_type
    )


def query_error(
    exc: BaseException,
    database_type: str,
    query: Optional[str] = None,
    parameters: Optional[Sequence[Any]] = None
) -> QueryError:
    """
    把驱动异常包装为QueryError
    调用方应先单独捕获DatabaseError并原样抛出
    """
    return QueryError(
        f"Query execution failed: {error_message(exc)}",
        database_type=database_type,
        query=query,
        parameters=parameters,
        details={"driver_error": exc.__class__.__name__}
    )


def infer_fields(rows: Sequence[Dict[str, Any]]) -> List[FieldInfo]:
    """从首行推断字段，用于没有结果集描述的后端"""
    if not rows:
        return []
    return [
        FieldInfo(name=str(key), data_type=describe_value_type(value), nullable=True)
        for key, value in rows[0].items()
    ]


def rows_result(rows: Iterable[Dict[str, Any]], fields: Optional[List[FieldInfo]] = None) -> QueryResult:
    """返回行的结果：row_count等于行数"""
    serializable = [convert_to_serializable(dict(row)) for row in rows]
    return QueryResult(
        rows=serializable,
        row_count=len(serializable),
        fields=fields if fields is not None else infer_fields(serializable)
    )


def scalar_result(value: Any, row_count: Optional[int] = None, key: str = "result") -> QueryResult:
    """
    不返回行的结果：一条合成行携带原生返回值
    row_count为后端报告的影响行数，未报告时为1
    """
    return synthetic_result({key: value}, row_count)


def synthetic_result(row: Dict[str, Any], row_count: Optional[int] = None) -> QueryResult:
    """写操作的结果：一条合成行携带确认信息"""
    serializable = convert_to_serializable(dict(row))
    return QueryResult(
        rows=[serializable],
        row_count=1 if row_count is None else row_count,
        fields=infer_fields([serializable])
    )
