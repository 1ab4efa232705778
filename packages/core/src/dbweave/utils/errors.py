"""
自定义异常类 - 提供结构化的错误处理
定义适配器层统一的异常类型，所有异常都携带数据库类型和操作类别
"""

from typing import Optional, Dict, Any, Sequence


class DatabaseError(Exception):
    """适配器层基础异常类"""

    operation_category = "database"

    def __init__(
        self,
        message: str,
        database_type: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.database_type = database_type
        self.operation = operation or self.operation_category
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "database_type": self.database_type,
            "operation": self.operation,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.database_type:
            return f"[{self.database_type}] {self.message}"
        return self.message


class DatabaseConnectionError(DatabaseError):
    """连接建立、断开失败，或在未连接状态下操作"""

    operation_category = "connection"


class TransactionError(DatabaseError):
    """事务状态转换非法，或后端提交/回滚失败"""

    operation_category = "transaction"


class QueryError(DatabaseError):
    """命令格式错误、不支持的命令/操作、被拒绝的操作符或后端执行错误"""

    operation_category = "query"

    def __init__(
        self,
        message: str,
        database_type: Optional[str] = None,
        query: Optional[str] = None,
        parameters: Optional[Sequence[Any]] = None,
        **kwargs
    ):
        super().__init__(message, database_type=database_type, **kwargs)
        self.query = query
        self.parameters = list(parameters) if parameters is not None else None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "query": self.query,
            "parameters": self.parameters
        })
        return result


class ValidationError(DatabaseError):
    """配置值校验失败"""

    operation_category = "validation"

    def __init__(
        self,
        field: str,
        message: str,
        value: Any = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "field": self.field,
            "value": self.value
        })
        return result


class ConfigurationError(DatabaseError):
    """未知的后端类型、未知或重复的连接标识、缺失的命名配置"""

    operation_category = "configuration"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.config_key = config_key

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result
