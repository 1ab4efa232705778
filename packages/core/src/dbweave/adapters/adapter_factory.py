"""
数据库适配器工厂 - 按后端类型构造适配器
只负责构造，不做任何I/O；连接由调用方或ConnectionManager完成
"""

from typing import Any, Dict, List, Mapping, Type, Union

from .base import DataAdapter
from .mongodb_adapter import MongoDBAdapter
from .postgresql_adapter import PostgreSQLAdapter
from .redis_adapter import RedisAdapter
from ..config.connection import BaseConnectionConfig, load_connection_config
from ..config.connection_string import ConnectionStringParser
from ..utils.errors import ConfigurationError


# 适配器类表：标准类型 -> 适配器类
_ADAPTER_CLASSES: Dict[str, Type[DataAdapter]] = {
    "postgresql": PostgreSQLAdapter,
    "redis": RedisAdapter,
    "mongodb": MongoDBAdapter,
}


def supported_backends() -> List[str]:
    """支持的标准后端类型"""
    return list(_ADAPTER_CLASSES)


def resolve_kind(kind: str) -> str:
    """别名转标准类型，如 pg -> postgresql、mongo -> mongodb"""
    db_type = ConnectionStringParser.normalize_type(kind)
    if db_type not in _ADAPTER_CLASSES:
        raise ConfigurationError(
            f"Unsupported database type: {kind}. Supported types: {', '.join(_ADAPTER_CLASSES)}",
            config_key="type"
        )
    return db_type


def create_adapter(
    kind: str,
    config: Union[BaseConnectionConfig, Mapping[str, Any]]
) -> DataAdapter:
    """
    创建未连接的适配器实例

    Args:
        kind: 后端类型或别名
        config: 带类型的配置对象，或会按kind校验的配置字典

    Raises:
        ConfigurationError: 类型未知，或配置属于其他后端
        ValidationError: 配置字段非法
    """
    db_type = resolve_kind(kind)

    if isinstance(config, BaseConnectionConfig):
        typed_config = config
    else:
        values = dict(config)
        declared = values.get("type")
        if declared is not None and ConnectionStringParser.normalize_type(declared) != db_type:
            raise ConfigurationError(
                f"Config type '{declared}' does not match requested backend '{db_type}'",
                config_key="type"
            )
        values["type"] = db_type
        typed_config = load_connection_config(values)

    if typed_config.type != db_type:
        raise ConfigurationError(
            f"Config for '{typed_config.type}' cannot be used with backend '{db_type}'",
            config_key="type"
        )

    return _ADAPTER_CLASSES[db_type](typed_config)
