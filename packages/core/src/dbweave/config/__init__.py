"""
配置系统 - 连接配置模型、连接字符串解析与分层配置
"""

from .connection import (
    BaseConnectionConfig,
    PostgreSQLConfig,
    RedisConfig,
    MongoDBConfig,
    ConnectionConfig,
    load_connection_config,
    config_from_url,
)
from .connection_string import ConnectionStringParser
from .base import DbWeaveConfig, ConfigSource, DictConfigSource, EnvConfigSource, YamlConfigSource

__all__ = [
    "BaseConnectionConfig",
    "PostgreSQLConfig",
    "RedisConfig",
    "MongoDBConfig",
    "ConnectionConfig",
    "load_connection_config",
    "config_from_url",
    "ConnectionStringParser",
    "DbWeaveConfig",
    "ConfigSource",
    "DictConfigSource",
    "EnvConfigSource",
    "YamlConfigSource",
]
