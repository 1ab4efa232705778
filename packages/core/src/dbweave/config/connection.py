"""
连接配置 - 每种后端一个pydantic模型，按type字段区分
配置在构造时完成校验，校验失败转换为ValidationError
"""

from typing import Any, Annotated, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .connection_string import ConnectionStringParser
from ..utils.errors import ConfigurationError, ValidationError


class BaseConnectionConfig(BaseModel):
    """所有后端共有的连接字段"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: Optional[str] = None
    host: str = "localhost"
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    ssl: bool = False

    def safe_dict(self) -> Dict[str, Any]:
        """不含密码的字典，用于日志输出"""
        data = self.model_dump(exclude={"password"})
        if data.get("url") and self.password:
            data["url"] = data["url"].replace(self.password, "***")
        return data


class PostgreSQLConfig(BaseConnectionConfig):
    """PostgreSQL连接配置"""

    type: Literal["postgresql"] = "postgresql"
    port: int = Field(default=5432, gt=0, lt=65536)
    database: str = "postgres"
    username: Optional[str] = "postgres"
    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=20, ge=1)
    max_inactive_connection_lifetime: float = Field(default=30.0, ge=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    command_timeout: Optional[float] = Field(default=None, gt=0)


class RedisConfig(BaseConnectionConfig):
    """Redis连接配置，db为键空间编号"""

    type: Literal["redis"] = "redis"
    port: int = Field(default=6379, gt=0, lt=65536)
    db: int = Field(default=0, ge=0)
    connect_timeout: float = Field(default=10.0, gt=0)


class MongoDBConfig(BaseConnectionConfig):
    """MongoDB连接配置"""

    type: Literal["mongodb"] = "mongodb"
    port: int = Field(default=27017, gt=0, lt=65536)
    database: str = "test"
    auth_source: Optional[str] = None
    connect_timeout: float = Field(default=10.0, gt=0)


ConnectionConfig = Annotated[
    Union[PostgreSQLConfig, RedisConfig, MongoDBConfig],
    Field(discriminator="type")
]

CONFIG_CLASSES = {
    "postgresql": PostgreSQLConfig,
    "redis": RedisConfig,
    "mongodb": MongoDBConfig,
}

_connection_config_adapter = TypeAdapter(ConnectionConfig)

# 连接字符串解析结果中不属于模型的字段
_PARSER_ONLY_KEYS = {"params", "connection_string"}


def _normalize_mapping(data: Mapping[str, Any]) -> Dict[str, Any]:
    """处理type别名，并在缺少type时从url推断"""
    values = dict(data)

    raw_type = values.get("type")
    url = values.get("url")

    if raw_type is None and url:
        parsed = ConnectionStringParser.parse(url)
        if parsed.get("type") == "unknown":
            raise ConfigurationError(
                "Cannot infer backend type from url",
                config_key="url"
            )
        raw_type = parsed["type"]

    if raw_type is None:
        raise ConfigurationError("Connection config requires a 'type'", config_key="type")

    db_type = ConnectionStringParser.normalize_type(raw_type)
    if db_type is None:
        raise ConfigurationError(
            f"Unsupported database type: {raw_type}. "
            f"Supported types: {', '.join(CONFIG_CLASSES)}",
            config_key="type"
        )
    values["type"] = db_type
    return values


def _translate_validation_error(exc: PydanticValidationError, data: Mapping[str, Any]) -> ValidationError:
    first = exc.errors()[0]
    loc = [str(part) for part in first.get("loc", ()) if str(part) not in CONFIG_CLASSES]
    field_name = ".".join(loc) or "config"
    value = first.get("input")
    if field_name == "password":
        value = "***"
    return ValidationError(
        field=field_name,
        message=f"Invalid value for '{field_name}': {first.get('msg')}",
        value=value,
        database_type=data.get("type"),
        details={"errors": len(exc.errors())}
    )


def load_connection_config(data: Union[Mapping[str, Any], BaseConnectionConfig]) -> BaseConnectionConfig:
    """
    从字典构造带类型的连接配置

    Args:
        data: 配置字典，或已构造好的配置对象（原样返回）

    Raises:
        ConfigurationError: 类型缺失或不受支持
        ValidationError: 字段值非法
    """
    if isinstance(data, BaseConnectionConfig):
        return data

    values = _normalize_mapping(data)
    try:
        return _connection_config_adapter.validate_python(values)
    except PydanticValidationError as exc:
        raise _translate_validation_error(exc, values) from exc


def config_from_url(url: str, **overrides: Any) -> BaseConnectionConfig:
    """
    从连接字符串构造连接配置
    URL中的host/port等字段会展开为模型字段，overrides优先
    """
    parsed = ConnectionStringParser.parse(url)
    if parsed.get("type") == "unknown":
        raise ConfigurationError("Unrecognized connection string", config_key="url")

    values = {k: v for k, v in parsed.items() if k not in _PARSER_ONLY_KEYS and v is not None}
    # 键值对格式已完全展开，只有URL格式才交给驱动
    if "://" in url:
        values.setdefault("url", url)
    values.update(overrides)
    return load_connection_config(values)
