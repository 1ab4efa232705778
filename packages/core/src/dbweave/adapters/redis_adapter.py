"""
Redis适配器 - 使用redis.asyncio
命令字符串按空白切分，关键字在固定命令表中查找后转为客户端方法调用
键按前缀分组为合成的"表"
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from redis.asyncio import Redis

from .base import DataAdapter
from .helpers import (
    disconnected_during_begin,
    ensure_connected,
    ensure_no_transaction,
    ensure_transaction,
    error_message,
    query_error,
    rows_result,
    scalar_result,
)
from ..config.connection import RedisConfig
from ..telemetry.logger import get_logger
from ..types.command_types import KeyValueCommand
from ..types.core_types import ColumnInfo, DatabaseStats, FieldInfo, QueryResult, TableInfo, TableKind
from ..utils.errors import DatabaseConnectionError, DatabaseError, QueryError, TransactionError


logger = get_logger(__name__)

PLACEHOLDER = "?"
CATCH_ALL_PATTERN = "*"
SCAN_BATCH_SIZE = 500


@dataclass(frozen=True)
class CommandSpec:
    """命令表项：客户端方法名、参数个数范围和参数转换函数"""
    method: str
    min_args: int
    max_args: Optional[int]
    build: Callable[[Tuple[str, ...]], Tuple[tuple, dict]]
    usage: str


def _to_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise QueryError(f"{name} must be an integer, got '{value}'", database_type="redis") from exc


def _to_float(value: str, name: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise QueryError(f"{name} must be a number, got '{value}'", database_type="redis") from exc


def _pairs(values: Tuple[str, ...], usage: str) -> List[Tuple[str, str]]:
    if len(values) % 2:
        raise QueryError(f"Wrong number of arguments, usage: {usage}", database_type="redis")
    return [(values[i], values[i + 1]) for i in range(0, len(values), 2)]


def _build_hset(args: Tuple[str, ...]) -> Tuple[tuple, dict]:
    mapping = dict(_pairs(args[1:], "HSET key field value [field value ...]"))
    return (args[0],), {"mapping": mapping}


def _build_zadd(args: Tuple[str, ...]) -> Tuple[tuple, dict]:
    mapping = {
        member: _to_float(score, "score")
        for score, member in _pairs(args[1:], "ZADD key score member [score member ...]")
    }
    return (args[0], mapping), {}


def _build_range(args: Tuple[str, ...]) -> Tuple[tuple, dict]:
    return (args[0], _to_int(args[1], "start"), _to_int(args[2], "stop")), {}


def _build_plain(args: Tuple[str, ...]) -> Tuple[tuple, dict]:
    return tuple(args), {}


def _build_keys(args: Tuple[str, ...]) -> Tuple[tuple, dict]:
    return (args[0] if args else CATCH_ALL_PATTERN,), {}


def _build_info(args: Tuple[str, ...]) -> Tuple[tuple, dict]:
    return (args[0] if args else "server",), {}


COMMANDS: Dict[str, CommandSpec] = {
    "GET": CommandSpec("get", 1, 1, _build_plain, "GET key"),
    "SET": CommandSpec("set", 2, 2, _build_plain, "SET key value"),
    "DEL": CommandSpec("delete", 1, None, _build_plain, "DEL key [key ...]"),
    "EXISTS": CommandSpec("exists", 1, None, _build_plain, "EXISTS key [key ...]"),
    "KEYS": CommandSpec("keys", 0, 1, _build_keys, "KEYS [pattern]"),
    "HGET": CommandSpec("hget", 2, 2, _build_plain, "HGET key field"),
    "HSET": CommandSpec("hset", 3, None, _build_hset, "HSET key field value [field value ...]"),
    "HGETALL": CommandSpec("hgetall", 1, 1, _build_plain, "HGETALL key"),
    "LPUSH": CommandSpec("lpush", 2, None, _build_plain, "LPUSH key value [value ...]"),
    "RPUSH": CommandSpec("rpush", 2, None, _build_plain, "RPUSH key value [value ...]"),
    "LRANGE": CommandSpec("lrange", 3, 3, _build_range, "LRANGE key start stop"),
    "SADD": CommandSpec("sadd", 2, None, _build_plain, "SADD key member [member ...]"),
    "SMEMBERS": CommandSpec("smembers", 1, 1, _build_plain, "SMEMBERS key"),
    "ZADD": CommandSpec("zadd", 3, None, _build_zadd, "ZADD key score member [score member ...]"),
    "ZRANGE": CommandSpec("zrange", 3, 3, _build_range, "ZRANGE key start stop"),
    "INFO": CommandSpec("info", 0, 1, _build_info, "INFO [section]"),
    "PING": CommandSpec("ping", 0, 0, _build_plain, "PING"),
}


def parse_key_value_command(command: Any, parameters: Optional[Sequence[Any]] = None) -> KeyValueCommand:
    """
    解析Redis命令
    - 按空白切分，关键字不区分大小写
    - 值为 ? 的参数按顺序用parameters替换，个数必须一致
    - 关键字不在命令表中时抛出QueryError
    """
    if not isinstance(command, str) or not command.strip():
        raise QueryError("Redis command must be a non-empty string", database_type="redis", query=command)

    tokens = command.split()
    keyword = tokens[0].upper()
    arguments = tokens[1:]

    if keyword not in COMMANDS:
        raise QueryError(
            f"Unsupported Redis command: {keyword}",
            database_type="redis",
            query=command,
            parameters=parameters
        )

    values = list(parameters) if parameters is not None else []
    placeholders = sum(1 for arg in arguments if arg == PLACEHOLDER)
    if placeholders != len(values):
        raise QueryError(
            f"Command has {placeholders} placeholder(s) but {len(values)} parameter(s) were given",
            database_type="redis",
            query=command,
            parameters=parameters
        )
    if values:
        supplied = iter(values)
        arguments = [str(next(supplied)) if arg == PLACEHOLDER else arg for arg in arguments]

    spec = COMMANDS[keyword]
    if len(arguments) < spec.min_args or (spec.max_args is not None and len(arguments) > spec.max_args):
        raise QueryError(
            f"Wrong number of arguments for {keyword}, usage: {spec.usage}",
            database_type="redis",
            query=command,
            parameters=parameters
        )

    return KeyValueCommand(keyword=keyword, arguments=tuple(arguments))


def key_pattern(key: str) -> str:
    """键所属的模式：'user:1' -> 'user:*'，无前缀的键归入 '*'"""
    if ":" in key:
        return key.split(":", 1)[0] + ":*"
    return CATCH_ALL_PATTERN


def _pattern_table(pattern: str) -> TableInfo:
    return TableInfo(
        name=pattern,
        kind=TableKind.TABLE,
        columns=[
            ColumnInfo(name="key", data_type="string", nullable=False, is_primary_key=True),
            ColumnInfo(name="value", data_type="string", nullable=True),
        ],
    )


def _shape_reply(keyword: str, reply: Any) -> QueryResult:
    """把客户端返回值转换为统一结果"""
    if keyword == "PING" and reply is True:
        reply = "PONG"

    if isinstance(reply, (set, frozenset)):
        reply = sorted(reply, key=str)

    if isinstance(reply, dict):
        return rows_result(
            ({"key": field, "value": value} for field, value in reply.items()),
            [FieldInfo("key", "string", False), FieldInfo("value", "string", True)]
        )

    if isinstance(reply, (list, tuple)):
        return rows_result(
            ({"key": index, "value": item} for index, item in enumerate(reply)),
            [FieldInfo("key", "int", False), FieldInfo("value", "string", True)]
        )

    return scalar_result(reply)


class RedisAdapter(DataAdapter):
    """
    Redis适配器
    - 命令表之外的命令一律拒绝
    - 参数作为独立的协议值发送，不会被重新解析
    - 事务使用单独的单连接客户端和MULTI管道，命令在EXEC前只在本地排队
    """

    database_type = "redis"

    def __init__(self, config: RedisConfig):
        self._config = config
        self._client: Optional[Redis] = None
        self._tx_client: Optional[Redis] = None
        self._pipeline = None
        self._connect_lock = asyncio.Lock()
        self._transaction_lock = asyncio.Lock()

    @property
    def config(self) -> RedisConfig:
        return self._config

    def _create_client(self, single_connection: bool = False) -> Redis:
        config = self._config
        options: Dict[str, Any] = {
            "decode_responses": True,
            "socket_connect_timeout": config.connect_timeout,
            "single_connection_client": single_connection,
        }
        if config.url:
            if config.password:
                options["password"] = config.password
            return Redis.from_url(config.url, **options)
        return Redis(
            host=config.host,
            port=config.port,
            db=config.db,
            username=config.username,
            password=config.password,
            ssl=config.ssl,
            **options
        )

    async def _close_client(self, client: Optional[Redis]) -> Optional[Exception]:
        """关闭客户端，返回关闭时的异常供调用方决定如何处理"""
        if client is None:
            return None
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"Failed to close Redis client: {error_message(e)}")
            return e
        return None

    async def connect(self) -> None:
        """创建客户端并PING验证"""
        async with self._connect_lock:
            if self._client is not None:
                return

            client = self._create_client()
            try:
                await client.ping()
            except Exception as e:
                await self._close_client(client)
                raise DatabaseConnectionError(
                    f"Failed to connect to Redis: {error_message(e)}",
                    database_type=self.database_type,
                    details={"host": self._config.host, "port": self._config.port, "db": self._config.db}
                ) from e

            self._client = client
            logger.info(f"Connected to Redis {self._config.host}:{self._config.port}/{self._config.db}")

    async def disconnect(self) -> None:
        """丢弃排队中的事务命令并关闭全部客户端"""
        client = self._client
        if client is None:
            return

        tx_client, pipeline = self._tx_client, self._pipeline
        self._client = None
        self._tx_client = None
        self._pipeline = None

        failures: List[Exception] = []
        if pipeline is not None:
            try:
                await pipeline.reset()
            except Exception as e:
                logger.warning(f"Failed to discard Redis transaction: {error_message(e)}")
                failures.append(e)
        for item in (tx_client, client):
            failure = await self._close_client(item)
            if failure is not None:
                failures.append(failure)

        logger.info("Disconnected from Redis")
        if failures:
            raise DatabaseConnectionError(
                f"Failed to disconnect from Redis: {error_message(failures[0])}",
                database_type=self.database_type
            ) from failures[0]

    def is_connected(self) -> bool:
        return self._client is not None

    async def execute_query(
        self,
        command: str,
        parameters: Optional[Sequence[Any]] = None
    ) -> QueryResult:
        """执行命令，事务中只排队并返回QUEUED"""
        ensure_connected(self.is_connected(), self.database_type)
        parsed = parse_key_value_command(command, parameters)
        spec = COMMANDS[parsed.keyword]
        args, kwargs = spec.build(parsed.arguments)
        logger.debug(f"Redis execute: {parsed.keyword} ({len(parsed.arguments)} args)")

        try:
            pipeline = self._pipeline
            if pipeline is not None:
                getattr(pipeline, spec.method)(*args, **kwargs)
                return scalar_result("QUEUED")

            client = self._client
            if client is None:
                raise DatabaseConnectionError("Not connected to database", database_type=self.database_type)
            reply = await getattr(client, spec.method)(*args, **kwargs)
            return _shape_reply(parsed.keyword, reply)
        except DatabaseError:
            raise
        except Exception as e:
            raise query_error(e, self.database_type, command, parameters) from e

    async def _scan_patterns(self, match: Optional[str] = None) -> List[str]:
        """SCAN遍历键，返回去重后的模式列表（保持首次出现顺序）"""
        ensure_connected(self.is_connected(), self.database_type)
        patterns: Dict[str, None] = {}
        try:
            async for key in self._client.scan_iter(match=match, count=SCAN_BATCH_SIZE):
                patterns.setdefault(key_pattern(key), None)
        except Exception as e:
            raise query_error(e, self.database_type, "SCAN") from e
        return list(patterns)

    async def get_tables(self) -> List[TableInfo]:
        """每个键模式作为一张合成表"""
        return [_pattern_table(pattern) for pattern in await self._scan_patterns()]

    async def get_table_info(self, name: str, schema: Optional[str] = None) -> Optional[TableInfo]:
        """模式下至少有一个键时返回合成表，否则返回None"""
        match = None if name == CATCH_ALL_PATTERN else name
        if name in await self._scan_patterns(match):
            return _pattern_table(name)
        return None

    async def _info(self, section: str) -> Dict[str, Any]:
        try:
            return await self._client.info(section)
        except Exception as e:
            raise query_error(e, self.database_type, f"INFO {section}") from e

    async def get_database_stats(self) -> DatabaseStats:
        patterns = await self._scan_patterns()
        memory = await self._info("memory")
        clients = await self._info("clients")
        return DatabaseStats(
            total_tables=len(patterns),
            total_views=0,
            total_indexes=0,
            database_size=str(memory.get("used_memory_human") or "0B"),
            connection_count=int(clients.get("connected_clients") or 0),
        )

    async def validate_connection(self) -> bool:
        try:
            ensure_connected(self.is_connected(), self.database_type)
            return bool(await self._client.ping())
        except Exception as e:
            logger.warning(f"Redis connection check failed: {error_message(e)}")
            return False

    async def begin_transaction(self) -> None:
        """打开专用客户端并创建MULTI管道"""
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_no_transaction(self.is_in_transaction(), self.database_type)

            client = self._client
            tx_client = self._create_client(single_connection=True)
            try:
                await tx_client.ping()
                pipeline = tx_client.pipeline(transaction=True)
            except Exception as e:
                await self._close_client(tx_client)
                if self._client is not client:
                    raise disconnected_during_begin(self.database_type) from e
                raise TransactionError(
                    f"Failed to begin Redis transaction: {error_message(e)}",
                    database_type=self.database_type
                ) from e

            if self._client is not client:
                await self._close_client(tx_client)
                raise disconnected_during_begin(self.database_type)

            self._tx_client = tx_client
            self._pipeline = pipeline
            logger.debug("Redis transaction started")

    async def commit_transaction(self) -> None:
        """EXEC执行排队的命令，之后关闭专用客户端"""
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_transaction(self.is_in_transaction(), self.database_type)
            tx_client, pipeline = self._tx_client, self._pipeline

            try:
                results = await pipeline.execute()
            except Exception as e:
                raise TransactionError(
                    f"Failed to commit Redis transaction: {error_message(e)}",
                    database_type=self.database_type
                ) from e
            finally:
                self._tx_client = None
                self._pipeline = None
                await self._close_client(tx_client)

            logger.debug(f"Redis transaction committed ({len(results)} commands)")

    async def rollback_transaction(self) -> None:
        """丢弃排队的命令（DISCARD），之后关闭专用客户端"""
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_transaction(self.is_in_transaction(), self.database_type)
            tx_client, pipeline = self._tx_client, self._pipeline

            try:
                await pipeline.reset()
            except Exception as e:
                raise TransactionError(
                    f"Failed to rollback Redis transaction: {error_message(e)}",
                    database_type=self.database_type
                ) from e
            finally:
                self._tx_client = None
                self._pipeline = None
                await self._close_client(tx_client)

            logger.debug("Redis transaction discarded")

    def is_in_transaction(self) -> bool:
        return self._pipeline is not None
