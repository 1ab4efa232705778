"""
MongoDB适配器 - 使用motor异步驱动
命令是一个JSON对象：{"collection", "operation", "filter", "update", "options"}
在访问后端之前完成集合名清理和负载安全检查
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient

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
    synthetic_result,
)
from ..config.connection import MongoDBConfig
from ..telemetry.logger import get_logger
from ..types.command_types import DocumentOperation
from ..types.core_types import ColumnInfo, DatabaseStats, IndexInfo, QueryResult, TableInfo, TableKind
from ..utils.errors import DatabaseConnectionError, DatabaseError, QueryError, TransactionError
from ..utils.parameter_sanitizer import ensure_safe_payload, sanitize_collection_name
from ..utils.type_converter import describe_value_type


logger = get_logger(__name__)

# 规范化后的操作名 -> 驱动方法名
OPERATIONS = {
    "find": "find",
    "findone": "find_one",
    "insertone": "insert_one",
    "insertmany": "insert_many",
    "updateone": "update_one",
    "updatemany": "update_many",
    "deleteone": "delete_one",
    "deletemany": "delete_many",
    "count": "count_documents",
    "distinct": "distinct",
    "aggregate": "aggregate",
}

SPECIAL_INDEX_TYPES = ("text", "2dsphere", "2d", "hashed")


def normalize_operation(operation: str) -> str:
    """不区分大小写，忽略 - 和 _：insert_one / insertOne / insert-one 等价"""
    return operation.lower().replace("-", "").replace("_", "")


def _require_dict(value: Any, name: str, command: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise QueryError(f"'{name}' must be a JSON object", database_type="mongodb", query=command)
    return value


def parse_document_operation(command: Any, parameters: Optional[Sequence[Any]] = None) -> DocumentOperation:
    """
    解析文档命令
    - 必须是JSON对象，collection和operation为字符串
    - 集合名清理后不能为空、超长或为保留名称
    - filter/update/options中不能出现可执行代码的操作符
    - 不支持位置参数
    """
    if parameters:
        raise QueryError(
            "MongoDB commands do not accept positional parameters; put values in the JSON payload",
            database_type="mongodb",
            query=command if isinstance(command, str) else None,
            parameters=parameters
        )
    if not isinstance(command, str) or not command.strip():
        raise QueryError("Query must be a non-empty string", database_type="mongodb")

    try:
        payload = json.loads(command)
    except json.JSONDecodeError as e:
        raise QueryError(f"Invalid JSON format in query: {e.msg}", database_type="mongodb", query=command) from e

    if not isinstance(payload, dict):
        raise QueryError("Query must be a JSON object", database_type="mongodb", query=command)

    collection = payload.get("collection")
    operation = payload.get("operation")
    if not isinstance(collection, str) or not collection:
        raise QueryError("Query must include a valid collection name", database_type="mongodb", query=command)
    if not isinstance(operation, str) or not operation:
        raise QueryError("Query must include a valid operation", database_type="mongodb", query=command)

    canonical = normalize_operation(operation)
    if canonical not in OPERATIONS:
        raise QueryError(f"Unsupported MongoDB operation: {operation}", database_type="mongodb", query=command)

    collection = sanitize_collection_name(collection, database_type="mongodb")
    filter_doc = _require_dict(payload.get("filter"), "filter", command)
    options = _require_dict(payload.get("options"), "options", command)
    update = payload.get("update")

    if canonical == "insertone" and not isinstance(update, dict):
        raise QueryError("insertOne requires a document in 'update'", database_type="mongodb", query=command)
    if canonical == "insertmany":
        if isinstance(update, dict):
            update = [update]
        if not isinstance(update, list) or not update or not all(isinstance(d, dict) for d in update):
            raise QueryError("insertMany requires a list of documents in 'update'", database_type="mongodb", query=command)
    if canonical in ("updateone", "updatemany"):
        if not isinstance(update, (dict, list)) or not update:
            raise QueryError(f"{operation} requires an update document in 'update'", database_type="mongodb", query=command)
    if canonical == "distinct" and not isinstance(update, str):
        raise QueryError("Distinct operation requires a string field name", database_type="mongodb", query=command)
    if canonical == "aggregate":
        if not isinstance(update, list) or not all(isinstance(stage, dict) for stage in update):
            raise QueryError(
                "Aggregate operation requires an array of pipeline stages",
                database_type="mongodb",
                query=command
            )

    for part in (filter_doc, update, options):
        ensure_safe_payload(part, database_type="mongodb", query=command)

    return DocumentOperation(
        collection=collection,
        operation=canonical,
        filter=filter_doc,
        update=update,
        options=options,
    )


def _driver_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """JSON中的sort为对象，驱动需要 (字段, 方向) 列表"""
    converted = dict(options)
    sort = converted.get("sort")
    if isinstance(sort, dict):
        converted["sort"] = list(sort.items())
    return converted


def _index_type(keys: Sequence[Any]) -> str:
    for _, direction in keys:
        if direction in SPECIAL_INDEX_TYPES:
            return str(direction)
    return "btree"


class MongoDBAdapter(DataAdapter):
    """
    MongoDB适配器
    - 集合即表，视图标记为view
    - 列从样本文档推断，_id为主键
    - 事务通过客户端会话实现，事务期间每个操作都带上session
    """

    database_type = "mongodb"

    def __init__(self, config: MongoDBConfig):
        self._config = config
        self._client: Optional[AsyncIOMotorClient] = None
        self._db = None
        self._session = None
        self._connect_lock = asyncio.Lock()
        self._transaction_lock = asyncio.Lock()

    @property
    def config(self) -> MongoDBConfig:
        return self._config

    def _create_client(self) -> AsyncIOMotorClient:
        config = self._config
        options: Dict[str, Any] = {
            "serverSelectionTimeoutMS": int(config.connect_timeout * 1000),
            "connectTimeoutMS": int(config.connect_timeout * 1000),
        }
        if config.auth_source:
            options["authSource"] = config.auth_source
        if config.ssl:
            options["tls"] = True
        if config.url:
            if config.password:
                options["password"] = config.password
            return AsyncIOMotorClient(config.url, **options)
        if config.username:
            options["username"] = config.username
            options["password"] = config.password
        return AsyncIOMotorClient(config.host, config.port, **options)

    async def connect(self) -> None:
        """创建客户端并ping验证"""
        async with self._connect_lock:
            if self._client is not None:
                return

            client = self._create_client()
            try:
                await client.admin.command("ping")
            except Exception as e:
                client.close()
                raise DatabaseConnectionError(
                    f"Failed to connect to MongoDB: {error_message(e)}",
                    database_type=self.database_type,
                    details={"host": self._config.host, "port": self._config.port, "database": self._config.database}
                ) from e

            self._client = client
            self._db = client[self._config.database]
            logger.info(f"Connected to MongoDB {self._config.host}:{self._config.port}/{self._config.database}")

    async def disconnect(self) -> None:
        """中止未提交的事务，结束会话并关闭客户端"""
        client = self._client
        if client is None:
            return

        session = self._session
        self._client = None
        self._db = None
        self._session = None

        failure: Optional[Exception] = None
        if session is not None:
            try:
                if session.in_transaction:
                    await session.abort_transaction()
            except Exception as e:
                logger.warning(f"Failed to abort MongoDB transaction: {error_message(e)}")
                failure = e
            await self._end_session(session)

        try:
            client.close()
        except Exception as e:
            failure = failure or e

        logger.info("Disconnected from MongoDB")
        if failure is not None:
            raise DatabaseConnectionError(
                f"Failed to disconnect from MongoDB: {error_message(failure)}",
                database_type=self.database_type
            ) from failure

    def is_connected(self) -> bool:
        return self._client is not None

    async def execute_query(
        self,
        command: str,
        parameters: Optional[Sequence[Any]] = None
    ) -> QueryResult:
        """执行一个文档操作"""
        ensure_connected(self.is_connected(), self.database_type)
        operation = parse_document_operation(command, parameters)
        logger.debug(f"MongoDB execute: {operation.operation} on {operation.collection}")

        try:
            db = self._db
            if db is None:
                raise DatabaseConnectionError("Not connected to database", database_type=self.database_type)
            return await self._dispatch(db[operation.collection], operation)
        except DatabaseError:
            raise
        except Exception as e:
            raise QueryError(
                f"MongoDB operation failed: {error_message(e)}",
                database_type=self.database_type,
                query=command,
                details={"driver_error": e.__class__.__name__}
            ) from e

    async def _dispatch(self, collection, op: DocumentOperation) -> QueryResult:
        """按操作调用驱动方法并整理结果"""
        method = getattr(collection, OPERATIONS[op.operation])
        options = _driver_options(op.options)
        if self._session is not None:
            options["session"] = self._session

        if op.operation == "find":
            documents = await method(op.filter, **options).to_list(length=None)
            return rows_result(documents)

        if op.operation == "aggregate":
            documents = await method(op.update, **options).to_list(length=None)
            return rows_result(documents)

        if op.operation == "findone":
            document = await method(op.filter, **options)
            return rows_result([document] if document is not None else [])

        if op.operation == "count":
            return scalar_result(await method(op.filter, **options))

        if op.operation == "distinct":
            values = await method(op.update, op.filter, **options)
            return rows_result({"value": value} for value in values)

        if op.operation == "insertone":
            result = await method(op.update, **options)
            return synthetic_result(
                {"acknowledged": result.acknowledged, "inserted_id": result.inserted_id}, 1
            )

        if op.operation == "insertmany":
            result = await method(op.update, **options)
            return synthetic_result(
                {"acknowledged": result.acknowledged, "inserted_ids": result.inserted_ids},
                len(result.inserted_ids)
            )

        if op.operation in ("updateone", "updatemany"):
            result = await method(op.filter, op.update, **options)
            return synthetic_result(
                {
                    "acknowledged": result.acknowledged,
                    "matched_count": result.matched_count,
                    "modified_count": result.modified_count,
                    "upserted_id": result.upserted_id,
                },
                result.modified_count
            )

        # deleteone / deletemany
        result = await method(op.filter, **options)
        return synthetic_result(
            {"acknowledged": result.acknowledged, "deleted_count": result.deleted_count},
            result.deleted_count
        )

    async def _list_collections(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        """列出集合信息，排除 system.* 集合"""
        ensure_connected(self.is_connected(), self.database_type)
        query_filter = {"name": name} if name is not None else None
        try:
            cursor = await self._db.list_collections(filter=query_filter)
            infos = await cursor.to_list(length=None)
        except Exception as e:
            raise query_error(e, self.database_type, "listCollections") from e
        return [info for info in infos if not info.get("name", "").startswith("system.")]

    async def _describe(self, name: str, collection_type: str) -> TableInfo:
        """样本文档推断列，索引来自index_information"""
        collection = self._db[name]
        is_view = collection_type == "view"
        try:
            sample = await collection.find_one({})
            index_info = {} if is_view else await collection.index_information()
        except Exception as e:
            raise query_error(e, self.database_type, f"describe {name}") from e

        columns = [
            ColumnInfo(
                name=key,
                data_type=describe_value_type(value),
                nullable=key != "_id",
                is_primary_key=key == "_id",
            )
            for key, value in (sample or {}).items()
        ]

        indexes = [
            IndexInfo(
                name=index_name,
                columns=[field for field, _ in spec.get("key", [])],
                unique=bool(spec.get("unique", False)) or index_name == "_id_",
                index_type=_index_type(spec.get("key", [])),
            )
            for index_name, spec in index_info.items()
        ]

        return TableInfo(
            name=name,
            schema=self._config.database,
            kind=TableKind.VIEW if is_view else TableKind.TABLE,
            columns=columns,
            indexes=indexes,
        )

    async def get_tables(self) -> List[TableInfo]:
        tables = []
        for info in await self._list_collections():
            tables.append(await self._describe(info["name"], info.get("type", "collection")))
        return tables

    async def get_table_info(self, name: str, schema: Optional[str] = None) -> Optional[TableInfo]:
        """集合不存在或名称被拒绝时返回None；空集合返回空列"""
        try:
            cleaned = sanitize_collection_name(name, database_type=self.database_type)
        except QueryError:
            return None
        infos = await self._list_collections(cleaned)
        if not infos:
            return None
        return await self._describe(cleaned, infos[0].get("type", "collection"))

    async def _connection_count(self) -> int:
        """serverStatus需要权限，不可用时按当前这一个连接计"""
        try:
            status = await self._client.admin.command("serverStatus")
            return int(status.get("connections", {}).get("current", 1))
        except Exception as e:
            logger.debug(f"serverStatus unavailable: {error_message(e)}")
            return 1

    async def get_database_stats(self) -> DatabaseStats:
        ensure_connected(self.is_connected(), self.database_type)
        try:
            stats = await self._db.command("dbstats")
        except Exception as e:
            raise query_error(e, self.database_type, "dbStats") from e

        data_size_mb = round(float(stats.get("dataSize", 0) or 0) / 1024 / 1024, 2)
        return DatabaseStats(
            total_tables=int(stats.get("collections", 0) or 0),
            total_views=int(stats.get("views", 0) or 0),
            total_indexes=int(stats.get("indexes", 0) or 0),
            database_size=f"{data_size_mb} MB",
            connection_count=await self._connection_count(),
        )

    async def validate_connection(self) -> bool:
        try:
            ensure_connected(self.is_connected(), self.database_type)
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB connection check failed: {error_message(e)}")
            return False

    async def begin_transaction(self) -> None:
        """开启会话并开始事务"""
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_no_transaction(self.is_in_transaction(), self.database_type)

            client = self._client
            session = None
            try:
                session = await client.start_session()
                if self._client is not client:
                    await self._end_session(session)
                    raise disconnected_during_begin(self.database_type)
                session.start_transaction()
            except DatabaseConnectionError:
                raise
            except Exception as e:
                if session is not None:
                    await self._end_session(session)
                raise TransactionError(
                    f"Failed to begin MongoDB transaction: {error_message(e)}",
                    database_type=self.database_type
                ) from e

            self._session = session
            logger.debug("MongoDB transaction started")

    async def commit_transaction(self) -> None:
        await self._finish_transaction(commit=True)

    async def rollback_transaction(self) -> None:
        await self._finish_transaction(commit=False)

    async def _finish_transaction(self, commit: bool) -> None:
        """提交或中止事务，之后总是结束会话"""
        action = "commit" if commit else "rollback"
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_transaction(self.is_in_transaction(), self.database_type)
            session = self._session

            try:
                if commit:
                    await session.commit_transaction()
                else:
                    await session.abort_transaction()
            except Exception as e:
                raise TransactionError(
                    f"Failed to {action} MongoDB transaction: {error_message(e)}",
                    database_type=self.database_type
                ) from e
            finally:
                self._session = None
                await self._end_session(session)

            logger.debug(f"MongoDB transaction {action} done")

    async def _end_session(self, session) -> None:
        try:
            await session.end_session()
        except Exception as e:
            logger.warning(f"Failed to end MongoDB session: {error_message(e)}")

    def is_in_transaction(self) -> bool:
        return self._session is not None
