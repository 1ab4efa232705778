"""
PostgreSQL数据库适配器 - 使用asyncpg连接池
普通命令每次从池中取连接，事务期间所有命令走同一个专用连接
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Sequence

import asyncpg

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
from .pg_types import pg_type_name
from ..config.connection import PostgreSQLConfig
from ..telemetry.logger import get_logger
from ..types.command_types import SQLCommand
from ..types.core_types import (
    ColumnInfo,
    ConstraintInfo,
    ConstraintKind,
    DatabaseStats,
    FieldInfo,
    IndexInfo,
    QueryResult,
    TableInfo,
    TableKind,
)
from ..utils.errors import DatabaseConnectionError, DatabaseError, QueryError, TransactionError


logger = get_logger(__name__)

SYSTEM_SCHEMA_FILTER = """
    n.nspname NOT IN ('pg_catalog', 'information_schema')
    AND n.nspname NOT LIKE 'pg_toast%'
"""

RELKIND_TO_TABLE_KIND = {
    'r': TableKind.TABLE,
    'p': TableKind.TABLE,
    'v': TableKind.VIEW,
    'm': TableKind.MATERIALIZED_VIEW,
}

CONTYPE_TO_CONSTRAINT_KIND = {
    'p': ConstraintKind.PRIMARY_KEY,
    'f': ConstraintKind.FOREIGN_KEY,
    'u': ConstraintKind.UNIQUE,
    'c': ConstraintKind.CHECK,
    'n': ConstraintKind.NOT_NULL,
}

TABLES_QUERY = f"""
    SELECT c.relname AS table_name,
           n.nspname AS table_schema,
           c.relkind AS relkind
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p', 'v', 'm')
      AND {SYSTEM_SCHEMA_FILTER}
    ORDER BY n.nspname, c.relname
"""

TABLE_QUERY = """
    SELECT c.relname AS table_name,
           n.nspname AS table_schema,
           c.relkind AS relkind
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p', 'v', 'm')
      AND c.relname = $1
      AND n.nspname = $2
"""

COLUMNS_QUERY = """
    SELECT a.attname AS column_name,
           pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
           NOT a.attnotnull AS nullable,
           pg_catalog.pg_get_expr(d.adbin, d.adrelid) AS column_default,
           information_schema._pg_char_max_length(a.atttypid, a.atttypmod) AS max_length,
           information_schema._pg_numeric_precision(a.atttypid, a.atttypmod) AS numeric_precision,
           information_schema._pg_numeric_scale(a.atttypid, a.atttypmod) AS numeric_scale
    FROM pg_catalog.pg_attribute a
    JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    LEFT JOIN pg_catalog.pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
    WHERE c.relname = $1
      AND n.nspname = $2
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY a.attnum
"""

INDEXES_QUERY = """
    SELECT i.relname AS index_name,
           ix.indisunique AS is_unique,
           am.amname AS index_type,
           ARRAY(
               SELECT a.attname
               FROM unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
               JOIN pg_catalog.pg_attribute a
                 ON a.attrelid = ix.indrelid AND a.attnum = k.attnum
               ORDER BY k.ord
           ) AS columns
    FROM pg_catalog.pg_index ix
    JOIN pg_catalog.pg_class t ON t.oid = ix.indrelid
    JOIN pg_catalog.pg_class i ON i.oid = ix.indexrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_catalog.pg_am am ON am.oid = i.relam
    WHERE t.relname = $1
      AND n.nspname = $2
    ORDER BY i.relname
"""

CONSTRAINTS_QUERY = """
    SELECT con.conname AS constraint_name,
           con.contype AS constraint_type,
           ARRAY(
               SELECT a.attname
               FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
               JOIN pg_catalog.pg_attribute a
                 ON a.attrelid = con.conrelid AND a.attnum = k.attnum
               ORDER BY k.ord
           ) AS columns,
           ref.relname AS referenced_table,
           ARRAY(
               SELECT a.attname
               FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
               JOIN pg_catalog.pg_attribute a
                 ON a.attrelid = con.confrelid AND a.attnum = k.attnum
               ORDER BY k.ord
           ) AS referenced_columns
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    LEFT JOIN pg_catalog.pg_class ref ON ref.oid = con.confrelid
    WHERE c.relname = $1
      AND n.nspname = $2
      AND con.contype IN ('p', 'f', 'u', 'c', 'n')
    ORDER BY con.conname
"""

STATS_TABLES_QUERY = f"""
    SELECT COUNT(*) AS total_tables
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p') AND {SYSTEM_SCHEMA_FILTER}
"""

STATS_VIEWS_QUERY = f"""
    SELECT COUNT(*) AS total_views
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('v', 'm') AND {SYSTEM_SCHEMA_FILTER}
"""

STATS_INDEXES_QUERY = f"""
    SELECT COUNT(*) AS total_indexes
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('i', 'I') AND {SYSTEM_SCHEMA_FILTER}
"""

STATS_SIZE_QUERY = """
    SELECT pg_size_pretty(pg_database_size(current_database())) AS database_size
"""

STATS_CONNECTIONS_QUERY = """
    SELECT COUNT(*) AS connection_count
    FROM pg_stat_activity
    WHERE datname = current_database()
"""


def parse_sql_command(command: Any, parameters: Optional[Sequence[Any]] = None) -> SQLCommand:
    """
    校验SQL命令和参数
    参数按位置绑定到 $1..$n，只接受序列
    """
    if not isinstance(command, str) or not command.strip():
        raise QueryError("SQL command must be a non-empty string", database_type="postgresql", query=command)
    if parameters is None:
        return SQLCommand(text=command, parameters=())
    if isinstance(parameters, (str, bytes, Mapping)):
        raise QueryError(
            "SQL parameters must be a positional sequence",
            database_type="postgresql",
            query=command
        )
    return SQLCommand(text=command, parameters=tuple(parameters))


def _affected_rows(status: Optional[str]) -> Optional[int]:
    """从命令标签解析影响行数，例如 'UPDATE 5' -> 5, 'INSERT 0 3' -> 3"""
    if not status:
        return None
    parts = status.split()
    if len(parts) >= 2 and parts[-1].isdigit():
        return int(parts[-1])
    return None


class PostgreSQLAdapter(DataAdapter):
    """
    PostgreSQL数据库适配器
    - asyncpg连接池，connect时取一次连接验证可用
    - 参数在服务端绑定，不拼接SQL
    - 事务占用一个专用连接，提交/回滚后总是归还
    - 系统目录查询实现结构内省
    """

    database_type = "postgresql"

    def __init__(self, config: PostgreSQLConfig):
        self._config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._tx_connection: Optional[asyncpg.Connection] = None
        self._transaction = None
        self._connect_lock = asyncio.Lock()
        self._transaction_lock = asyncio.Lock()
        # 专用连接同一时刻只能执行一个操作
        self._session_lock = asyncio.Lock()
        self._in_flight = 0

    @property
    def config(self) -> PostgreSQLConfig:
        return self._config

    def _connection_params(self) -> Dict[str, Any]:
        """asyncpg的连接池参数"""
        config = self._config
        params: Dict[str, Any] = {
            'min_size': min(config.min_size, config.max_size),
            'max_size': config.max_size,
            'max_inactive_connection_lifetime': config.max_inactive_connection_lifetime,
            'timeout': config.connect_timeout,
        }
        if config.command_timeout is not None:
            params['command_timeout'] = config.command_timeout

        if config.url:
            params['dsn'] = config.url
            if config.password:
                params['password'] = config.password
        else:
            params.update({
                'host': config.host,
                'port': config.port,
                'user': config.username,
                'password': config.password,
                'database': config.database,
            })
        if config.ssl:
            params['ssl'] = 'require'
        return params

    def _connection_error(self, exc: BaseException) -> DatabaseConnectionError:
        """根据驱动错误给出友好的连接错误信息"""
        config = self._config
        error_str = error_message(exc)
        lowered = error_str.lower()
        if "password authentication failed" in lowered or "authentication failed" in lowered:
            message = f"PostgreSQL authentication failed for user '{config.username}'"
        elif "does not exist" in lowered and "database" in lowered:
            message = f"PostgreSQL database '{config.database}' does not exist"
        elif "connection refused" in lowered or "could not connect" in lowered:
            message = f"Cannot reach PostgreSQL server at {config.host}:{config.port}"
        else:
            message = f"Failed to connect to PostgreSQL database: {error_str}"
        return DatabaseConnectionError(
            message,
            database_type=self.database_type,
            details={"host": config.host, "port": config.port, "database": config.database}
        )

    async def connect(self) -> None:
        """建立连接池并验证可用"""
        async with self._connect_lock:
            if self._pool is not None:
                return

            try:
                pool = await asyncpg.create_pool(**self._connection_params())
            except Exception as e:
                raise self._connection_error(e) from e

            try:
                async with pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
            except Exception as e:
                pool.terminate()
                raise self._connection_error(e) from e

            self._pool = pool
            logger.info(f"Connected to PostgreSQL {self._config.host}:{self._config.port}/{self._config.database}")

    async def disconnect(self) -> None:
        """
        关闭连接池
        先清空状态，之后无论释放是否成功都视为已断开
        有正在执行的操作时直接终止连接池，不等待
        """
        pool = self._pool
        if pool is None:
            return

        tx_connection, transaction = self._tx_connection, self._transaction
        busy = self._in_flight > 0 or self._session_lock.locked()
        self._pool = None
        self._tx_connection = None
        self._transaction = None

        if busy:
            logger.warning("Terminating PostgreSQL pool with operations in flight")
            pool.terminate()
            return

        try:
            if tx_connection is not None:
                await self._discard_transaction(pool, tx_connection, transaction)
            await pool.close()
        except Exception as e:
            pool.terminate()
            raise DatabaseConnectionError(
                f"Failed to disconnect from PostgreSQL database: {error_message(e)}",
                database_type=self.database_type
            ) from e
        finally:
            logger.info("Disconnected from PostgreSQL")

    async def _discard_transaction(self, pool: asyncpg.Pool, connection: asyncpg.Connection, transaction) -> None:
        """断开时丢弃未提交的事务"""
        try:
            if transaction is not None:
                await transaction.rollback()
        except Exception as e:
            logger.warning(f"Rollback during disconnect failed: {error_message(e)}")
            connection.terminate()
        await pool.release(connection)

    def is_connected(self) -> bool:
        return self._pool is not None

    async def _run(self, conn: asyncpg.Connection, command: SQLCommand) -> QueryResult:
        """在指定连接上执行一条命令"""
        statement = await conn.prepare(command.text)
        attributes = statement.get_attributes()
        records = await statement.fetch(*command.parameters)

        if attributes:
            fields = [
                FieldInfo(name=attr.name, data_type=pg_type_name(attr.type.oid), nullable=True)
                for attr in attributes
            ]
            return rows_result((dict(record) for record in records), fields)

        status = statement.get_statusmsg()
        return scalar_result(status, row_count=_affected_rows(status))

    async def execute_query(
        self,
        command: str,
        parameters: Optional[Sequence[Any]] = None
    ) -> QueryResult:
        """执行SQL，事务中走专用连接，否则从池中取连接"""
        ensure_connected(self.is_connected(), self.database_type)
        sql = parse_sql_command(command, parameters)
        logger.debug(f"PostgreSQL execute: {sql.text.strip()[:200]}")

        try:
            tx_connection = self._tx_connection
            if tx_connection is not None:
                async with self._session_lock:
                    # 等锁期间事务可能已结束
                    if self._tx_connection is tx_connection:
                        return await self._run(tx_connection, sql)

            pool = self._pool
            if pool is None:
                raise DatabaseConnectionError("Not connected to database", database_type=self.database_type)
            self._in_flight += 1
            try:
                async with pool.acquire() as conn:
                    return await self._run(conn, sql)
            finally:
                self._in_flight -= 1
        except DatabaseError:
            raise
        except Exception as e:
            raise query_error(e, self.database_type, sql.text, sql.parameters) from e

    async def get_tables(self) -> List[TableInfo]:
        """列出用户模式下的表、视图和物化视图"""
        result = await self.execute_query(TABLES_QUERY)
        tables: List[TableInfo] = []
        for row in result.rows:
            info = await self.get_table_info(row['table_name'], row['table_schema'])
            if info is not None:
                tables.append(info)
        return tables

    async def get_table_info(self, name: str, schema: Optional[str] = None) -> Optional[TableInfo]:
        """获取表结构：列、索引和约束"""
        schema_name = schema or 'public'

        table_result = await self.execute_query(TABLE_QUERY, [name, schema_name])
        if not table_result.rows:
            return None
        table = table_result.rows[0]

        columns_result = await self.execute_query(COLUMNS_QUERY, [name, schema_name])
        indexes_result = await self.execute_query(INDEXES_QUERY, [name, schema_name])
        constraints_result = await self.execute_query(CONSTRAINTS_QUERY, [name, schema_name])

        constraints: List[ConstraintInfo] = []
        for row in constraints_result.rows:
            kind = CONTYPE_TO_CONSTRAINT_KIND.get(row['constraint_type'])
            if kind is None:
                continue
            is_foreign = kind == ConstraintKind.FOREIGN_KEY
            constraints.append(ConstraintInfo(
                name=row['constraint_name'],
                kind=kind,
                columns=list(row['columns'] or []),
                referenced_table=row['referenced_table'] if is_foreign else None,
                referenced_columns=list(row['referenced_columns'] or []) if is_foreign else None,
            ))

        primary_columns = {
            col for c in constraints if c.kind == ConstraintKind.PRIMARY_KEY for col in c.columns
        }
        foreign_columns = {
            col for c in constraints if c.kind == ConstraintKind.FOREIGN_KEY for col in c.columns
        }

        columns = [
            ColumnInfo(
                name=row['column_name'],
                data_type=row['data_type'],
                nullable=bool(row['nullable']),
                default_value=row['column_default'],
                is_primary_key=row['column_name'] in primary_columns,
                is_foreign_key=row['column_name'] in foreign_columns,
                max_length=row['max_length'],
                precision=row['numeric_precision'],
                scale=row['numeric_scale'],
            )
            for row in columns_result.rows
        ]

        indexes = [
            IndexInfo(
                name=row['index_name'],
                columns=list(row['columns'] or []),
                unique=bool(row['is_unique']),
                index_type=row['index_type'],
            )
            for row in indexes_result.rows
        ]

        return TableInfo(
            name=table['table_name'],
            schema=table['table_schema'],
            kind=RELKIND_TO_TABLE_KIND.get(table['relkind'], TableKind.TABLE),
            columns=columns,
            indexes=indexes,
            constraints=constraints,
        )

    async def get_database_stats(self) -> DatabaseStats:
        """并发查询表、视图、索引数量，数据库大小和连接数"""
        tables, views, indexes, size, connections = await asyncio.gather(
            self.execute_query(STATS_TABLES_QUERY),
            self.execute_query(STATS_VIEWS_QUERY),
            self.execute_query(STATS_INDEXES_QUERY),
            self.execute_query(STATS_SIZE_QUERY),
            self.execute_query(STATS_CONNECTIONS_QUERY),
        )

        def first(result: QueryResult, key: str) -> Any:
            return result.rows[0].get(key) if result.rows else None

        return DatabaseStats(
            total_tables=int(first(tables, 'total_tables') or 0),
            total_views=int(first(views, 'total_views') or 0),
            total_indexes=int(first(indexes, 'total_indexes') or 0),
            database_size=first(size, 'database_size') or '0 MB',
            connection_count=int(first(connections, 'connection_count') or 0),
        )

    async def validate_connection(self) -> bool:
        try:
            await self.execute_query("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"PostgreSQL connection check failed: {error_message(e)}")
            return False

    async def begin_transaction(self) -> None:
        """取一个专用连接并执行BEGIN"""
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_no_transaction(self.is_in_transaction(), self.database_type)
            pool = self._pool

            # 计入进行中的操作，等待期间断开会直接终止连接池
            self._in_flight += 1
            try:
                try:
                    connection = await pool.acquire()
                except Exception as e:
                    if self._pool is not pool:
                        raise disconnected_during_begin(self.database_type) from e
                    raise TransactionError(
                        f"Failed to begin PostgreSQL transaction: {error_message(e)}",
                        database_type=self.database_type
                    ) from e

                transaction = None
                try:
                    if self._pool is pool:
                        transaction = connection.transaction()
                        await transaction.start()
                except Exception as e:
                    await self._release(pool, connection)
                    if self._pool is not pool:
                        raise disconnected_during_begin(self.database_type) from e
                    raise TransactionError(
                        f"Failed to begin PostgreSQL transaction: {error_message(e)}",
                        database_type=self.database_type
                    ) from e
            finally:
                self._in_flight -= 1

            if self._pool is not pool:
                await self._abandon(pool, connection, transaction)
                raise disconnected_during_begin(self.database_type)

            self._tx_connection = connection
            self._transaction = transaction
            logger.debug("PostgreSQL transaction started")

    async def commit_transaction(self) -> None:
        await self._finish_transaction(commit=True)

    async def rollback_transaction(self) -> None:
        await self._finish_transaction(commit=False)

    async def _finish_transaction(self, commit: bool) -> None:
        """提交或回滚，专用连接总是归还到池中"""
        action = "commit" if commit else "rollback"
        async with self._transaction_lock:
            ensure_connected(self.is_connected(), self.database_type)
            ensure_transaction(self.is_in_transaction(), self.database_type)
            pool = self._pool

            async with self._session_lock:
                connection, transaction = self._tx_connection, self._transaction
                try:
                    if commit:
                        await transaction.commit()
                    else:
                        await transaction.rollback()
                except Exception as e:
                    raise TransactionError(
                        f"Failed to {action} PostgreSQL transaction: {error_message(e)}",
                        database_type=self.database_type
                    ) from e
                finally:
                    self._tx_connection = None
                    self._transaction = None
                    await self._release(pool, connection)

            logger.debug(f"PostgreSQL transaction {action} done")

    async def _release(self, pool: Optional[asyncpg.Pool], connection: asyncpg.Connection) -> None:
        """归还连接，归还失败时终止该连接"""
        if pool is None:
            return
        try:
            await pool.release(connection)
        except Exception as e:
            logger.warning(f"Failed to release PostgreSQL connection: {error_message(e)}")
            connection.terminate()

    async def _abandon(self, pool: asyncpg.Pool, connection: asyncpg.Connection, transaction) -> None:
        """丢弃断开期间开启的事务，连接不再复用"""
        if transaction is not None:
            try:
                await transaction.rollback()
            except Exception as e:
                logger.warning(f"Rollback of abandoned transaction failed: {error_message(e)}")
        connection.terminate()
        await self._release(pool, connection)

    def is_in_transaction(self) -> bool:
        return self._tx_connection is not None
