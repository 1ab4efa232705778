"""
Redis适配器测试 - 命令解析、结果形状、MULTI事务与键模式
"""

import asyncio

import pytest

from dbweave.adapters.redis_adapter import RedisAdapter, key_pattern, parse_key_value_command
from dbweave.config.connection import RedisConfig
from dbweave.utils.errors import DatabaseConnectionError, QueryError, TransactionError

pytestmark = pytest.mark.asyncio


async def test_get_missing_key_returns_single_null_row(redis_adapter_instance):
    await redis_adapter_instance.connect()
    result = await redis_adapter_instance.execute_query("GET foo")

    assert result.row_count == 1
    assert len(result.rows) == 1
    assert list(result.rows[0].values()) == [None]
    await redis_adapter_instance.disconnect()


async def test_unsupported_command_names_keyword(redis_adapter_instance):
    await redis_adapter_instance.connect()

    with pytest.raises(QueryError) as exc_info:
        await redis_adapter_instance.execute_query("FROBNICATE x")

    assert "FROBNICATE" in str(exc_info.value)
    await redis_adapter_instance.disconnect()


async def test_dangerous_commands_rejected(redis_adapter_instance, redis_server):
    redis_server.data["k"] = "v"
    await redis_adapter_instance.connect()

    for command in ("FLUSHALL", "CONFIG SET dir /tmp", "EVAL return 1 0"):
        with pytest.raises(QueryError):
            await redis_adapter_instance.execute_query(command)

    assert redis_server.data == {"k": "v"}
    await redis_adapter_instance.disconnect()


async def test_placeholders_bind_values_verbatim(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()

    await redis_adapter_instance.execute_query("SET ? ?", ["greeting", "hello world; FLUSHALL"])
    result = await redis_adapter_instance.execute_query("GET ?", ["greeting"])

    assert redis_server.data["greeting"] == "hello world; FLUSHALL"
    assert result.rows == [{"result": "hello world; FLUSHALL"}]
    await redis_adapter_instance.disconnect()


async def test_hash_reply_becomes_key_value_rows(redis_adapter_instance):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.execute_query("HSET user:1 name Ada lang en")

    result = await redis_adapter_instance.execute_query("HGETALL user:1")

    assert result.row_count == 2
    assert {"key": "name", "value": "Ada"} in result.rows
    assert [f.name for f in result.fields] == ["key", "value"]
    await redis_adapter_instance.disconnect()


async def test_list_reply_rows_are_indexed(redis_adapter_instance):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.execute_query("RPUSH queue a b c")

    result = await redis_adapter_instance.execute_query("LRANGE queue 0 -1")

    assert result.rows == [
        {"key": 0, "value": "a"},
        {"key": 1, "value": "b"},
        {"key": 2, "value": "c"},
    ]
    await redis_adapter_instance.disconnect()


async def test_set_and_sorted_set_replies(redis_adapter_instance):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.execute_query("SADD tags b a")
    await redis_adapter_instance.execute_query("ZADD board 2 bob 1 amy")

    members = await redis_adapter_instance.execute_query("SMEMBERS tags")
    ranking = await redis_adapter_instance.execute_query("ZRANGE board 0 -1")

    assert [row["value"] for row in members.rows] == ["a", "b"]
    assert [row["value"] for row in ranking.rows] == ["amy", "bob"]
    await redis_adapter_instance.disconnect()


async def test_ping_returns_pong(redis_adapter_instance):
    await redis_adapter_instance.connect()
    result = await redis_adapter_instance.execute_query("ping")
    assert result.rows == [{"result": "PONG"}]
    await redis_adapter_instance.disconnect()


async def test_transaction_queues_until_commit(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.begin_transaction()

    result = await redis_adapter_instance.execute_query("SET a 1")
    assert result.rows == [{"result": "QUEUED"}]
    assert "a" not in redis_server.data

    await redis_adapter_instance.commit_transaction()

    assert redis_server.data["a"] == "1"
    assert redis_server.pipelines[-1].transaction is True
    await redis_adapter_instance.disconnect()


async def test_rollback_discards_queued_commands(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.begin_transaction()
    await redis_adapter_instance.execute_query("SET a 1")

    await redis_adapter_instance.rollback_transaction()

    assert "a" not in redis_server.data
    assert redis_server.pipelines[-1].discarded
    await redis_adapter_instance.disconnect()


async def test_transaction_uses_single_connection_client(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.begin_transaction()

    tx_client = redis_server.clients[-1]
    assert tx_client.options["single_connection_client"] is True

    await redis_adapter_instance.commit_transaction()
    assert tx_client.closed
    await redis_adapter_instance.disconnect()


async def test_failed_exec_clears_transaction(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.begin_transaction()
    redis_server.fail_exec = ConnectionError("Connection reset by peer")

    with pytest.raises(TransactionError):
        await redis_adapter_instance.commit_transaction()

    assert not redis_adapter_instance.is_in_transaction()
    await redis_adapter_instance.disconnect()


async def test_disconnect_discards_queued_commands(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.begin_transaction()
    await redis_adapter_instance.execute_query("SET a 1")

    await redis_adapter_instance.disconnect()

    assert "a" not in redis_server.data
    assert all(client.closed for client in redis_server.clients)


async def test_connect_failure(redis_adapter_instance, redis_server):
    redis_server.fail_ping = ConnectionError("Error 111 connecting to cache.internal:6379. Connection refused.")

    with pytest.raises(DatabaseConnectionError):
        await redis_adapter_instance.connect()

    assert not redis_adapter_instance.is_connected()
    assert redis_server.clients[0].closed


async def test_client_options(redis_server):
    adapter = RedisAdapter(RedisConfig(host="cache", port=6380, db=3, password="pw", ssl=True))
    await adapter.connect()

    options = redis_server.clients[0].options
    assert options["host"] == "cache"
    assert options["port"] == 6380
    assert options["db"] == 3
    assert options["ssl"] is True
    assert options["decode_responses"] is True
    assert options["socket_connect_timeout"] == 10.0
    await adapter.disconnect()


async def test_url_config_uses_from_url(redis_server):
    adapter = RedisAdapter(RedisConfig(url="redis://cache:6379/1"))
    await adapter.connect()
    assert redis_server.clients[0].url == "redis://cache:6379/1"
    await adapter.disconnect()


async def test_key_patterns_as_tables(redis_adapter_instance, redis_server):
    redis_server.data.update({"user:1": "a", "user:2": "b", "session:x": "c", "counter": "1"})
    await redis_adapter_instance.connect()

    tables = await redis_adapter_instance.get_tables()

    assert sorted(t.name for t in tables) == ["*", "session:*", "user:*"]
    assert [c.name for c in tables[0].columns] == ["key", "value"]
    assert tables[0].columns[0].is_primary_key
    await redis_adapter_instance.disconnect()


async def test_table_info_for_absent_pattern(redis_adapter_instance, redis_server):
    redis_server.data["user:1"] = "a"
    await redis_adapter_instance.connect()

    assert (await redis_adapter_instance.get_table_info("user:*")).name == "user:*"
    assert await redis_adapter_instance.get_table_info("order:*") is None
    await redis_adapter_instance.disconnect()


async def test_database_stats_from_info(redis_adapter_instance, redis_server):
    redis_server.data.update({"user:1": "a", "session:x": "c"})
    await redis_adapter_instance.connect()

    stats = await redis_adapter_instance.get_database_stats()

    assert stats.total_tables == 2
    assert stats.total_views == 0
    assert stats.database_size == "1.00M"
    assert stats.connection_count == 1
    await redis_adapter_instance.disconnect()


async def test_parse_placeholder_count_mismatch():
    with pytest.raises(QueryError) as exc_info:
        parse_key_value_command("SET ? ?", ["only-one"])
    assert "placeholder" in str(exc_info.value)


async def test_parse_arity_error_shows_usage():
    with pytest.raises(QueryError) as exc_info:
        parse_key_value_command("GET a b")
    assert "usage: GET key" in str(exc_info.value)


async def test_parse_is_case_insensitive():
    parsed = parse_key_value_command("hgetall user:1")
    assert parsed.keyword == "HGETALL"
    assert parsed.arguments == ("user:1",)


async def test_key_pattern():
    assert key_pattern("user:1:profile") == "user:*"
    assert key_pattern("plain") == "*"


async def test_concurrent_commands_in_transaction_share_pipeline(redis_adapter_instance, redis_server):
    await redis_adapter_instance.connect()
    await redis_adapter_instance.begin_transaction()

    results = await asyncio.gather(
        redis_adapter_instance.execute_query("SET a 1"),
        redis_adapter_instance.execute_query("SET b 2"),
    )

    assert [result.rows for result in results] == [[{"result": "QUEUED"}]] * 2
    assert len(redis_server.pipelines) == 1
    assert redis_server.data == {}

    await redis_adapter_instance.commit_transaction()
    assert redis_server.data == {"a": "1", "b": "2"}
    await redis_adapter_instance.disconnect()
